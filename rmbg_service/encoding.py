"""PNG / base64 data-URL encoding and saving of results."""

from __future__ import annotations

import base64
import binascii
from io import BytesIO
import logging
from pathlib import Path
from typing import Iterable, List, Tuple, Union

from PIL import Image

from .errors import EncodingError, FileAccessError, InvalidInputError

logger = logging.getLogger(__name__)

DATA_URL_PREFIX = "data:image/png;base64,"
OUTPUT_SUFFIX = "_nobg.png"


def encode_png(image: Image.Image) -> bytes:
    buf = BytesIO()
    try:
        image.save(buf, format="PNG")
    except Exception as exc:  # noqa: BLE001
        raise EncodingError(f"PNG encoding failed: {exc}") from exc
    return buf.getvalue()


def encode_base64_png(image: Image.Image) -> str:
    """Encode as PNG and wrap in a `data:image/png;base64,` URL."""
    return DATA_URL_PREFIX + base64.b64encode(encode_png(image)).decode("ascii")


def data_url_to_bytes(data_url: str) -> bytes:
    """Decode a PNG data URL; a bare base64 payload is accepted too."""
    payload = data_url[len(DATA_URL_PREFIX):] if data_url.startswith(DATA_URL_PREFIX) else data_url
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EncodingError(f"Invalid base64 payload: {exc}") from exc


def decode_data_url(data_url: str) -> Image.Image:
    png_bytes = data_url_to_bytes(data_url)
    try:
        with Image.open(BytesIO(png_bytes)) as im:
            im.load()
            return im.convert("RGBA")
    except Exception as exc:  # noqa: BLE001
        raise InvalidInputError(f"Image decode: {exc}") from exc


def save_png(image: Image.Image, dest: Union[str, Path]) -> Path:
    dest = Path(dest)
    png_bytes = encode_png(image)
    try:
        dest.write_bytes(png_bytes)
    except OSError as exc:
        raise FileAccessError(f"Saving PNG to {dest}: {exc}", path=dest) from exc
    return dest


def save_data_url(data_url: str, dest: Union[str, Path]) -> Path:
    """Write a PNG data URL to disk, re-encoding through the decoder."""
    return save_png(decode_data_url(data_url), dest)


def output_name(name: str) -> str:
    """`photo.jpg` -> `photo_nobg.png`."""
    stem = Path(name).stem or "output"
    return f"{stem}{OUTPUT_SUFFIX}"


def save_batch_to_folder(items: Iterable[Tuple[str, str]], folder: Union[str, Path]) -> List[Path]:
    """Save `(original_name, data_url)` pairs into `folder` as `<stem>_nobg.png`."""
    folder = Path(folder)
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise FileAccessError(f"Could not create {folder}: {exc}", path=folder) from exc

    written = []
    for name, data_url in items:
        dest = save_data_url(data_url, folder / output_name(name))
        logger.info("Saved %s", dest)
        written.append(dest)
    return written
