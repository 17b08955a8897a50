"""
Image ingestion and normalization.

Every supported input (file path or in-memory buffer, raster or SVG) is turned
into a canonical RGBA `PIL.Image` with straight alpha. Oversized results are
downscaled so neither side exceeds `MAX_DIMENSION`.
"""

from __future__ import annotations

from io import BytesIO
import logging
import math
from pathlib import Path
import re
import struct
import sys
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

from .errors import FileAccessError, InvalidInputError, UnsupportedFormatError

logger = logging.getLogger(__name__)

Source = Union[str, Path, bytes]

SUPPORTED_EXTENSIONS = frozenset(
    {
        "png", "jpg", "jpeg", "webp", "svg",
        "bmp", "gif", "tif", "tiff", "ico",
        "tga", "pnm", "pbm", "pgm", "ppm",
        "hdr", "ff", "qoi",
    }
)

MAX_DIMENSION = 4096
SVG_MIN_WIDTH = 2048.0
SVG_MAX_PIXELS = 8192  # hard cap per side, ~256 MB worst case

_FARBFELD_MAGIC = b"farbfeld"
_HDR_MAGICS = (b"#?RADIANCE", b"#?RGBE")

# px per unit at 96 dpi
_SVG_UNITS = {
    "": 1.0,
    "px": 1.0,
    "pt": 96.0 / 72.0,
    "pc": 16.0,
    "in": 96.0,
    "cm": 96.0 / 2.54,
    "mm": 96.0 / 25.4,
    # font-relative, against the 16px default font size
    "em": 16.0,
    "ex": 8.0,
}
_LENGTH_RE = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*(px|pt|pc|in|cm|mm|em|ex)?\s*$")


def _extension(path: Union[str, Path]) -> str:
    return Path(path).suffix.lstrip(".").lower()


def is_supported(path: Union[str, Path]) -> bool:
    """Case-insensitive extension check against the supported format list."""
    return _extension(path) in SUPPORTED_EXTENSIONS


def normalize(source: Source) -> Image.Image:
    """Decode a path or byte buffer into a canonical RGBA image."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return normalize_bytes(bytes(source))
    return normalize_path(Path(source))


def normalize_path(path: Path) -> Image.Image:
    ext = _extension(path)
    if ext not in SUPPORTED_EXTENSIONS:
        raise UnsupportedFormatError(ext)

    try:
        data = path.read_bytes()
    except FileNotFoundError as exc:
        raise FileAccessError(f"File not found: {path}", path=path, missing=True) from exc
    except OSError as exc:
        raise FileAccessError(f"Could not read {path}: {exc}", path=path) from exc

    if ext == "svg":
        image = rasterize_svg(data)
    else:
        image = _decode_raster(data, label=str(path))
    return smart_downscale(image)


def normalize_bytes(data: bytes) -> Image.Image:
    """Decode an in-memory buffer, sniffing the format from its content."""
    if not data:
        raise InvalidInputError("Image decode: empty buffer")
    if _looks_like_svg(data):
        image = rasterize_svg(data)
    else:
        image = _decode_raster(data, label="image buffer")
    return smart_downscale(image)


def _looks_like_svg(data: bytes) -> bool:
    head = data[:4096].lstrip(b"\xef\xbb\xbf \t\r\n").lower()
    return head.startswith(b"<") and b"<svg" in head


def _ensure_area(image: Image.Image, label: str) -> Image.Image:
    width, height = image.size
    if width <= 0 or height <= 0:
        raise InvalidInputError(f"Invalid image {label}: dimensions {width}x{height}")
    return image


# ─── Raster ──────────────────────────────────────────────────────────────────


def _decode_raster(data: bytes, label: str) -> Image.Image:
    if data.startswith(_FARBFELD_MAGIC):
        return _ensure_area(_decode_farbfeld(data, label), label)
    if data.startswith(_HDR_MAGICS):
        return _ensure_area(_decode_hdr(data, label), label)

    try:
        with Image.open(BytesIO(data)) as im:
            im.load()
            image = im.convert("RGBA")
    except Exception as exc:  # noqa: BLE001
        raise InvalidInputError(f"Could not open {label}: {exc}") from exc
    return _ensure_area(image, label)


def _decode_hdr(data: bytes, label: str) -> Image.Image:
    """Radiance HDR via OpenCV; linear radiance is clamped to [0, 1]."""
    buf = np.frombuffer(data, dtype=np.uint8)
    decoded = cv2.imdecode(buf, cv2.IMREAD_ANYDEPTH | cv2.IMREAD_COLOR)
    if decoded is None:
        raise InvalidInputError(f"Could not open {label}: invalid Radiance HDR data")

    rgb = cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB).astype(np.float32)
    rgb8 = (np.clip(rgb, 0.0, 1.0) * 255.0).astype(np.uint8)
    alpha = np.full(rgb8.shape[:2] + (1,), 255, dtype=np.uint8)
    return Image.fromarray(np.concatenate([rgb8, alpha], axis=2))


def _decode_farbfeld(data: bytes, label: str) -> Image.Image:
    """Farbfeld: magic, u32 BE width/height, then 16-bit BE RGBA."""
    if len(data) < 16:
        raise InvalidInputError(f"Could not open {label}: truncated farbfeld header")
    width, height = struct.unpack(">II", data[8:16])
    if width == 0 or height == 0:
        raise InvalidInputError(f"Invalid image {label}: dimensions {width}x{height}")
    count = width * height * 4
    if len(data) - 16 < count * 2:
        raise InvalidInputError(f"Could not open {label}: truncated farbfeld pixel data")

    px = np.frombuffer(data, dtype=">u2", count=count, offset=16).astype(np.uint32)
    rgba = ((px + 128) // 257).astype(np.uint8).reshape(height, width, 4)
    return Image.fromarray(rgba)


def smart_downscale(image: Image.Image) -> Image.Image:
    """Shrink so neither side exceeds MAX_DIMENSION, preserving aspect ratio."""
    width, height = image.size
    if width <= MAX_DIMENSION and height <= MAX_DIMENSION:
        return image

    long_edge = max(width, height)
    new_w = width * MAX_DIMENSION // long_edge
    new_h = height * MAX_DIMENSION // long_edge
    if new_w == 0 or new_h == 0:
        raise InvalidInputError(f"Invalid image: {width}x{height} collapses to zero area when downscaled")

    logger.debug("smart_downscale: %dx%d -> %dx%d", width, height, new_w, new_h)
    return image.resize((new_w, new_h), Image.LANCZOS)


# ─── SVG ─────────────────────────────────────────────────────────────────────


def _parse_length(value: Optional[str]) -> Optional[float]:
    """Absolute length in px, or None for missing/relative values."""
    if value is None:
        return None
    match = _LENGTH_RE.match(value)
    if not match:
        return None
    return float(match.group(1)) * _SVG_UNITS[match.group(2) or ""]


def _declared_svg_size(root) -> Tuple[float, float]:
    width = _parse_length(root.get("width"))
    height = _parse_length(root.get("height"))

    viewbox = root.get("viewBox")
    if viewbox and (width is None or height is None):
        parts = re.split(r"[\s,]+", viewbox.strip())
        try:
            vb = [float(p) for p in parts]
        except ValueError as exc:
            raise InvalidInputError(f"Invalid SVG viewBox: {viewbox!r}") from exc
        if len(vb) != 4:
            raise InvalidInputError(f"Invalid SVG viewBox: {viewbox!r}")
        if width is None:
            width = vb[2]
        if height is None:
            height = vb[3]

    if width is None or height is None:
        raise InvalidInputError("Invalid SVG: canvas size is undefined")
    return width, height


def _svg_pixel_size(width: float, height: float) -> Tuple[float, int, int]:
    if not (math.isfinite(width) and math.isfinite(height)) or width <= 0 or height <= 0:
        raise InvalidInputError("Invalid SVG: zero or negative canvas size")

    scale = max(SVG_MIN_WIDTH / width, 1.0)
    if scale > 1.0:
        # width * scale is SVG_MIN_WIDTH by construction; avoid float drift.
        target_w, target_h = SVG_MIN_WIDTH, height * SVG_MIN_WIDTH / width
    else:
        target_w, target_h = width, height
    px_w = int(min(target_w, SVG_MAX_PIXELS))
    px_h = int(min(target_h, SVG_MAX_PIXELS))
    if px_w == 0 or px_h == 0:
        raise InvalidInputError(f"Invalid SVG: canvas {width}x{height} renders to zero area")
    return scale, px_w, px_h


def unpremultiply(rgba: np.ndarray) -> np.ndarray:
    """Convert premultiplied RGBA (uint8, HxWx4) to straight alpha."""
    alpha = rgba[..., 3]
    alpha_f = alpha.astype(np.float32)[..., None] / np.float32(255.0)
    color = rgba[..., :3].astype(np.float32)
    with np.errstate(divide="ignore", invalid="ignore"):
        straight = np.where(alpha_f > 0, color / alpha_f, 0.0)

    out = np.empty_like(rgba)
    out[..., :3] = np.clip(straight, 0.0, 255.0).astype(np.uint8)
    out[..., 3] = alpha
    out[alpha == 0] = 0
    return out


def _clamped_surface_class():
    import cairocffi
    from cairosvg.surface import PNGSurface

    class ClampedPNGSurface(PNGSurface):
        """
        PNG surface whose pixel buffer is fixed at `pixel_size`.

        cairosvg still lays the drawing out at `declared size * scale`, so the
        transform is the uniform scale and anything past the cap is clipped.
        """

        def __init__(self, *args, pixel_size, **kwargs):
            self._pixel_size = pixel_size
            super().__init__(*args, **kwargs)

        def _create_surface(self, width, height):
            px_w, px_h = self._pixel_size
            return cairocffi.ImageSurface(cairocffi.FORMAT_ARGB32, px_w, px_h), width, height

    return ClampedPNGSurface


def rasterize_svg(data: bytes) -> Image.Image:
    """
    Render an SVG to RGBA.

    Small drawings are scaled up so the rendered width reaches SVG_MIN_WIDTH;
    each side is capped at SVG_MAX_PIXELS whatever the declared canvas says,
    and whatever falls past the cap is cropped.
    """
    # cairosvg loads libcairo at import time; only pay for it on SVG input.
    from cairosvg.parser import Tree

    surface_cls = _clamped_surface_class()

    try:
        tree = Tree(bytestring=data)
    except Exception as exc:  # noqa: BLE001
        raise InvalidInputError(f"SVG parse error: {exc}") from exc

    width, height = _declared_svg_size(tree)
    scale, px_w, px_h = _svg_pixel_size(width, height)
    logger.debug("rasterize_svg: canvas %.1fx%.1f scale=%.3f -> %dx%d", width, height, scale, px_w, px_h)

    try:
        surface = surface_cls(tree, BytesIO(), 96, scale=scale, pixel_size=(px_w, px_h))
        cairo_surface = surface.cairo
        cairo_surface.flush()
        stride = cairo_surface.get_stride()
        raw = np.frombuffer(cairo_surface.get_data(), dtype=np.uint8)
    except Exception as exc:  # noqa: BLE001
        raise InvalidInputError(f"SVG render error: {exc}") from exc

    # Cairo ARGB32 is a native-endian 32-bit word, premultiplied.
    pixels = raw[: stride * px_h].reshape(px_h, stride)[:, : px_w * 4].reshape(px_h, px_w, 4)
    order = [2, 1, 0, 3] if sys.byteorder == "little" else [1, 2, 3, 0]
    rgba = unpremultiply(np.ascontiguousarray(pixels[..., order]))
    return Image.fromarray(rgba)
