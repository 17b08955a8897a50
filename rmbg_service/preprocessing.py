"""
Tensor marshaling for the RMBG model.

The model takes a fixed 1024x1024 RGB input normalized to `pixel/255 - 0.5`
in NCHW layout and returns a (1, 1, 1024, 1024) sigmoid matte.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np
from PIL import Image

from .errors import InferenceError, InvalidInputError

INPUT_SIZE = 1024
INPUT_NAME = "input"


@dataclass
class PreprocessResult:
    tensor: np.ndarray
    orig_size: Tuple[int, int]  # (width, height)


def image_to_tensor(image: Image.Image) -> PreprocessResult:
    """
    Resize to the model resolution, drop alpha and normalize.

    Returns a float32 array of shape (1, 3, INPUT_SIZE, INPUT_SIZE).
    """
    orig_w, orig_h = image.size
    if orig_w == 0 or orig_h == 0:
        raise InvalidInputError(f"Invalid image: dimensions {orig_w}x{orig_h}")

    # Drop alpha before resampling so RGB is filtered independently of it.
    resized = image.convert("RGB").resize((INPUT_SIZE, INPUT_SIZE), Image.LANCZOS)
    im_np = np.asarray(resized, dtype=np.float32) / np.float32(255.0) - np.float32(0.5)
    im_np = np.transpose(im_np, (2, 0, 1))  # HWC -> CHW
    tensor = np.ascontiguousarray(im_np[np.newaxis, ...], dtype=np.float32)

    return PreprocessResult(tensor=tensor, orig_size=(orig_w, orig_h))


def output_to_mask(output: np.ndarray, orig_size: Tuple[int, int]) -> Image.Image:
    """Turn the raw model output into an 8-bit mask at the original size."""
    try:
        matte = np.asarray(output, dtype=np.float32).reshape(INPUT_SIZE, INPUT_SIZE)
    except ValueError as exc:
        shape = getattr(output, "shape", None)
        raise InferenceError(
            f"unexpected output shape {shape}, expected (1, 1, {INPUT_SIZE}, {INPUT_SIZE})"
        ) from exc

    # Truncating cast, not rounding.
    mask_u8 = (np.clip(matte, 0.0, 1.0) * np.float32(255.0)).astype(np.uint8)
    mask = Image.fromarray(mask_u8)
    if mask.size == orig_size:
        return mask
    return mask.resize(orig_size, Image.LANCZOS)
