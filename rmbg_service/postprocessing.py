"""Edge softening and alpha compositing of the model mask."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Tuple, Union

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transparent:
    pass


@dataclass(frozen=True)
class White:
    pass


@dataclass(frozen=True)
class Black:
    pass


@dataclass(frozen=True)
class Color:
    r: int
    g: int
    b: int

    def __post_init__(self):
        for channel in (self.r, self.g, self.b):
            if not 0 <= int(channel) <= 255:
                raise ValueError(f"Color channels must be in 0..255, got {(self.r, self.g, self.b)}")

    @property
    def rgb(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)


BackgroundPolicy = Union[Transparent, White, Black, Color]

# 3x3 Gaussian, 1-2-1 / 2-4-2 / 1-2-1 over 16
EDGE_KERNEL = np.array(
    [[1.0, 2.0, 1.0], [2.0, 4.0, 2.0], [1.0, 2.0, 1.0]],
    dtype=np.float32,
) / np.float32(16.0)


def blur_mask(mask: np.ndarray) -> np.ndarray:
    """Soften mask edges; borders replicate, result truncated to uint8."""
    blurred = cv2.filter2D(
        mask.astype(np.float32), -1, EDGE_KERNEL, borderType=cv2.BORDER_REPLICATE
    )
    return np.clip(blurred, 0.0, 255.0).astype(np.uint8)


def _blend(rgb: np.ndarray, alpha_f: np.ndarray, background: Tuple[int, int, int]) -> np.ndarray:
    bg = np.array(background, dtype=np.float32)
    out = rgb * alpha_f + bg * (np.float32(1.0) - alpha_f)
    return np.clip(out, 0.0, 255.0).astype(np.uint8)


def composite(image: Image.Image, mask: Image.Image, background: BackgroundPolicy) -> Image.Image:
    """
    Apply `mask` to `image` over the chosen background.

    Transparent keeps source colors and uses the softened mask as alpha; the
    other policies blend toward a solid color and return an opaque image.
    All arithmetic is float32 with truncating conversion back to 8 bit.
    """
    assert image.size == mask.size, f"mask {mask.size} does not match image {image.size}"

    rgba_src = np.asarray(image.convert("RGBA"), dtype=np.uint8)
    soft = blur_mask(np.asarray(mask.convert("L"), dtype=np.uint8))

    if isinstance(background, Transparent):
        out_rgb = rgba_src[..., :3]
        out_alpha = soft
    else:
        rgb = rgba_src[..., :3].astype(np.float32)
        alpha_f = (soft.astype(np.float32) / np.float32(255.0))[..., None]
        if isinstance(background, White):
            out_rgb = _blend(rgb, alpha_f, (255, 255, 255))
        elif isinstance(background, Black):
            out_rgb = np.clip(rgb * alpha_f, 0.0, 255.0).astype(np.uint8)
        elif isinstance(background, Color):
            out_rgb = _blend(rgb, alpha_f, background.rgb)
        else:
            raise TypeError(f"Unknown background policy: {background!r}")
        out_alpha = np.full(soft.shape, 255, dtype=np.uint8)

    logger.debug("composite: size=%s background=%s", image.size, type(background).__name__)
    rgba = np.dstack((out_rgb, out_alpha))
    return Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8))
