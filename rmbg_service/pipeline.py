"""
High-level RMBG processing pipeline.

`process_image` is the shared core used by the HTTP API, the CLI and the
batch worker:
source -> normalize -> model mask -> composite -> RGBA image.
"""

from __future__ import annotations

import logging
from typing import Optional

from PIL import Image

from .encoding import encode_base64_png
from .image_loader import Source, normalize
from .model_loader import InferenceSession, get_session, init_session
from .postprocessing import BackgroundPolicy, composite

logger = logging.getLogger(__name__)


def process_image(
    source: Source,
    background: BackgroundPolicy,
    session: Optional[InferenceSession] = None,
) -> Image.Image:
    """Run the full pipeline on one source and return the composited image."""
    session = session or get_session()
    image = normalize(source)
    mask = session.infer(image)
    return composite(image, mask, background)


def process_to_data_url(
    source: Source,
    background: BackgroundPolicy,
    session: Optional[InferenceSession] = None,
) -> str:
    return encode_base64_png(process_image(source, background, session=session))


def process_one(
    source: Source,
    background: BackgroundPolicy,
    session: Optional[InferenceSession] = None,
) -> str:
    """
    Process a single input and return a PNG data URL.

    Initializes the shared session from settings when none is given.

    Raises:
        RmbgError: any pipeline failure, unchanged.
    """
    session = session or init_session()
    return process_to_data_url(source, background, session=session)
