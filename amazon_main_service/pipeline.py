"""
High-level finishing pipeline.

`process_image_bytes` is the main entry point used by the HTTP API and the
local test script. It keeps orchestration simple:
bytes in -> model -> canonicalize -> whiten -> JPEG bytes out.
"""

from __future__ import annotations

import logging
from typing import Optional

from . import config
from .model_client import generate_product_image
from .postprocessing import encode_jpeg, whiten_image
from .preprocessing import canonicalize, validate_upload

logger = logging.getLogger(__name__)


def finish_image(image_bytes: bytes, settings: Optional[config.Settings] = None) -> bytes:
    """Turn any decodable image into the fixed-size, white-background JPEG deliverable."""
    settings = settings or config.get_settings()
    canvas = canonicalize(image_bytes, canvas_size=settings.canvas_size)
    whitened = whiten_image(canvas, threshold=settings.whiten_threshold)
    return encode_jpeg(whitened, quality=settings.jpeg_quality)


def process_image_bytes(
    image_bytes: bytes,
    mime_type: Optional[str] = None,
    settings: Optional[config.Settings] = None,
) -> bytes:
    """
    Full pipeline from an uploaded product photo to the finished JPEG.

    Raises:
        InvalidInputError: when the upload is not a decodable image.
        PipelineError: when any stage fails; nothing partial is returned.
    """
    settings = settings or config.get_settings()
    width, height = validate_upload(image_bytes)
    logger.info("pipeline: source %dx%d (%d bytes)", width, height, len(image_bytes))

    generated, generated_mime = generate_product_image(
        image_bytes, mime_type=mime_type or "image/jpeg", settings=settings
    )
    logger.info("pipeline: model returned %d bytes (%s)", len(generated), generated_mime)

    return finish_image(generated, settings=settings)
