"""Post-processing for canonicalized model output: near-white cleanup and JPEG encoding."""

from __future__ import annotations

from io import BytesIO
import logging

import numpy as np
from PIL import Image

from .errors import EncodingFailureError

logger = logging.getLogger(__name__)

DEFAULT_WHITEN_THRESHOLD = 250


def _near_white_mask(rgb: np.ndarray, threshold: int) -> np.ndarray:
    return np.all(rgb[..., :3] >= threshold, axis=-1)


def whiten(rgb: np.ndarray, threshold: int = DEFAULT_WHITEN_THRESHOLD) -> np.ndarray:
    """
    Force every pixel whose channels are all >= `threshold` to pure white.

    Background-removal models leave a faint near-white fringe around the
    product; this removes it. Product pixels that legitimately sit in the
    threshold band (white products) are flattened too, which is accepted.
    """
    if rgb.ndim != 3 or rgb.shape[-1] < 3:
        raise ValueError(f"expected an HxWx3 raster, got shape {rgb.shape}")
    out = rgb.copy()
    mask = _near_white_mask(out, threshold)
    out[mask, :3] = 255
    logger.debug(
        "whiten: threshold=%d forced %d pixels (%.2f%%)",
        threshold,
        int(mask.sum()),
        100.0 * float(mask.mean()) if mask.size else 0.0,
    )
    return out


def whiten_image(image: Image.Image, threshold: int = DEFAULT_WHITEN_THRESHOLD) -> Image.Image:
    rgb_np = np.array(image.convert("RGB")).astype(np.uint8)
    return Image.fromarray(whiten(rgb_np, threshold), mode="RGB")


def encode_jpeg(image: Image.Image, quality: int = 95) -> bytes:
    buf = BytesIO()
    try:
        image.convert("RGB").save(buf, format="JPEG", quality=quality)
    except (OSError, ValueError) as exc:
        raise EncodingFailureError(f"Failed to encode the finished image: {exc}") from exc
    return buf.getvalue()
