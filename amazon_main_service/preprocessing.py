"""
Image decoding and canonicalization.

Uploads are validated before they are sent to the model, and whatever the
model returns is fitted onto a fixed square white canvas so the output
geometry never depends on the model.
"""

from __future__ import annotations

from io import BytesIO
from typing import Tuple

from PIL import Image, UnidentifiedImageError

from .errors import InvalidInputError, PipelineError

WHITE = (255, 255, 255)


def _compute_fit_dims(width: int, height: int, canvas_size: int) -> Tuple[int, int]:
    """Scale (up or down) so the longest edge matches the canvas, preserving aspect ratio."""
    scale = canvas_size / max(width, height)
    new_w = max(1, min(canvas_size, round(width * scale)))
    new_h = max(1, min(canvas_size, round(height * scale)))
    return new_w, new_h


def decode_image(image_bytes: bytes) -> Image.Image:
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise InvalidInputError("Invalid image data") from exc
    return image


def validate_upload(image_bytes: bytes) -> Tuple[int, int]:
    """Check that the upload decodes as an image and return its (width, height)."""
    if not image_bytes:
        raise InvalidInputError("No image file provided")
    return decode_image(image_bytes).size


def flatten_onto_white(image: Image.Image) -> Image.Image:
    """Composite any transparency onto opaque white and return an RGB image."""
    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        rgba = image.convert("RGBA")
        background = Image.new("RGBA", rgba.size, WHITE + (255,))
        background.alpha_composite(rgba)
        return background.convert("RGB")
    return image.convert("RGB")


def canonicalize(image_bytes: bytes, canvas_size: int = 2000) -> Image.Image:
    """
    Fit the model output inside a `canvas_size` square on a white background.

    "Contain" semantics: the whole image stays visible, the free band left by
    a non-square aspect ratio is white, and the result is always exactly
    `canvas_size` x `canvas_size` RGB.
    """
    try:
        image = decode_image(image_bytes)
    except InvalidInputError as exc:
        raise PipelineError("AI returned an image that could not be decoded") from exc

    image = flatten_onto_white(image)
    new_w, new_h = _compute_fit_dims(image.width, image.height, canvas_size)
    if (new_w, new_h) != image.size:
        image = image.resize((new_w, new_h), Image.LANCZOS)

    canvas = Image.new("RGB", (canvas_size, canvas_size), WHITE)
    canvas.paste(image, ((canvas_size - new_w) // 2, (canvas_size - new_h) // 2))
    return canvas
