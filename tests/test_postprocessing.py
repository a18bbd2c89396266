from io import BytesIO

import numpy as np
import pytest
from PIL import Image

from amazon_main_service.errors import EncodingFailureError
from amazon_main_service.postprocessing import encode_jpeg, whiten, whiten_image


def test_whiten_forces_near_white_to_pure_white():
    rgb = np.array(
        [[[250, 250, 250], [254, 251, 255], [249, 255, 255]],
         [[10, 20, 30], [255, 255, 255], [250, 250, 249]]],
        dtype=np.uint8,
    )
    out = whiten(rgb)

    assert out[0, 0].tolist() == [255, 255, 255]
    assert out[0, 1].tolist() == [255, 255, 255]
    assert out[0, 2].tolist() == [249, 255, 255]
    assert out[1, 0].tolist() == [10, 20, 30]
    assert out[1, 2].tolist() == [250, 250, 249]


def test_whiten_does_not_modify_input():
    rgb = np.full((2, 2, 3), 252, dtype=np.uint8)
    whiten(rgb)
    assert (rgb == 252).all()


def test_whiten_is_idempotent():
    rng = np.random.default_rng(7)
    rgb = rng.integers(230, 256, size=(64, 64, 3), dtype=np.uint8)
    once = whiten(rgb)
    twice = whiten(once)
    assert np.array_equal(once, twice)


def test_whiten_threshold_is_configurable():
    rgb = np.full((1, 1, 3), 240, dtype=np.uint8)
    assert whiten(rgb, threshold=250)[0, 0].tolist() == [240, 240, 240]
    assert whiten(rgb, threshold=240)[0, 0].tolist() == [255, 255, 255]


def test_whiten_rejects_non_rgb_raster():
    with pytest.raises(ValueError):
        whiten(np.zeros((4, 4), dtype=np.uint8))


def test_whiten_image_returns_rgb_image():
    image = Image.new("RGB", (3, 3), (251, 252, 253))
    out = whiten_image(image)
    assert out.mode == "RGB"
    assert out.getpixel((1, 1)) == (255, 255, 255)


def test_encode_jpeg_produces_decodable_jpeg():
    data = encode_jpeg(Image.new("RGB", (16, 16), (255, 255, 255)), quality=95)
    decoded = Image.open(BytesIO(data))
    assert decoded.format == "JPEG"
    assert decoded.size == (16, 16)


def test_encode_jpeg_wraps_encoder_errors(monkeypatch):
    image = Image.new("RGB", (4, 4))

    def broken_save(*args, **kwargs):
        raise OSError("encoder exploded")

    monkeypatch.setattr(Image.Image, "save", broken_save)
    with pytest.raises(EncodingFailureError):
        encode_jpeg(image)
