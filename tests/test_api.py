from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from amazon_main_service import config, pipeline
from amazon_main_service.api import app
from amazon_main_service.errors import UpstreamNoImageError, UpstreamUnavailableError

from conftest import make_image_bytes


@pytest.fixture
def client(settings):
    app.dependency_overrides[config.get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def model_output(monkeypatch):
    def install(result):
        def fake_generate(image_bytes, mime_type="image/jpeg", settings=None):
            if isinstance(result, Exception):
                raise result
            return result, "image/png"

        monkeypatch.setattr(pipeline, "generate_product_image", fake_generate)

    return install


def _upload(data: bytes, name="product.jpg", content_type="image/jpeg"):
    return {"file": (name, data, content_type)}


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_amazon_main_returns_finished_jpeg(client, model_output):
    model_output(make_image_bytes(size=(120, 80), color=(250, 252, 251)))

    response = client.post("/api/amazon-main", files=_upload(make_image_bytes()))

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.headers["content-disposition"] == 'attachment; filename="amazon-main.jpg"'
    out = Image.open(BytesIO(response.content))
    assert out.size == (2000, 2000)
    assert out.convert("RGB").getpixel((1000, 1000)) == (255, 255, 255)


def test_amazon_main_without_file(client):
    response = client.post("/api/amazon-main")
    assert response.status_code == 400
    assert response.json() == {"error": "No image file provided"}


def test_amazon_main_with_invalid_image(client, model_output):
    model_output(make_image_bytes())
    response = client.post("/api/amazon-main", files=_upload(b"not an image"))
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid image data"}


def test_amazon_main_rejects_oversized_upload(settings, client):
    settings.max_upload_bytes = 1024
    response = client.post("/api/amazon-main", files=_upload(b"x" * 2048))
    assert response.status_code == 413
    assert "upload limit" in response.json()["error"]


def test_amazon_main_without_configuration(unconfigured_settings):
    app.dependency_overrides[config.get_settings] = lambda: unconfigured_settings
    try:
        with TestClient(app) as test_client:
            response = test_client.post("/api/amazon-main", files=_upload(make_image_bytes()))
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 500
    assert response.json() == {
        "error": "Gemini AI integration is not configured. Please set up the AI integration."
    }


def test_amazon_main_when_model_returns_no_image(client, model_output):
    model_output(UpstreamNoImageError())
    response = client.post("/api/amazon-main", files=_upload(make_image_bytes()))
    assert response.status_code == 500
    assert response.json() == {"error": "AI did not return an image. Please try again."}


def test_amazon_main_upstream_failure_is_prefixed(client, model_output):
    model_output(UpstreamUnavailableError("AI service error (503): overloaded", http_status=503))
    response = client.post("/api/amazon-main", files=_upload(make_image_bytes()))
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to process image: AI service error (503): overloaded"}


def test_amazon_main_unexpected_exception(client, model_output):
    model_output(RuntimeError("kaboom"))
    response = client.post("/api/amazon-main", files=_upload(make_image_bytes()))
    assert response.status_code == 500
    assert response.json() == {"error": "Failed to process image: kaboom"}
