"""
FastAPI layer exposing the Amazon main-image pipeline.

Endpoints:
 - GET /api/health
 - POST /api/amazon-main
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from . import config
from .errors import AmazonMainError, ConfigMissingError, InvalidInputError, UpstreamNoImageError
from .pipeline import process_image_bytes

logging.basicConfig(level=getattr(logging, config.get_settings().log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Amazon Main Image Service", version="0.1.0")

OUTPUT_FILENAME = "amazon-main.jpg"

# These messages reach the client as-is; everything else is prefixed.
_VERBATIM_ERRORS = (InvalidInputError, ConfigMissingError, UpstreamNoImageError)


@app.exception_handler(AmazonMainError)
def handle_service_error(request: Request, exc: AmazonMainError) -> JSONResponse:
    if isinstance(exc, _VERBATIM_ERRORS):
        message = exc.message
    else:
        message = f"Failed to process image: {exc.message}"
    if exc.code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.code, content={"error": message})


def _read_upload(upload: UploadFile, limit: int) -> bytes:
    data = upload.file.read(limit + 1)
    if len(data) > limit:
        raise InvalidInputError(f"Image exceeds the upload limit of {limit} bytes", code=413)
    return data


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.post("/api/amazon-main")
def amazon_main(
    file: Optional[UploadFile] = File(None),
    settings: config.Settings = Depends(config.get_settings),
):
    if file is None:
        raise InvalidInputError("No image file provided")

    image_bytes = _read_upload(file, settings.max_upload_bytes)
    if not image_bytes:
        raise InvalidInputError("No image file provided")

    if not settings.ai_configured:
        raise ConfigMissingError()

    try:
        jpeg_bytes = process_image_bytes(
            image_bytes,
            mime_type=file.content_type or "image/jpeg",
            settings=settings,
        )
    except AmazonMainError:
        raise
    except Exception as exc:  # noqa: BLE001
        logger.exception("Error processing image: %s", exc)
        return JSONResponse(status_code=500, content={"error": f"Failed to process image: {exc}"})

    return Response(
        content=jpeg_bytes,
        media_type="image/jpeg",
        headers={"Content-Disposition": f'attachment; filename="{OUTPUT_FILENAME}"'},
    )
