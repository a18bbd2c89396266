"""
Client for the generative image model.

The client:
 - builds the generateContent request for the configured model,
 - keeps a single shared HTTP session for all requests,
 - extracts the first inline image payload from the response,
 - exposes `generate_product_image()` for pipeline callers.
"""

from __future__ import annotations

import base64
import logging
from threading import Lock
from typing import Optional, Tuple

import requests

from . import config
from .errors import ConfigMissingError, UpstreamNoImageError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

AMAZON_MAIN_PROMPT = """Edit this product photo for an Amazon main listing image.
- Keep the product EXACTLY the same (do not repaint, retouch, change colors, patterns, logos, labels, or shape).
- Remove the entire background (including table/clutter) completely.
- Place the product on a pure white background (RGB 255,255,255).
- Keep edges clean with no halos or fringing.
- Center the product and scale it so it fills about 85% of a square frame with safe margins.
- Output a square image, photorealistic, no text, no watermark, no borders."""

_SESSION: Optional[requests.Session] = None
_LOCK = Lock()


def get_session() -> requests.Session:
    """Return a singleton HTTP session so connections are pooled across requests."""
    global _SESSION
    if _SESSION is not None:
        return _SESSION

    with _LOCK:
        if _SESSION is None:
            _SESSION = requests.Session()
    return _SESSION


def _build_payload(image_bytes: bytes, mime_type: str) -> dict:
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {
                        "inlineData": {
                            "mimeType": mime_type,
                            "data": base64.b64encode(image_bytes).decode("ascii"),
                        }
                    },
                    {"text": AMAZON_MAIN_PROMPT},
                ],
            }
        ],
        "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
    }


def _endpoint(settings: config.Settings) -> str:
    base = settings.ai_integrations_gemini_base_url.rstrip("/")
    return f"{base}/models/{settings.ai_model}:generateContent"


def extract_inline_image(data: dict) -> Tuple[bytes, str]:
    """
    Return (image_bytes, mime_type) of the first inline image part.

    Both camelCase and snake_case field spellings are accepted since
    proxies in front of the model do not agree on one.
    """
    candidates = data.get("candidates") or []
    parts = []
    if candidates:
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []

    for part in parts:
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            try:
                return base64.b64decode(inline["data"]), mime
            except (ValueError, TypeError) as exc:
                raise UpstreamNoImageError("AI returned an unreadable image payload.") from exc

    text = next((p["text"] for p in parts if p.get("text")), None)
    if text:
        logger.warning("model returned text instead of an image: %s", text[:200])
    raise UpstreamNoImageError()


def generate_product_image(
    image_bytes: bytes,
    mime_type: str = "image/jpeg",
    settings: Optional[config.Settings] = None,
) -> Tuple[bytes, str]:
    """
    Send the source photo to the model and return the generated image.

    Raises:
        ConfigMissingError: API key or base URL are not set.
        UpstreamUnavailableError: the model could not be reached or answered non-2xx.
        UpstreamNoImageError: the response holds no image part.
    """
    settings = settings or config.get_settings()
    if not settings.ai_configured:
        raise ConfigMissingError()

    url = _endpoint(settings)
    logger.info("model: requesting %s (%d bytes, %s)", settings.ai_model, len(image_bytes), mime_type)
    try:
        resp = get_session().post(
            url,
            json=_build_payload(image_bytes, mime_type),
            headers={"x-goog-api-key": settings.ai_integrations_gemini_api_key},
            timeout=settings.ai_request_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise UpstreamUnavailableError(f"AI service unreachable: {exc}") from exc

    if not resp.ok:
        body = resp.text[:500] if resp.text else resp.reason
        raise UpstreamUnavailableError(
            f"AI service error ({resp.status_code}): {body}", http_status=resp.status_code
        )

    try:
        data = resp.json()
    except ValueError as exc:
        raise UpstreamNoImageError("AI returned a malformed response.") from exc

    return extract_inline_image(data)
