"""
Error taxonomy shared by the finishing pipeline, the HTTP layer and the
batch client.

Every error carries a human-readable ``message`` (surfaced verbatim as a
queue item's ``error``) and the HTTP ``code`` the API answers with.
"""

from __future__ import annotations

from typing import Optional


class AmazonMainError(Exception):
    """Base exception for the service."""

    def __init__(self, message: str, code: int = 500):
        self.message = message
        self.code = code
        super().__init__(message)


class InvalidInputError(AmazonMainError):
    """Missing upload, undecodable image, or unreadable source reference."""

    def __init__(self, message: str = "No image file provided", code: int = 400):
        super().__init__(message, code=code)


class QueueBusyError(AmazonMainError):
    """Raised when the controller is asked to do something a running batch forbids."""

    def __init__(self, message: str = "A batch is already being processed"):
        super().__init__(message, code=409)


# -----------------------------------------------------------------------------
# Pipeline (server side)
# -----------------------------------------------------------------------------


class PipelineError(AmazonMainError):
    """A finishing-pipeline stage failed; the image is not emitted."""


class ConfigMissingError(PipelineError):
    def __init__(
        self,
        message: str = "Gemini AI integration is not configured. Please set up the AI integration.",
    ):
        super().__init__(message, code=500)


class UpstreamUnavailableError(PipelineError):
    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message, code=500)
        self.http_status = http_status


class UpstreamNoImageError(PipelineError):
    def __init__(self, message: str = "AI did not return an image. Please try again."):
        super().__init__(message, code=500)


class EncodingFailureError(PipelineError):
    def __init__(self, message: str = "Failed to encode the finished image"):
        super().__init__(message, code=500)


# -----------------------------------------------------------------------------
# Transformation client
# -----------------------------------------------------------------------------


class TransformError(AmazonMainError):
    """One transform round trip failed."""


class TransformTimeout(TransformError):
    def __init__(self, message: str = "Request timed out. Please try again."):
        super().__init__(message, code=504)


class TransformNetworkError(TransformError):
    def __init__(self, message: str = "Unable to connect to server. Please check your connection."):
        super().__init__(message, code=503)


class TransformServiceError(TransformError):
    def __init__(self, message: str, status_code: int):
        super().__init__(message or "Failed to process image", code=status_code)
        self.status_code = status_code
