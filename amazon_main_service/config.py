"""
Configuration loader for the Amazon main-image service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear. Both the
HTTP service and the batch client read from the same settings object.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Generative model (Gemini-compatible generateContent endpoint)
    ai_integrations_gemini_api_key: Optional[str] = None
    ai_integrations_gemini_base_url: Optional[str] = None
    ai_model: str = "gemini-2.5-flash-image"
    ai_request_timeout_seconds: float = 120.0

    # Finishing pipeline
    canvas_size: int = Field(2000, gt=0)
    jpeg_quality: int = 95
    whiten_threshold: int = 250
    max_upload_bytes: int = 10 * 1024 * 1024

    # Batch client
    server_url: str = "http://localhost:8000"
    client_timeout_seconds: float = Field(120.0, gt=0)
    client_connect_timeout_seconds: float = Field(10.0, gt=0)
    pause_poll_interval: float = Field(0.1, gt=0)

    log_level: str = "INFO"

    @field_validator("jpeg_quality")
    @classmethod
    def validate_jpeg_quality(cls, v: int) -> int:
        if not 1 <= v <= 100:
            raise ValueError("JPEG_QUALITY must be between 1 and 100")
        return v

    @field_validator("whiten_threshold")
    @classmethod
    def validate_whiten_threshold(cls, v: int) -> int:
        if not 0 <= v <= 255:
            raise ValueError("WHITEN_THRESHOLD must be between 0 and 255")
        return v

    @property
    def ai_configured(self) -> bool:
        return bool(self.ai_integrations_gemini_api_key and self.ai_integrations_gemini_base_url)


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
