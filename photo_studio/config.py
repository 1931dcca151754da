"""Configuration loaded from the environment (and a local .env file)."""
from dotenv import load_dotenv

# Load environment variables FIRST
load_dotenv()

import logging
import os
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field


class Settings(BaseModel):
    """Runtime settings for the studio service."""

    api_key: Optional[str] = Field(None, description="Gemini API credential")
    text_model: str = "gemini-2.5-flash"
    edit_model: str = "gemini-2.5-flash-image"
    image_model: str = "imagen-4.0-generate-001"
    suggestion_count: int = Field(16, gt=0)
    debounce_ms: int = Field(750, ge=0)
    max_matches: int = Field(5, gt=0)
    log_level: str = "INFO"

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings from the process environment (cached)."""
    return Settings(
        api_key=os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY"),
        text_model=os.getenv("STUDIO_TEXT_MODEL", "gemini-2.5-flash"),
        edit_model=os.getenv("STUDIO_EDIT_MODEL", "gemini-2.5-flash-image"),
        image_model=os.getenv("STUDIO_IMAGE_MODEL", "imagen-4.0-generate-001"),
        suggestion_count=_env_int("STUDIO_SUGGESTION_COUNT", 16),
        debounce_ms=_env_int("STUDIO_DEBOUNCE_MS", 750),
        max_matches=_env_int("STUDIO_MAX_MATCHES", 5),
        log_level=os.getenv("STUDIO_LOG_LEVEL", "INFO").upper(),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the API process."""
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
