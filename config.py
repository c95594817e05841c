"""Runtime settings for the chat heatmap tools.

Every value has a sensible default and can be overridden through an
environment variable (or a ``.env`` file next to this module), so the CLI
and the FastAPI service share one place to look up server location,
concurrency tiers and heatmap presentation knobs.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent / ".env"


class Settings(BaseSettings):
    # SillyTavern server
    st_base_url: str = Field("http://127.0.0.1:8000", validation_alias="ST_BASE_URL")
    request_timeout: float = Field(30.0, validation_alias="ST_REQUEST_TIMEOUT")  # seconds

    # Loading. Each character task fans out to file_concurrency fetches, so
    # the soft global cap is character_concurrency * file_concurrency.
    character_concurrency: int = Field(3, ge=1, validation_alias="HEATMAP_CHARACTER_CONCURRENCY")
    file_concurrency: int = Field(5, ge=1, validation_alias="HEATMAP_FILE_CONCURRENCY")
    api_fallback: bool = Field(True, validation_alias="HEATMAP_API_FALLBACK")

    # Heatmap
    intensity_preset: str = Field("classic", validation_alias="HEATMAP_INTENSITY")
    range_end: str = Field("last", validation_alias="HEATMAP_RANGE_END")
    week_start: int = Field(6, ge=0, le=6, validation_alias="HEATMAP_WEEK_START")  # calendar.SUNDAY

    # Service
    cache_ttl_seconds: int = Field(3600, ge=0, validation_alias="HEATMAP_CACHE_TTL")

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()

# ---------------------------------------------------------------------------
# SillyTavern server
# ---------------------------------------------------------------------------
ST_BASE_URL = settings.st_base_url
REQUEST_TIMEOUT = settings.request_timeout

CHARACTERS_ENDPOINT = "/api/characters/all"
CHAT_LIST_ENDPOINT = "/api/characters/chats"
CHAT_GET_ENDPOINT = "/api/chats/get"
CHAT_FILES_PREFIX = "/chats"

# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
CHARACTER_CONCURRENCY = settings.character_concurrency
FILE_CONCURRENCY = settings.file_concurrency
API_FALLBACK = settings.api_fallback

# ---------------------------------------------------------------------------
# Heatmap
# ---------------------------------------------------------------------------
INTENSITY_PRESET = settings.intensity_preset
RANGE_END = settings.range_end
WEEK_START = settings.week_start
MAX_CALENDAR_MONTHS = 1200

# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------
CACHE_TTL_SECONDS = settings.cache_ttl_seconds
