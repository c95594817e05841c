"""Tests for config.Settings environment handling."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from config import Settings

ENV_NAMES = [
    "ST_BASE_URL",
    "ST_REQUEST_TIMEOUT",
    "HEATMAP_CHARACTER_CONCURRENCY",
    "HEATMAP_FILE_CONCURRENCY",
    "HEATMAP_API_FALLBACK",
    "HEATMAP_INTENSITY",
    "HEATMAP_RANGE_END",
    "HEATMAP_WEEK_START",
    "HEATMAP_CACHE_TTL",
]


@pytest.fixture()
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSettings:
    def test_defaults(self, clean_env):
        settings = Settings(_env_file=None)
        assert settings.st_base_url == "http://127.0.0.1:8000"
        assert settings.request_timeout == 30.0
        assert settings.character_concurrency == 3
        assert settings.file_concurrency == 5
        assert settings.api_fallback is True
        assert settings.intensity_preset == "classic"
        assert settings.range_end == "last"
        assert settings.week_start == 6
        assert settings.cache_ttl_seconds == 3600

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("ST_BASE_URL", "http://st.local:8000")
        clean_env.setenv("HEATMAP_FILE_CONCURRENCY", "8")
        clean_env.setenv("HEATMAP_API_FALLBACK", "false")
        clean_env.setenv("HEATMAP_RANGE_END", "now")
        settings = Settings(_env_file=None)
        assert settings.st_base_url == "http://st.local:8000"
        assert settings.file_concurrency == 8
        assert settings.api_fallback is False
        assert settings.range_end == "now"

    @pytest.mark.parametrize("name, value", [
        ("HEATMAP_FILE_CONCURRENCY", "many"),
        ("HEATMAP_CHARACTER_CONCURRENCY", "0"),
        ("HEATMAP_WEEK_START", "7"),
    ])
    def test_invalid_values_rejected(self, clean_env, name, value):
        clean_env.setenv(name, value)
        with pytest.raises(ValidationError):
            Settings(_env_file=None)
