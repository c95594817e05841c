"""Shared fixtures for chat heatmap tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient


# ── Minimal heatmap payload for app.py tests ──


def _month(year: int, month: int, days: int, leading_blanks: int, counts: dict[int, int]) -> dict:
    """Return a month view with the given per-day message counts."""
    cells = []
    for d in range(1, days + 1):
        count = counts.get(d, 0)
        cells.append(
            {
                "day": d,
                "date": f"{year}-{month:02d}-{d:02d}",
                "message_count": count,
                "char_count": count * 10,
                "level": 1 if count else 0,
            }
        )
    return {
        "year": year,
        "month": month,
        "leading_blanks": leading_blanks,
        "days": cells,
        "total_messages": sum(counts.values()),
        "total_chars": sum(counts.values()) * 10,
    }


def _minimal_heatmap_payload() -> dict:
    """Return a payload matching build_heatmap_payload() shape.

    Keys and structure must exactly match the dict returned by
    ``analytics.build_heatmap_payload``.
    """
    return {
        "generated_at": "2024-02-15T12:00:00",
        "scope": "global",
        "first_contact_date": "2024-01-01T10:00:00",
        "days_since_first_contact": 45,
        "active_days": 3,
        "total_messages": 6,
        "total_chars": 60,
        "total_rerolls": 1,
        "calendar_months": [
            _month(2024, 2, 29, 4, {1: 1}),
            _month(2024, 1, 31, 1, {1: 2, 15: 3}),
        ],
    }


@pytest.fixture()
def mock_payload():
    """Return the minimal heatmap payload dict."""
    return _minimal_heatmap_payload()


@pytest.fixture()
def build_mock(mock_payload):
    """AsyncMock standing in for ``app.build_heatmap_payload``."""
    return AsyncMock(return_value=mock_payload)


@pytest.fixture()
def client(build_mock):
    """TestClient for app.py with mocked heatmap data.

    Patches build_heatmap_payload so no SillyTavern server is needed.
    Resets the module-level cache between tests.
    """
    import app as app_module

    with patch.object(app_module, "_cache", {}):
        with patch("app.build_heatmap_payload", build_mock):
            with TestClient(app_module.app) as tc:
                yield tc
