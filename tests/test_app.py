"""Tests for the FastAPI app (app.py) routes and caching behaviour."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

from fastapi import HTTPException

from analytics import CalendarRangeError
from st_client import ChatStoreError


# ── Health check ──────────────────────────────


class TestHealthCheck:
    def test_healthz_returns_200(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_health_alias(self, client):
        assert client.get("/health").status_code == 200


# ── JSON API routes ───────────────────────────


class TestApiData:
    def test_returns_200(self, client):
        response = client.get("/api/data")
        assert response.status_code == 200

    def test_content_type_is_json(self, client):
        response = client.get("/api/data")
        assert "application/json" in response.headers["content-type"]

    def test_payload_has_stats_keys(self, client):
        data = client.get("/api/data").json()
        expected_keys = {
            "generated_at",
            "scope",
            "first_contact_date",
            "days_since_first_contact",
            "active_days",
            "total_messages",
            "total_chars",
            "total_rerolls",
            "calendar_months",
        }
        assert expected_keys.issubset(data.keys())

    def test_payload_matches_mock(self, client, mock_payload):
        """The API should return exactly the mocked payload."""
        data = client.get("/api/data").json()
        assert data == mock_payload

    def test_builds_global_scope(self, client, build_mock):
        client.get("/api/data")
        build_mock.assert_awaited_once_with("global", character=False)


class TestApiCharacterData:
    def test_builds_character_scope(self, client, build_mock):
        response = client.get("/api/characters/Alice.png/data")
        assert response.status_code == 200
        build_mock.assert_awaited_once_with("Alice.png", character=True)

    def test_scopes_cached_separately(self, client, build_mock):
        client.get("/api/characters/Alice.png/data")
        client.get("/api/characters/Bob.png/data")
        client.get("/api/characters/Alice.png/data")
        assert build_mock.await_count == 2

    def test_avatar_named_global_has_own_entry(self, client, build_mock):
        import app as app_module

        client.get("/api/data")
        client.get("/api/characters/global/data")

        assert build_mock.await_args_list[1].args == ("global",)
        assert build_mock.await_args_list[1].kwargs == {"character": True}
        assert build_mock.await_count == 2
        assert set(app_module._cache) == {"global", "character:global"}


class TestApiMonth:
    def test_default_is_latest_month(self, client):
        data = client.get("/api/month").json()
        assert data["index"] == 0
        assert data["month"]["month"] == 2
        assert data["has_older"] is True
        assert data["has_newer"] is False

    def test_step_to_older(self, client):
        data = client.get("/api/month", params={"index": 0, "step": 1}).json()
        assert data["index"] == 1
        assert data["month"]["month"] == 1
        assert data["has_older"] is False
        assert data["has_newer"] is True

    def test_index_clamped(self, client):
        data = client.get("/api/month", params={"index": 1, "step": 10}).json()
        assert data["index"] == 1
        data = client.get("/api/month", params={"index": 0, "step": -3}).json()
        assert data["index"] == 0

    def test_character_scope(self, client, build_mock):
        client.get("/api/month", params={"scope": "Alice.png"})
        build_mock.assert_awaited_once_with("Alice.png", character=True)

    def test_non_integer_index_rejected(self, client):
        assert client.get("/api/month", params={"index": "latest"}).status_code == 422


class TestApiRefresh:
    def test_returns_200(self, client):
        response = client.get("/api/refresh")
        assert response.status_code == 200

    def test_response_body(self, client, mock_payload):
        data = client.get("/api/refresh").json()
        assert data == {
            "status": "refreshed",
            "scope": "global",
            "generated_at": mock_payload["generated_at"],
        }

    def test_refresh_character_scope(self, client, build_mock):
        data = client.get("/api/refresh", params={"scope": "Alice.png"}).json()
        assert data["scope"] == "Alice.png"
        build_mock.assert_awaited_once_with("Alice.png", character=True)


# ── Error handling ────────────────────────────


class TestErrors:
    def test_404_when_no_dated_messages(self, client, build_mock):
        build_mock.return_value = None
        response = client.get("/api/data")
        assert response.status_code == 404

    def test_502_when_server_unreachable(self, client, build_mock):
        build_mock.side_effect = ChatStoreError("connection refused")
        response = client.get("/api/data")
        assert response.status_code == 502
        assert "connection refused" in response.json()["detail"]

    def test_500_on_runaway_calendar(self, client, build_mock):
        build_mock.side_effect = CalendarRangeError("too many months")
        assert client.get("/api/data").status_code == 500

    def test_http_exception_passes_through(self, client):
        with patch(
            "app._get_cached_data",
            side_effect=HTTPException(status_code=503, detail="unavailable"),
        ):
            assert client.get("/api/month").status_code == 503

    def test_failed_build_not_cached(self, client, build_mock, mock_payload):
        build_mock.side_effect = [ChatStoreError("down"), mock_payload]
        assert client.get("/api/data").status_code == 502
        assert client.get("/api/data").status_code == 200


# ── Caching behaviour ────────────────────────


class TestCaching:
    def test_second_request_uses_cache(self, client, build_mock):
        """Two requests for the same scope build the payload once."""
        client.get("/api/data")
        client.get("/api/data")
        assert build_mock.await_count == 1

    def test_month_navigation_reuses_cache(self, client, build_mock):
        client.get("/api/data")
        client.get("/api/month", params={"step": 1})
        assert build_mock.await_count == 1

    def test_refresh_forces_rebuild(self, client, build_mock):
        """The /api/refresh endpoint rebuilds even when the cache is fresh."""
        client.get("/api/data")
        assert build_mock.await_count == 1

        client.get("/api/refresh")
        assert build_mock.await_count == 2

    def test_stale_entry_rebuilt(self, client, build_mock):
        import app as app_module

        client.get("/api/data")
        app_module._cache["global"]["built_at"] -= app_module.CACHE_TTL_SECONDS + 1
        client.get("/api/data")
        assert build_mock.await_count == 2

    def test_refresh_failure_keeps_error(self, client):
        failing = AsyncMock(side_effect=ChatStoreError("down"))
        with patch("app.build_heatmap_payload", failing):
            assert client.get("/api/refresh").status_code == 502


# ── 404 for unknown routes ───────────────────


class TestNotFound:
    def test_unknown_route_returns_404(self, client):
        response = client.get("/nonexistent")
        assert response.status_code == 404

    def test_unknown_api_route_returns_404(self, client):
        response = client.get("/api/nonexistent")
        assert response.status_code == 404
