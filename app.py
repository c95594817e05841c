"""FastAPI service exposing SillyTavern chat heatmap data.

Serves the aggregated heatmap structure as JSON with a per-scope cache
(1-hour TTL by default, since reading every chat log is slow and the
data only grows).

Deployment: uvicorn app:app --host 127.0.0.1 --port 8204
"""

from __future__ import annotations

import threading
import time
from typing import Any

from fastapi import FastAPI, HTTPException

import config
from analytics import GLOBAL_SCOPE, CalendarRangeError, build_heatmap_payload, select_month
from st_client import ChatStoreError

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
CACHE_TTL_SECONDS = config.CACHE_TTL_SECONDS

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="SillyTavern Chat Heatmap",
    root_path="/st_heatmap",
)

# ---------------------------------------------------------------------------
# Thread-safe cache
# ---------------------------------------------------------------------------
_cache_lock = threading.Lock()
_cache: dict[str, dict[str, Any]] = {}


def _cache_key(scope: str, character: bool) -> str:
    return f"character:{scope}" if character else GLOBAL_SCOPE


async def _get_cached_data(
    scope: str = GLOBAL_SCOPE,
    force_refresh: bool = False,
    *,
    character: bool | None = None,
) -> dict[str, Any]:
    """Return cached heatmap data for *scope*, rebuilding if stale or forced.

    *character* defaults to ``scope != "global"``; the character route sets
    it explicitly so an avatar named "global" keeps its own entry.
    """
    if character is None:
        character = scope != GLOBAL_SCOPE
    key = _cache_key(scope, character)
    now = time.monotonic()
    with _cache_lock:
        entry = _cache.get(key)
        if (
            not force_refresh
            and entry is not None
            and (now - entry["built_at"]) < CACHE_TTL_SECONDS
        ):
            return entry["data"]

    try:
        data = await build_heatmap_payload(scope, character=character)
    except ChatStoreError as e:
        raise HTTPException(status_code=502, detail=f"SillyTavern server error: {e}") from e
    except CalendarRangeError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    if data is None:
        raise HTTPException(status_code=404, detail="No chat history with valid dates")

    with _cache_lock:
        _cache[key] = {"data": data, "built_at": time.monotonic()}

    return data


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health")
@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/api/data")
async def api_data():
    """Return heatmap data across every character."""
    return await _get_cached_data(GLOBAL_SCOPE)


@app.get("/api/characters/{avatar}/data")
async def api_character_data(avatar: str):
    """Return heatmap data for one character, addressed by avatar file name."""
    return await _get_cached_data(avatar, character=True)


@app.get("/api/month")
async def api_month(scope: str = GLOBAL_SCOPE, index: int = 0, step: int = 0):
    """Return one calendar month plus navigation flags.

    The client keeps the index; ``step`` moves to older (+) or newer (-)
    months relative to it.
    """
    data = await _get_cached_data(scope)
    return select_month(data["calendar_months"], index=index, step=step)


@app.get("/api/refresh")
async def api_refresh(scope: str = GLOBAL_SCOPE):
    """Force a cache rebuild for *scope* and return its timestamp."""
    data = await _get_cached_data(scope, force_refresh=True)
    return {
        "status": "refreshed",
        "scope": scope,
        "generated_at": data["generated_at"],
    }
