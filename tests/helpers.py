"""Shared test helpers for chat heatmap tests.

Regular functions (not fixtures) that can be imported by any test module.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime
from urllib.parse import quote


def epoch_ms(dt: datetime) -> int:
    """Local naive datetime -> epoch milliseconds, as SillyTavern stores it."""
    return int(dt.timestamp() * 1000)


def make_record(send_date: object, text: str = "hello", swipes: list[str] | None = None) -> dict:
    """Build a minimal SillyTavern chat log record."""
    record = {"name": "Alice", "is_user": False, "send_date": send_date, "mes": text}
    if swipes is not None:
        record["swipes"] = swipes
    return record


def make_records_on_days(day_configs: list[tuple[str, int]]) -> list[dict]:
    """Build records spread over days.

    Args:
        day_configs: List of (date_str, num_messages) tuples.  Messages on
            one day are a minute apart starting at 10:00 local time.

    Returns:
        A list of record dicts with epoch-millisecond send dates.
    """
    records = []
    for date_str, count in day_configs:
        base = datetime.fromisoformat(date_str + "T10:00:00")
        for i in range(count):
            ts = base.timestamp() + i * 60
            records.append(make_record(int(ts * 1000), text=f"msg-{i}"))
    return records


def jsonl(records: list[dict], header: bool = True) -> bytes:
    """Serialize records as a chat log file, with the metadata header line."""
    lines = []
    if header:
        lines.append(json.dumps({"user_name": "You", "character_name": "Alice", "chat_metadata": {}}))
    lines.extend(json.dumps(r) for r in records)
    return ("\n".join(lines) + "\n").encode("utf-8")


def chat_path(folder: str, file_name: str, encode_folder: bool = True) -> str:
    """Path a resolver requests for *file_name* inside *folder*."""
    folder_part = quote(folder, safe="") if encode_folder else folder
    return f"{folder_part}/{quote(file_name, safe='')}"


class FakeChatStore:
    """In-memory stand-in for SillyTavernClient.

    Records every request and tracks peak concurrency of listing and file
    retrieval calls.  ``delay`` adds an ``asyncio.sleep`` to each call so
    concurrent requests overlap.
    """

    def __init__(
        self,
        characters: list[dict] | None = None,
        listings: dict[str, list] | None = None,
        files: dict[str, bytes] | None = None,
        chats: dict[tuple[str, str], list[dict]] | None = None,
        failing_listings: set[str] | None = None,
        delay: float = 0.0,
    ):
        self.characters = characters or []
        self.listings = listings or {}
        self.files = files or {}
        self.chats = chats or {}
        self.failing_listings = failing_listings or set()
        self.delay = delay

        self.file_requests: list[str] = []
        self.chat_requests: list[tuple[str, str]] = []
        self.listing_requests: list[str] = []
        self.files_in_flight = 0
        self.peak_files_in_flight = 0
        self.listings_in_flight = 0
        self.peak_listings_in_flight = 0

    async def list_characters(self) -> list[dict]:
        return self.characters

    async def list_log_files(self, avatar_file_name: str) -> list:
        self.listing_requests.append(avatar_file_name)
        self.listings_in_flight += 1
        self.peak_listings_in_flight = max(self.peak_listings_in_flight, self.listings_in_flight)
        try:
            await asyncio.sleep(self.delay)
            if avatar_file_name in self.failing_listings:
                raise RuntimeError(f"listing failed for {avatar_file_name}")
            return self.listings.get(avatar_file_name, [])
        finally:
            self.listings_in_flight -= 1

    async def retrieve_file(self, path: str) -> bytes | None:
        self.file_requests.append(path)
        self.files_in_flight += 1
        self.peak_files_in_flight = max(self.peak_files_in_flight, self.files_in_flight)
        try:
            await asyncio.sleep(self.delay)
            return self.files.get(path)
        finally:
            self.files_in_flight -= 1

    async def get_chat(self, avatar_file_name: str, file_name: str) -> list[dict] | None:
        self.chat_requests.append((avatar_file_name, file_name))
        return self.chats.get((avatar_file_name, file_name))
