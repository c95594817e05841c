"""Load SillyTavern chat history for one character or for every character.

Log files are fetched through a store object (normally a
``SillyTavernClient``) exposing ``list_characters``, ``list_log_files``,
``retrieve_file`` and ``get_chat``.  Failures below the loader level are
absorbed: a file that cannot be found or parsed contributes no messages,
and a character whose listing fails contributes none either.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from urllib.parse import quote

import config
from chat_paths import build_path_candidates, candidate_folder
from fetch_pool import ProgressCallback, async_pool, first_success

logger = logging.getLogger(__name__)


def parse_chat_payload(payload: bytes | str | None) -> list[dict] | None:
    """Parse a line-delimited JSON chat log.

    Args:
        payload: Raw response body or file contents.

    Returns:
        The JSON object records, or None when the payload is empty, looks
        like an HTML error page, or contains no JSON object line.
        Individual malformed lines are skipped.
    """
    if payload is None:
        return None
    if isinstance(payload, bytes):
        text = payload.decode("utf-8", errors="replace")
    else:
        text = payload
    text = text.lstrip("\ufeff").strip()
    if not text or text.startswith("<"):
        return None

    records: list[dict] = []
    skipped = 0
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except ValueError:
            skipped += 1
            continue
        if isinstance(record, dict):
            records.append(record)

    if skipped:
        logger.debug("Skipped %d malformed chat log lines", skipped)
    return records or None


def _log_file_name(entry: object) -> str | None:
    """Pull the file name out of one chat listing entry."""
    if isinstance(entry, str):
        name = entry
    elif isinstance(entry, dict):
        name = entry.get("file_name")
    else:
        return None
    if not isinstance(name, str) or not name:
        return None
    return name if name.endswith(".jsonl") else f"{name}.jsonl"


async def resolve_log_file(
    store,
    candidates: list[tuple[str, bool]],
    file_name: str,
    *,
    avatar_file_name: str | None = None,
    api_fallback: bool = False,
) -> list[dict]:
    """Fetch one log file by trying folder guesses until one works.

    Candidates are tried one at a time in order; the first that returns a
    parseable chat log wins and later candidates are not requested.

    Args:
        store: Object with ``retrieve_file(path)`` (and ``get_chat`` when
            *api_fallback* is set).
        candidates: Ordered (folder_name, encode_folder) guesses.
        file_name: The log file name.
        avatar_file_name: The character's avatar, used by the API fallback.
        api_fallback: Ask the server's JSON chat endpoint as a last attempt.

    Returns:
        The chat records, or ``[]`` when every attempt failed.
    """
    quoted_name = quote(file_name, safe="")

    def _path_attempt(candidate: tuple[str, bool]):
        async def attempt() -> list[dict] | None:
            payload = await store.retrieve_file(f"{candidate_folder(candidate)}/{quoted_name}")
            return parse_chat_payload(payload)

        return attempt

    attempts = [_path_attempt(c) for c in candidates]

    if api_fallback and avatar_file_name:
        async def api_attempt() -> list[dict] | None:
            return await store.get_chat(avatar_file_name, file_name)

        attempts.append(api_attempt)

    records = await first_success(attempts)
    if records is None:
        logger.debug("No candidate path worked for %s", file_name)
        return []
    return records


async def load_character_history(
    store,
    character_id: object,
    avatar_file_name: str,
    *,
    file_concurrency: int | None = None,
    api_fallback: bool | None = None,
) -> list[dict]:
    """Load every chat log record for one character.

    Args:
        store: Chat store (see module docstring).
        character_id: Character identifier, used as the last folder guess.
        avatar_file_name: The character's avatar file name.
        file_concurrency: Files fetched at once; defaults to
            ``config.FILE_CONCURRENCY``.
        api_fallback: Whether to try the JSON chat endpoint after the path
            guesses; defaults to ``config.API_FALLBACK``.

    Returns:
        Flat list of records in listing order.  ``[]`` when the character
        has no chats or the listing fails.
    """
    if file_concurrency is None:
        file_concurrency = config.FILE_CONCURRENCY
    if api_fallback is None:
        api_fallback = config.API_FALLBACK

    try:
        listing = await store.list_log_files(avatar_file_name)
    except Exception as e:
        logger.warning("Failed to list chats for %s: %s", avatar_file_name, e)
        return []

    file_names = [n for n in (_log_file_name(entry) for entry in listing or []) if n]
    if not file_names:
        return []

    async def _resolve(file_name: str) -> list[dict]:
        candidates = build_path_candidates(character_id, avatar_file_name, file_name)
        try:
            return await resolve_log_file(
                store,
                candidates,
                file_name,
                avatar_file_name=avatar_file_name,
                api_fallback=api_fallback,
            )
        except Exception as e:
            logger.warning("Failed to load %s for %s: %s", file_name, avatar_file_name, e)
            return []

    results = await async_pool(file_concurrency, file_names, _resolve)
    messages = [record for records in results for record in records]
    logger.info(
        "Loaded %d records from %d chat files for %s",
        len(messages), len(file_names), avatar_file_name,
    )
    return messages


async def load_global_history(
    store,
    on_progress: ProgressCallback | None = None,
    *,
    character_concurrency: int | None = None,
    file_concurrency: int | None = None,
    api_fallback: bool | None = None,
) -> list[dict]:
    """Load chat log records for every character that has an avatar.

    Characters are loaded *character_concurrency* at a time, each of which
    fetches up to *file_concurrency* files at once.

    Args:
        store: Chat store (see module docstring).
        on_progress: Optional ``(characters_done, characters_total)``
            callback.
        character_concurrency: Characters loaded at once; defaults to
            ``config.CHARACTER_CONCURRENCY``.
        file_concurrency: Passed through to ``load_character_history``.
        api_fallback: Passed through to ``load_character_history``.

    Returns:
        Flat list of records across all characters.

    Raises:
        ChatStoreError: If the character list itself cannot be fetched.
    """
    if character_concurrency is None:
        character_concurrency = config.CHARACTER_CONCURRENCY

    characters = await store.list_characters()
    valid = [
        (c.get("name") or index, c["avatar"])
        for index, c in enumerate(characters)
        if isinstance(c, dict) and c.get("avatar")
    ]
    logger.info("Reading chat history for %d characters", len(valid))

    async def _load(entry: tuple[object, str]) -> list[dict]:
        character_id, avatar = entry
        return await load_character_history(
            store,
            character_id,
            avatar,
            file_concurrency=file_concurrency,
            api_fallback=api_fallback,
        )

    results = await async_pool(character_concurrency, valid, _load, on_progress)
    return [record for records in results for record in records]


def load_chat_file(path: str | Path) -> list[dict]:
    """Read a single local ``.jsonl`` chat log, bypassing the server.

    Args:
        path: Path to the chat log.

    Returns:
        The chat records; ``[]`` if the file holds no JSON object lines.

    Raises:
        FileNotFoundError: If *path* does not exist.
    """
    return parse_chat_payload(Path(path).read_bytes()) or []
