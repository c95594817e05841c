"""Guess the chats/ folder a character's log files live in.

SillyTavern has named chat folders after different character fields over
its history, so the folder for a log file cannot be looked up directly.
Candidates are derived from the avatar file name, the log file name and
the character id, in that priority order.
"""

from __future__ import annotations

import os
from urllib.parse import quote

LOG_NAME_SEPARATOR = " - "


def candidate_folder(candidate: tuple[str, bool]) -> str:
    """Return the folder path segment a candidate points at.

    Args:
        candidate: A (folder_name, encode_folder) pair.

    Returns:
        The folder name, percent-encoded when *encode_folder* is set.
    """
    folder, encode = candidate
    return quote(folder, safe="") if encode else folder


def build_path_candidates(
    character_id: object,
    avatar_file_name: str | None,
    log_file_name: str | None,
) -> list[tuple[str, bool]]:
    """Build the ordered, deduplicated list of folder guesses for one log file.

    Order:
        1. avatar file name without its extension (encoded, then raw);
        2. avatar file name as stored (encoded, then raw);
        3. the log file name up to the first " - " (encoded, then raw),
           only when it differs from guess 1;
        4. the character id, raw.

    Candidates whose effective folder segment was already produced by an
    earlier candidate are dropped.

    Args:
        character_id: Identifier of the character; stringified for guess 4.
            ``None`` skips that guess.
        avatar_file_name: Stored avatar file name, e.g. "Alice.png".
        log_file_name: Chat log file name, e.g. "Alice - 2024-1-5@23h30m.jsonl".

    Returns:
        List of (folder_name, encode_folder) pairs.
    """
    raw: list[tuple[str, bool]] = []

    stem = None
    if avatar_file_name:
        stem = os.path.splitext(avatar_file_name)[0]
        raw += [(stem, True), (stem, False)]
        raw += [(avatar_file_name, True), (avatar_file_name, False)]

    if log_file_name and LOG_NAME_SEPARATOR in log_file_name:
        prefix = log_file_name.split(LOG_NAME_SEPARATOR, 1)[0]
        if prefix and prefix != stem:
            raw += [(prefix, True), (prefix, False)]

    if character_id is not None and str(character_id):
        raw.append((str(character_id), False))

    seen: set[str] = set()
    candidates: list[tuple[str, bool]] = []
    for candidate in raw:
        if not candidate[0]:
            continue
        folder = candidate_folder(candidate)
        if folder in seen:
            continue
        seen.add(folder)
        candidates.append(candidate)
    return candidates
