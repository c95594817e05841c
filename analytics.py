"""Core aggregation for SillyTavern chat heatmaps.

Turns a flat list of chat log records into first-contact / activity
statistics and a contiguous run of calendar months whose days carry a
heatmap intensity level.  Used by both the CLI (heatmap_summary.py) and
the web service (app.py).
"""

from __future__ import annotations

import calendar
import csv
import json
import logging
import os
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

import config
from fetch_pool import ProgressCallback
from st_client import SillyTavernClient
from st_history import load_character_history, load_global_history
from timestamps import normalize_send_date

logger = logging.getLogger(__name__)

# Lower bound (inclusive) of the message count for intensity levels 1-4.
INTENSITY_PRESETS: dict[str, tuple[int, int, int, int]] = {
    "classic": (1, 51, 151, 301),
    "compact": (1, 20, 50, 100),
    "light": (1, 10, 30, 60),
}

RANGE_END_CHOICES = ("last", "now")


class CalendarRangeError(ValueError):
    """Raised when the dated messages span more months than can be rendered."""


# ---------------------------------------------------------------------------
# Intensity levels
# ---------------------------------------------------------------------------

def resolve_thresholds(value: str | Sequence[int] | None = None) -> tuple[int, ...]:
    """Turn a preset name or explicit table into a validated threshold tuple.

    Args:
        value: A key of ``INTENSITY_PRESETS``, a sequence of four ascending
            positive integers, or None for ``config.INTENSITY_PRESET``.

    Returns:
        Tuple of four ascending positive integers.

    Raises:
        ValueError: If the preset is unknown or the table is malformed.
    """
    if value is None:
        value = config.INTENSITY_PRESET
    if isinstance(value, str):
        try:
            return INTENSITY_PRESETS[value]
        except KeyError:
            raise ValueError(
                f"Unknown intensity preset {value!r}; "
                f"choose one of {', '.join(sorted(INTENSITY_PRESETS))}"
            ) from None

    thresholds = tuple(int(t) for t in value)
    if len(thresholds) != 4:
        raise ValueError(f"Expected 4 intensity thresholds, got {len(thresholds)}")
    if thresholds[0] < 1 or any(b <= a for a, b in zip(thresholds, thresholds[1:])):
        raise ValueError(f"Intensity thresholds must be positive and ascending: {thresholds}")
    return thresholds


def intensity_level(count: int, thresholds: Sequence[int]) -> int:
    """Map a day's message count to a heatmap level.

    Args:
        count: Messages sent that day.
        thresholds: Ascending lower bounds for levels 1..len(thresholds).

    Returns:
        0 for an empty day, otherwise the number of thresholds reached.
    """
    if count <= 0:
        return 0
    return sum(1 for t in thresholds if count >= t)


# ---------------------------------------------------------------------------
# Message normalization
# ---------------------------------------------------------------------------

def _variant_count(record: dict) -> int:
    """Number of stored regenerations for one turn (at least 1)."""
    swipes = record.get("swipes")
    if isinstance(swipes, list) and swipes:
        return len(swipes)
    return 1


def _normalize_messages(messages: Sequence[object]) -> list[tuple[datetime, str, int]]:
    """Keep records with a parseable ``send_date`` and sort them by time.

    Args:
        messages: Raw chat log records.

    Returns:
        List of (timestamp, text, variant_count) tuples, oldest first.
        Records with equal timestamps keep their input order.
    """
    normalized: list[tuple[datetime, str, int]] = []
    for record in messages:
        if not isinstance(record, dict):
            continue
        raw_date = record.get("send_date")
        if raw_date is None or raw_date == "":
            continue
        ts = normalize_send_date(raw_date)
        if ts is None:
            continue
        text = record.get("mes")
        normalized.append((ts, text if isinstance(text, str) else "", _variant_count(record)))

    dropped = sum(1 for m in messages if isinstance(m, dict)) - len(normalized)
    if dropped:
        logger.debug("Dropped %d records without a usable send_date", dropped)

    normalized.sort(key=lambda m: m[0])
    return normalized


def _date_key(ts: datetime) -> str:
    return f"{ts.year}-{ts.month:02d}-{ts.day:02d}"


def _init_day_bucket() -> dict:
    """Create a fresh per-day accumulator."""
    return {"count": 0, "chars": 0}


def _accumulate_day_buckets(
    normalized: list[tuple[datetime, str, int]],
) -> tuple[dict[str, dict], int, int]:
    """Single pass over sorted messages computing totals and day buckets.

    Args:
        normalized: Output of ``_normalize_messages``.

    Returns:
        A 3-tuple of (day_buckets, total_chars, total_rerolls) where
        day_buckets maps "YYYY-MM-DD" to ``{"count", "chars"}``.
    """
    day_buckets: dict[str, dict] = {}
    total_chars = 0
    total_rerolls = 0

    for ts, text, variants in normalized:
        total_chars += len(text)
        if variants > 1:
            total_rerolls += variants - 1
        key = _date_key(ts)
        if key not in day_buckets:
            day_buckets[key] = _init_day_bucket()
        day_buckets[key]["count"] += 1
        day_buckets[key]["chars"] += len(text)

    return day_buckets, total_chars, total_rerolls


# ---------------------------------------------------------------------------
# Calendar months
# ---------------------------------------------------------------------------

def _month_span(first: datetime, last: datetime) -> int:
    return (last.year - first.year) * 12 + last.month - first.month + 1


def build_month_view(
    year: int,
    month: int,
    day_buckets: dict[str, dict],
    thresholds: Sequence[int],
    week_start: int = calendar.SUNDAY,
) -> dict:
    """Build one zero-filled month of heatmap cells.

    Args:
        year: Calendar year.
        month: Calendar month, 1-12.
        day_buckets: Map of "YYYY-MM-DD" to ``{"count", "chars"}``.
        thresholds: Intensity thresholds (see ``intensity_level``).
        week_start: First weekday of the grid, ``calendar`` numbering
            (0 = Monday, 6 = Sunday).

    Returns:
        Dict with keys year, month, leading_blanks (grid offset of the
        1st), days (list of day cells), total_messages, total_chars.
    """
    leading_blanks = (calendar.weekday(year, month, 1) - week_start) % 7
    days_in_month = calendar.monthrange(year, month)[1]

    days = []
    total_messages = 0
    total_chars = 0
    for day in range(1, days_in_month + 1):
        key = f"{year}-{month:02d}-{day:02d}"
        bucket = day_buckets.get(key) or _init_day_bucket()
        days.append(
            {
                "day": day,
                "date": key,
                "message_count": bucket["count"],
                "char_count": bucket["chars"],
                "level": intensity_level(bucket["count"], thresholds),
            }
        )
        total_messages += bucket["count"]
        total_chars += bucket["chars"]

    return {
        "year": year,
        "month": month,
        "leading_blanks": leading_blanks,
        "days": days,
        "total_messages": total_messages,
        "total_chars": total_chars,
    }


def build_calendar_months(
    day_buckets: dict[str, dict],
    first: datetime,
    last: datetime,
    thresholds: Sequence[int],
    week_start: int = calendar.SUNDAY,
) -> list[dict]:
    """Build every month from *first*'s month through *last*'s month.

    Months without messages are included (all days zero), so the result
    has no gaps.

    Args:
        day_buckets: Map of "YYYY-MM-DD" to ``{"count", "chars"}``.
        first: Earliest instant; its month is the first month built.
        last: Range end; its month is the last month built.
        thresholds: Intensity thresholds.
        week_start: First weekday of the grid.

    Returns:
        List of month view dicts, oldest first.

    Raises:
        CalendarRangeError: If the range exceeds
            ``config.MAX_CALENDAR_MONTHS`` months.
    """
    span = _month_span(first, last)
    if span > config.MAX_CALENDAR_MONTHS:
        raise CalendarRangeError(
            f"Messages span {span} months ({first.date()} to {last.date()}); "
            f"refusing to build more than {config.MAX_CALENDAR_MONTHS}"
        )

    months = []
    year, month = first.year, first.month
    for _ in range(max(span, 0)):
        months.append(build_month_view(year, month, day_buckets, thresholds, week_start))
        month += 1
        if month > 12:
            month = 1
            year += 1
    return months


def day_buckets_from_months(months: Sequence[dict]) -> dict[str, dict]:
    """Recover the day bucket map from month views.

    Zero-filled days are skipped, so feeding the result back into
    ``build_calendar_months`` reproduces the same cells.

    Args:
        months: Month view dicts, in any order.

    Returns:
        Map of "YYYY-MM-DD" to ``{"count", "chars"}`` for active days.
    """
    day_buckets: dict[str, dict] = {}
    for month in months:
        for cell in month["days"]:
            if cell["message_count"] > 0:
                day_buckets[cell["date"]] = {
                    "count": cell["message_count"],
                    "chars": cell["char_count"],
                }
    return day_buckets


def select_month(months: Sequence[dict], index: int = 0, step: int = 0) -> dict[str, Any]:
    """Pick the month to display, given the current position and a move.

    *months* is most-recent-first, so a positive *step* moves to older
    months and a negative one to newer months.  The resulting index is
    clamped to the available range.

    Args:
        months: Month views, most recent first.
        index: Current position.
        step: Relative move to apply.

    Returns:
        Dict with keys index, month (or None when *months* is empty),
        has_older, has_newer.
    """
    if not months:
        return {"index": 0, "month": None, "has_older": False, "has_newer": False}
    new_index = min(max(index + step, 0), len(months) - 1)
    return {
        "index": new_index,
        "month": months[new_index],
        "has_older": new_index < len(months) - 1,
        "has_newer": new_index > 0,
    }


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def calculate_stats(
    messages: Sequence[object],
    *,
    thresholds: str | Sequence[int] | None = None,
    range_end: str | None = None,
    week_start: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """Aggregate chat log records into heatmap statistics.

    Args:
        messages: Raw chat log records (dicts with ``send_date``, ``mes``,
            ``swipes``).  Records without a parseable date are ignored.
        thresholds: Intensity preset name or table; defaults to
            ``config.INTENSITY_PRESET``.
        range_end: "last" to end the calendar at the latest message's
            month, "now" to extend it to the current month.  Defaults to
            ``config.RANGE_END``.
        week_start: First weekday of the month grid; defaults to
            ``config.WEEK_START``.
        now: The aggregation moment; defaults to ``datetime.now()``.

    Returns:
        Dict with keys first_contact_date (ISO string),
        days_since_first_contact, active_days, total_messages,
        total_chars, total_rerolls and calendar_months (most recent
        month first), or None when no record has a usable date.

    Raises:
        ValueError: On an unknown *range_end* or bad *thresholds*.
        CalendarRangeError: If the dated range is implausibly long.
    """
    thresholds = resolve_thresholds(thresholds)
    if range_end is None:
        range_end = config.RANGE_END
    if range_end not in RANGE_END_CHOICES:
        raise ValueError(f"range_end must be one of {RANGE_END_CHOICES}, got {range_end!r}")
    if week_start is None:
        week_start = config.WEEK_START
    if now is None:
        now = datetime.now()

    normalized = _normalize_messages(messages or [])
    if not normalized:
        return None

    day_buckets, total_chars, total_rerolls = _accumulate_day_buckets(normalized)

    first = normalized[0][0]
    last = normalized[-1][0]
    if range_end == "now":
        last = max(last, now)

    months = build_calendar_months(day_buckets, first, last, thresholds, week_start)
    months.reverse()

    return {
        "first_contact_date": first.isoformat(),
        "days_since_first_contact": (now - first) // timedelta(days=1),
        "active_days": len(day_buckets),
        "total_messages": len(normalized),
        "total_chars": total_chars,
        "total_rerolls": total_rerolls,
        "calendar_months": months,
    }


# ---------------------------------------------------------------------------
# CLI helpers
# ---------------------------------------------------------------------------

def save_stats_files(stats: dict[str, Any], output_dir: str = "heatmap_output") -> None:
    """Write the stats as JSON plus a per-day CSV to *output_dir*.

    Creates the output directory if needed and writes heatmap_stats.json
    (the full structure) and daily_counts.csv (one row per calendar day,
    oldest first).

    Args:
        stats: Result of ``calculate_stats``.
        output_dir: Directory path for output files.
    """
    os.makedirs(output_dir, exist_ok=True)

    with open(f"{output_dir}/heatmap_stats.json", "w", encoding="utf-8") as f:
        json.dump(stats, f, indent=2, ensure_ascii=False)

    with open(f"{output_dir}/daily_counts.csv", "w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=["date", "message_count", "char_count", "level"])
        writer.writeheader()
        for month in reversed(stats["calendar_months"]):
            for cell in month["days"]:
                writer.writerow({k: cell[k] for k in writer.fieldnames})


def format_month_grid(month: dict, week_start: int = calendar.SUNDAY) -> str:
    """Render a month view as a 7-column text grid.

    Each active day is followed by its level (1-4); empty days show a dot.

    Args:
        month: A month view dict.
        week_start: First weekday of the grid, matching the one the month
            view was built with.

    Returns:
        Multi-line string with a weekday header row.
    """
    header = " ".join(
        f"{calendar.day_abbr[(week_start + i) % 7][:2]:>4}" for i in range(7)
    )
    cells = ["    "] * month["leading_blanks"]
    for cell in month["days"]:
        mark = str(cell["level"]) if cell["level"] else "."
        cells.append(f"{cell['day']:>3}{mark}")

    rows = [header]
    for i in range(0, len(cells), 7):
        rows.append(" ".join(cells[i : i + 7]))
    return "\n".join(rows)


def print_summary_report(stats: dict[str, Any], title: str = "Chat Heatmap") -> None:
    """Print the CLI summary report to stdout.

    Args:
        stats: Result of ``calculate_stats``.
        title: Heading for the report.
    """
    print(f"\n{'=' * 60}")
    print(title)
    print(f"{'=' * 60}")
    first = datetime.fromisoformat(stats["first_contact_date"])
    print(f"First Contact: {first.strftime('%Y-%m-%d')} ({stats['days_since_first_contact']:,} days ago)")
    print(f"Active Days: {stats['active_days']:,}")
    print(f"Total Messages: {stats['total_messages']:,}")
    print(f"Total Characters: {stats['total_chars']:,} ({stats['total_chars'] / 10000:.2f} x 10k)")
    print(f"Rerolls: {stats['total_rerolls']:,}")

    months = stats["calendar_months"]
    if months:
        latest = months[0]
        print(f"\n{calendar.month_name[latest['month']]} {latest['year']}")
        print(format_month_grid(latest, week_start=_grid_week_start(latest)))
        print(
            f"Month Messages: {latest['total_messages']:,} | "
            f"Characters: {latest['total_chars']:,}"
        )

        busiest = max(months, key=lambda m: m["total_messages"])
        print(
            f"\nBusiest Month: {calendar.month_name[busiest['month']]} {busiest['year']} "
            f"({busiest['total_messages']:,} messages)"
        )
        print(f"Months Covered: {len(months):,}")
    print(f"{'=' * 60}")


def _grid_week_start(month: dict) -> int:
    """Recover the week start a month view was built with from its offset."""
    return (calendar.weekday(month["year"], month["month"], 1) - month["leading_blanks"]) % 7


# ---------------------------------------------------------------------------
# One-call entry point
# ---------------------------------------------------------------------------

GLOBAL_SCOPE = "global"


async def load_scope_messages(
    scope: str = GLOBAL_SCOPE,
    *,
    character: bool = False,
    base_url: str | None = None,
    on_progress: ProgressCallback | None = None,
) -> list[dict]:
    """Fetch the raw chat records for one scope from the server.

    Args:
        scope: "global" for every character, otherwise a character's
            avatar file name.
        character: Treat *scope* as an avatar file name even when it reads
            "global".
        base_url: SillyTavern server URL; defaults to ``config.ST_BASE_URL``.
        on_progress: Optional per-character progress callback (global
            scope only).

    Returns:
        Flat list of chat log records.

    Raises:
        ChatStoreError: If the server cannot list its characters.
    """
    async with SillyTavernClient(base_url) as store:
        if scope == GLOBAL_SCOPE and not character:
            return await load_global_history(store, on_progress)
        return await load_character_history(store, os.path.splitext(scope)[0], scope)


async def build_heatmap_payload(
    scope: str = GLOBAL_SCOPE,
    *,
    character: bool = False,
    base_url: str | None = None,
    thresholds: str | Sequence[int] | None = None,
    range_end: str | None = None,
    on_progress: ProgressCallback | None = None,
) -> dict[str, Any] | None:
    """One-call entry point: load a scope's history and aggregate it.

    This is the only function the FastAPI app needs to call.

    Args:
        scope: "global" or a character's avatar file name.
        character: Passed to ``load_scope_messages``.
        base_url: SillyTavern server URL.
        thresholds: Passed to ``calculate_stats``.
        range_end: Passed to ``calculate_stats``.
        on_progress: Passed to ``load_scope_messages``.

    Returns:
        The ``calculate_stats`` dict plus generated_at and scope keys, or
        None when no message has a usable date.

    Raises:
        ChatStoreError: If the server cannot list its characters.
    """
    messages = await load_scope_messages(
        scope, character=character, base_url=base_url, on_progress=on_progress,
    )
    stats = calculate_stats(messages, thresholds=thresholds, range_end=range_end)
    if stats is None:
        logger.warning("No dated messages found for scope %s", scope)
        return None

    return {
        "generated_at": datetime.now().isoformat(),
        "scope": scope,
        **stats,
    }
