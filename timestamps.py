"""Normalize SillyTavern ``send_date`` values into comparable datetimes.

Chat logs written by different SillyTavern versions store the send date as
epoch milliseconds, as a humanized string ("January 5, 2024 11:30pm"), as
the "2024-1-5@23h30m15s" file-name style, or as an ISO string.  Every
result is a naive datetime in local time so values from all encodings can
be sorted together and bucketed by local calendar day.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime

from dateutil import parser as date_parser

logger = logging.getLogger(__name__)

_PARSE_ERRORS = (ValueError, OverflowError, OSError, TypeError)

MONTH_NUMBERS = {
    "january": "01", "jan": "01",
    "february": "02", "feb": "02",
    "march": "03", "mar": "03",
    "april": "04", "apr": "04",
    "may": "05",
    "june": "06", "jun": "06",
    "july": "07", "jul": "07",
    "august": "08", "aug": "08",
    "september": "09", "sep": "09", "sept": "09",
    "october": "10", "oct": "10",
    "november": "11", "nov": "11",
    "december": "12", "dec": "12",
}

_HUMANIZED_RE = re.compile(
    r"^([A-Za-z]+)\.?\s+(\d{1,2}),?\s+(\d{4})\s+(\d{1,2}):(\d{2})\s*(am|pm)$",
    re.IGNORECASE,
)
_AT_STYLE_RE = re.compile(
    r"^(\d{4})-(\d{1,2})-(\d{1,2})\s*@\s*(\d{1,2})h\s*(\d{1,2})m\s*(\d{1,2})s"
    r"(?:\s*(\d{1,3})ms)?$",
    re.IGNORECASE,
)
_GLUED_MERIDIEM_RE = re.compile(r"(\d)(am|pm)\b", re.IGNORECASE)

# Fixed fill-ins for fields dateutil finds missing; a Monday and a Thursday.
_DEFAULT_A = datetime(2000, 1, 3)
_DEFAULT_B = datetime(2001, 2, 8)


def _to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _from_epoch_ms(value: float) -> datetime | None:
    if math.isnan(value) or math.isinf(value):
        return None
    try:
        return datetime.fromtimestamp(value / 1000)
    except _PARSE_ERRORS:
        return None


def _parse_humanized(text: str) -> datetime | None:
    """Parse "<MonthName> <Day>, <Year> <Hour>:<Minute><am|pm>"."""
    match = _HUMANIZED_RE.match(text)
    if not match:
        return None
    month_name, day, year, hour, minute, meridiem = match.groups()
    month = MONTH_NUMBERS.get(month_name.lower())
    if month is None:
        return None

    hour_24 = int(hour)
    if hour_24 < 1 or hour_24 > 12:
        return None
    meridiem = meridiem.lower()
    if meridiem == "pm" and hour_24 != 12:
        hour_24 += 12
    elif meridiem == "am" and hour_24 == 12:
        hour_24 = 0

    iso = f"{year}-{month}-{int(day):02d}T{hour_24:02d}:{minute}:00"
    try:
        return datetime.fromisoformat(iso)
    except _PARSE_ERRORS:
        return None


def _parse_at_style(text: str) -> datetime | None:
    """Parse "2024-1-5@23h30m15s" (optionally followed by "123ms")."""
    match = _AT_STYLE_RE.match(text)
    if not match:
        return None
    year, month, day, hour, minute, second, millis = match.groups()
    iso = (
        f"{year}-{int(month):02d}-{int(day):02d}"
        f"T{int(hour):02d}:{int(minute):02d}:{int(second):02d}"
    )
    if millis:
        iso += f".{int(millis):03d}"
    try:
        return datetime.fromisoformat(iso)
    except _PARSE_ERRORS:
        return None


def _parse_generic(text: str) -> datetime | None:
    """Free-form parse: ISO 8601 first, then dateutil's fuzzy-free parser.

    dateutil fills missing fields from its ``default``; parsing against two
    defaults that differ in year, month and day rejects text that does not
    name a full date ("2024", "May", "Monday").
    """
    try:
        return _to_local_naive(datetime.fromisoformat(text))
    except _PARSE_ERRORS:
        pass
    try:
        first = date_parser.parse(text, default=_DEFAULT_A)
        second = date_parser.parse(text, default=_DEFAULT_B)
    except _PARSE_ERRORS:
        return None
    if first != second:
        logger.debug("Partial date %r ignored", text)
        return None
    return _to_local_naive(first)


def _parse_glued_meridiem(text: str) -> datetime | None:
    """Retry generic parsing after splitting "11:30pm" into "11:30 pm"."""
    if not _GLUED_MERIDIEM_RE.search(text):
        return None
    return _parse_generic(_GLUED_MERIDIEM_RE.sub(r"\1 \2", text))


_STRING_STRATEGIES = (
    _parse_humanized,
    _parse_at_style,
    _parse_glued_meridiem,
    _parse_generic,
)


def normalize_send_date(raw: object) -> datetime | None:
    """Convert a raw ``send_date`` value into a naive local datetime.

    Strategies are tried in order until one yields a datetime:

    1. numbers are epoch milliseconds;
    2. "<MonthName> <Day>, <Year> <Hour>:<Minute><am|pm>";
    3. "<Y>-<M>-<D>@<H>h<M>m<S>s";
    4. am/pm glued to the digits, split and re-parsed generically;
    5. generic free-form parsing.

    Args:
        raw: The value stored under ``send_date`` in a chat log record.

    Returns:
        A naive datetime in local time, or None if no strategy could parse
        *raw*.  Never raises.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return _from_epoch_ms(float(raw))

    text = str(raw).strip()
    if not text:
        return None

    for strategy in _STRING_STRATEGIES:
        parsed = strategy(text)
        if parsed is not None:
            return parsed

    logger.debug("Unparseable send_date: %r", text)
    return None
