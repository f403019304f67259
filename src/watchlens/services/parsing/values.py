"""
Normalizers for the loosely formatted values found on watch pages.

Watch pages, structured data blocks and LLM replies express the same
facts in many shapes ("1.2M views", "10:25", "PT10M25S", "3 days ago").
These helpers turn them into the typed values of ``ScrapedVideoData`` and
return None instead of raising when a value is unusable.
"""

from __future__ import annotations

import datetime as _dt
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

YOUTUBE_CATEGORIES: dict[str, str] = {
    "1": "Film & Animation",
    "2": "Autos & Vehicles",
    "10": "Music",
    "15": "Pets & Animals",
    "17": "Sports",
    "18": "Short Movies",
    "19": "Travel & Events",
    "20": "Gaming",
    "21": "Videoblogging",
    "22": "People & Blogs",
    "23": "Comedy",
    "24": "Entertainment",
    "25": "News & Politics",
    "26": "Howto & Style",
    "27": "Education",
    "28": "Science & Technology",
    "29": "Nonprofits & Activism",
    "30": "Movies",
    "43": "Shows",
    "44": "Trailers",
}
"""Mapping from YouTube category ID strings to display names."""

_ISO_DURATION_RE = re.compile(r"P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")
_CLOCK_DURATION_RE = re.compile(r"^(?:(\d+):)?(\d{1,2}):(\d{2})$")
_WORD_DURATION_RE = re.compile(
    r"(\d+)\s*(h|hr|hrs|hours?|m|min|mins|minutes?|s|sec|secs|seconds?)\b",
    re.IGNORECASE,
)
_COUNT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([KMB])?\b", re.IGNORECASE)
_RELATIVE_DATE_RE = re.compile(
    r"(\d+)\s+(second|minute|hour|day|week|month|year)s?\s+ago", re.IGNORECASE
)
_DATE_PREFIX_RE = re.compile(
    r"^(?:premiered|streamed live on|streamed|published on|uploaded on|started streaming on)\s+",
    re.IGNORECASE,
)
_DATE_FORMATS = ("%Y-%m-%d", "%b %d, %Y", "%B %d, %Y", "%d %b %Y", "%d %B %Y", "%Y/%m/%d")
_COUNT_MULTIPLIERS = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}
_RELATIVE_UNITS = {
    "second": _dt.timedelta(seconds=1),
    "minute": _dt.timedelta(minutes=1),
    "hour": _dt.timedelta(hours=1),
    "day": _dt.timedelta(days=1),
    "week": _dt.timedelta(weeks=1),
    "month": _dt.timedelta(days=30),
    "year": _dt.timedelta(days=365),
}


def sanitize_text(text: str | None) -> str | None:
    """
    Remove NULL bytes from text.

    Parameters
    ----------
    text : str | None
        Text to sanitize. If None, returns None.

    Returns
    -------
    str | None
        Text with NULL bytes removed, or None if input was None.

    Examples
    --------
    >>> sanitize_text("Hello\\x00World")
    'HelloWorld'
    """
    if text is None:
        return None
    return text.replace("\x00", "")


def sanitize_title(title: Any) -> str | None:
    """
    Clean a page title into a video title.

    Strips the `` - YouTube`` suffix, NULL bytes and runs of whitespace.

    Examples
    --------
    >>> sanitize_title("  Never Gonna Give You Up - YouTube ")
    'Never Gonna Give You Up'
    """
    if not isinstance(title, str):
        return None
    cleaned = sanitize_text(title) or ""
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    cleaned = re.sub(r"\s*-\s*YouTube$", "", cleaned)
    return cleaned or None


def category_name(value: Any) -> str | None:
    """
    Resolve a category ID or name to the display name.

    Unknown IDs return None; unknown names are returned as given.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return YOUTUBE_CATEGORIES.get(text)
    return text


def parse_iso8601_duration(duration_str: str) -> int:
    """
    Parse ISO 8601 duration string to seconds.

    YouTube returns durations like ``PT1H2M3S`` or ``P1DT2H``.

    Parameters
    ----------
    duration_str : str
        ISO 8601 duration string (e.g., "PT1H2M3S")

    Returns
    -------
    int
        Duration in seconds (0 when unparseable)

    Examples
    --------
    >>> parse_iso8601_duration("PT1H2M3S")
    3723
    >>> parse_iso8601_duration("PT45S")
    45
    """
    if not duration_str:
        return 0

    if duration_str in ("P0D", "PT0S", "P"):
        return 0

    match = _ISO_DURATION_RE.fullmatch(duration_str.strip())
    if not match:
        logger.warning("Could not parse duration: %s", duration_str)
        return 0

    days = int(match.group(1) or 0)
    hours = int(match.group(2) or 0)
    minutes = int(match.group(3) or 0)
    seconds = int(match.group(4) or 0)

    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def parse_duration_text(value: Any) -> int | None:
    """
    Parse a duration in any common notation to seconds.

    Accepts integers, digit strings (seconds), ISO 8601 (``PT4M13S``),
    clock notation (``1:02:03``, ``4:13``) and words (``4 minutes 13 seconds``).

    Examples
    --------
    >>> parse_duration_text("1:02:03")
    3723
    >>> parse_duration_text("PT4M13S")
    253
    >>> parse_duration_text("soon") is None
    True
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None

    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    if text.upper().startswith("P"):
        if _ISO_DURATION_RE.fullmatch(text.upper()):
            return parse_iso8601_duration(text.upper())
        return None

    clock = _CLOCK_DURATION_RE.match(text)
    if clock:
        hours = int(clock.group(1) or 0)
        return hours * 3600 + int(clock.group(2)) * 60 + int(clock.group(3))

    total = 0
    matched = False
    for amount, unit in _WORD_DURATION_RE.findall(text):
        matched = True
        unit = unit.lower()
        if unit.startswith("h"):
            total += int(amount) * 3600
        elif unit.startswith("m"):
            total += int(amount) * 60
        else:
            total += int(amount)
    return total if matched else None


def normalize_count(value: Any) -> int | None:
    """
    Parse a view/like/comment count.

    Handles thousands separators, ``K``/``M``/``B`` suffixes and trailing
    words such as "views".

    Examples
    --------
    >>> normalize_count("1,234,567 views")
    1234567
    >>> normalize_count("1.2M")
    1200000
    >>> normalize_count("No views")
    0
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value) if value >= 0 else None

    text = str(value).strip()
    if not text:
        return None
    if text.lower().startswith("no "):
        return 0

    text = re.sub(r"(?<=\d)[,\s ](?=\d{3}\b)", "", text)
    match = _COUNT_RE.search(text)
    if not match:
        return None
    number = float(match.group(1))
    suffix = (match.group(2) or "").upper()
    return int(round(number * _COUNT_MULTIPLIERS.get(suffix, 1)))


def parse_publish_date(
    value: Any, now: _dt.datetime | None = None
) -> _dt.datetime | None:
    """
    Parse a publish date to a timezone-aware datetime.

    Accepts datetimes, ISO 8601 strings, plain dates (``2021-03-04``),
    display dates (``Mar 4, 2021``, optionally prefixed with "Premiered" or
    "Streamed live on") and relative dates (``3 days ago``).

    Parameters
    ----------
    value : Any
        Raw date value.
    now : datetime.datetime | None, optional
        Reference time for relative dates (default: current UTC time).

    Returns
    -------
    datetime.datetime | None
        Parsed UTC-aware datetime, or None when unparseable.
    """
    if value is None:
        return None
    if isinstance(value, _dt.datetime):
        return value if value.tzinfo else value.replace(tzinfo=_dt.timezone.utc)

    text = str(value).strip()
    if not text:
        return None

    try:
        parsed = _dt.datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=_dt.timezone.utc)
    except ValueError:
        pass

    relative = _RELATIVE_DATE_RE.search(text)
    if relative:
        now = now or _dt.datetime.now(_dt.timezone.utc)
        amount = int(relative.group(1))
        return now - amount * _RELATIVE_UNITS[relative.group(2).lower()]
    if text.lower() in ("today", "yesterday"):
        now = now or _dt.datetime.now(_dt.timezone.utc)
        return now - _dt.timedelta(days=1 if text.lower() == "yesterday" else 0)

    text = _DATE_PREFIX_RE.sub("", text)
    for fmt in _DATE_FORMATS:
        try:
            return _dt.datetime.strptime(text, fmt).replace(tzinfo=_dt.timezone.utc)
        except ValueError:
            continue
    return None


def coerce_tags(value: Any) -> list[str]:
    """
    Normalize tags from a list or a comma-separated string.

    Examples
    --------
    >>> coerce_tags("music, pop ,, 80s")
    ['music', 'pop', '80s']
    """
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else value
    if not isinstance(items, (list, tuple)):
        return []
    tags: list[str] = []
    for item in items:
        if item is None:
            continue
        tag = str(item).strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def coerce_bool(value: Any) -> bool | None:
    """Interpret booleans, "true"/"false" strings and 0/1."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    text = str(value).strip().lower()
    if text in ("true", "yes", "1"):
        return True
    if text in ("false", "no", "0"):
        return False
    return None
