"""Human duration parsing and formatting.

Accepts the forms used in alert definitions and on the command line:
``"1 minute"``, ``"90s"``, ``"2 hours 30 minutes"``, ``"1h30m"``, ``"1 week"``.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

_UNITS = {
    "ms": 0.001,
    "msec": 0.001,
    "millisecond": 0.001,
    "milliseconds": 0.001,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 604800,
    "week": 604800,
    "weeks": 604800,
}

_PART = re.compile(r"(\d+(?:\.\d+)?)\s*([a-zA-Z]+)")

# Largest unit first, for formatting
_FORMAT_UNITS = [
    ("week", 604800),
    ("day", 86400),
    ("hour", 3600),
    ("minute", 60),
    ("second", 1),
]


def parse_duration(text: str) -> timedelta:
    """Parse a human duration string into a timedelta.

    Raises ValueError if the text is empty, has an unknown unit, or has
    anything left over after the recognised parts.
    """
    if text is None:
        raise ValueError("duration is required")
    cleaned = text.strip().lower().replace(",", " ")
    if not cleaned:
        raise ValueError("duration is empty")

    # A bare number is seconds
    if re.fullmatch(r"\d+(?:\.\d+)?", cleaned):
        return timedelta(seconds=float(cleaned))

    total = 0.0
    position = 0
    for match in _PART.finditer(cleaned):
        gap = cleaned[position:match.start()]
        if gap.strip() and gap.strip() != "and":
            raise ValueError(f"invalid duration: {text!r}")
        unit = match.group(2)
        if unit not in _UNITS:
            raise ValueError(f"unknown duration unit {unit!r} in {text!r}")
        total += float(match.group(1)) * _UNITS[unit]
        position = match.end()

    if position == 0 or cleaned[position:].strip():
        raise ValueError(f"invalid duration: {text!r}")
    return timedelta(seconds=total)


def format_duration(duration: timedelta) -> str:
    """Format a timedelta using its largest whole unit, e.g. ``5 minutes``."""
    seconds = int(duration.total_seconds())
    if seconds <= 0:
        return "0 seconds"
    for name, size in _FORMAT_UNITS:
        if seconds >= size and seconds % size == 0:
            count = seconds // size
            return f"{count} {name}{'' if count == 1 else 's'}"
    return f"{seconds} seconds"


def parse_deadline(text: Optional[str], now: Optional[datetime] = None, default: timedelta = timedelta(days=7)) -> datetime:
    """Parse a pause deadline.

    Accepts an ISO-8601 timestamp (naive values are taken as UTC) or a
    relative duration from now. No text means ``now + default``.
    """
    now = now or datetime.now(timezone.utc)
    if text is None or not text.strip():
        return now + default

    candidate = text.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"
    try:
        deadline = datetime.fromisoformat(candidate)
    except ValueError:
        return now + parse_duration(text)

    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)
    return deadline
