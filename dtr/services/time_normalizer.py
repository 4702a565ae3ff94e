from __future__ import annotations

import re

_CANONICAL_RE = re.compile(r"^[0-9]{2}:[0-9]{2}$")
_BARE_HOUR_RE = re.compile(r"^[0-9]{1,2}$")
_LOOSE_CLOCK_RE = re.compile(r"^([0-9]{1,2}):([0-9]{1,2})$")


def normalize_time(raw: str | None) -> str:
    """Clean a typed time of day into ``HH:MM``.

    Never raises. Input that cannot be read confidently comes back trimmed so
    the validator can reject it as malformed.
    """
    if raw is None:
        return ""
    value = raw.strip()
    if not value:
        return ""

    if _CANONICAL_RE.match(value):
        return value

    if _BARE_HOUR_RE.match(value):
        hour = int(value)
        if 0 <= hour <= 23:
            return f"{hour:02d}:00"
        return value

    match = _LOOSE_CLOCK_RE.match(value)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2))
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return f"{hour:02d}:{minute:02d}"

    return value


def is_canonical_time(value: str | None) -> bool:
    return time_to_minutes(value) is not None


def time_to_minutes(value: str | None) -> int | None:
    if not value or not _CANONICAL_RE.match(value):
        return None
    hour = int(value[:2])
    minute = int(value[3:])
    if hour > 23 or minute > 59:
        return None
    return hour * 60 + minute


def minutes_to_clock(minutes: int) -> str:
    value = max(0, int(minutes))
    return f"{value // 60}:{value % 60:02d}"


def format_duration(minutes: int) -> str:
    value = max(0, int(minutes))
    return f"{value // 60}h {value % 60:02d}m"
