# durations.py — "HH:MM" duration strings (unbounded hours, minutes 0-59)
import re
from typing import Iterable, Optional

_DURATION_RE = re.compile(r"^\s*(\d+):(\d{1,2})\s*$")
_NON_DIGIT_RE = re.compile(r"\D")

ZERO = "00:00"


def parse_minutes(value: Optional[str]) -> Optional[int]:
    """Return total minutes for an "HH:MM" string, or None when empty or malformed."""
    if not value:
        return None
    match = _DURATION_RE.match(value)
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes > 59:
        return None
    return hours * 60 + minutes


def is_valid(value: str) -> bool:
    return parse_minutes(value) is not None


def format_minutes(total: int) -> str:
    """135 -> "02:15". Hours keep growing past two digits."""
    return f"{total // 60:02d}:{total % 60:02d}"


def format_label(total: int) -> str:
    """135 -> "2h 15" (analytics display)"""
    return f"{total // 60}h {total % 60:02d}"


def sum_minutes(values: Iterable[Optional[str]]) -> int:
    # Empty and malformed entries contribute nothing
    return sum(parse_minutes(v) or 0 for v in values)


def normalize_duration(hours: str, minutes: str) -> str:
    """Clean raw hour/minute input into a padded "HH:MM" value.

    Non-digits are dropped, each part keeps at most two digits, minutes are
    clamped to 59 and empty parts become "00".
    """
    h = _NON_DIGIT_RE.sub("", hours or "")[:2]
    m = _NON_DIGIT_RE.sub("", minutes or "")[:2]
    if m and int(m) > 59:
        m = "59"
    return f"{(h or '0').zfill(2)}:{(m or '0').zfill(2)}"
