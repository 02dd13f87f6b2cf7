"""
Timestamp helpers.

Journal timestamps are epoch seconds; the remote service reports ISO 8601
strings and local completion stamps use strftime formats.
"""

import re
from datetime import datetime, timezone
from typing import Optional


_STRFTIME_PATTERNS = {
    "Y": r"\d{4}",
    "y": r"\d{2}",
    "m": r"\d{2}",
    "d": r"\d{2}",
    "H": r"\d{2}",
    "I": r"\d{2}",
    "M": r"\d{2}",
    "S": r"\d{2}",
    "p": r"(?:AM|PM|am|pm)",
    "b": r"[A-Za-z]{3}",
    "a": r"[A-Za-z]{3}",
    "%": "%",
}

# Seconds fraction of any length; fromisoformat before 3.11 wants exactly 3 or 6 digits
_FRACTION_RE = re.compile(r"(T\d{2}:\d{2}:\d{2})\.(\d+)")


def parse_iso_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp into an aware datetime.

    Args:
        value: Timestamp string, e.g. "2024-03-01T10:15:00.000000Z"

    Returns:
        Parsed datetime (UTC when no offset is given) or None
    """
    if not value:
        return None

    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: f"{m.group(1)}.{(m.group(2) + '000000')[:6]}", text)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def epoch_to_iso(value: Optional[float]) -> Optional[str]:
    """Format epoch seconds as an ISO 8601 UTC string."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def format_local_timestamp(moment: datetime, fmt: str) -> str:
    """Render a datetime in local time using a strftime format."""
    return moment.astimezone().strftime(fmt)


def strftime_regex(fmt: str) -> "re.Pattern[str]":
    """
    Build a regex that matches text produced by a strftime format.

    Literal parts of the format are matched verbatim.
    """
    parts = []
    index = 0
    while index < len(fmt):
        char = fmt[index]
        if char == "%" and index + 1 < len(fmt):
            directive = fmt[index + 1]
            parts.append(_STRFTIME_PATTERNS.get(directive, r"\S+"))
            index += 2
            continue
        parts.append(re.escape(char))
        index += 1
    return re.compile("".join(parts))
