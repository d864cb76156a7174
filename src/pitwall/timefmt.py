"""Conversions between provider time strings and integer milliseconds.

Both providers send lap and elapsed times as ``MM:SS.mmm`` or
``HH:MM:SS.mmm`` strings. Internally every time is an ``int`` number of
milliseconds, with ``0`` meaning "no time".
"""

from __future__ import annotations

import re

NO_TIME = "--:--.---"

_TIME_RE = re.compile(
    r"^\s*(?:(?P<h>\d+):)?(?P<m>\d+):(?P<s>\d+)(?:\.(?P<frac>\d+))?\s*$"
)


def parse_time_ms(value: str | None) -> int:
    """Parse ``MM:SS.mmm`` or ``HH:MM:SS.mmm`` to milliseconds.

    Fractions shorter than three digits are right-padded (``1:43.6`` is
    103600 ms), longer ones are truncated to milliseconds. Missing, blank,
    placeholder (``-``) or unparseable values give 0.
    """
    if not value:
        return 0
    match = _TIME_RE.match(value)
    if match is None:
        return 0
    hours = int(match["h"] or 0)
    minutes = int(match["m"])
    seconds = int(match["s"])
    millis = int((match["frac"] or "0")[:3].ljust(3, "0"))
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + millis


def format_ms(ms: int | None, include_hours: bool = False) -> str:
    """Format milliseconds as ``MM:SS.mmm`` (or ``HH:MM:SS.mmm`` past an hour)."""
    if not ms:
        return NO_TIME
    ms = int(ms)
    hours, rem = divmod(ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    if include_hours or hours > 0:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"
    return f"{minutes:02d}:{seconds:02d}.{millis:03d}"
