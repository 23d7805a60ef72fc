"""
Helpers for epoch-millisecond times and times of day.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
import time

from .errors import ConfigurationError

ONE_DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> float:
    return time.time() * 1000.0


def midnight(epoch_ms: Optional[float] = None) -> float:
    """
    Local midnight at the start of the day containing `epoch_ms` (default
    now), as epoch ms.
    """
    when = now_ms() if epoch_ms is None else epoch_ms
    day = datetime.fromtimestamp(when / 1000.0)
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    return start.timestamp() * 1000.0


def time_of_day(epoch_ms: float) -> float:
    """Milliseconds since local midnight."""
    return epoch_ms - midnight(epoch_ms)


def parse_hms(text: str) -> int:
    """
    Parse a local time "HH[:MM[:SS]]" into ms since midnight.
    """
    parts = text.strip().split(":")
    if not parts or len(parts) > 3:
        raise ConfigurationError(f"Bad time of day '{text}'")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 else 0
        seconds = float(parts[2]) if len(parts) > 2 else 0.0
    except ValueError as exc:
        raise ConfigurationError(f"Bad time of day '{text}'") from exc
    if not (0 <= hours <= 23 and 0 <= minutes <= 59 and 0 <= seconds < 60):
        raise ConfigurationError(
            f"Time '{text}' out of range 00:00:00..23:59:59"
        )
    return int(round(((hours * 60 + minutes) * 60 + seconds) * 1000))


def format_hms(ms: float) -> str:
    total = int(ms // 1000)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_delta(ms: float) -> str:
    """
    Human readable duration, e.g. "1h 2m 3s".
    """
    total = int(max(ms, 0) // 1000)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    pieces = []
    if hours:
        pieces.append(f"{hours}h")
    if minutes:
        pieces.append(f"{minutes}m")
    pieces.append(f"{seconds}s")
    return " ".join(pieces)
