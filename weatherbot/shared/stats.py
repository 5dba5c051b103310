"""Windowed statistics over the weather log."""

import statistics
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .database import ReadingStore

DEFAULT_WINDOW_LIMIT = 1000


@dataclass(frozen=True)
class MedianSummary:
    """Medians of each measurement over a window of readings."""
    count: int
    since: str
    temperature: float
    pressure: float
    humidity: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def median_weather(
    store: ReadingStore,
    days: int,
    limit: int = DEFAULT_WINDOW_LIMIT,
    now: Optional[datetime] = None,
) -> Optional[MedianSummary]:
    """Compute medians over the readings of the last ``days`` days.

    At most ``limit`` of the newest readings in the window are considered.

    Returns:
        The summary, or None if the window holds no readings.
    """
    if days <= 0:
        raise ValueError("days must be positive")
    if limit <= 0:
        raise ValueError("limit must be positive")

    now = now or datetime.now(timezone.utc)
    since = (now - timedelta(days=days)).isoformat(timespec="microseconds")
    readings = store.window(since, limit)
    if not readings:
        return None

    return MedianSummary(
        count=len(readings),
        since=since,
        temperature=statistics.median(r.temperature for r in readings),
        pressure=statistics.median(r.pressure for r in readings),
        humidity=statistics.median(r.humidity for r in readings),
    )
