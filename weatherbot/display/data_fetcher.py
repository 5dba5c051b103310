"""
Data Fetcher for the weather display.
Handles data retrieval with graceful error handling.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from weatherbot.shared.database import ReadingStore
from weatherbot.shared.errors import StoreError
from weatherbot.shared.models import Reading
from weatherbot.shared.stats import MedianSummary, median_weather

logger = logging.getLogger(__name__)


@dataclass
class DisplayStatus:
    """Everything the monitor shows in one refresh"""
    database_connected: bool
    readings: List[Reading] = field(default_factory=list)
    median: Optional[MedianSummary] = None
    error: Optional[str] = None


class DataFetcher:
    """Fetches weather log data, never raising to the display loop"""

    def __init__(self, store: ReadingStore, limit: int = 10, median_days: int = 1):
        self.store = store
        self.limit = limit
        self.median_days = median_days

    def get_status(self) -> DisplayStatus:
        try:
            readings = self.store.recent(self.limit)
            median = median_weather(self.store, self.median_days)
        except StoreError as e:
            logger.error(f"Failed to fetch readings: {e}")
            return DisplayStatus(database_connected=False, error=str(e))

        return DisplayStatus(database_connected=True, readings=readings, median=median)
