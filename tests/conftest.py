"""Shared fixtures for the weatherbot test suite."""

from typing import List, Optional, Set, Tuple

import pytest

from weatherbot.bot.dispatcher import Notifier
from weatherbot.shared.config import Settings, SettingsCell
from weatherbot.shared.database import SQLiteStorage, StorageConfig
from weatherbot.shared.errors import NotifyError


class RecordingNotifier(Notifier):
    """Notifier that records deliveries and fails for chosen recipients."""

    def __init__(self, failing: Optional[Set[int]] = None):
        self.failing = failing or set()
        self.sent: List[Tuple[int, str, bool]] = []

    async def send(self, recipient_id: int, text: str, urgent: bool = True) -> None:
        if recipient_id in self.failing:
            raise NotifyError(f"chat {recipient_id} blocked the bot")
        self.sent.append((recipient_id, text, urgent))


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    # A threshold of 100% keeps the disk guard out of the way on busy CI disks
    return StorageConfig(path=str(tmp_path / "weather.sqlite"), disk_threshold=100.0)


@pytest.fixture
def settings_cell(storage_config) -> SettingsCell:
    return SettingsCell(Settings(storage=storage_config))


@pytest.fixture
def storage(settings_cell) -> SQLiteStorage:
    storage = SQLiteStorage(lambda: settings_cell.current().storage)
    storage.initialize()
    return storage


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
