"""Tests for the SQLite and MySQL storage backends."""

from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pymysql
import pytest

from weatherbot.shared.config import Settings, SettingsCell
from weatherbot.shared.database import (
    DBConfig,
    MySQLStorage,
    SQLiteStorage,
    StorageConfig,
    open_storage,
)
from weatherbot.shared.errors import (
    DiskFullError,
    SubscriberExistsError,
    SubscriberNotFoundError,
    WriteFailedError,
)
from weatherbot.shared.models import Reading


def make_reading(n: int, timestamp: str = None) -> Reading:
    return Reading(
        timestamp=timestamp or f"2024-05-01T12:00:{n:02d}.000000+00:00",
        temperature=20.0 + n,
        pressure=101000.0 + n,
        humidity=40.0 + n,
    )


class TestSubscriberRegistry:

    def test_subscribe_then_duplicate(self, storage):
        subscriber = storage.subscribe(123)

        assert subscriber.recipient_id == 123
        with pytest.raises(SubscriberExistsError) as exc_info:
            storage.subscribe(123)
        assert exc_info.value.recipient_id == 123
        assert storage.list_all() == [123]

    def test_concurrent_subscribe_same_recipient(self, storage):
        def attempt(_):
            try:
                storage.subscribe(42)
                return True
            except SubscriberExistsError:
                return False

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(attempt, range(8)))

        assert results.count(True) == 1
        assert storage.list_all() == [42]

    def test_unsubscribe_after_subscribe(self, storage):
        storage.subscribe(123)

        storage.unsubscribe(123)

        assert storage.list_all() == []

    def test_unsubscribe_unknown(self, storage):
        with pytest.raises(SubscriberNotFoundError):
            storage.unsubscribe(999)

    def test_unsubscribe_twice(self, storage):
        storage.subscribe(5)
        storage.unsubscribe(5)

        with pytest.raises(SubscriberNotFoundError):
            storage.unsubscribe(5)

    def test_resubscribe_after_unsubscribe(self, storage):
        first = storage.subscribe(42)
        storage.unsubscribe(42)

        second = storage.subscribe(42)

        assert second.id != first.id
        assert storage.list_all() == [42]

    def test_list_all(self, storage):
        for chat_id in (1, -100123456789, 3):
            storage.subscribe(chat_id)

        assert sorted(storage.list_all()) == [-100123456789, 1, 3]


class TestReadingStore:

    def test_append_assigns_increasing_ids(self, storage):
        ids = [storage.append(make_reading(n)) for n in range(3)]

        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    def test_recent_newest_first(self, storage):
        for n in range(1, 6):
            storage.append(make_reading(n))

        readings = storage.recent(3)

        assert [r.temperature for r in readings] == [25.0, 24.0, 23.0]
        assert all(r.id is not None for r in readings)

    def test_recent_orders_by_id_not_timestamp(self, storage):
        storage.append(make_reading(1, timestamp="2024-05-01T12:00:00.000000+00:00"))
        storage.append(make_reading(2, timestamp="2024-04-01T12:00:00.000000+00:00"))

        readings = storage.recent(10)

        assert [r.temperature for r in readings] == [22.0, 21.0]

    def test_all_fields_persisted(self, storage):
        reading = make_reading(7)
        reading_id = storage.append(reading)

        (stored,) = storage.recent(1)

        assert stored == reading.with_id(reading_id)

    def test_window(self, storage):
        storage.append(make_reading(1, timestamp="2024-04-01T00:00:00.000000+00:00"))
        storage.append(make_reading(2, timestamp="2024-05-01T00:00:00.000000+00:00"))
        storage.append(make_reading(3, timestamp="2024-05-02T00:00:00.000000+00:00"))

        readings = storage.window("2024-04-15T00:00:00.000000+00:00", 10)

        assert [r.temperature for r in readings] == [23.0, 22.0]
        assert len(storage.window("2024-04-15T00:00:00.000000+00:00", 1)) == 1

    def test_write_failure(self, tmp_path):
        config = StorageConfig(path=str(tmp_path / "missing" / "db.sqlite"), disk_threshold=100.0)
        storage = SQLiteStorage(lambda: config)

        with pytest.raises(WriteFailedError):
            storage.append(make_reading(1))

    def test_disk_full_rejects_append(self, tmp_path):
        config = StorageConfig(path=str(tmp_path / "db.sqlite"), disk_threshold=0.0)
        storage = SQLiteStorage(lambda: config)
        storage.initialize()

        with pytest.raises(DiskFullError):
            storage.append(make_reading(1))
        assert storage.recent(10) == []

    def test_follows_replaced_settings(self, tmp_path):
        first = StorageConfig(path=str(tmp_path / "first.sqlite"), disk_threshold=100.0)
        second = StorageConfig(path=str(tmp_path / "second.sqlite"), disk_threshold=100.0)
        cell = SettingsCell(Settings(storage=first))
        storage = SQLiteStorage(lambda: cell.current().storage)
        storage.initialize()
        storage.append(make_reading(1))

        cell.replace(Settings(storage=second))
        storage.initialize()
        storage.append(make_reading(2))

        assert [r.temperature for r in storage.recent(10)] == [22.0]
        cell.replace(Settings(storage=first))
        assert [r.temperature for r in storage.recent(10)] == [21.0]


class TestOpenStorage:

    def test_sqlite_default(self, storage_config):
        assert isinstance(open_storage(lambda: storage_config), SQLiteStorage)

    def test_mysql(self):
        config = StorageConfig(backend="mysql")
        assert isinstance(open_storage(lambda: config), MySQLStorage)


@pytest.fixture
def mysql_connection():
    connection = MagicMock()
    connection.open = True
    cursor = connection.cursor.return_value.__enter__.return_value
    cursor.lastrowid = 17
    cursor.rowcount = 1
    with patch("weatherbot.shared.database.pymysql.connect", return_value=connection) as connect:
        connect.cursor = cursor
        yield connect


class TestMySQLStorage:

    def make_storage(self, db_config: DBConfig = None) -> MySQLStorage:
        config = StorageConfig(backend="mysql", mysql=db_config or DBConfig(user="bot"))
        return MySQLStorage(lambda: config)

    def test_append(self, mysql_connection):
        storage = self.make_storage()

        reading_id = storage.append(make_reading(1))

        assert reading_id == 17
        sql, params = mysql_connection.cursor.execute.call_args[0]
        assert sql.startswith("INSERT INTO weather_log")
        assert params == ("2024-05-01T12:00:01.000000+00:00", 21.0, 101001.0, 41.0)
        mysql_connection.return_value.commit.assert_called_once()

    def test_append_failure_rolls_back(self, mysql_connection):
        mysql_connection.cursor.execute.side_effect = pymysql.OperationalError(2006, "gone away")
        storage = self.make_storage()

        with pytest.raises(WriteFailedError):
            storage.append(make_reading(1))
        mysql_connection.return_value.rollback.assert_called_once()

    def test_duplicate_subscriber(self, mysql_connection):
        mysql_connection.cursor.execute.side_effect = pymysql.IntegrityError(1062, "Duplicate entry")
        storage = self.make_storage()

        with pytest.raises(SubscriberExistsError):
            storage.subscribe(123)

    def test_unsubscribe_missing(self, mysql_connection):
        mysql_connection.cursor.rowcount = 0
        storage = self.make_storage()

        with pytest.raises(SubscriberNotFoundError):
            storage.unsubscribe(123)

    def test_list_all(self, mysql_connection):
        mysql_connection.cursor.fetchall.return_value = [
            {"telegram_chat_id": 1},
            {"telegram_chat_id": 2},
        ]
        storage = self.make_storage()

        assert storage.list_all() == [1, 2]

    def test_reconnects_when_settings_change(self, mysql_connection):
        config = {"current": StorageConfig(backend="mysql", mysql=DBConfig(host="db1"))}
        storage = MySQLStorage(lambda: config["current"])
        mysql_connection.cursor.fetchall.return_value = []

        storage.list_all()
        storage.list_all()
        config["current"] = StorageConfig(backend="mysql", mysql=DBConfig(host="db2"))
        storage.list_all()

        hosts = [c.kwargs["host"] for c in mysql_connection.call_args_list]
        assert hosts == ["db1", "db2"]
