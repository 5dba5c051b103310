"""Storage for weather readings and subscribers.

Two backends implement the same ``ReadingStore`` and ``SubscriberRegistry``
contracts: SQLite (the default, a single database file) and MySQL.
Both read their connection settings from the current settings snapshot on
every operation, so a configuration reload takes effect on the next call.
"""

import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import pymysql
from pymysql.cursors import DictCursor

from .disk_check import CRITICAL_THRESHOLD_PERCENT, require_disk_space
from .errors import (
    ConfigError,
    ReadFailedError,
    SubscriberExistsError,
    SubscriberNotFoundError,
    WriteFailedError,
)
from .models import Reading, Subscriber

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DBConfig:
    """MySQL connection configuration."""
    host: str = "localhost"
    user: str = ""
    password: str = field(default="", repr=False)
    database: str = "weather"
    port: int = 3306

    @classmethod
    def from_env(cls, defaults: Optional[dict] = None) -> "DBConfig":
        """Create config from environment variables, falling back to defaults."""
        defaults = defaults or {}
        return cls(
            host=os.getenv("DB_HOST", defaults.get("host", "localhost")),
            user=os.getenv("DB_USER", defaults.get("user", "")),
            password=os.getenv("DB_PASSWORD", defaults.get("password", "")),
            database=os.getenv("DB_DATABASE", defaults.get("database", "weather")),
            port=int(os.getenv("DB_PORT", defaults.get("port", 3306))),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Which backend to use and where it lives."""
    backend: str = "sqlite"
    path: str = "db.sqlite"
    mysql: DBConfig = field(default_factory=DBConfig)
    disk_threshold: float = CRITICAL_THRESHOLD_PERCENT

    @classmethod
    def from_dict(cls, data: dict) -> "StorageConfig":
        backend = data.get("backend", "sqlite")
        if backend not in ("sqlite", "mysql"):
            raise ConfigError(f"Unknown storage backend: {backend}")
        return cls(
            backend=backend,
            path=str(data.get("path", "db.sqlite")),
            mysql=DBConfig.from_env(data.get("mysql") or {}),
            disk_threshold=float(data.get("disk_threshold", CRITICAL_THRESHOLD_PERCENT)),
        )


StorageSource = Callable[[], StorageConfig]


class ReadingStore(ABC):
    """Append-only log of readings."""

    @abstractmethod
    def append(self, reading: Reading) -> int:
        """Persist a reading and return its store-assigned id."""

    @abstractmethod
    def recent(self, limit: int) -> List[Reading]:
        """Return up to ``limit`` readings, newest first."""

    @abstractmethod
    def window(self, since: str, limit: int) -> List[Reading]:
        """Return up to ``limit`` newest readings stamped at or after ``since``."""


class SubscriberRegistry(ABC):
    """Durable set of notification recipients."""

    @abstractmethod
    def subscribe(self, recipient_id: int) -> Subscriber:
        """Register a recipient; raises SubscriberExistsError if present."""

    @abstractmethod
    def unsubscribe(self, recipient_id: int) -> None:
        """Remove a recipient; raises SubscriberNotFoundError if absent."""

    @abstractmethod
    def list_all(self) -> List[int]:
        """Snapshot of all registered recipient ids."""


class Storage(ReadingStore, SubscriberRegistry):
    """A backend implementing both contracts."""

    @abstractmethod
    def initialize(self) -> None:
        """Create tables if they don't exist."""

    def close(self) -> None:
        """Release any held connection."""


def _row_to_reading(row) -> Reading:
    return Reading(
        id=row["id"],
        timestamp=row["timestamp"],
        temperature=row["temp"],
        pressure=row["pressure"],
        humidity=row["humidity"],
    )


class SQLiteStorage(Storage):
    """SQLite-backed storage.

    Every operation opens a short-lived connection to the database path of the
    current snapshot; operations may run on any worker thread.
    """

    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS weather_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp TEXT NOT NULL,
            temp REAL NOT NULL,
            pressure REAL NOT NULL,
            humidity REAL NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS subscribers (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            telegram_chat_id BIGINT NOT NULL UNIQUE
        )
        """,
    )

    def __init__(self, storage_source: StorageSource, timeout: float = 30.0):
        """Initialize storage.

        Args:
            storage_source: Returns the current storage configuration.
            timeout: Seconds to wait for a locked database.
        """
        self.storage_source = storage_source
        self.timeout = timeout

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.storage_source().path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        path = self.storage_source().path
        try:
            with closing(self._connect()) as conn, conn:
                for statement in self.SCHEMA:
                    conn.execute(statement)
        except sqlite3.Error as e:
            raise WriteFailedError(f"Could not initialize database {path}: {e}") from e
        logger.info(f"Using SQLite database at {path}")

    def append(self, reading: Reading) -> int:
        config = self.storage_source()
        require_disk_space(config.path, config.disk_threshold)
        try:
            # The connection context manager commits, or rolls back on error
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(
                    "INSERT INTO weather_log (timestamp, temp, pressure, humidity) "
                    "VALUES (?, ?, ?, ?)",
                    (reading.timestamp, reading.temperature, reading.pressure, reading.humidity),
                )
                return cursor.lastrowid
        except sqlite3.Error as e:
            raise WriteFailedError(f"Error storing reading: {e}") from e

    def recent(self, limit: int) -> List[Reading]:
        query = """
            SELECT id, timestamp, temp, pressure, humidity
            FROM weather_log
            ORDER BY id DESC
            LIMIT ?
        """
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(query, (limit,)).fetchall()
        except sqlite3.Error as e:
            raise ReadFailedError(f"Error fetching recent readings: {e}") from e
        return [_row_to_reading(row) for row in rows]

    def window(self, since: str, limit: int) -> List[Reading]:
        query = """
            SELECT id, timestamp, temp, pressure, humidity
            FROM weather_log
            WHERE timestamp >= ?
            ORDER BY id DESC
            LIMIT ?
        """
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(query, (since, limit)).fetchall()
        except sqlite3.Error as e:
            raise ReadFailedError(f"Error fetching readings since {since}: {e}") from e
        return [_row_to_reading(row) for row in rows]

    def subscribe(self, recipient_id: int) -> Subscriber:
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(
                    "INSERT INTO subscribers (telegram_chat_id) VALUES (?)",
                    (recipient_id,),
                )
                return Subscriber(id=cursor.lastrowid, recipient_id=recipient_id)
        except sqlite3.IntegrityError as e:
            raise SubscriberExistsError(recipient_id) from e
        except sqlite3.Error as e:
            raise WriteFailedError(f"Error while saving new subscriber: {e}") from e

    def unsubscribe(self, recipient_id: int) -> None:
        try:
            with closing(self._connect()) as conn, conn:
                cursor = conn.execute(
                    "DELETE FROM subscribers WHERE telegram_chat_id = ?",
                    (recipient_id,),
                )
                deleted = cursor.rowcount
        except sqlite3.Error as e:
            raise WriteFailedError(f"Error while deleting subscriber: {e}") from e
        if deleted == 0:
            raise SubscriberNotFoundError(recipient_id)

    def list_all(self) -> List[int]:
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute("SELECT telegram_chat_id FROM subscribers").fetchall()
        except sqlite3.Error as e:
            raise ReadFailedError(f"Error fetching subscribers: {e}") from e
        return [row["telegram_chat_id"] for row in rows]


class MySQLStorage(Storage):
    """MySQL-backed storage.

    Keeps one connection, reopened when it drops or when the snapshot's
    database settings change. The lock serialises use of the connection
    between the pipeline and enrollment commands.
    """

    SCHEMA = (
        """
        CREATE TABLE IF NOT EXISTS weather_log (
            id INTEGER NOT NULL AUTO_INCREMENT PRIMARY KEY,
            timestamp VARCHAR(40) NOT NULL,
            temp FLOAT NOT NULL,
            pressure FLOAT NOT NULL,
            humidity FLOAT NOT NULL,
            INDEX idx_weather_log_timestamp (timestamp)
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS subscribers (
            id INTEGER NOT NULL AUTO_INCREMENT PRIMARY KEY,
            telegram_chat_id BIGINT NOT NULL,
            UNIQUE KEY uq_subscribers_chat (telegram_chat_id)
        )
        """,
    )

    def __init__(self, storage_source: StorageSource):
        self.storage_source = storage_source
        self._connection: Optional[pymysql.Connection] = None
        self._connected_config: Optional[DBConfig] = None
        self._lock = threading.RLock()

    def _get_connection(self) -> pymysql.Connection:
        """Get or create database connection."""
        db_config = self.storage_source().mysql
        if self._connection is not None and (
            not self._connection.open or db_config != self._connected_config
        ):
            self.close()
        if self._connection is None:
            self._connection = pymysql.connect(
                host=db_config.host,
                port=db_config.port,
                user=db_config.user,
                password=db_config.password,
                database=db_config.database,
                cursorclass=DictCursor,
            )
            self._connected_config = db_config
        return self._connection

    def initialize(self) -> None:
        with self._lock:
            try:
                conn = self._get_connection()
                with conn.cursor() as cursor:
                    for statement in self.SCHEMA:
                        cursor.execute(statement)
                conn.commit()
            except pymysql.MySQLError as e:
                raise WriteFailedError(f"Could not initialize database: {e}") from e
        logger.info(f"Using MySQL database {self._connected_config.database}")

    def _write(self, sql: str, params: tuple):
        """Execute one statement in a transaction, returning the cursor."""
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
            conn.commit()
            return cursor
        except pymysql.MySQLError:
            conn.rollback()
            raise

    def _read(self, sql: str, params: tuple) -> list:
        conn = self._get_connection()
        with conn.cursor() as cursor:
            cursor.execute(sql, params)
            return list(cursor.fetchall())

    def append(self, reading: Reading) -> int:
        with self._lock:
            try:
                cursor = self._write(
                    "INSERT INTO weather_log (timestamp, temp, pressure, humidity) "
                    "VALUES (%s, %s, %s, %s)",
                    (reading.timestamp, reading.temperature, reading.pressure, reading.humidity),
                )
                return cursor.lastrowid
            except pymysql.MySQLError as e:
                raise WriteFailedError(f"Error storing reading: {e}") from e

    def recent(self, limit: int) -> List[Reading]:
        with self._lock:
            try:
                rows = self._read(
                    "SELECT id, timestamp, temp, pressure, humidity FROM weather_log "
                    "ORDER BY id DESC LIMIT %s",
                    (limit,),
                )
            except pymysql.MySQLError as e:
                raise ReadFailedError(f"Error fetching recent readings: {e}") from e
        return [_row_to_reading(row) for row in rows]

    def window(self, since: str, limit: int) -> List[Reading]:
        with self._lock:
            try:
                rows = self._read(
                    "SELECT id, timestamp, temp, pressure, humidity FROM weather_log "
                    "WHERE timestamp >= %s ORDER BY id DESC LIMIT %s",
                    (since, limit),
                )
            except pymysql.MySQLError as e:
                raise ReadFailedError(f"Error fetching readings since {since}: {e}") from e
        return [_row_to_reading(row) for row in rows]

    def subscribe(self, recipient_id: int) -> Subscriber:
        with self._lock:
            try:
                cursor = self._write(
                    "INSERT INTO subscribers (telegram_chat_id) VALUES (%s)",
                    (recipient_id,),
                )
            except pymysql.IntegrityError as e:
                raise SubscriberExistsError(recipient_id) from e
            except pymysql.MySQLError as e:
                raise WriteFailedError(f"Error while saving new subscriber: {e}") from e
        return Subscriber(id=cursor.lastrowid, recipient_id=recipient_id)

    def unsubscribe(self, recipient_id: int) -> None:
        with self._lock:
            try:
                cursor = self._write(
                    "DELETE FROM subscribers WHERE telegram_chat_id = %s",
                    (recipient_id,),
                )
            except pymysql.MySQLError as e:
                raise WriteFailedError(f"Error while deleting subscriber: {e}") from e
        if cursor.rowcount == 0:
            raise SubscriberNotFoundError(recipient_id)

    def list_all(self) -> List[int]:
        with self._lock:
            try:
                rows = self._read("SELECT telegram_chat_id FROM subscribers", ())
            except pymysql.MySQLError as e:
                raise ReadFailedError(f"Error fetching subscribers: {e}") from e
        return [row["telegram_chat_id"] for row in rows]

    def close(self):
        """Close the database connection."""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except pymysql.MySQLError as e:
                    logger.debug(f"Error closing MySQL connection: {e}")
                self._connection = None
                self._connected_config = None


def open_storage(storage_source: StorageSource) -> Storage:
    """Create the storage backend named by the current configuration."""
    backend = storage_source().backend
    if backend == "mysql":
        return MySQLStorage(storage_source)
    return SQLiteStorage(storage_source)
