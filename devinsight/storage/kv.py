"""
Key-value storage capability used to persist insight history.

The history store only needs `get(key)` and `set(key, value)`; values are
JSON-compatible lists of dicts. Two implementations ship here: an in-memory
one (tests, ephemeral runs) and a SQLite-backed one (CLI default).
"""

from __future__ import annotations

import copy
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from devinsight.observability.logging import get_logger
from devinsight.observability.telemetry import counter
from devinsight.storage.database import open_connection, retry_on_db_lock

logger = get_logger(__name__)


class StorageError(RuntimeError):
    """Raised when a storage read or write fails."""


@runtime_checkable
class KeyValueStorage(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


class MemoryKeyValueStorage:
    """Dict-backed storage. Values are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            if key not in self._data:
                return None
            return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = copy.deepcopy(value)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class SqliteKeyValueStorage:
    """
    SQLite-backed storage: one row per key, value stored as JSON text.

    A single connection is shared and serialized by a lock, so writes to the
    same key land in call order (last write wins).
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = open_connection(self.db_path)
            self._ensure_schema()
        except (sqlite3.Error, RuntimeError, OSError) as e:
            raise StorageError(f"Failed to open storage at {self.db_path}: {e}") from e

    def _ensure_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        self._conn.commit()

    def get(self, key: str) -> Any | None:
        """
        Read and decode a value.

        Raises:
            StorageError: on SQLite failure or undecodable JSON
        """
        with self._lock:
            try:
                row = self._read(key)
            except sqlite3.Error as e:
                counter("storage.read_error")
                raise StorageError(f"Failed to read key {key!r}: {e}") from e

        if row is None:
            return None
        try:
            return json.loads(row["value"])
        except json.JSONDecodeError as e:
            counter("storage.decode_error")
            raise StorageError(f"Stored value for {key!r} is not valid JSON: {e}") from e

    def set(self, key: str, value: Any) -> None:
        """
        Encode and write a value; `None` deletes the key.

        Raises:
            StorageError: on SQLite failure or unserializable value
        """
        try:
            encoded = None if value is None else json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Value for {key!r} is not JSON serializable: {e}") from e

        with self._lock:
            try:
                self._write(key, encoded)
            except sqlite3.Error as e:
                counter("storage.write_error")
                raise StorageError(f"Failed to write key {key!r}: {e}") from e

    @retry_on_db_lock()
    def _read(self, key: str) -> sqlite3.Row | None:
        cursor = self._conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        return cursor.fetchone()

    @retry_on_db_lock()
    def _write(self, key: str, encoded: str | None) -> None:
        if encoded is None:
            self._conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        else:
            self._conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value=excluded.value,
                    updated_at=excluded.updated_at
                """,
                (key, encoded),
            )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
