"""SQLite connection helpers

One database file (DEVINSIGHT_DB_PATH) holds the key-value table backing the
insight history. Connections are opened with WAL mode and a quick integrity
check; writes retry with exponential backoff on "database is locked".
"""

from __future__ import annotations

import random
import sqlite3
import time
from collections.abc import Callable
from functools import wraps
from pathlib import Path
from typing import Any, TypeVar

from devinsight.config import (
    DB_CONNECT_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
)
from devinsight.observability.logging import get_logger
from devinsight.observability.telemetry import counter

F = TypeVar("F", bound=Callable[..., Any])

logger = get_logger(__name__)


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Usage:
        @retry_on_db_lock()
        def write(conn):
            conn.execute("INSERT INTO ...")

    Side Effects:
        - Sleeps between retries (exponential backoff with jitter)
        - Logs a warning per retry and an error when retries are exhausted
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_error = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except sqlite3.OperationalError as e:
                    last_error = e

                    if "locked" not in str(e).lower() and "busy" not in str(e).lower():
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    jitter = random.uniform(0, delay * DB_RETRY_JITTER)
                    sleep_time = delay + jitter

                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )

                    time.sleep(sleep_time)

            raise last_error  # type: ignore[misc]

        return wrapper  # type: ignore[return-value]

    return decorator


def open_connection(db_path: str | Path) -> sqlite3.Connection:
    """
    Create a configured SQLite connection

    Side Effects:
        - Creates the parent directory of db_path if missing
        - Opens the database file and runs PRAGMA statements

    Raises:
        RuntimeError: If database corruption is detected
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=DB_CONNECT_TIMEOUT, check_same_thread=False)

    try:
        result = conn.execute("PRAGMA quick_check(1)").fetchone()
        if result[0] != "ok":
            conn.close()
            logger.critical("Database corruption detected: %s", result[0])
            counter("database.corruption_detected")
            raise RuntimeError(f"Database corruption detected: {result[0]}")
    except sqlite3.DatabaseError as e:
        conn.close()
        logger.critical("Database corruption or error during integrity check: %s", e)
        counter("database.corruption_detected")
        raise RuntimeError(f"Database corruption detected: {e}") from e

    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA synchronous=NORMAL")
    conn.row_factory = sqlite3.Row
    return conn
