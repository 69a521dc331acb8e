"""Storage - insight models, key-value backends, history store"""

from __future__ import annotations

from devinsight.storage.kv import (
    KeyValueStorage,
    MemoryKeyValueStorage,
    SqliteKeyValueStorage,
    StorageError,
)
from devinsight.storage.models import InsightSource, StrategicInsight, TelemetrySnapshot

__all__ = [
    "InsightSource",
    "KeyValueStorage",
    "MemoryKeyValueStorage",
    "SqliteKeyValueStorage",
    "StorageError",
    "StrategicInsight",
    "TelemetrySnapshot",
]
