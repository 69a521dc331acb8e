"""
Insight History Store - bounded, persisted, most-recent-first insight history.

Each accepted insight also yields a TelemetrySnapshot: a privacy-reduced
record (language count, file extensions, counts, confidence) kept in a
separate bounded list for trend analysis.

Persistence is best-effort. A StorageError is logged and the store keeps
working in memory; the analysis path never fails because of storage.
"""

from __future__ import annotations

import threading
from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ValidationError

from devinsight.config import (
    HISTORY_STORAGE_KEY,
    MAX_HISTORY_ITEMS,
    MAX_TELEMETRY_ITEMS,
    TELEMETRY_STORAGE_KEY,
)
from devinsight.observability.logging import get_logger
from devinsight.observability.structured import EventType, StructuredLogger
from devinsight.observability.structured import get_logger as get_event_logger
from devinsight.observability.telemetry import counter
from devinsight.storage.kv import KeyValueStorage, StorageError
from devinsight.storage.models import StrategicInsight, TelemetrySnapshot
from devinsight.utils.redaction import file_extension, resource_basename

logger = get_logger(__name__)

HistoryListener = Callable[[list[StrategicInsight]], None]


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def rank_extensions(files: list[Any]) -> list[str]:
    """Distinct extensions ordered by frequency (desc), then alphabetically."""
    counts = Counter(file_extension(f) for f in files if isinstance(f, str) and f)
    counts.pop("", None)
    return [ext for ext, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))]


def derive_telemetry(insight: StrategicInsight) -> TelemetrySnapshot:
    """Build the anonymized telemetry record for an insight."""
    metadata = insight.metadata
    languages = metadata.get("languages")
    files = metadata.get("files")

    return TelemetrySnapshot(
        timestamp=insight.timestamp,
        language_count=len(languages) if isinstance(languages, list) else 0,
        file_extensions=rank_extensions(files) if isinstance(files, list) else [],
        change_count=_optional_int(metadata.get("change_count")),
        save_count=_optional_int(metadata.get("save_count")),
        confidence=insight.confidence,
        reason=_optional_str(metadata.get("reason")),
        source=_optional_str(metadata.get("source")),
    )


def sanitize_insight(insight: StrategicInsight) -> dict[str, Any]:
    """Export view of an insight: no raw_response, files reduced to base names."""
    record = insight.to_record()
    metadata = record.get("metadata") or {}
    metadata.pop("raw_response", None)
    files = metadata.get("files")
    if isinstance(files, list):
        metadata["files"] = [resource_basename(f) for f in files if isinstance(f, str)]
    record["metadata"] = metadata
    return record


class InsightHistoryStore:
    """
    Bounded history of insights plus derived telemetry, optionally persisted.

    All mutations (and the storage writes they trigger) run under one
    re-entrant lock, so writes land in mutation order. Subscribers are called
    after the lock is released with a copy of the full history.

    Example:
        store = InsightHistoryStore(SqliteKeyValueStorage(DB_PATH))
        unsubscribe = store.subscribe(lambda history: print(len(history)))
        store.set_latest(insight)
    """

    def __init__(
        self,
        storage: KeyValueStorage | None = None,
        *,
        max_history_items: int = MAX_HISTORY_ITEMS,
        max_telemetry_items: int = MAX_TELEMETRY_ITEMS,
        history_key: str = HISTORY_STORAGE_KEY,
        telemetry_key: str = TELEMETRY_STORAGE_KEY,
        event_logger: StructuredLogger | None = None,
    ) -> None:
        self.storage = storage
        self.max_history_items = max(0, max_history_items)
        self.max_telemetry_items = max(0, max_telemetry_items)
        self.history_key = history_key
        self.telemetry_key = telemetry_key
        self._events = event_logger or get_event_logger()
        self._lock = threading.RLock()
        self._listeners: list[HistoryListener] = []
        self._history: list[StrategicInsight] = []
        self._telemetry: list[TelemetrySnapshot] = []

        if storage is not None:
            self._restore()

    # ------------------------------------------------------------------ reads

    def get_latest(self) -> StrategicInsight | None:
        with self._lock:
            return self._history[0].clone() if self._history else None

    def get_history(self) -> list[StrategicInsight]:
        with self._lock:
            return [insight.clone() for insight in self._history]

    def get_history_count(self) -> int:
        with self._lock:
            return len(self._history)

    def get_telemetry_history(self) -> list[TelemetrySnapshot]:
        with self._lock:
            return [snapshot.model_copy() for snapshot in self._telemetry]

    def get_export_snapshot(self) -> dict[str, Any]:
        """
        Sanitized export of history and telemetry.

        Returns:
            {generated_at, insight_count, telemetry_count, insights, telemetry}
        """
        with self._lock:
            insights = [sanitize_insight(insight) for insight in self._history]
            telemetry = [snapshot.to_record() for snapshot in self._telemetry]

        return {
            "generated_at": datetime.now(UTC).isoformat(),
            "insight_count": len(insights),
            "telemetry_count": len(telemetry),
            "insights": insights,
            "telemetry": telemetry,
        }

    # -------------------------------------------------------------- mutations

    def set_latest(self, insight: StrategicInsight) -> None:
        """
        Record a new insight as the most recent entry.

        Side Effects:
            - Evicts the oldest insight/telemetry beyond the caps (permanently)
            - Persists both lists to storage
            - Notifies subscribers with the full history
        """
        owned = insight.clone()
        with self._lock:
            self._history.insert(0, owned)
            del self._history[self.max_history_items :]
            self._push_telemetry(derive_telemetry(owned))
            self._persist(self.history_key, self._history)
            self._persist(self.telemetry_key, self._telemetry)
            history = self.get_history()

        counter("history.insight_recorded")
        self._notify(history)

    def record_telemetry(self, insight: StrategicInsight) -> TelemetrySnapshot:
        """Derive, store and persist a telemetry snapshot without touching history."""
        snapshot = derive_telemetry(insight)
        with self._lock:
            self._push_telemetry(snapshot)
            self._persist(self.telemetry_key, self._telemetry)
        return snapshot.model_copy()

    def clear_history(self) -> None:
        """Empty both lists in memory and storage; subscribers receive []."""
        with self._lock:
            self._history.clear()
            self._telemetry.clear()
            self._persist(self.history_key, self._history)
            self._persist(self.telemetry_key, self._telemetry)

        counter("history.cleared")
        self._events.log_event(EventType.HISTORY_CLEARED)
        self._notify([])

    def subscribe(self, listener: HistoryListener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    # --------------------------------------------------------------- internals

    def _push_telemetry(self, snapshot: TelemetrySnapshot) -> None:
        self._telemetry.insert(0, snapshot)
        del self._telemetry[self.max_telemetry_items :]

    def _persist(self, key: str, items: list[StrategicInsight] | list[TelemetrySnapshot]) -> None:
        if self.storage is None:
            return
        records = [item.to_record() for item in items]
        try:
            self.storage.set(key, records)
        except StorageError as e:
            counter("history.persist_error")
            logger.warning("Failed to persist %s (continuing in memory): %s", key, e)
            self._events.storage_failed("write", key, str(e))
            return
        self._events.log_event(EventType.HISTORY_PERSISTED, key=key, count=len(records))

    def _read(self, key: str) -> list[Any]:
        assert self.storage is not None
        try:
            raw = self.storage.get(key)
        except StorageError as e:
            counter("history.restore_error")
            logger.warning("Failed to read %s from storage: %s", key, e)
            self._events.storage_failed("read", key, str(e))
            return []
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Ignoring stored %s: expected a list, got %s", key, type(raw).__name__)
            return []
        return raw

    def _restore(self) -> None:
        history, dropped_history = _validate_entries(self._read(self.history_key), StrategicInsight)
        telemetry, dropped_telemetry = _validate_entries(
            self._read(self.telemetry_key), TelemetrySnapshot
        )

        with self._lock:
            self._history = history[: self.max_history_items]
            self._telemetry = telemetry[: self.max_telemetry_items]

        dropped = dropped_history + dropped_telemetry
        if dropped:
            counter("history.entries_dropped", dropped)
            logger.warning(
                "Dropped %d malformed stored entries (%d insights, %d telemetry)",
                dropped,
                dropped_history,
                dropped_telemetry,
            )
            self._events.log_event(
                EventType.HISTORY_ENTRY_DROPPED,
                insights=dropped_history,
                telemetry=dropped_telemetry,
            )

        logger.info(
            "Restored %d insights and %d telemetry snapshots",
            len(self._history),
            len(self._telemetry),
        )
        self._events.log_event(
            EventType.HISTORY_RESTORED,
            insights=len(self._history),
            telemetry=len(self._telemetry),
        )

    def _notify(self, history: list[StrategicInsight]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener([insight.clone() for insight in history])
            except Exception:
                logger.exception("History listener failed")


def _validate_entries(entries: list[Any], model: type[BaseModel]) -> tuple[list[Any], int]:
    """Shape-check stored records. Returns (valid models, number dropped)."""
    valid = []
    dropped = 0
    for entry in entries:
        if not isinstance(entry, dict):
            dropped += 1
            continue
        try:
            valid.append(model.model_validate(entry))
        except ValidationError:
            dropped += 1
    return valid, dropped
