"""Unit tests for InsightHistoryStore: caps, ordering, telemetry, export, restore."""

from __future__ import annotations

import pytest

from devinsight.config import HISTORY_STORAGE_KEY, TELEMETRY_STORAGE_KEY
from devinsight.storage.history import (
    InsightHistoryStore,
    derive_telemetry,
    rank_extensions,
    sanitize_insight,
)
from devinsight.storage.kv import MemoryKeyValueStorage
from devinsight.storage.models import MAX_CONFIDENCE, MIN_CONFIDENCE, StrategicInsight


def make_insight(n: int, **metadata) -> StrategicInsight:
    meta = {
        "source": "inference",
        "files": ["file:///a/b/example.ts?hash=123", "file:///a/b/other.ts", "file:///docs/README.md"],
        "languages": ["typescript", "markdown"],
        "reason": "autosave",
        "change_count": 5,
        "save_count": 1,
        "raw_response": '{"summary": "raw"}',
    }
    meta.update(metadata)
    return StrategicInsight(
        id=f"insight-{n}",
        summary=f"summary {n}",
        confidence=0.5 + n / 100,
        actions=[f"action {n}"],
        timestamp=1_700_000_000_000 + n,
        metadata=meta,
    )


@pytest.fixture
def store(memory_storage, event_logger):
    return InsightHistoryStore(memory_storage, event_logger=event_logger)


class TestSetLatest:
    def test_history_is_capped_and_most_recent_first(self, memory_storage, event_logger):
        store = InsightHistoryStore(memory_storage, max_history_items=2, event_logger=event_logger)

        for n in (1, 2, 3):
            store.set_latest(make_insight(n))

        assert [i.id for i in store.get_history()] == ["insight-3", "insight-2"]
        stored = memory_storage.get(HISTORY_STORAGE_KEY)
        assert [record["id"] for record in stored] == ["insight-3", "insight-2"]

    def test_telemetry_is_capped(self, memory_storage, event_logger):
        store = InsightHistoryStore(memory_storage, max_telemetry_items=2, event_logger=event_logger)
        for n in range(5):
            store.set_latest(make_insight(n))
        assert len(store.get_telemetry_history()) == 2
        assert len(memory_storage.get(TELEMETRY_STORAGE_KEY)) == 2

    def test_store_owns_a_copy(self, store):
        insight = make_insight(1)
        store.set_latest(insight)
        insight.metadata["files"].append("mutated")
        insight.actions.append("mutated")

        latest = store.get_latest()
        assert "mutated" not in latest.metadata["files"]
        assert latest.actions == ["action 1"]

    def test_reads_return_copies(self, store):
        store.set_latest(make_insight(1))
        store.get_history()[0].actions.append("x")
        assert store.get_latest().actions == ["action 1"]

    def test_get_latest_empty(self, store):
        assert store.get_latest() is None
        assert store.get_history_count() == 0

    def test_subscribers_receive_full_history(self, store):
        received = []
        unsubscribe = store.subscribe(lambda history: received.append([i.id for i in history]))

        store.set_latest(make_insight(1))
        store.set_latest(make_insight(2))
        unsubscribe()
        store.set_latest(make_insight(3))

        assert received == [["insight-1"], ["insight-2", "insight-1"]]

    def test_failing_subscriber_does_not_break_store(self, store):
        def broken(history):
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        store.set_latest(make_insight(1))
        assert store.get_history_count() == 1


class TestTelemetry:
    def test_extension_ordering(self):
        assert rank_extensions(["file:///a.ts", "file:///b.ts", "file:///c.md"]) == ["ts", "md"]
        assert rank_extensions(["b.md", "a.ts"]) == ["md", "ts"]

    def test_extension_without_dot_uses_name(self):
        assert rank_extensions(["file:///repo/Makefile", "file:///x.PY"]) == ["makefile", "py"]

    def test_snapshot_contents(self):
        snapshot = derive_telemetry(make_insight(1))
        assert snapshot.language_count == 2
        assert snapshot.file_extensions == ["ts", "md"]
        assert snapshot.change_count == 5
        assert snapshot.save_count == 1
        assert snapshot.confidence == 0.51
        assert snapshot.reason == "autosave"
        assert snapshot.source == "inference"
        record = snapshot.to_record()
        assert "files" not in record
        assert not any("file://" in str(value) for value in record.values())

    def test_snapshot_tolerates_missing_metadata(self):
        insight = StrategicInsight(id="i", summary="s", confidence=0.5, timestamp=1)
        snapshot = derive_telemetry(insight)
        assert snapshot.language_count == 0
        assert snapshot.file_extensions == []
        assert snapshot.change_count is None

    def test_record_telemetry_leaves_history_alone(self, store):
        store.record_telemetry(make_insight(1))
        assert store.get_history_count() == 0
        assert len(store.get_telemetry_history()) == 1


class TestExport:
    def test_snapshot_is_sanitized(self, store):
        store.set_latest(make_insight(1))
        store.set_latest(make_insight(2))

        snapshot = store.get_export_snapshot()

        assert snapshot["insight_count"] == 2
        assert snapshot["telemetry_count"] == 2
        assert snapshot["generated_at"]
        for record in snapshot["insights"]:
            assert "raw_response" not in record["metadata"]
            assert record["metadata"]["files"] == ["example.ts", "other.ts", "README.md"]

    def test_export_does_not_mutate_history(self, store):
        store.set_latest(make_insight(1))
        store.get_export_snapshot()
        assert "raw_response" in store.get_latest().metadata

    def test_sanitize_decodes_percent_escapes(self):
        insight = make_insight(1, files=["file:///a/my%20notes.md#L10"])
        assert sanitize_insight(insight)["metadata"]["files"] == ["my notes.md"]


class TestClear:
    def test_clear_empties_memory_and_storage(self, store, memory_storage):
        received = []
        store.set_latest(make_insight(1))
        store.subscribe(received.append)

        store.clear_history()

        assert store.get_history_count() == 0
        assert len(store.get_telemetry_history()) == 0
        assert memory_storage.get(HISTORY_STORAGE_KEY) == []
        assert memory_storage.get(TELEMETRY_STORAGE_KEY) == []
        assert received == [[]]


class TestRestore:
    def test_malformed_entries_are_dropped(self, event_logger):
        good = make_insight(1).to_record()
        bad = make_insight(2).to_record()
        del bad["summary"]
        storage = MemoryKeyValueStorage({HISTORY_STORAGE_KEY: [good, bad]})

        store = InsightHistoryStore(storage, event_logger=event_logger)

        assert [i.id for i in store.get_history()] == ["insight-1"]

    @pytest.mark.parametrize(
        "entry",
        [
            "not a dict",
            {"id": "x", "summary": "s", "confidence": "high", "actions": [], "timestamp": 1},
            {"id": "x", "summary": "s", "confidence": 0.5, "actions": "one", "timestamp": 1},
            {"id": "x", "summary": "s", "confidence": 0.5, "actions": [], "timestamp": "now"},
        ],
    )
    def test_shape_check(self, event_logger, entry):
        storage = MemoryKeyValueStorage({HISTORY_STORAGE_KEY: [entry]})
        assert InsightHistoryStore(storage, event_logger=event_logger).get_history_count() == 0

    def test_restored_lists_are_truncated(self, event_logger):
        records = [make_insight(n).to_record() for n in range(5)]
        storage = MemoryKeyValueStorage({HISTORY_STORAGE_KEY: records})

        store = InsightHistoryStore(storage, max_history_items=3, event_logger=event_logger)

        assert [i.id for i in store.get_history()] == ["insight-0", "insight-1", "insight-2"]

    def test_round_trip_preserves_core_fields(self, memory_storage, event_logger):
        original = make_insight(7)
        InsightHistoryStore(memory_storage, event_logger=event_logger).set_latest(original)

        restored = InsightHistoryStore(memory_storage, event_logger=event_logger).get_latest()

        assert restored.id == original.id
        assert restored.summary == original.summary
        assert restored.confidence == original.confidence
        assert restored.actions == original.actions
        assert restored.timestamp == original.timestamp

    def test_restored_entries_are_brought_within_limits(self, event_logger):
        legacy = {
            "id": "a",
            "summary": "s",
            "confidence": 5.0,
            "actions": [str(i) for i in range(1, 7)],
            "timestamp": 1,
        }
        storage = MemoryKeyValueStorage({HISTORY_STORAGE_KEY: [legacy]})

        latest = InsightHistoryStore(storage, event_logger=event_logger).get_latest()

        assert latest.confidence == MAX_CONFIDENCE
        assert latest.actions == ["1", "2", "3", "4"]

    def test_restored_low_confidence_is_raised_to_floor(self, event_logger):
        legacy = {"id": "a", "summary": "s", "confidence": -3, "actions": [], "timestamp": 1}
        storage = MemoryKeyValueStorage({HISTORY_STORAGE_KEY: [legacy]})

        latest = InsightHistoryStore(storage, event_logger=event_logger).get_latest()

        assert latest.confidence == MIN_CONFIDENCE

    def test_non_list_value_ignored(self, event_logger):
        storage = MemoryKeyValueStorage({HISTORY_STORAGE_KEY: {"oops": True}})
        assert InsightHistoryStore(storage, event_logger=event_logger).get_history_count() == 0


class TestStorageFailures:
    def test_store_keeps_working_in_memory(self, failing_storage, event_logger):
        store = InsightHistoryStore(failing_storage, event_logger=event_logger)

        store.set_latest(make_insight(1))
        store.clear_history()
        store.set_latest(make_insight(2))

        assert [i.id for i in store.get_history()] == ["insight-2"]

    def test_without_storage(self, event_logger):
        store = InsightHistoryStore(event_logger=event_logger)
        store.set_latest(make_insight(1))
        assert store.get_history_count() == 1
