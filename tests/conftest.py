"""
Pytest configuration for devinsight tests

Provides fixtures shared across unit and integration tests:
- StubInferenceClient: scripted responses/failures, records calls
- memory_storage: in-process key-value storage
- make_event / make_request: activity factories
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any

import pytest

from devinsight.activity.types import ActivityEvent, ActivityKind, AnalysisReason, AnalysisRequest
from devinsight.llm.client import ChatOptions, InferenceError
from devinsight.observability.structured import StructuredLogger
from devinsight.observability import telemetry
from devinsight.storage.kv import MemoryKeyValueStorage

VALID_RESPONSE = json.dumps(
    {
        "summary": "Refactor is converging on the service layer.",
        "confidence": 0.82,
        "actions": ["Document the new service boundary."],
        "reasoning": "Most edits touch service modules.",
    }
)


class StubInferenceClient:
    """
    Scripted InferenceClient.

    Each call consumes the next scripted item: a string is returned, an
    exception instance is raised. When the script runs out the last item
    repeats.
    """

    def __init__(self, *script: str | BaseException):
        self.script = list(script) or [VALID_RESPONSE]
        self.calls: list[tuple[str, ChatOptions | None]] = []

    def chat(self, prompt: str, options: ChatOptions | None = None) -> str:
        self.calls.append((prompt, options))
        index = min(len(self.calls) - 1, len(self.script) - 1)
        item = self.script[index]
        if isinstance(item, BaseException):
            raise item
        return item


class FailingStorage:
    """KeyValueStorage whose every read and write fails."""

    def get(self, key: str) -> Any | None:
        from devinsight.storage.kv import StorageError

        raise StorageError(f"read failed for {key}")

    def set(self, key: str, value: Any) -> None:
        from devinsight.storage.kv import StorageError

        raise StorageError(f"write failed for {key}")


@pytest.fixture(autouse=True)
def _reset_telemetry():
    telemetry.reset()
    yield


@pytest.fixture
def event_logger():
    """Structured logger that emits every event (no sampling)."""
    return StructuredLogger(session_id="test", sample_rate_info=1.0, sample_rate_error=1.0)


@pytest.fixture
def memory_storage():
    return MemoryKeyValueStorage()


@pytest.fixture
def failing_storage():
    return FailingStorage()


@pytest.fixture
def stub_client():
    return StubInferenceClient()


@pytest.fixture
def failing_then_ok_client():
    return StubInferenceClient(InferenceError("backend unavailable"), VALID_RESPONSE)


@pytest.fixture
def make_event() -> Callable[..., ActivityEvent]:
    counter = {"ts": 1_700_000_000_000}

    def _make(
        kind: ActivityKind = ActivityKind.DOCUMENT_CHANGE,
        resource: str = "file:///repo/src/app.py",
        language: str | None = "python",
        details: dict[str, Any] | None = None,
        timestamp: int | None = None,
    ) -> ActivityEvent:
        counter["ts"] += 1000
        return ActivityEvent(
            kind=kind,
            resource=resource,
            language=language,
            details=details,
            timestamp=timestamp if timestamp is not None else counter["ts"],
        )

    return _make


@pytest.fixture
def make_request(make_event) -> Callable[..., AnalysisRequest]:
    def _make(
        events: list[ActivityEvent] | None = None,
        objectives: list[str] | None = None,
        reason: AnalysisReason = AnalysisReason.MANUAL,
    ) -> AnalysisRequest:
        if events is None:
            events = [
                make_event(ActivityKind.DOCUMENT_OPEN),
                make_event(ActivityKind.DOCUMENT_CHANGE),
                make_event(ActivityKind.DOCUMENT_CHANGE, resource="file:///repo/README.md", language="markdown"),
                make_event(ActivityKind.DOCUMENT_SAVE),
            ]
        return AnalysisRequest(
            events=events,
            objectives=objectives if objectives is not None else ["Keep the API stable"],
            reason=reason,
        )

    return _make


@pytest.fixture
def scripted_client() -> type[StubInferenceClient]:
    """The StubInferenceClient class, for tests that script their own responses."""
    return StubInferenceClient
