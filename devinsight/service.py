"""
Insight session - wires the activity buffer, orchestrator and history store.

Responsibilities:
- Buffer incoming activity (bounded, oldest dropped)
- Trigger an "autosave" analysis on document saves, subject to a cooldown
- Run "manual" analyses on demand, bypassing the cooldown
- Hand each insight to the history store
- Apply configuration changes, rebuilding the inference client only when the
  backend settings actually changed
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Sequence
from typing import Any

from devinsight.activity.types import (
    ActivityEvent,
    ActivityKind,
    AnalysisReason,
    AnalysisRequest,
    now_ms,
)
from devinsight.analysis.orchestrator import AnalysisOrchestrator
from devinsight.config import ACTIVITY_BUFFER_SIZE, ANALYSIS_COOLDOWN_SECONDS, load_objectives
from devinsight.llm.settings import InferenceSettings, build_client
from devinsight.observability.logging import get_logger
from devinsight.observability.telemetry import counter
from devinsight.storage.history import InsightHistoryStore
from devinsight.storage.models import StrategicInsight

logger = get_logger(__name__)

MANUAL_REQUEST_RESOURCE = "devinsight://manual"

# Sentinel for an omitted argument; None restores the default prompt
_UNCHANGED: Any = object()


class InsightSession:
    """
    One observation session over a stream of activity events.

    Example:
        session = InsightSession(store=InsightHistoryStore(storage))
        session.refresh_configuration(settings=InferenceSettings.from_env())
        for event in events:
            session.record(event)
        session.request_manual_analysis()
    """

    def __init__(
        self,
        orchestrator: AnalysisOrchestrator | None = None,
        store: InsightHistoryStore | None = None,
        *,
        objectives: Sequence[str] | None = None,
        cooldown_seconds: float = ANALYSIS_COOLDOWN_SECONDS,
        buffer_size: int = ACTIVITY_BUFFER_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.objectives = list(objectives) if objectives is not None else load_objectives()
        self.orchestrator = orchestrator or AnalysisOrchestrator(self.objectives)
        self.orchestrator.update_objectives(self.objectives)
        self.store = store or InsightHistoryStore()
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._buffer: deque[ActivityEvent] = deque(maxlen=max(1, buffer_size))
        self._last_analysis: float | None = None
        self._settings: InferenceSettings | None = None
        self._system_prompt: str | None = None
        self._lock = threading.Lock()

    @property
    def pending_events(self) -> list[ActivityEvent]:
        with self._lock:
            return list(self._buffer)

    @property
    def settings(self) -> InferenceSettings | None:
        return self._settings

    def enqueue(self, event: ActivityEvent) -> None:
        """Buffer an event without triggering analysis."""
        with self._lock:
            self._buffer.append(event)

    def record(self, event: ActivityEvent) -> StrategicInsight | None:
        """
        Buffer an event; a document save also triggers an autosave analysis.

        Returns:
            The new insight if an analysis ran, else None
        """
        with self._lock:
            self._buffer.append(event)

        if event.kind is ActivityKind.DOCUMENT_SAVE:
            return self.trigger_analysis(AnalysisReason.AUTOSAVE)
        return None

    def request_manual_analysis(self) -> StrategicInsight | None:
        """Append a manual analysis_request event and analyze immediately."""
        timestamp = now_ms()
        with self._lock:
            self._buffer.append(
                ActivityEvent(
                    kind=ActivityKind.ANALYSIS_REQUEST,
                    resource=MANUAL_REQUEST_RESOURCE,
                    details={"reason": AnalysisReason.MANUAL.value, "requested_at": timestamp},
                    timestamp=timestamp,
                )
            )
        return self.trigger_analysis(AnalysisReason.MANUAL)

    def trigger_analysis(self, reason: AnalysisReason) -> StrategicInsight | None:
        """
        Analyze the buffered events.

        Skipped (returns None, buffer kept) when a non-manual request falls in
        the cooldown window or the buffer is empty. After an analysis the
        buffer is cleared and the cooldown restarts.

        Side Effects:
            - Runs the orchestrator (may call the inference backend)
            - Stores the insight in the history store
        """
        now = self._clock()
        with self._lock:
            if (
                reason is not AnalysisReason.MANUAL
                and self._last_analysis is not None
                and now - self._last_analysis < self.cooldown_seconds
            ):
                counter("session.analysis_skipped.cooldown")
                logger.info("Skipped analysis (%s); cooldown in effect.", reason.value)
                return None

            if not self._buffer:
                counter("session.analysis_skipped.empty")
                logger.info("No activity captured; analysis skipped (%s).", reason.value)
                return None

            events = list(self._buffer)
            self._buffer.clear()
            self._last_analysis = now

        request = AnalysisRequest(events=events, objectives=self.objectives, reason=reason)
        insight = self.orchestrator.run(request)
        self.store.set_latest(insight)

        counter(f"session.analysis.{reason.value}")
        logger.info(
            "Insight %s (source=%s, confidence=%.2f): %s",
            insight.id,
            insight.source,
            insight.confidence,
            insight.summary,
        )
        if "error_message" in insight.metadata:
            logger.info("Fallback reason: %s", insight.metadata["error_message"])
        return insight

    def refresh_configuration(
        self,
        *,
        objectives: Sequence[str] | None = None,
        system_prompt: str | None = _UNCHANGED,
        settings: InferenceSettings | None = None,
    ) -> bool:
        """
        Apply configuration.

        Only the arguments given are applied; system_prompt=None restores the
        default prompt. The inference client is rebuilt (resetting the health
        latch) only when `settings` differs from the last applied snapshot.

        Returns:
            True if the inference client was rebuilt
        """
        if objectives is not None:
            self.objectives = list(objectives)
            self.orchestrator.update_objectives(self.objectives)

        if system_prompt is not _UNCHANGED:
            self._system_prompt = system_prompt
            self.orchestrator.update_system_prompt(system_prompt)

        if settings is None or settings == self._settings:
            if settings is not None and self.orchestrator.has_client:
                logger.info("Inference configuration unchanged; keeping existing client.")
            return False

        self._settings = settings
        client = build_client(settings, system_prompt=self._system_prompt)
        self.orchestrator.attach_client(client)
        if client is None:
            logger.info("Inference disabled; insights come from local heuristics.")
        return True
