"""
Analysis Orchestrator - routes each request to inference or the heuristic.

Health latch:
    A single inference failure marks the orchestrator unhealthy. While
    unhealthy every request goes to the heuristic (tagged
    "inference-fallback") even if the backend has recovered. Only
    attach_client() resets the latch.

run() never raises: inference errors, and anything unexpected from the
heuristic path, end up as a fallback insight.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from devinsight.activity.digest import ActivityDigest, build_digest
from devinsight.activity.types import AnalysisRequest, now_ms
from devinsight.analysis.heuristic import HeuristicAnalyzer
from devinsight.analysis.inference import InferenceAnalyzer
from devinsight.config import FALLBACK_CONFIDENCE_BASE, INFERENCE_TIMEOUT_MS, MAX_EVENTS_IN_PROMPT
from devinsight.llm.client import InferenceClient, InferenceError
from devinsight.observability.logging import get_logger
from devinsight.observability.structured import EventType, StructuredLogger
from devinsight.observability.structured import get_logger as get_event_logger
from devinsight.observability.telemetry import counter
from devinsight.storage.models import (
    MAX_ACTIONS,
    InsightSource,
    StrategicInsight,
    clamp_confidence,
    new_insight_id,
)

logger = get_logger(__name__)


class AnalysisOrchestrator:
    """
    Owns the health flag, the current client and both analyzers.

    Health transitions and analyzer swaps happen under a lock; the inference
    call itself runs outside it.

    Example:
        orchestrator = AnalysisOrchestrator(objectives=["Keep the API stable"])
        orchestrator.attach_client(LmStudioCliClient("lms", "qwen2.5-7b"))
        insight = orchestrator.run(request)
    """

    def __init__(
        self,
        objectives: Sequence[str] = (),
        *,
        client: InferenceClient | None = None,
        system_prompt: str | None = None,
        max_events_in_prompt: int = MAX_EVENTS_IN_PROMPT,
        fallback_confidence_base: float = FALLBACK_CONFIDENCE_BASE,
        timeout_ms: int = INFERENCE_TIMEOUT_MS,
        event_logger: StructuredLogger | None = None,
    ) -> None:
        self.max_events_in_prompt = max_events_in_prompt
        self.fallback_confidence_base = fallback_confidence_base
        self.timeout_ms = timeout_ms
        self._system_prompt = (system_prompt or "").strip() or None
        self._heuristic = HeuristicAnalyzer(objectives, fallback_confidence_base)
        self._inference: InferenceAnalyzer | None = None
        self._client: InferenceClient | None = None
        self._healthy = False
        self._lock = threading.Lock()
        self._events = event_logger or get_event_logger()

        if client is not None:
            self.attach_client(client)

    @property
    def healthy(self) -> bool:
        return self._healthy

    @property
    def has_client(self) -> bool:
        return self._client is not None

    @property
    def objectives(self) -> list[str]:
        return list(self._heuristic.objectives)

    def attach_client(self, client: InferenceClient | None) -> None:
        """
        Replace the inference client.

        A non-None client always resets the health latch; None removes the
        inference path entirely (subsequent runs are "local-fallback").
        """
        with self._lock:
            self._client = client
            if client is None:
                self._inference = None
                self._healthy = False
                logger.info("Inference client detached; using local heuristics")
                return

            self._inference = InferenceAnalyzer(
                client,
                system_prompt=self._system_prompt,
                timeout_ms=self.timeout_ms,
                event_logger=self._events,
            )
            self._healthy = True

        logger.info("Inference client attached: %s", type(client).__name__)
        self._events.log_event(EventType.HEALTH_LATCH_RESET, client=type(client).__name__)

    def update_objectives(self, objectives: Sequence[str]) -> None:
        with self._lock:
            self._heuristic.update_objectives(objectives)

    def update_system_prompt(self, prompt: str | None) -> None:
        with self._lock:
            self._system_prompt = (prompt or "").strip() or None
            if self._inference is not None:
                self._inference.update_system_prompt(self._system_prompt)

    def run(self, request: AnalysisRequest) -> StrategicInsight:
        """
        Produce one insight for the request.

        Side Effects:
            - May call the inference client
            - May trip the health latch on inference failure
            - Logs fallback and latch events

        Returns:
            StrategicInsight with metadata["source"] set; never raises
        """
        try:
            digest = build_digest(request, self.max_events_in_prompt)
        except Exception as e:
            logger.exception("Failed to build activity digest")
            return self._minimal_insight(request, InsightSource.LOCAL_FALLBACK, e)

        with self._lock:
            analyzer = self._inference
            healthy = self._healthy

        if analyzer is not None and healthy:
            self._events.log_event(EventType.INFERENCE_CALL_START, reason=request.reason.value)
            try:
                insight = analyzer.analyze(request, digest)
            except InferenceError as e:
                return self._trip_and_fallback(analyzer, request, digest, e)
            except Exception as e:
                logger.exception("Unexpected error during inference analysis")
                return self._trip_and_fallback(analyzer, request, digest, e)

            counter("orchestrator.inference_ok")
            self._events.log_event(
                EventType.INFERENCE_CALL_OK,
                reason=request.reason.value,
                confidence=insight.confidence,
                actions=len(insight.actions),
            )
            return insight

        if analyzer is not None:
            counter("orchestrator.fallback.unhealthy")
            return self._fallback(request, digest, InsightSource.INFERENCE_FALLBACK)

        counter("orchestrator.fallback.local")
        return self._fallback(request, digest, InsightSource.LOCAL_FALLBACK)

    def _trip_and_fallback(
        self,
        analyzer: InferenceAnalyzer,
        request: AnalysisRequest,
        digest: ActivityDigest,
        error: BaseException,
    ) -> StrategicInsight:
        with self._lock:
            # A client attached while the call was in flight keeps its fresh latch
            if self._inference is analyzer:
                self._healthy = False

        counter("orchestrator.inference_error")
        logger.warning("Inference analysis failed (%s): %s", request.reason.value, error)
        self._events.inference_failed(str(error), request.reason.value)
        self._events.log_event(EventType.HEALTH_LATCH_TRIPPED, reason=request.reason.value)
        return self._fallback(request, digest, InsightSource.INFERENCE_FALLBACK, error)

    def _fallback(
        self,
        request: AnalysisRequest,
        digest: ActivityDigest,
        source: InsightSource,
        error: BaseException | None = None,
    ) -> StrategicInsight:
        self._events.log_event(EventType.FALLBACK_INVOKED, source=source.value)
        try:
            insight = self._heuristic.analyze(request, digest, source, error)
        except Exception as e:
            logger.exception("Heuristic analysis failed")
            return self._minimal_insight(request, source, error or e)

        return insight.model_copy(
            update={
                "confidence": clamp_confidence(insight.confidence),
                "actions": insight.actions[:MAX_ACTIONS],
            }
        )

    def _minimal_insight(
        self, request: AnalysisRequest, source: InsightSource, error: BaseException
    ) -> StrategicInsight:
        counter("orchestrator.minimal_insight")
        return StrategicInsight(
            id=new_insight_id(),
            summary="Recent activity could not be analyzed; review the latest changes manually.",
            confidence=clamp_confidence(self.fallback_confidence_base),
            actions=[],
            timestamp=now_ms(),
            metadata={
                "source": source.value,
                "reason": request.reason.value,
                "error_message": str(error) or type(error).__name__,
            },
        )
