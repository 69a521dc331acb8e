"""
Inference Analyzer - model-backed insight generation.

Builds a structured prompt from the digest and objectives, calls the
configured InferenceClient, and validates the returned JSON payload.
Any failure (client error, empty/malformed/schema-invalid payload) is raised
as InferenceError; the orchestrator decides what happens next.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, StrictStr, ValidationError

from devinsight.activity.digest import ActivityDigest
from devinsight.activity.types import AnalysisRequest, now_ms
from devinsight.analysis.heuristic import DEFAULT_OBJECTIVE, derive_actions
from devinsight.config import INFERENCE_TIMEOUT_MS
from devinsight.llm.client import ChatOptions, InferenceClient, InferenceError
from devinsight.observability.logging import get_logger
from devinsight.observability.structured import EventType, StructuredLogger
from devinsight.observability.structured import get_logger as get_event_logger
from devinsight.observability.telemetry import counter, time_block
from devinsight.storage.models import (
    MAX_ACTIONS,
    InsightSource,
    StrategicInsight,
    clamp_confidence,
    new_insight_id,
)
from devinsight.utils.redaction import sanitize_for_prompt, strip_injection

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = """You are an architectural oversight assistant.
Provide concise strategic insights that help software teams evaluate recent code activity.
Prioritize architectural alignment, design clarity, and risk mitigation."""

DEFAULT_CONFIDENCE = 0.7

RESPONSE_INSTRUCTIONS = (
    'Respond with a single JSON object matching: {"summary": string, '
    '"confidence": number between 0 and 1, "actions": string[] (maximum 4 concise '
    'strategic recommendations), "reasoning": string (optional)}.'
)


class PayloadSchema(BaseModel):
    """Minimum shape of a model response; other fields are normalized leniently."""

    model_config = ConfigDict(extra="ignore")

    summary: StrictStr
    confidence: Any = None
    actions: Any = None
    reasoning: Any = None


@dataclass(frozen=True)
class ParsedPayload:
    summary: str
    confidence: float
    actions: list[str] = field(default_factory=list)
    reasoning: str | None = None


@dataclass(frozen=True)
class PayloadError:
    """Why a response could not be used.

    kind:
        empty     - blank response
        malformed - no balanced {...} span, or it is not valid JSON
        schema    - JSON is not an object, or summary is missing/blank/non-string
    """

    kind: Literal["empty", "malformed", "schema"]
    message: str


def extract_json_object(text: str) -> str | None:
    """
    Return the first balanced {...} span in text, or None.

    Braces inside JSON string literals are ignored, so preambles and
    postambles around the payload are tolerated.
    """
    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def normalize_confidence(value: Any) -> float:
    """Finite numbers (or numeric strings) are clamped to [0.05, 0.99]; anything else is 0.7."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_CONFIDENCE
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return DEFAULT_CONFIDENCE
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return DEFAULT_CONFIDENCE
    return clamp_confidence(float(value))


def normalize_actions(value: Any) -> list[str]:
    """Keep str/int/float entries, stripped and non-blank, capped at MAX_ACTIONS."""
    if not isinstance(value, list):
        return []
    actions = []
    for item in value:
        if isinstance(item, bool) or not isinstance(item, (str, int, float)):
            continue
        text = str(item).strip()
        if text:
            actions.append(text)
    return actions[:MAX_ACTIONS]


def parse_payload(raw: str | None) -> ParsedPayload | PayloadError:
    """Validate a raw model response. Never raises."""
    text = (raw or "").strip()
    if not text:
        return PayloadError("empty", "Inference response was empty.")

    span = extract_json_object(text)
    if span is None:
        return PayloadError("malformed", "Inference response is missing the expected JSON payload.")

    try:
        data = json.loads(span)
    except json.JSONDecodeError as e:
        return PayloadError("malformed", f"Inference response contained invalid JSON: {e}")

    if not isinstance(data, dict):
        return PayloadError("schema", "Inference response JSON must be an object.")

    try:
        payload = PayloadSchema.model_validate(data)
    except ValidationError:
        return PayloadError("schema", 'Inference response must include a textual "summary" field.')

    summary = payload.summary.strip()
    if not summary:
        return PayloadError("schema", 'Inference response "summary" must not be blank.')

    reasoning = payload.reasoning.strip() if isinstance(payload.reasoning, str) else None

    return ParsedPayload(
        summary=summary,
        confidence=normalize_confidence(payload.confidence),
        actions=normalize_actions(payload.actions),
        reasoning=reasoning or None,
    )


class InferenceAnalyzer:
    """
    Prompt builder + response validator around an InferenceClient.

    No retries here: a single failure is reported to the caller, which owns
    the fallback and health policy.
    """

    def __init__(
        self,
        client: InferenceClient,
        system_prompt: str | None = None,
        timeout_ms: int = INFERENCE_TIMEOUT_MS,
        event_logger: StructuredLogger | None = None,
    ) -> None:
        self.client = client
        self.timeout_ms = timeout_ms
        self._events = event_logger or get_event_logger()
        self.system_prompt = DEFAULT_SYSTEM_PROMPT
        self.update_system_prompt(system_prompt)

    def update_system_prompt(self, prompt: str | None) -> None:
        """Blank or None restores the default preamble."""
        cleaned = strip_injection(prompt or "").strip()
        self.system_prompt = cleaned or DEFAULT_SYSTEM_PROMPT

    def build_prompt(self, request: AnalysisRequest, digest: ActivityDigest) -> str:
        objectives = [sanitize_for_prompt(o) for o in request.objectives]
        objectives = [o for o in objectives if o]
        objective_lines = (
            [f"{index}. {objective}" for index, objective in enumerate(objectives, start=1)]
            if objectives
            else ["No explicit objectives provided."]
        )

        activity_lines = (
            [strip_injection(line) for line in digest.recent_event_lines]
            if digest.recent_event_lines
            else ["No recent activity recorded."]
        )

        metrics = [
            f"Files touched: {digest.file_count}",
            f"Languages observed: {digest.language_count}",
            f"Document changes: {digest.change_count}",
            f"Document saves: {digest.save_count}",
            f"Total events: {digest.event_count}",
            f"Analysis reason: {request.reason.value}",
        ]

        return "\n".join(
            [
                "<|system|>",
                self.system_prompt,
                "<|user|>",
                "Project objectives:",
                "\n".join(objective_lines),
                "\nRecent activity (most recent first):",
                "\n".join(activity_lines),
                "\nMetrics:",
                "\n".join(metrics),
                "\nGuidelines:",
                RESPONSE_INSTRUCTIONS,
                "<|assistant|>",
            ]
        )

    def analyze(self, request: AnalysisRequest, digest: ActivityDigest) -> StrategicInsight:
        """
        Run one inference cycle.

        Side Effects:
            - Calls the inference client (subprocess or network)
            - Increments inference.* telemetry counters

        Raises:
            InferenceError: client failure, timeout, or unusable payload
        """
        prompt = self.build_prompt(request, digest)
        options = ChatOptions(system_prompt=self.system_prompt, timeout_ms=self.timeout_ms)

        try:
            with time_block("inference.chat"):
                response = self.client.chat(prompt, options)
        except InferenceError:
            counter("inference.client_error")
            raise
        except Exception as e:
            counter("inference.client_error")
            raise InferenceError(f"Inference client failed: {e}") from e

        parsed = parse_payload(response)
        if isinstance(parsed, PayloadError):
            counter(f"inference.payload_{parsed.kind}")
            self._events.log_event(
                EventType.INFERENCE_PAYLOAD_INVALID,
                kind=parsed.kind,
                length=len(response or ""),
            )
            raise InferenceError(parsed.message)

        actions = parsed.actions
        if not actions:
            objective = request.objectives[0] if request.objectives else DEFAULT_OBJECTIVE
            actions = derive_actions(digest, objective)[:MAX_ACTIONS]

        metadata: dict[str, Any] = {
            "source": InsightSource.INFERENCE.value,
            "files": digest.sorted_files(),
            "languages": digest.sorted_languages(),
            "event_count": digest.event_count,
            "reason": request.reason.value,
            "change_count": digest.change_count,
            "save_count": digest.save_count,
            "raw_response": response,
        }
        if parsed.reasoning:
            metadata["reasoning"] = parsed.reasoning

        counter("inference.success")
        return StrategicInsight(
            id=new_insight_id(),
            summary=parsed.summary,
            confidence=parsed.confidence,
            actions=actions,
            timestamp=now_ms(),
            metadata=metadata,
        )
