"""
Module: types
Purpose: Activity event and analysis request types.
Dependencies: none (leaf module)

Events are produced by an external event source (editor hooks, file
watchers, the CLI's JSONL reader) and only consumed here.
"""

from __future__ import annotations

import math
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ActivityKind(str, Enum):
    """Kind of development activity.

    Extends str so JSON serialization produces raw strings (e.g. "document_save").
    """

    DOCUMENT_OPEN = "document_open"
    DOCUMENT_CHANGE = "document_change"
    DOCUMENT_SAVE = "document_save"
    SELECTION_CHANGE = "selection_change"
    EXTERNAL_COMMAND = "external_command"
    ANALYSIS_REQUEST = "analysis_request"


class AnalysisReason(str, Enum):
    """What triggered an analysis cycle."""

    MANUAL = "manual"
    AUTOSAVE = "autosave"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | AnalysisReason | None) -> AnalysisReason:
        if isinstance(value, AnalysisReason):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.OTHER


def now_ms() -> int:
    """Current UTC timestamp in milliseconds."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class ActivityEvent:
    """A single captured activity. Immutable once emitted."""

    kind: ActivityKind
    resource: str
    language: str | None = None
    details: Mapping[str, Any] | None = None
    timestamp: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> ActivityEvent:
        """Build an event from a JSON record.

        Accepts snake_case or camelCase kinds ("documentSave"), "uri" as an
        alias of "resource" and "languageId" as an alias of "language".
        Timestamps may be ms integers or ISO-8601 strings.

        Raises:
            ValueError: unknown kind or missing resource
        """
        kind = _parse_kind(payload.get("kind"))
        resource = payload.get("resource") or payload.get("uri")
        if not isinstance(resource, str) or not resource:
            raise ValueError("activity event requires a non-empty 'resource'")

        language = payload.get("language") or payload.get("languageId")
        details = payload.get("details")

        return cls(
            kind=kind,
            resource=resource,
            language=language if isinstance(language, str) and language else None,
            details=dict(details) if isinstance(details, Mapping) else None,
            timestamp=_parse_timestamp(payload.get("timestamp")),
        )


def _parse_kind(raw: Any) -> ActivityKind:
    if isinstance(raw, ActivityKind):
        return raw
    if not isinstance(raw, str):
        raise ValueError(f"unknown activity kind: {raw!r}")
    # documentSave -> document_save
    snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in raw).lstrip("_")
    if snake == "copilot_command":
        return ActivityKind.EXTERNAL_COMMAND
    try:
        return ActivityKind(snake)
    except ValueError as e:
        raise ValueError(f"unknown activity kind: {raw!r}") from e


def _parse_timestamp(raw: Any) -> int:
    if isinstance(raw, bool):
        return now_ms()
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if math.isfinite(raw) else now_ms()
    if isinstance(raw, str) and raw:
        try:
            return int(datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            return now_ms()
    return now_ms()


@dataclass(frozen=True)
class AnalysisRequest:
    """Input to one analysis cycle."""

    events: Sequence[ActivityEvent]
    objectives: Sequence[str] = ()
    reason: AnalysisReason = AnalysisReason.OTHER

    def __post_init__(self) -> None:
        object.__setattr__(self, "events", tuple(self.events))
        object.__setattr__(self, "objectives", tuple(self.objectives))
        object.__setattr__(self, "reason", AnalysisReason.parse(self.reason))
