"""
Domain models (Pydantic v2) for insights and telemetry.

These are the only records that cross the storage boundary. Validation doubles
as the shape check applied when history is restored from storage: entries
missing required fields or carrying wrong types fail `model_validate` and are
dropped by the store. Confidence is clamped to [0.05, 0.99] and actions are
capped at MAX_ACTIONS on every validation, restored entries included.
"""

from __future__ import annotations

import math
import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, field_validator

MIN_CONFIDENCE = 0.05
MAX_CONFIDENCE = 0.99
MAX_ACTIONS = 4


class InsightSource(str, Enum):
    """Provenance of an insight, stored as metadata["source"]."""

    INFERENCE = "inference"
    INFERENCE_FALLBACK = "inference-fallback"
    LOCAL_FALLBACK = "local-fallback"


def new_insight_id() -> str:
    return f"insight-{uuid.uuid4().hex[:16]}"


def clamp_confidence(value: float) -> float:
    """Clamp to [0.05, 0.99] and round to two decimals."""
    return round(min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, value)), 2)


def _require_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    if not math.isfinite(value):
        raise ValueError("must be finite")
    return float(value)


class StrategicInsight(BaseModel):
    """Summary, confidence, recommended actions and provenance metadata."""

    model_config = ConfigDict(extra="ignore")

    id: StrictStr
    summary: StrictStr
    confidence: float
    actions: list[StrictStr] = Field(default_factory=list)
    timestamp: StrictInt
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, value: Any) -> float:
        return clamp_confidence(_require_number(value))

    @field_validator("actions")
    @classmethod
    def _cap_actions(cls, value: list[str]) -> list[str]:
        return value[:MAX_ACTIONS]

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_default(cls, value: Any) -> Any:
        return {} if value is None else value

    @property
    def source(self) -> str | None:
        source = self.metadata.get("source")
        return source if isinstance(source, str) else None

    def clone(self) -> StrategicInsight:
        """Deep copy; no mutable state is shared with the original."""
        return self.model_copy(deep=True)

    def to_record(self) -> dict[str, Any]:
        """JSON-safe dict for persistence."""
        return self.model_dump(mode="json")


class TelemetrySnapshot(BaseModel):
    """Privacy-reduced per-insight record. Never holds paths or raw text."""

    model_config = ConfigDict(extra="ignore")

    timestamp: StrictInt
    language_count: StrictInt
    file_extensions: list[StrictStr] = Field(default_factory=list)
    change_count: StrictInt | None = None
    save_count: StrictInt | None = None
    confidence: float
    reason: StrictStr | None = None
    source: StrictStr | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _numeric_confidence(cls, value: Any) -> float:
        return clamp_confidence(_require_number(value))

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
