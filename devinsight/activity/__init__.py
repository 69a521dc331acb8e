"""Activity events and digest building"""

from __future__ import annotations

from devinsight.activity.digest import ActivityDigest, build_digest, describe_event
from devinsight.activity.types import (
    ActivityEvent,
    ActivityKind,
    AnalysisReason,
    AnalysisRequest,
    now_ms,
)

__all__ = [
    "ActivityDigest",
    "ActivityEvent",
    "ActivityKind",
    "AnalysisReason",
    "AnalysisRequest",
    "build_digest",
    "describe_event",
    "now_ms",
]
