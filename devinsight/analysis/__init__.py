"""Analysis - heuristic and inference analyzers, orchestration"""

from __future__ import annotations

from devinsight.analysis.heuristic import HeuristicAnalyzer, derive_actions
from devinsight.analysis.inference import (
    InferenceAnalyzer,
    ParsedPayload,
    PayloadError,
    parse_payload,
)
from devinsight.analysis.orchestrator import AnalysisOrchestrator

__all__ = [
    "AnalysisOrchestrator",
    "HeuristicAnalyzer",
    "InferenceAnalyzer",
    "ParsedPayload",
    "PayloadError",
    "derive_actions",
    "parse_payload",
]
