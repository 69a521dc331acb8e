"""devinsight - strategic insights from development activity"""

from __future__ import annotations

from devinsight.config import APP_VERSION

__version__ = APP_VERSION


# Lazy imports so `import devinsight` stays cheap (no pydantic/yaml load)
def __getattr__(name: str):
    if name == "AnalysisOrchestrator":
        from devinsight.analysis.orchestrator import AnalysisOrchestrator

        return AnalysisOrchestrator
    if name == "InsightHistoryStore":
        from devinsight.storage.history import InsightHistoryStore

        return InsightHistoryStore
    if name == "InsightSession":
        from devinsight.service import InsightSession

        return InsightSession
    if name == "StrategicInsight":
        from devinsight.storage.models import StrategicInsight

        return StrategicInsight
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AnalysisOrchestrator",
    "InsightHistoryStore",
    "InsightSession",
    "StrategicInsight",
    "__version__",
]
