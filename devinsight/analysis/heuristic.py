"""
Heuristic Analyzer - deterministic, offline insight generator.

Used whenever the inference path is unavailable: no client configured, the
client tripped the health latch, or the call just failed. Pure function of
(request, digest, objectives); no I/O, never raises.
"""

from __future__ import annotations

import hashlib
from collections.abc import Sequence

from devinsight.activity.digest import ActivityDigest
from devinsight.activity.types import AnalysisReason, AnalysisRequest, now_ms
from devinsight.analysis.thresholds import (
    BRISK_CHANGE_THRESHOLD,
    CHECKPOINT_MIN_CHANGES,
    CHECKPOINT_MIN_SAVES,
    CONFIDENCE_CAP,
    CONFIDENCE_MAX_BOOST,
    CONFIDENCE_PER_EVENT,
    OBJECTIVE_MAX_CHARS,
    RAPID_CHANGE_THRESHOLD,
    REGULAR_SAVE_THRESHOLD,
    REPRESENTATIVE_FILES,
)
from devinsight.config import FALLBACK_CONFIDENCE_BASE
from devinsight.storage.models import InsightSource, StrategicInsight, new_insight_id
from devinsight.utils.redaction import resource_basename

DEFAULT_OBJECTIVE = "Maintain overarching project goals"

_REASON_CLAUSES = {
    AnalysisReason.MANUAL: "Manual review requested.",
    AnalysisReason.AUTOSAVE: "Checkpoint review triggered by a recent save.",
    AnalysisReason.OTHER: "Periodic review of recent activity.",
}


def digest_hash(digest: ActivityDigest) -> int:
    """Stable integer derived from the digest contents (same input, same value)."""
    material = "|".join(
        [
            ",".join(digest.sorted_files()),
            ",".join(digest.sorted_languages()),
            str(digest.change_count),
            str(digest.save_count),
            str(digest.event_count),
        ]
    )
    return int(hashlib.sha256(material.encode("utf-8")).hexdigest()[:8], 16)


def truncate_objective(objective: str) -> str:
    if len(objective) <= OBJECTIVE_MAX_CHARS:
        return objective
    return objective[:OBJECTIVE_MAX_CHARS].rstrip() + "…"


def representative_files(digest: ActivityDigest) -> list[str]:
    """First few touched files (sorted), reduced to their final path segment."""
    return [resource_basename(f) for f in digest.sorted_files()[:REPRESENTATIVE_FILES]]


def derive_actions(digest: ActivityDigest, objective: str) -> list[str]:
    """
    Rule-based recommendations shared by the heuristic and inference paths.

    Returns 1-3 actions; the generic objective check is emitted only when no
    other rule fires.
    """
    actions = []

    if 0 < digest.file_count <= REPRESENTATIVE_FILES:
        names = ", ".join(representative_files(digest))
        actions.append(f"Review the latest edits to {names} against the intended design.")

    if digest.language_count > 1:
        languages = ", ".join(digest.sorted_languages())
        actions.append(f"Confirm the interfaces shared across {languages} are still in sync.")

    if digest.change_count > CHECKPOINT_MIN_CHANGES and digest.save_count < CHECKPOINT_MIN_SAVES:
        actions.append("Save and checkpoint work in progress to create recovery points.")

    if not actions:
        actions.append(
            f"Evaluate whether current changes reinforce the objective: "
            f"{truncate_objective(objective)}."
        )

    return actions


class HeuristicAnalyzer:
    """
    Offline analyzer producing insights from digest statistics alone.

    Example:
        analyzer = HeuristicAnalyzer(objectives=["Keep the API stable"])
        insight = analyzer.analyze(request, digest, InsightSource.LOCAL_FALLBACK)
    """

    def __init__(
        self,
        objectives: Sequence[str] = (),
        fallback_confidence_base: float = FALLBACK_CONFIDENCE_BASE,
    ) -> None:
        self.objectives = list(objectives)
        self.fallback_confidence_base = fallback_confidence_base

    def update_objectives(self, objectives: Sequence[str]) -> None:
        self.objectives = list(objectives)

    def analyze(
        self,
        request: AnalysisRequest,
        digest: ActivityDigest,
        source: InsightSource,
        error: BaseException | None = None,
    ) -> StrategicInsight:
        """
        Build an insight from the digest.

        Args:
            request: Request being analyzed (reason is used)
            digest: Precomputed digest for the request
            source: Provenance tag stored as metadata["source"]
            error: Upstream failure that caused this fallback, if any

        Returns:
            StrategicInsight; metadata carries error_message only when error is set
        """
        objective = self.pick_objective(digest)

        metadata = {
            "source": source.value,
            "files": digest.sorted_files(),
            "languages": digest.sorted_languages(),
            "event_count": digest.event_count,
            "reason": request.reason.value,
            "change_count": digest.change_count,
            "save_count": digest.save_count,
            "objective": objective,
        }
        if error is not None:
            metadata["error_message"] = str(error) or type(error).__name__

        return StrategicInsight(
            id=new_insight_id(),
            summary=self.build_summary(request.reason, digest, objective),
            confidence=self.estimate_confidence(digest),
            actions=derive_actions(digest, objective),
            timestamp=now_ms(),
            metadata=metadata,
        )

    def pick_objective(self, digest: ActivityDigest) -> str:
        if not self.objectives:
            return DEFAULT_OBJECTIVE
        index = (digest.file_count + digest.language_count + digest_hash(digest)) % len(
            self.objectives
        )
        return self.objectives[index]

    def build_summary(
        self, reason: AnalysisReason, digest: ActivityDigest, objective: str
    ) -> str:
        clauses = [
            _REASON_CLAUSES.get(reason, _REASON_CLAUSES[AnalysisReason.OTHER]),
            self._file_clause(digest),
            self._language_clause(digest),
            self._cadence_clause(digest),
            f'Keep the work anchored to "{truncate_objective(objective)}".',
        ]
        return " ".join(clauses)

    def estimate_confidence(self, digest: ActivityDigest) -> float:
        activity = digest.change_count + digest.save_count
        boost = min(CONFIDENCE_MAX_BOOST, activity * CONFIDENCE_PER_EVENT)
        return round(min(CONFIDENCE_CAP, self.fallback_confidence_base + boost), 2)

    @staticmethod
    def _file_clause(digest: ActivityDigest) -> str:
        names = representative_files(digest)
        if digest.file_count == 0:
            return "No files were touched in this window."
        if digest.file_count == 1:
            return f"Work is concentrated on {names[0]}."
        if digest.file_count == 2:
            return f"Work is split between {names[0]} and {names[1]}."
        return f"Activity is spread across {digest.file_count} files, including {', '.join(names)}."

    @staticmethod
    def _language_clause(digest: ActivityDigest) -> str:
        if digest.language_count == 0:
            return "No language information was recorded."
        if digest.language_count == 1:
            return f"All edits are in {digest.sorted_languages()[0]}."
        return f"{digest.language_count} languages are in play ({', '.join(digest.sorted_languages())})."

    @staticmethod
    def _cadence_clause(digest: ActivityDigest) -> str:
        if digest.change_count > RAPID_CHANGE_THRESHOLD:
            tempo = "very rapid"
        elif digest.change_count > BRISK_CHANGE_THRESHOLD:
            tempo = "brisk"
        else:
            tempo = "measured"

        if digest.save_count == 0:
            rhythm = "no checkpoints"
        elif digest.save_count > REGULAR_SAVE_THRESHOLD:
            rhythm = "regular checkpoints"
        else:
            rhythm = "few checkpoints"

        return (
            f"Edit tempo is {tempo} ({digest.change_count} changes) "
            f"with {rhythm} ({digest.save_count} saves)."
        )
