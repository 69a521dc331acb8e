"""
Heuristic analyzer thresholds.

Loaded from config/devinsight_policy.yaml. The YAML file is the source of
truth; the constants below carry the same values as fallbacks so the package
works when the file is not shipped alongside it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from devinsight.observability.logging import get_logger

logger = get_logger(__name__)


def _load_policy_config() -> dict[str, Any]:
    """
    Load configuration from devinsight_policy.yaml.

    Side Effects:
        - Reads config/devinsight_policy.yaml from the filesystem

    Returns:
        Parsed mapping, or {} when the file is missing or empty
    """
    possible_paths = [
        Path(__file__).parent.parent.parent / "config" / "devinsight_policy.yaml",
        Path("config/devinsight_policy.yaml"),
    ]

    for config_path in possible_paths:
        if config_path.exists():
            with open(config_path) as f:
                config = yaml.safe_load(f) or {}
                logger.debug("Loaded heuristic policy from %s", config_path)
                return config

    logger.debug("devinsight_policy.yaml not found, using hardcoded defaults")
    return {}


_POLICY_CONFIG = _load_policy_config()
_CADENCE = _POLICY_CONFIG.get("cadence", {})
_CHECKPOINT = _POLICY_CONFIG.get("checkpoint", {})
_CONFIDENCE = _POLICY_CONFIG.get("confidence", {})
_SUMMARY = _POLICY_CONFIG.get("summary", {})

# Edit cadence: changes > RAPID -> "very rapid", > BRISK -> "brisk", else "measured"
RAPID_CHANGE_THRESHOLD: int = _CADENCE.get("rapid_changes", 10)
BRISK_CHANGE_THRESHOLD: int = _CADENCE.get("brisk_changes", 4)

# Save cadence: 0 -> "no checkpoints", > REGULAR -> "regular", else "few"
REGULAR_SAVE_THRESHOLD: int = _CADENCE.get("regular_saves", 3)

# Checkpoint action fires when changes > MIN_CHANGES and saves < MIN_SAVES
CHECKPOINT_MIN_CHANGES: int = _CHECKPOINT.get("min_changes", 8)
CHECKPOINT_MIN_SAVES: int = _CHECKPOINT.get("min_saves", 2)

CONFIDENCE_CAP: float = _CONFIDENCE.get("cap", 0.9)
CONFIDENCE_PER_EVENT: float = _CONFIDENCE.get("per_event_increment", 0.03)
CONFIDENCE_MAX_BOOST: float = _CONFIDENCE.get("max_boost", 0.35)

OBJECTIVE_MAX_CHARS: int = _SUMMARY.get("objective_max_chars", 140)
REPRESENTATIVE_FILES: int = _SUMMARY.get("representative_files", 3)
