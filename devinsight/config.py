"""Centralized configuration for devinsight.

Typed constants for history retention, analysis and inference backends.
Environment variable overrides use safe defaults so the package works without
extra env configuration.
"""

from __future__ import annotations

import os
from pathlib import Path

# --- App ---
APP_VERSION: str = "0.3.0"

# --- Storage ---
DB_PATH: Path = Path(
    os.getenv("DEVINSIGHT_DB_PATH", str(Path.home() / ".devinsight" / "devinsight.db"))
)
DB_CONNECT_TIMEOUT: float = float(os.getenv("DEVINSIGHT_DB_CONNECT_TIMEOUT", "30.0"))
DB_RETRY_MAX: int = int(os.getenv("DEVINSIGHT_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("DEVINSIGHT_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("DEVINSIGHT_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("DEVINSIGHT_DB_RETRY_JITTER", "0.1"))

HISTORY_STORAGE_KEY: str = "devinsight.insight_history"
TELEMETRY_STORAGE_KEY: str = "devinsight.telemetry_history"

# --- History ---
MAX_HISTORY_ITEMS: int = int(os.getenv("DEVINSIGHT_MAX_HISTORY_ITEMS", "20"))
MAX_TELEMETRY_ITEMS: int = int(os.getenv("DEVINSIGHT_MAX_TELEMETRY_ITEMS", "100"))

# --- Analysis ---
MAX_EVENTS_IN_PROMPT: int = int(os.getenv("DEVINSIGHT_MAX_EVENTS_IN_PROMPT", "12"))
FALLBACK_CONFIDENCE_BASE: float = float(os.getenv("DEVINSIGHT_FALLBACK_CONFIDENCE_BASE", "0.55"))
ANALYSIS_COOLDOWN_SECONDS: int = int(os.getenv("DEVINSIGHT_ANALYSIS_COOLDOWN", "90"))
ACTIVITY_BUFFER_SIZE: int = int(os.getenv("DEVINSIGHT_ACTIVITY_BUFFER_SIZE", "100"))

DEFAULT_OBJECTIVES: tuple[str, ...] = (
    "Maintain architectural consistency",
    "Protect critical modules",
    "Keep codebase aligned with objectives",
)


def load_objectives() -> list[str]:
    """Objectives from DEVINSIGHT_OBJECTIVES (semicolon separated), else the defaults."""
    raw = os.getenv("DEVINSIGHT_OBJECTIVES", "")
    objectives = [item.strip() for item in raw.split(";") if item.strip()]
    return objectives or list(DEFAULT_OBJECTIVES)


# --- Inference ---
INFERENCE_TIMEOUT_MS: int = int(os.getenv("DEVINSIGHT_INFERENCE_TIMEOUT_MS", "45000"))
SYSTEM_PROMPT: str | None = os.getenv("DEVINSIGHT_SYSTEM_PROMPT") or None

# LM Studio CLI
LMSTUDIO_MODEL_LIST_TIMEOUT_MS: int = 10_000
LMSTUDIO_MAX_OUTPUT_BYTES: int = 8 * 1024 * 1024

# Gemini
GEMINI_MODEL: str = os.getenv("DEVINSIGHT_GEMINI_MODEL", "gemini-2.0-flash")
GEMINI_LOCATION: str = os.getenv("DEVINSIGHT_GEMINI_LOCATION", "us-central1")
GOOGLE_CLOUD_PROJECT: str | None = os.getenv("GOOGLE_CLOUD_PROJECT") or None
