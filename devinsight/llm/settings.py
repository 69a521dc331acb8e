"""
Inference backend settings.

InferenceSettings is an immutable snapshot read from the environment. The
service compares snapshots by value and only rebuilds the client (which resets
the orchestrator's health latch) when something actually changed.

Environment:
    DEVINSIGHT_INFERENCE_ENABLED   "true" to enable the inference path
    DEVINSIGHT_INFERENCE_BACKEND   "lmstudio" (default) or "gemini"
    DEVINSIGHT_LMSTUDIO_CLI        path to the `lms` binary
    DEVINSIGHT_LMSTUDIO_MODEL      model identifier (also used as Gemini model)
    DEVINSIGHT_INFERENCE_TIMEOUT_MS, DEVINSIGHT_LMSTUDIO_TTL_SECONDS,
    DEVINSIGHT_LMSTUDIO_PRELOAD, DEVINSIGHT_LMSTUDIO_HOST,
    DEVINSIGHT_LMSTUDIO_PORT, DEVINSIGHT_LMSTUDIO_OFFLINE
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from devinsight.config import GEMINI_MODEL, INFERENCE_TIMEOUT_MS
from devinsight.llm.client import InferenceClient
from devinsight.llm.gemini import GeminiChatClient
from devinsight.llm.lmstudio import LmStudioCliClient
from devinsight.observability.logging import get_logger

logger = get_logger(__name__)

BACKEND_LMSTUDIO = "lmstudio"
BACKEND_GEMINI = "gemini"


def _flag(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _positive_int(value: str | None) -> int | None:
    try:
        number = int((value or "").strip())
    except ValueError:
        return None
    return number if number > 0 else None


def _text(value: str | None) -> str | None:
    return (value or "").strip() or None


@dataclass(frozen=True)
class InferenceSettings:
    enabled: bool = False
    backend: str = BACKEND_LMSTUDIO
    cli_path: str | None = None
    model: str | None = None
    timeout_ms: int | None = None
    ttl_seconds: int | None = None
    preload_model: bool = True
    host: str | None = None
    port: int | None = None
    offline: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> InferenceSettings:
        env = os.environ if environ is None else environ
        backend = (_text(env.get("DEVINSIGHT_INFERENCE_BACKEND")) or BACKEND_LMSTUDIO).lower()
        return cls(
            enabled=_flag(env.get("DEVINSIGHT_INFERENCE_ENABLED"), False),
            backend=backend,
            cli_path=_text(env.get("DEVINSIGHT_LMSTUDIO_CLI")),
            model=_text(env.get("DEVINSIGHT_LMSTUDIO_MODEL")),
            timeout_ms=_positive_int(env.get("DEVINSIGHT_INFERENCE_TIMEOUT_MS")),
            ttl_seconds=_positive_int(env.get("DEVINSIGHT_LMSTUDIO_TTL_SECONDS")),
            preload_model=_flag(env.get("DEVINSIGHT_LMSTUDIO_PRELOAD"), True),
            host=_text(env.get("DEVINSIGHT_LMSTUDIO_HOST")),
            port=_positive_int(env.get("DEVINSIGHT_LMSTUDIO_PORT")),
            offline=_flag(env.get("DEVINSIGHT_LMSTUDIO_OFFLINE"), True),
        )

    @property
    def resolved_timeout_ms(self) -> int:
        return self.timeout_ms or INFERENCE_TIMEOUT_MS

    @property
    def is_complete(self) -> bool:
        """True when the selected backend has everything it needs."""
        if self.backend == BACKEND_GEMINI:
            return True
        return bool(self.cli_path and self.model)


def build_client(
    settings: InferenceSettings, system_prompt: str | None = None
) -> InferenceClient | None:
    """
    Build the configured inference client, or None for heuristic-only mode.

    Returns None (and logs why) when inference is disabled, the backend is
    unknown, or LM Studio is missing its CLI path or model.
    """
    if not settings.enabled:
        return None

    if settings.backend == BACKEND_GEMINI:
        return GeminiChatClient(
            settings.model or GEMINI_MODEL,
            system_prompt=system_prompt,
            timeout_ms=settings.resolved_timeout_ms,
        )

    if settings.backend != BACKEND_LMSTUDIO:
        logger.warning("Unknown inference backend %r; using local heuristics", settings.backend)
        return None

    if not settings.is_complete:
        logger.warning("LM Studio integration requires both a CLI path and a model.")
        return None

    assert settings.cli_path and settings.model
    return LmStudioCliClient(
        settings.cli_path,
        settings.model,
        system_prompt=system_prompt,
        host=settings.host,
        port=settings.port,
        ttl_seconds=settings.ttl_seconds,
        timeout_ms=settings.resolved_timeout_ms,
        preload_model=settings.preload_model,
        offline=settings.offline,
    )
