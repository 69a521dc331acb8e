"""Inference client capability shared by all backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


class InferenceError(RuntimeError):
    """Raised when the backend fails, times out, or returns an unusable payload."""


@dataclass(frozen=True)
class ChatOptions:
    """Per-call overrides for `InferenceClient.chat`."""

    system_prompt: str | None = None
    timeout_ms: int | None = None


@runtime_checkable
class InferenceClient(Protocol):
    """Anything exposing `chat(prompt, options) -> str`.

    Implementations raise InferenceError (or a subclass) on failure, including
    timeouts and empty responses.
    """

    def chat(self, prompt: str, options: ChatOptions | None = None) -> str: ...
