"""
Gemini backend for the InferenceClient capability.

Supports two SDKs:
  1. Vertex AI SDK (google-cloud-aiplatform) - uses GOOGLE_CLOUD_PROJECT + ADC
  2. google-generativeai - uses GOOGLE_API_KEY (local dev)

Both are optional installs (`pip install devinsight[gemini]`). The SDK is
imported lazily on the first chat call, so the rest of the package works
without either of them.
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

from devinsight.config import (
    GEMINI_LOCATION,
    GEMINI_MODEL,
    GOOGLE_CLOUD_PROJECT,
    INFERENCE_TIMEOUT_MS,
)
from devinsight.llm.client import ChatOptions, InferenceError
from devinsight.observability.logging import get_logger
from devinsight.observability.telemetry import counter, log_event, time_block

logger = get_logger(__name__)


class GeminiInitializationError(InferenceError):
    """Raised when the Gemini model cannot be initialized."""


def _load_model(model_name: str, project: str | None, location: str, system_prompt: str | None):
    """
    Create a GenerativeModel, preferring Vertex AI.

    Raises:
        GeminiInitializationError: no SDK installed or credentials missing
    """
    kwargs: dict[str, Any] = {}
    if system_prompt:
        kwargs["system_instruction"] = system_prompt

    try:
        import vertexai
        from vertexai.generative_models import GenerativeModel

        project = project or os.getenv("GOOGLE_CLOUD_PROJECT")
        if not project:
            raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")

        vertexai.init(project=project, location=location)
        model = GenerativeModel(model_name, **kwargs)
        logger.info(
            "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
            project,
            location,
            model_name,
        )
        return model

    except ImportError:
        logger.info("Vertex AI SDK not installed, trying google-generativeai fallback")

    try:
        import google.generativeai as genai

        api_key = os.getenv("GOOGLE_API_KEY")
        if not api_key:
            raise GeminiInitializationError(
                "Neither vertexai nor GOOGLE_API_KEY available. "
                "Install google-cloud-aiplatform or set GOOGLE_API_KEY."
            )

        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(model_name, **kwargs)
        logger.info("Initialized Gemini model (google-generativeai): model=%s", model_name)
        return model

    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e


class GeminiChatClient:
    """
    InferenceClient backed by Gemini.

    One model instance is cached per system prompt. Calls are bounded by
    timeout_ms; a timed-out call is reported as InferenceError while the SDK
    request finishes in the background.
    """

    def __init__(
        self,
        model: str = GEMINI_MODEL,
        *,
        project: str | None = GOOGLE_CLOUD_PROJECT,
        location: str = GEMINI_LOCATION,
        system_prompt: str | None = None,
        timeout_ms: int = INFERENCE_TIMEOUT_MS,
    ) -> None:
        self.model = model
        self.project = project
        self.location = location
        self.default_system_prompt = system_prompt
        self.timeout_ms = timeout_ms
        self._models: dict[str | None, Any] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gemini-chat")

    def _get_model(self, system_prompt: str | None):
        with self._lock:
            if system_prompt not in self._models:
                self._models[system_prompt] = _load_model(
                    self.model, self.project, self.location, system_prompt
                )
            return self._models[system_prompt]

    def chat(self, prompt: str, options: ChatOptions | None = None) -> str:
        """
        Generate a response for the prompt.

        Side Effects:
            - Calls the Gemini API
            - Increments gemini.* telemetry counters

        Raises:
            GeminiInitializationError: SDK or credentials unavailable
            InferenceError: API failure, timeout, blocked or empty response
        """
        options = options or ChatOptions()
        timeout_ms = options.timeout_ms or self.timeout_ms
        model = self._get_model(options.system_prompt or self.default_system_prompt)

        future = self._executor.submit(model.generate_content, prompt)
        try:
            with time_block("gemini.chat"):
                response = future.result(timeout=timeout_ms / 1000)
        except FutureTimeoutError as e:
            counter("gemini.timeout")
            raise InferenceError(f"Gemini call timed out after {timeout_ms} ms") from e
        except Exception as e:
            counter("gemini.error")
            log_event("gemini.error", error=str(e), model=self.model)
            raise InferenceError(f"Gemini call failed: {e}") from e

        try:
            text = (response.text or "").strip()
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked
            counter("gemini.blocked")
            raise InferenceError(f"Gemini returned no usable text: {e}") from e

        if not text:
            counter("gemini.empty_response")
            raise InferenceError("Gemini returned an empty response.")

        counter("gemini.chat_ok")
        return text
