"""
LM Studio CLI backend.

Drives the `lms` command line tool:
    lms load <model> --yes [--ttl N]
    lms chat <model> --prompt ... --yes [--system-prompt ...] [--offline]
    lms models list --downloaded --json

Every failure (missing binary, non-zero exit, timeout, empty stdout) surfaces
as LmStudioCliError, an InferenceError subclass, so the orchestrator treats it
like any other inference failure.
"""

from __future__ import annotations

import json
import subprocess
import threading
from dataclasses import dataclass
from typing import Any

from devinsight.config import (
    INFERENCE_TIMEOUT_MS,
    LMSTUDIO_MAX_OUTPUT_BYTES,
    LMSTUDIO_MODEL_LIST_TIMEOUT_MS,
)
from devinsight.llm.client import ChatOptions, InferenceError
from devinsight.observability.logging import get_logger
from devinsight.observability.telemetry import counter, time_block

logger = get_logger(__name__)

_LIST_ARGS = ["models", "list", "--downloaded", "--json"]
_FALLBACK_LIST_ARGS = ["models", "list"]


class LmStudioCliError(InferenceError):
    """LM Studio CLI invocation failed."""


@dataclass(frozen=True)
class LmStudioModelInfo:
    id: str
    label: str
    size_bytes: float | None = None
    quantization: str | None = None


def _run_cli(cli_path: str, args: list[str], timeout_ms: int) -> subprocess.CompletedProcess[str]:
    """
    Run the CLI and return the completed process.

    Raises:
        LmStudioCliError: binary missing, timeout, or non-zero exit
    """
    logger.debug("Executing: %s %s", cli_path, " ".join(args[:2]))
    try:
        result = subprocess.run(
            [cli_path, *args],
            capture_output=True,
            text=True,
            timeout=timeout_ms / 1000,
            check=False,
        )
    except FileNotFoundError as e:
        counter("lmstudio.cli_missing")
        raise LmStudioCliError(f"LM Studio CLI not found at {cli_path!r}") from e
    except subprocess.TimeoutExpired as e:
        counter("lmstudio.timeout")
        raise LmStudioCliError(f"LM Studio CLI timed out after {timeout_ms} ms") from e
    except OSError as e:
        raise LmStudioCliError(f"LM Studio CLI could not be started: {e}") from e

    stdout = (result.stdout or "")[:LMSTUDIO_MAX_OUTPUT_BYTES]
    stderr = (result.stderr or "").strip()

    if result.returncode != 0:
        counter("lmstudio.cli_error")
        details = "\n".join(part for part in (stdout.strip(), stderr) if part)
        raise LmStudioCliError(
            f"LM Studio CLI command failed: {details or f'exit code {result.returncode}'}"
        )

    if stderr:
        logger.info("LM Studio stderr: %s", stderr[:500])

    return subprocess.CompletedProcess(result.args, result.returncode, stdout, stderr)


class LmStudioCliClient:
    """
    InferenceClient backed by the `lms` CLI.

    The model is loaded at most once per client (on the first chat call when
    `preload_model` is set, or explicitly via `ensure_model_loaded`). A failed
    load is retried on the next call.
    """

    def __init__(
        self,
        cli_path: str,
        model: str,
        *,
        system_prompt: str | None = None,
        host: str | None = None,
        port: int | None = None,
        ttl_seconds: int | None = None,
        timeout_ms: int = INFERENCE_TIMEOUT_MS,
        preload_model: bool = True,
        offline: bool = True,
    ) -> None:
        self.cli_path = cli_path
        self.model = model
        self.default_system_prompt = system_prompt
        self.host = host
        self.port = port
        self.ttl_seconds = ttl_seconds
        self.timeout_ms = timeout_ms
        self.preload_model = preload_model
        self.offline = offline
        self._loaded = False
        self._load_lock = threading.Lock()

    def chat(self, prompt: str, options: ChatOptions | None = None) -> str:
        """
        Send one prompt and return trimmed stdout.

        Side Effects:
            - May spawn `lms load` once before the first chat
            - Spawns `lms chat`
            - Increments lmstudio.* telemetry counters

        Raises:
            LmStudioCliError: empty prompt, CLI failure, timeout, or empty response
        """
        if not prompt.strip():
            raise LmStudioCliError("LM Studio prompt must not be empty.")

        options = options or ChatOptions()
        timeout_ms = options.timeout_ms or self.timeout_ms

        if self.preload_model:
            self.ensure_model_loaded()

        args = self._common_args("chat")
        args += [self.model, "--prompt", prompt, "--yes"]

        system_prompt = options.system_prompt or self.default_system_prompt
        if system_prompt:
            args += ["--system-prompt", system_prompt]
        if self.offline:
            args.append("--offline")

        with time_block("lmstudio.chat"):
            result = _run_cli(self.cli_path, args, timeout_ms)

        text = result.stdout.strip()
        if not text:
            counter("lmstudio.empty_response")
            raise LmStudioCliError("LM Studio returned an empty response.")
        counter("lmstudio.chat_ok")
        return text

    def ensure_model_loaded(self) -> None:
        """Load the configured model once.

        Raises:
            LmStudioCliError: if `lms load` fails
        """
        with self._load_lock:
            if self._loaded:
                return
            args = self._common_args("load")
            args += [self.model, "--yes"]
            if self.ttl_seconds:
                args += ["--ttl", str(self.ttl_seconds)]
            _run_cli(self.cli_path, args, self.timeout_ms)
            self._loaded = True
            logger.info('Loaded LM Studio model "%s".', self.model)

    def _common_args(self, subcommand: str) -> list[str]:
        args = [subcommand]
        if self.host:
            args += ["--host", self.host]
        if self.port:
            args += ["--port", str(self.port)]
        return args


def list_downloaded_models(
    cli_path: str, timeout_ms: int = LMSTUDIO_MODEL_LIST_TIMEOUT_MS
) -> list[LmStudioModelInfo]:
    """
    List models downloaded into LM Studio.

    Tries JSON output first and falls back to the plain-text listing when JSON
    is unsupported or yields no entries.

    Raises:
        LmStudioCliError: if neither listing produces any model
    """
    try:
        result = _run_cli(cli_path, _LIST_ARGS, timeout_ms)
        models = parse_model_list(result.stdout)
        if models:
            return models
        logger.debug("JSON model listing was empty, trying plain listing")
    except LmStudioCliError as e:
        logger.debug("JSON model listing failed (%s), trying plain listing", e)

    try:
        fallback = _run_cli(cli_path, _FALLBACK_LIST_ARGS, timeout_ms)
    except LmStudioCliError as e:
        raise LmStudioCliError(f"Failed to query LM Studio for downloaded models: {e}") from e

    models = parse_plain_model_list(fallback.stdout)
    if not models:
        raise LmStudioCliError("LM Studio CLI returned no installed models.")
    return models


def parse_model_list(output: str) -> list[LmStudioModelInfo]:
    """Parse `--json` output: a list, or an object with "models"/"items"."""
    trimmed = output.strip()
    if not trimmed:
        return []

    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError:
        return parse_plain_model_list(output)

    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict):
        entries = data.get("models") or data.get("items") or []
    else:
        entries = []

    models = [_normalize_model_entry(entry) for entry in entries if isinstance(entry, dict)]
    return [model for model in models if model is not None]


def parse_plain_model_list(output: str) -> list[LmStudioModelInfo]:
    """Parse plain listing: first token is the id, the rest is a description."""
    models = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        model_id, _, rest = line.partition(" ")
        rest = rest.strip()
        label = f"{model_id} — {rest}" if rest else model_id
        models.append(LmStudioModelInfo(id=model_id, label=label))
    return models


def _normalize_model_entry(record: dict[str, Any]) -> LmStudioModelInfo | None:
    model_id = _pick_string(record, ["specifier", "id", "name", "model", "identifier"])
    if not model_id:
        return None

    display_name = _pick_string(record, ["displayName", "title", "description", "label"])
    quantization = _pick_string(record, ["quantization", "variant", "dtype"])
    size = _pick_number(record, ["sizeBytes", "size", "diskSizeBytes"])

    parts = []
    if display_name and display_name != model_id:
        parts.append(display_name)
    if quantization:
        parts.append(quantization)
    if size is not None:
        parts.append(f"{size / (1024 * 1024):.0f} MiB")
    label = f"{model_id} — {' · '.join(parts)}" if parts else model_id

    return LmStudioModelInfo(id=model_id, label=label, size_bytes=size, quantization=quantization)


def _pick_string(record: dict[str, Any], keys: list[str]) -> str | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _pick_number(record: dict[str, Any], keys: list[str]) -> float | None:
    for key in keys:
        value = record.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value)
            except ValueError:
                continue
    return None
