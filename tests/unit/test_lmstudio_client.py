"""Unit tests for the LM Studio CLI client (subprocess is mocked)."""

from __future__ import annotations

import json
import subprocess

import pytest

from devinsight.llm import lmstudio
from devinsight.llm.client import ChatOptions, InferenceError
from devinsight.llm.lmstudio import (
    LmStudioCliClient,
    LmStudioCliError,
    list_downloaded_models,
    parse_model_list,
    parse_plain_model_list,
)


class FakeRun:
    """Stand-in for subprocess.run: records argv, returns scripted results."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls: list[list[str]] = []
        self.timeouts: list[float] = []

    def __call__(self, argv, capture_output, text, timeout, check):
        self.calls.append(argv)
        self.timeouts.append(timeout)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, BaseException):
            raise result
        returncode, stdout, stderr = result
        return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


@pytest.fixture
def fake_run(monkeypatch):
    def install(*results):
        fake = FakeRun(*results)
        monkeypatch.setattr(lmstudio.subprocess, "run", fake)
        return fake

    return install


class TestChat:
    def test_chat_builds_arguments(self, fake_run):
        run = fake_run((0, "  answer  \n", ""))
        client = LmStudioCliClient(
            "/usr/bin/lms",
            "qwen2.5-7b",
            host="127.0.0.1",
            port=1234,
            preload_model=False,
        )

        result = client.chat("prompt text", ChatOptions(system_prompt="be brief", timeout_ms=2000))

        assert result == "answer"
        assert run.calls == [
            [
                "/usr/bin/lms",
                "chat",
                "--host",
                "127.0.0.1",
                "--port",
                "1234",
                "qwen2.5-7b",
                "--prompt",
                "prompt text",
                "--yes",
                "--system-prompt",
                "be brief",
                "--offline",
            ]
        ]
        assert run.timeouts == [2.0]

    def test_model_preloaded_once(self, fake_run):
        run = fake_run((0, "loaded", ""), (0, "one", ""), (0, "two", ""))
        client = LmStudioCliClient("lms", "m", ttl_seconds=300, offline=False)

        assert client.chat("a") == "one"
        assert client.chat("b") == "two"

        assert run.calls[0] == ["lms", "load", "m", "--yes", "--ttl", "300"]
        assert [call[1] for call in run.calls] == ["load", "chat", "chat"]
        assert "--offline" not in run.calls[1]

    def test_failed_load_is_retried(self, fake_run):
        run = fake_run((1, "", "no such model"), (0, "loaded", ""), (0, "ok", ""))
        client = LmStudioCliClient("lms", "m")

        with pytest.raises(LmStudioCliError, match="no such model"):
            client.chat("a")
        assert client.chat("a") == "ok"
        assert [call[1] for call in run.calls] == ["load", "load", "chat"]

    def test_empty_stdout_is_error(self, fake_run):
        fake_run((0, "   \n", ""))
        with pytest.raises(LmStudioCliError, match="empty response"):
            LmStudioCliClient("lms", "m", preload_model=False).chat("a")

    def test_non_zero_exit_is_error(self, fake_run):
        fake_run((2, "", "model crashed"))
        with pytest.raises(LmStudioCliError, match="model crashed"):
            LmStudioCliClient("lms", "m", preload_model=False).chat("a")

    def test_timeout_is_error(self, fake_run):
        fake_run(subprocess.TimeoutExpired(["lms"], 1))
        with pytest.raises(LmStudioCliError, match="timed out"):
            LmStudioCliClient("lms", "m", preload_model=False, timeout_ms=1000).chat("a")

    def test_missing_binary_is_error(self, fake_run):
        fake_run(FileNotFoundError("lms"))
        with pytest.raises(LmStudioCliError, match="not found"):
            LmStudioCliClient("/nope/lms", "m", preload_model=False).chat("a")

    def test_errors_are_inference_errors(self):
        assert issubclass(LmStudioCliError, InferenceError)

    def test_blank_prompt_rejected(self, fake_run):
        run = fake_run((0, "x", ""))
        with pytest.raises(LmStudioCliError):
            LmStudioCliClient("lms", "m").chat("   ")
        assert run.calls == []


class TestModelListing:
    def test_json_listing(self, fake_run):
        payload = json.dumps(
            [
                {
                    "modelKey": "ignored",
                    "id": "qwen2.5-7b-instruct",
                    "displayName": "Qwen 2.5 7B",
                    "quantization": "Q4_K_M",
                    "sizeBytes": 4 * 1024 * 1024 * 1024,
                },
                {"name": "tiny-model"},
                {"noIdentifier": True},
            ]
        )
        run = fake_run((0, payload, ""))

        models = list_downloaded_models("lms")

        assert run.calls[0] == ["lms", "models", "list", "--downloaded", "--json"]
        assert [m.id for m in models] == ["qwen2.5-7b-instruct", "tiny-model"]
        assert models[0].label == "qwen2.5-7b-instruct — Qwen 2.5 7B · Q4_K_M · 4096 MiB"
        assert models[0].quantization == "Q4_K_M"
        assert models[1].label == "tiny-model"

    def test_falls_back_to_plain_listing(self, fake_run):
        run = fake_run((1, "", "unknown flag --json"), (0, "llama-3 8B instruct\nphi-3\n", ""))

        models = list_downloaded_models("lms")

        assert run.calls[1] == ["lms", "models", "list"]
        assert [m.id for m in models] == ["llama-3", "phi-3"]
        assert models[0].label == "llama-3 — 8B instruct"

    def test_no_models_is_error(self, fake_run):
        fake_run((0, "[]", ""), (0, "", ""))
        with pytest.raises(LmStudioCliError, match="no installed models"):
            list_downloaded_models("lms")

    def test_object_wrapper(self):
        models = parse_model_list(json.dumps({"models": [{"specifier": "a/b", "size": "2048"}]}))
        assert models[0].id == "a/b"
        assert models[0].size_bytes == 2048.0

    def test_non_json_output_parsed_as_plain(self):
        assert [m.id for m in parse_model_list("model-a\n\nmodel-b extra")] == ["model-a", "model-b"]

    def test_plain_blank(self):
        assert parse_plain_model_list("\n  \n") == []
