"""Inference backends (LM Studio CLI, Gemini)"""

from __future__ import annotations

from devinsight.llm.client import ChatOptions, InferenceClient, InferenceError

__all__ = ["ChatOptions", "InferenceClient", "InferenceError"]
