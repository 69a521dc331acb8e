"""
Shared helpers for keeping sensitive information out of prompts and exports.

Provides:
- strip_injection(): Remove prompt-injection markers from free text
- sanitize_for_prompt(): strip_injection + truncation + markup stripping
- resource_basename(): Reduce a file URI/path to its final segment
- file_extension(): Lower-cased extension used for anonymized telemetry
"""

from __future__ import annotations

import re
from urllib.parse import unquote

# Patterns that could be used for prompt injection
INJECTION_PATTERNS = [
    r"ignore\s+(previous|above|all)\s+instructions?",
    r"disregard\s+(previous|above|all)\s+instructions?",
    r"forget\s+(previous|above|all)\s+instructions?",
    r"new\s+instructions?:",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
    r"<\|(system|user|assistant)\|>",
]
INJECTION_REGEX = re.compile("|".join(INJECTION_PATTERNS), re.IGNORECASE)


def strip_injection(text: str) -> str:
    """Replace known injection markers with [REDACTED], leaving the rest intact."""
    if not text:
        return ""
    return INJECTION_REGEX.sub("[REDACTED]", text)


def sanitize_for_prompt(text: str, max_length: int = 500) -> str:
    """
    Sanitize user-provided text (objectives, system prompt overrides) before
    including it in a prompt.

    Returns:
        Truncated text with injection markers and prompt-markup characters removed
    """
    if not text:
        return ""

    text = text[:max_length]
    text = strip_injection(text)
    text = re.sub(r"[<>{}|\\]", "", text)
    return text.strip()


def resource_basename(resource: str) -> str:
    """
    Reduce a resource identifier to its final path segment.

    Query string and fragment are dropped and percent-escapes decoded:
        "file:///a/b/example.ts?hash=123" -> "example.ts"
        "C:\\work\\notes.md"               -> "notes.md"
    """
    if not resource:
        return ""
    path = resource.split("?", 1)[0].split("#", 1)[0]
    path = unquote(path).replace("\\", "/").rstrip("/")
    segment = path.rsplit("/", 1)[-1]
    return segment or path


def file_extension(resource: str) -> str:
    """Lower-cased suffix after the last '.', or the whole file name if none."""
    name = resource_basename(resource).lower()
    if "." not in name:
        return name
    return name.rsplit(".", 1)[-1]
