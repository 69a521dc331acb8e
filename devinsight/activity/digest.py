"""Reduce a raw activity batch into a compact statistical digest."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime

from devinsight.activity.types import ActivityEvent, ActivityKind, AnalysisRequest

# Bounds prompt size per event line
DETAILS_EXCERPT_CHARS = 180


@dataclass(frozen=True)
class ActivityDigest:
    """Derived, read-only snapshot of one analysis batch. Never persisted."""

    files: frozenset[str]
    languages: frozenset[str]
    change_count: int
    save_count: int
    event_count: int
    recent_event_lines: tuple[str, ...]

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def language_count(self) -> int:
        return len(self.languages)

    def sorted_files(self) -> list[str]:
        return sorted(self.files)

    def sorted_languages(self) -> list[str]:
        return sorted(self.languages)


def _iso_timestamp(timestamp_ms: int) -> str:
    """ISO-8601 UTC; timestamps datetime cannot represent keep their raw ms value."""
    try:
        moment = datetime.fromtimestamp(timestamp_ms / 1000, UTC)
    except (ValueError, OverflowError, OSError):
        return f"{timestamp_ms}ms"
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _details_excerpt(event: ActivityEvent) -> str:
    if not event.details:
        return ""
    text = json.dumps(dict(event.details), separators=(",", ":"), ensure_ascii=False, default=str)
    return text[:DETAILS_EXCERPT_CHARS]


def describe_event(event: ActivityEvent, ordinal: int) -> str:
    """Render one event as a fixed-format prompt line."""
    parts = [f"{ordinal}. {event.kind.value}", _iso_timestamp(event.timestamp)]
    if event.language:
        parts.append(event.language)
    parts.append(event.resource)
    excerpt = _details_excerpt(event)
    if excerpt:
        parts.append(f"details: {excerpt}")
    return " • ".join(parts)


def build_digest(request: AnalysisRequest, max_recent_lines: int) -> ActivityDigest:
    """
    Build the digest for an analysis request.

    Pure and total: any event sequence (including empty) yields a digest.
    `recent_event_lines` holds the last `max_recent_lines` events,
    most recent first.
    """
    events = list(request.events)

    files = frozenset(event.resource for event in events)
    languages = frozenset(event.language for event in events if event.language)
    change_count = sum(1 for event in events if event.kind is ActivityKind.DOCUMENT_CHANGE)
    save_count = sum(1 for event in events if event.kind is ActivityKind.DOCUMENT_SAVE)

    recent = events[-max_recent_lines:] if max_recent_lines > 0 else []
    lines = tuple(
        describe_event(event, ordinal) for ordinal, event in enumerate(reversed(recent), start=1)
    )

    return ActivityDigest(
        files=files,
        languages=languages,
        change_count=change_count,
        save_count=save_count,
        event_count=len(events),
        recent_event_lines=lines,
    )
