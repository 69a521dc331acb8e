"""
Structured event logging for the analysis loop.

Provides one-line JSON event logging with:
- Correlation via a session id (one per service/CLI run)
- Event taxonomy covering inference, fallback, health latch and history storage
- Sampling & rate limits (10% info, 100% error)
- Privacy: resource identifiers are HMAC-hashed, long strings truncated

Usage:
    from devinsight.observability.structured import EventType, get_logger

    events = get_logger()
    events.log_event(EventType.INFERENCE_CALL_ERROR, error="timeout", reason="autosave")

Output:
    {"ts":"2026-10-19T10:12:03.120Z","level":"ERROR","session":"20261019_101203","event":"inference_call_error","error":"timeout","reason":"autosave"}
"""

from __future__ import annotations

import hmac
import json
import logging
import random
import secrets
import threading
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

logger = logging.getLogger("devinsight.structured")


class EventType(str, Enum):
    """Event taxonomy for the analysis loop"""

    # 1. Inference path
    INFERENCE_CALL_START = "inference_call_start"
    INFERENCE_CALL_OK = "inference_call_ok"
    INFERENCE_CALL_ERROR = "inference_call_error"
    INFERENCE_PAYLOAD_INVALID = "inference_payload_invalid"

    # 2. Fallback / health latch
    FALLBACK_INVOKED = "fallback_invoked"
    HEALTH_LATCH_TRIPPED = "health_latch_tripped"
    HEALTH_LATCH_RESET = "health_latch_reset"

    # 3. History store
    HISTORY_PERSISTED = "history_persisted"
    HISTORY_RESTORED = "history_restored"
    HISTORY_CLEARED = "history_cleared"
    HISTORY_ENTRY_DROPPED = "history_entry_dropped"
    STORAGE_ERROR = "storage_error"


EVENT_SEVERITY = {
    EventType.INFERENCE_CALL_START: logging.DEBUG,
    EventType.INFERENCE_CALL_OK: logging.INFO,
    EventType.INFERENCE_CALL_ERROR: logging.ERROR,
    EventType.INFERENCE_PAYLOAD_INVALID: logging.WARNING,
    EventType.FALLBACK_INVOKED: logging.WARNING,
    EventType.HEALTH_LATCH_TRIPPED: logging.ERROR,
    EventType.HEALTH_LATCH_RESET: logging.INFO,
    EventType.HISTORY_PERSISTED: logging.DEBUG,
    EventType.HISTORY_RESTORED: logging.INFO,
    EventType.HISTORY_CLEARED: logging.INFO,
    EventType.HISTORY_ENTRY_DROPPED: logging.WARNING,
    EventType.STORAGE_ERROR: logging.ERROR,
}


class SafeJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles common non-serializable types."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if hasattr(obj, "__dict__"):
            return str(obj)
        return super().default(obj)


class StructuredLogger:
    """
    Structured event logger with sampling and privacy hashing

    - Correlation via session_id
    - Sampling: sample_rate_info for DEBUG/INFO/WARNING, sample_rate_error for ERROR+
    - Resource identifiers are hashed; strings over 200 chars are truncated
    """

    def __init__(
        self,
        session_id: str | None = None,
        sample_rate_info: float = 0.1,
        sample_rate_error: float = 1.0,
    ):
        self.session_id = session_id or self._generate_session_id()
        self.sample_rate_info = sample_rate_info
        self.sample_rate_error = sample_rate_error
        self._rate_limiter: dict[str, datetime] = {}
        self._rate_limiter_lock = threading.Lock()
        self._last_cleanup = datetime.now(UTC)
        self._salt = secrets.token_bytes(32)

    @staticmethod
    def _generate_session_id() -> str:
        """Generate session ID: YYYYMMDD_HHMMSS"""
        return datetime.now(UTC).strftime("%Y%m%d_%H%M%S")

    def hash_resource(self, resource: str) -> str:
        """HMAC a resource identifier (file URI, command id) with the per-instance salt."""
        if not resource:
            return "unknown"
        h = hmac.new(self._salt, resource.encode("utf-8"), "sha256")
        return h.hexdigest()[:16]

    def _should_log(self, event_type: EventType) -> bool:
        severity = EVENT_SEVERITY.get(event_type, logging.INFO)
        if severity >= logging.ERROR:
            return random.random() < self.sample_rate_error
        return random.random() < self.sample_rate_info

    def _rate_limit(self, event_key: str, min_interval_sec: float = 60.0) -> bool:
        """
        Rate limit events by key.

        Returns:
            True if event should be logged, False if rate limited
        """
        now = datetime.now(UTC)

        with self._rate_limiter_lock:
            # Drop entries older than 1 hour, at most every 5 minutes
            if (now - self._last_cleanup).total_seconds() > 300:
                cutoff = now - timedelta(hours=1)
                self._rate_limiter = {k: v for k, v in self._rate_limiter.items() if v > cutoff}
                self._last_cleanup = now

            last_log = self._rate_limiter.get(event_key)
            if last_log and (now - last_log).total_seconds() < min_interval_sec:
                return False

            self._rate_limiter[event_key] = now
            return True

    def log_event(
        self,
        event_type: EventType,
        resource: str | None = None,
        rate_limit_key: str | None = None,
        **kwargs: Any,
    ) -> None:
        """
        Log a structured event

        Args:
            event_type: Event type from EventType enum
            resource: Optional resource identifier (hashed before output)
            rate_limit_key: Optional key for rate limiting (default: event_type + resource)
            **kwargs: Additional fields for the event

        Side Effects:
            - Writes structured JSON log entry to logging system
            - Updates rate limiter dictionary (thread-safe)
        """
        if not self._should_log(event_type):
            return

        severity = EVENT_SEVERITY.get(event_type, logging.INFO)
        rl_key = rate_limit_key or f"{event_type.value}:{self.hash_resource(resource or 'none')}"

        # Only rate limit below ERROR
        if severity < logging.ERROR and not self._rate_limit(rl_key):
            return

        event: dict[str, Any] = {
            "ts": datetime.now(UTC).isoformat(),
            "level": logging.getLevelName(severity),
            "session": self.session_id,
            "event": event_type.value,
        }

        if resource:
            event["resource"] = self.hash_resource(resource)

        for key, value in kwargs.items():
            if isinstance(value, str) and len(value) > 200:
                event[key] = value[:200] + "..."
            else:
                event[key] = value

        try:
            json_line = json.dumps(event, separators=(",", ":"), cls=SafeJSONEncoder)
            logger.log(severity, json_line)
        except (TypeError, ValueError) as e:
            logger.error(
                "structured_log_error: failed to serialize event type=%s error=%s",
                event_type.value,
                e,
            )

    def inference_failed(self, error: str, reason: str) -> None:
        self.log_event(EventType.INFERENCE_CALL_ERROR, error=error, reason=reason, fallback=True)

    def storage_failed(self, operation: str, key: str, error: str) -> None:
        self.log_event(
            EventType.STORAGE_ERROR,
            rate_limit_key=f"storage:{operation}:{key}",
            operation=operation,
            key=key,
            error=error,
        )


_global_logger: StructuredLogger | None = None


def get_logger(session_id: str | None = None) -> StructuredLogger:
    """
    Get or create the global structured logger

    Side Effects:
        - May replace global _global_logger when session_id is given
    """
    global _global_logger

    if session_id or _global_logger is None:
        _global_logger = StructuredLogger(session_id=session_id)

    return _global_logger
