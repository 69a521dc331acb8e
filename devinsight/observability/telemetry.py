"""
In-process telemetry: counters and call latencies.

Nothing leaves the process. `devinsight analyze --stats` prints a report of
the current run; tests assert on `snapshot()`.

Usage:
    counter("orchestrator.fallback.local")
    with time_block("inference.chat"):
        client.chat(prompt)
    print(format_report(snapshot()))
"""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from collections.abc import Iterator, Sequence
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger("devinsight.telemetry")

_LOCK = threading.Lock()
_COUNTERS: dict[str, int] = {}
_LATENCIES_MS: dict[str, list[float]] = {}


@dataclass(frozen=True)
class LatencySummary:
    count: int
    p50_ms: float
    p95_ms: float
    max_ms: float


def log_event(event_name: str, **fields: Any) -> None:
    """
    Plain-text event line. Caller must not pass file paths or raw prompt text.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter.

    Side Effects:
        - Modifies _COUNTERS (in-memory state)
        - Writes to logger (debug level)
    """
    with _LOCK:
        value = _COUNTERS.get(name, 0) + increment
        _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


@contextlib.contextmanager
def time_block(name: str) -> Iterator[None]:
    """Record the wall time of the block, in milliseconds, under `name`."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug("timing=%s ms=%.1f", name, elapsed_ms)
        with _LOCK:
            _LATENCIES_MS.setdefault(name, []).append(elapsed_ms)


def summarize_latency(samples_ms: Sequence[float]) -> LatencySummary | None:
    if not samples_ms:
        return None
    ordered = sorted(samples_ms)
    count = len(ordered)
    return LatencySummary(
        count=count,
        p50_ms=round(ordered[count // 2], 1),
        p95_ms=round(ordered[min(int(count * 0.95), count - 1)], 1),
        max_ms=round(ordered[-1], 1),
    )


def snapshot() -> dict[str, Any]:
    """
    Point-in-time copy of all telemetry.

    Returns:
        {"counters": {name: value}, "latencies": {name: LatencySummary fields}}
    """
    with _LOCK:
        counters = dict(sorted(_COUNTERS.items()))
        samples = {name: list(values) for name, values in _LATENCIES_MS.items()}

    latencies = {}
    for name in sorted(samples):
        summary = summarize_latency(samples[name])
        if summary is not None:
            latencies[name] = asdict(summary)
    return {"counters": counters, "latencies": latencies}


def format_report(report: dict[str, Any]) -> str:
    lines = ["Telemetry:"]
    counters = report.get("counters") or {}
    latencies = report.get("latencies") or {}

    if not counters and not latencies:
        lines.append("  (nothing recorded)")
        return "\n".join(lines)

    for name, value in counters.items():
        lines.append(f"  {name}: {value}")
    for name, stats in latencies.items():
        lines.append(
            f"  {name}: n={stats['count']} p50={stats['p50_ms']}ms "
            f"p95={stats['p95_ms']}ms max={stats['max_ms']}ms"
        )
    return "\n".join(lines)


def reset() -> None:
    """Clear counters and latencies (tests, or between CLI runs in one process)."""
    with _LOCK:
        _COUNTERS.clear()
        _LATENCIES_MS.clear()
