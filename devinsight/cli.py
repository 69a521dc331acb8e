"""
devinsight command line interface.

Usage:
    devinsight analyze events.jsonl [--replay] [--stats] [--objective TEXT ...]
    devinsight --log-level DEBUG analyze events.jsonl
    devinsight history [--limit N] [--json]
    devinsight export [--output insights.json]
    devinsight clear
    devinsight models [--cli /path/to/lms]

Events are JSON Lines, one ActivityEvent record per line:
    {"kind": "document_save", "resource": "file:///src/app.py", "language": "python"}

History is persisted in SQLite (DEVINSIGHT_DB_PATH or --db); --memory keeps
everything in process.
"""

from __future__ import annotations

from devinsight.env import ensure_env_loaded

ensure_env_loaded()

import argparse  # noqa: E402
import json  # noqa: E402
import sys  # noqa: E402
from collections.abc import Iterator, Sequence  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import TextIO  # noqa: E402

from devinsight.activity.types import ActivityEvent, AnalysisReason  # noqa: E402
from devinsight.analysis.orchestrator import AnalysisOrchestrator  # noqa: E402
from devinsight.config import (  # noqa: E402
    ANALYSIS_COOLDOWN_SECONDS,
    APP_VERSION,
    DB_PATH,
    SYSTEM_PROMPT,
    load_objectives,
)
from devinsight.llm.lmstudio import LmStudioCliError, list_downloaded_models  # noqa: E402
from devinsight.llm.settings import InferenceSettings  # noqa: E402
from devinsight.observability.logging import get_logger, set_log_level  # noqa: E402
from devinsight.observability.telemetry import format_report, reset, snapshot  # noqa: E402
from devinsight.service import InsightSession  # noqa: E402
from devinsight.storage.history import InsightHistoryStore  # noqa: E402
from devinsight.storage.kv import (  # noqa: E402
    KeyValueStorage,
    MemoryKeyValueStorage,
    SqliteKeyValueStorage,
    StorageError,
)
from devinsight.storage.models import StrategicInsight  # noqa: E402

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1


class InputError(ValueError):
    """Raised for unreadable or invalid event input."""


def read_events(stream: TextIO) -> Iterator[ActivityEvent]:
    """
    Parse JSON Lines into events. Blank lines and # comments are skipped.

    Raises:
        InputError: invalid JSON or an invalid event record (with line number)
    """
    for line_number, line in enumerate(stream, start=1):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise InputError(f"line {line_number}: invalid JSON ({e.msg})") from e
        if not isinstance(record, dict):
            raise InputError(f"line {line_number}: expected a JSON object")
        try:
            yield ActivityEvent.from_dict(record)
        except ValueError as e:
            raise InputError(f"line {line_number}: {e}") from e


def format_insight(insight: StrategicInsight) -> str:
    lines = [
        f"[{insight.id}] {insight.summary}",
        f"  confidence: {round(insight.confidence * 100)}%  source: {insight.source or 'unknown'}",
    ]
    error_message = insight.metadata.get("error_message")
    if isinstance(error_message, str):
        lines.append(f"  fallback reason: {error_message}")
    for action in insight.actions:
        lines.append(f"  • {action}")
    return "\n".join(lines)


def _open_storage(args: argparse.Namespace) -> KeyValueStorage:
    if args.memory:
        return MemoryKeyValueStorage()
    return SqliteKeyValueStorage(args.db)


def cmd_analyze(args: argparse.Namespace, store: InsightHistoryStore) -> int:
    if args.stats:
        reset()
    objectives = args.objective or load_objectives()
    settings = InferenceSettings.from_env()
    session = InsightSession(
        AnalysisOrchestrator(objectives),
        store,
        objectives=objectives,
        cooldown_seconds=args.cooldown,
    )
    session.refresh_configuration(system_prompt=SYSTEM_PROMPT, settings=settings)

    try:
        if args.events == "-":
            events = list(read_events(sys.stdin))
        else:
            with open(args.events, encoding="utf-8") as f:
                events = list(read_events(f))
    except OSError as e:
        print(f"error: cannot read {args.events}: {e.strerror or e}", file=sys.stderr)
        return EXIT_ERROR
    except InputError as e:
        print(f"error: {args.events}: {e}", file=sys.stderr)
        return EXIT_ERROR

    produced: list[StrategicInsight] = []
    for event in events:
        if args.replay:
            insight = session.record(event)
            if insight is not None:
                produced.append(insight)
        else:
            session.enqueue(event)

    if not args.replay:
        insight = session.trigger_analysis(AnalysisReason.parse(args.reason))
        if insight is not None:
            produced.append(insight)

    if not produced:
        print("No insight generated (no activity captured).")
    for insight in produced:
        print(format_insight(insight))

    if args.stats:
        print(format_report(snapshot()))
    return EXIT_OK


def cmd_history(args: argparse.Namespace, store: InsightHistoryStore) -> int:
    history = store.get_history()
    if args.limit is not None:
        history = history[: max(0, args.limit)]

    if args.json:
        print(json.dumps([insight.to_record() for insight in history], indent=2))
        return EXIT_OK

    if not history:
        print("No insights recorded yet.")
        return EXIT_OK

    for insight in history:
        print(format_insight(insight))
    return EXIT_OK


def cmd_export(args: argparse.Namespace, store: InsightHistoryStore) -> int:
    payload = json.dumps(store.get_export_snapshot(), indent=2, ensure_ascii=False)
    if args.output:
        Path(args.output).write_text(payload + "\n", encoding="utf-8")
        print(f"Exported {store.get_history_count()} insights to {args.output}")
    else:
        print(payload)
    return EXIT_OK


def cmd_clear(args: argparse.Namespace, store: InsightHistoryStore) -> int:
    count = store.get_history_count()
    store.clear_history()
    print(f"Cleared {count} insights.")
    return EXIT_OK


def cmd_models(args: argparse.Namespace) -> int:
    cli_path = args.cli or InferenceSettings.from_env().cli_path
    if not cli_path:
        print("error: set DEVINSIGHT_LMSTUDIO_CLI or pass --cli", file=sys.stderr)
        return EXIT_ERROR

    try:
        models = list_downloaded_models(cli_path)
    except LmStudioCliError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    for model in models:
        print(model.label)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devinsight",
        description="Strategic insights from development activity",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {APP_VERSION}")
    parser.add_argument("--db", type=Path, default=DB_PATH, help="SQLite history database")
    parser.add_argument(
        "--memory", action="store_true", help="Keep history in memory only (no database)"
    )
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override DEVINSIGHT_LOG_LEVEL (logs go to stderr)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze events from a JSON Lines file")
    analyze.add_argument("events", help="Path to events .jsonl file, or - for stdin")
    analyze.add_argument(
        "--reason",
        choices=[reason.value for reason in AnalysisReason],
        default=AnalysisReason.MANUAL.value,
        help="Trigger reason for the single analysis (default: manual)",
    )
    analyze.add_argument(
        "--replay",
        action="store_true",
        help="Feed events one by one; each document save triggers an autosave analysis",
    )
    analyze.add_argument(
        "--cooldown",
        type=float,
        default=ANALYSIS_COOLDOWN_SECONDS,
        help="Seconds between autosave analyses when replaying",
    )
    analyze.add_argument(
        "--objective",
        action="append",
        help="Project objective (repeatable; default: DEVINSIGHT_OBJECTIVES)",
    )
    analyze.add_argument(
        "--stats",
        action="store_true",
        help="Print counters and inference latencies after the run",
    )

    history = subparsers.add_parser("history", help="Show stored insights")
    history.add_argument("--limit", type=int, help="Show at most N insights")
    history.add_argument("--json", action="store_true", help="Print raw JSON records")

    export = subparsers.add_parser("export", help="Export sanitized history as JSON")
    export.add_argument("--output", "-o", help="Write to file instead of stdout")

    subparsers.add_parser("clear", help="Delete all stored insights and telemetry")

    models = subparsers.add_parser("models", help="List models downloaded in LM Studio")
    models.add_argument("--cli", help="Path to the lms binary")

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)

    if args.command == "models":
        return cmd_models(args)

    try:
        storage = _open_storage(args)
    except StorageError as e:
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR

    try:
        store = InsightHistoryStore(storage)
        handler = {
            "analyze": cmd_analyze,
            "history": cmd_history,
            "export": cmd_export,
            "clear": cmd_clear,
        }[args.command]
        return handler(args, store)
    finally:
        if isinstance(storage, SqliteKeyValueStorage):
            storage.close()


if __name__ == "__main__":
    sys.exit(main())
