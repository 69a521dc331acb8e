"""
End-to-end CLI tests: JSONL in, insights out, history persisted in SQLite.

Inference stays disabled so every insight comes from the local heuristics.
"""

from __future__ import annotations

import json
import logging
import subprocess

import pytest

from devinsight import cli
from devinsight.llm import lmstudio
from devinsight.observability.logging import set_log_level

EVENTS = [
    {"kind": "document_open", "resource": "file:///repo/src/app.py", "language": "python"},
    {"kind": "documentChange", "uri": "file:///repo/src/app.py", "languageId": "python"},
    {"kind": "document_change", "resource": "file:///repo/web/main.ts", "language": "typescript"},
    {"kind": "document_save", "resource": "file:///repo/src/app.py", "language": "python"},
]


@pytest.fixture(autouse=True)
def _offline(monkeypatch):
    monkeypatch.delenv("DEVINSIGHT_INFERENCE_ENABLED", raising=False)
    monkeypatch.delenv("DEVINSIGHT_LMSTUDIO_CLI", raising=False)


@pytest.fixture
def db(tmp_path):
    return str(tmp_path / "history.db")


@pytest.fixture
def events_file(tmp_path):
    path = tmp_path / "events.jsonl"
    lines = ["# captured session", ""] + [json.dumps(e) for e in EVENTS]
    path.write_text("\n".join(lines) + "\n")
    return str(path)


def test_analyze_prints_heuristic_insight(db, events_file, capsys):
    code = cli.main(["--db", db, "analyze", events_file, "--objective", "Keep the API stable"])

    out = capsys.readouterr().out
    assert code == cli.EXIT_OK
    assert "Work is split between app.py and main.ts." in out
    assert "source: local-fallback" in out
    assert "Keep the API stable" in out


def test_history_persists_across_invocations(db, events_file, capsys):
    cli.main(["--db", db, "analyze", events_file])
    cli.main(["--db", db, "analyze", events_file, "--reason", "other"])
    capsys.readouterr()

    assert cli.main(["--db", db, "history", "--json"]) == cli.EXIT_OK
    records = json.loads(capsys.readouterr().out)

    assert len(records) == 2
    assert records[0]["metadata"]["reason"] == "other"
    assert records[1]["metadata"]["reason"] == "manual"


def test_history_limit_and_empty(db, events_file, capsys):
    assert cli.main(["--db", db, "history"]) == cli.EXIT_OK
    assert "No insights recorded yet." in capsys.readouterr().out

    cli.main(["--db", db, "analyze", events_file])
    cli.main(["--db", db, "analyze", events_file])
    capsys.readouterr()

    cli.main(["--db", db, "history", "--json", "--limit", "1"])
    assert len(json.loads(capsys.readouterr().out)) == 1


def test_replay_triggers_autosave(db, events_file, capsys):
    code = cli.main(["--db", db, "analyze", events_file, "--replay"])

    out = capsys.readouterr().out
    assert code == cli.EXIT_OK
    assert out.count("confidence:") == 1

    cli.main(["--db", db, "history", "--json"])
    records = json.loads(capsys.readouterr().out)
    assert records[0]["metadata"]["reason"] == "autosave"


def test_replay_without_saves_produces_nothing(db, tmp_path, capsys):
    path = tmp_path / "changes.jsonl"
    path.write_text(json.dumps(EVENTS[1]) + "\n")

    assert cli.main(["--db", db, "analyze", str(path), "--replay"]) == cli.EXIT_OK
    assert "No insight generated" in capsys.readouterr().out


def test_export_writes_sanitized_snapshot(db, events_file, tmp_path, capsys):
    cli.main(["--db", db, "analyze", events_file])
    output = tmp_path / "export.json"

    assert cli.main(["--db", db, "export", "-o", str(output)]) == cli.EXIT_OK
    assert "Exported 1 insights" in capsys.readouterr().out

    snapshot = json.loads(output.read_text())
    assert snapshot["insight_count"] == 1
    assert snapshot["telemetry_count"] == 1
    assert isinstance(snapshot["generated_at"], str)
    assert snapshot["telemetry"][0]["language_count"] == 2
    assert sorted(snapshot["telemetry"][0]["file_extensions"]) == ["py", "ts"]


def test_clear_empties_history(db, events_file, capsys):
    cli.main(["--db", db, "analyze", events_file])
    capsys.readouterr()

    assert cli.main(["--db", db, "clear"]) == cli.EXIT_OK
    assert "Cleared 1 insights." in capsys.readouterr().out

    cli.main(["--db", db, "history", "--json"])
    assert json.loads(capsys.readouterr().out) == []


def test_memory_mode_does_not_touch_database(tmp_path, events_file, capsys):
    db = tmp_path / "unused.db"
    assert cli.main(["--memory", "--db", str(db), "analyze", events_file]) == cli.EXIT_OK
    assert not db.exists()


def test_invalid_json_reports_line(db, tmp_path, capsys):
    path = tmp_path / "bad.jsonl"
    path.write_text(json.dumps(EVENTS[0]) + "\n{not json\n")

    assert cli.main(["--db", db, "analyze", str(path)]) == cli.EXIT_ERROR
    assert "line 2" in capsys.readouterr().err


def test_invalid_event_reports_line(db, tmp_path, capsys):
    path = tmp_path / "bad.jsonl"
    path.write_text(json.dumps({"kind": "document_save"}) + "\n")

    assert cli.main(["--db", db, "analyze", str(path)]) == cli.EXIT_ERROR
    err = capsys.readouterr().err
    assert "line 1" in err
    assert "resource" in err


def test_missing_events_file(db, tmp_path, capsys):
    assert cli.main(["--db", db, "analyze", str(tmp_path / "nope.jsonl")]) == cli.EXIT_ERROR
    assert "cannot read" in capsys.readouterr().err


def test_models_lists_labels(monkeypatch, capsys):
    payload = json.dumps([{"id": "phi-3", "quantization": "Q8_0"}])

    def fake_run(argv, capture_output, text, timeout, check):
        return subprocess.CompletedProcess(argv, 0, payload, "")

    monkeypatch.setattr(lmstudio.subprocess, "run", fake_run)

    assert cli.main(["models", "--cli", "lms"]) == cli.EXIT_OK
    assert capsys.readouterr().out.strip() == "phi-3 — Q8_0"


def test_models_requires_cli_path(capsys):
    assert cli.main(["models"]) == cli.EXIT_ERROR
    assert "DEVINSIGHT_LMSTUDIO_CLI" in capsys.readouterr().err


def test_overflowing_timestamp_is_accepted(db, tmp_path, capsys):
    path = tmp_path / "inf.jsonl"
    path.write_text(
        '{"kind": "document_save", "resource": "file:///repo/a.py", "timestamp": 1e400}\n'
    )

    assert cli.main(["--db", db, "analyze", str(path)]) == cli.EXIT_OK
    assert "Work is concentrated on a.py." in capsys.readouterr().out


def test_stats_prints_run_telemetry(db, events_file, capsys):
    assert cli.main(["--db", db, "analyze", events_file, "--stats"]) == cli.EXIT_OK

    out = capsys.readouterr().out
    report = out[out.index("Telemetry:") :]
    assert "  orchestrator.fallback.local: 1" in report
    assert "  session.analysis.manual: 1" in report


def test_log_level_override(db, events_file, capsys):
    try:
        code = cli.main(["--log-level", "warning", "--db", db, "analyze", events_file])
        assert code == cli.EXIT_OK
        assert logging.getLogger("devinsight.service").level == logging.WARNING
    finally:
        set_log_level(None)
