"""Unit tests for insight and telemetry models."""

from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from devinsight.storage.models import (
    InsightSource,
    StrategicInsight,
    TelemetrySnapshot,
    clamp_confidence,
    new_insight_id,
)


@pytest.mark.parametrize(
    "value,expected",
    [(5, 0.99), (0.994, 0.99), (0.0, 0.05), (-2, 0.05), (0.333, 0.33), (0.5, 0.5)],
)
def test_clamp_confidence(value, expected):
    assert clamp_confidence(value) == expected


def test_insight_ids_are_unique():
    ids = {new_insight_id() for _ in range(200)}
    assert len(ids) == 200
    assert all(i.startswith("insight-") for i in ids)


def test_insight_defaults_and_source():
    insight = StrategicInsight(
        id="insight-1",
        summary="s",
        confidence=0.5,
        timestamp=1,
        metadata={"source": InsightSource.LOCAL_FALLBACK.value},
    )
    assert insight.actions == []
    assert insight.source == "local-fallback"


def test_null_metadata_becomes_empty():
    insight = StrategicInsight.model_validate(
        {"id": "i", "summary": "s", "confidence": 0.5, "timestamp": 1, "metadata": None}
    )
    assert insight.metadata == {}
    assert insight.source is None


@pytest.mark.parametrize("confidence", [True, "0.5", math.nan, math.inf, None])
def test_confidence_must_be_finite_number(confidence):
    with pytest.raises(ValidationError):
        StrategicInsight(id="i", summary="s", confidence=confidence, timestamp=1)


def test_clone_is_deep():
    insight = StrategicInsight(
        id="i", summary="s", confidence=0.5, timestamp=1, metadata={"files": ["a"]}
    )
    clone = insight.clone()
    clone.metadata["files"].append("b")
    assert insight.metadata["files"] == ["a"]


def test_telemetry_record_is_json_safe():
    snapshot = TelemetrySnapshot(
        timestamp=1, language_count=2, file_extensions=["ts"], confidence=0.7, source="inference"
    )
    record = snapshot.to_record()
    assert record == {
        "timestamp": 1,
        "language_count": 2,
        "file_extensions": ["ts"],
        "change_count": None,
        "save_count": None,
        "confidence": 0.7,
        "reason": None,
        "source": "inference",
    }
    assert TelemetrySnapshot.model_validate(record) == snapshot


@pytest.mark.parametrize("confidence,expected", [(5.0, 0.99), (-1, 0.05), (0.4567, 0.46)])
def test_confidence_is_clamped_on_validation(confidence, expected):
    insight = StrategicInsight.model_validate(
        {"id": "i", "summary": "s", "confidence": confidence, "timestamp": 1}
    )
    assert insight.confidence == expected


def test_actions_capped_on_validation():
    insight = StrategicInsight(
        id="i", summary="s", confidence=0.5, timestamp=1, actions=[f"a{n}" for n in range(9)]
    )
    assert insight.actions == ["a0", "a1", "a2", "a3"]


def test_telemetry_confidence_is_clamped():
    snapshot = TelemetrySnapshot.model_validate({"timestamp": 1, "language_count": 0, "confidence": 3})
    assert snapshot.confidence == 0.99
