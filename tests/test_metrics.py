"""Tests for voice_intake.observability.metrics module."""

from __future__ import annotations

import json
import time
from dataclasses import asdict

import pytest

from voice_intake.observability.metrics import (
    IngestMetrics,
    StageTimer,
    log_ingest_metrics,
)


def _make_metrics(**overrides) -> IngestMetrics:
    """Create an IngestMetrics with sensible defaults, applying any overrides."""
    defaults = {
        "project_id": "proj-1",
        "session_id": "sess-1",
        "status": "completed",
        "input_method": "voice",
        "audio_size_bytes": 48_000,
        "duration_seconds": 12.4,
        "transcription_attempts": 1,
        "processing_wall_time_seconds": 1.8,
        "stage_timings": {"transcribe": 1.5, "persist": 0.1},
        "response_id": "rec_abc",
    }
    defaults.update(overrides)
    return IngestMetrics(**defaults)


class TestIngestMetrics:
    """Tests for IngestMetrics dataclass."""

    def test_serializes_all_fields_to_dict(self):
        """IngestMetrics serializes via dataclasses.asdict()."""
        d = asdict(_make_metrics())

        assert d["project_id"] == "proj-1"
        assert d["status"] == "completed"
        assert d["transcription_attempts"] == 1
        assert d["audio_retained"] is False
        assert d["stage_timings"] == {"transcribe": 1.5, "persist": 0.1}
        assert d["batch_id"] is None
        assert d["error_message"] is None

    def test_failure_case_carries_error(self):
        """Failed ingestion records the error and audio retention."""
        d = asdict(
            _make_metrics(
                status="failed",
                transcription_attempts=3,
                audio_retained=True,
                error_message="provider timeout",
            )
        )
        assert d["status"] == "failed"
        assert d["audio_retained"] is True
        assert d["error_message"] == "provider timeout"


class TestStageTimer:
    """Tests for StageTimer context manager."""

    def test_measures_duration(self):
        timer = StageTimer("transcribe")
        with timer:
            time.sleep(0.01)

        assert timer.duration_seconds >= 0.01
        assert timer.start_time is not None
        assert timer.end_time >= timer.start_time

    def test_records_into_timings_dict(self):
        timings: dict[str, float] = {}
        with StageTimer("persist", timings):
            pass
        assert set(timings) == {"persist"}

    def test_records_failed_stage_and_propagates(self):
        timings: dict[str, float] = {}
        with pytest.raises(ValueError):
            with StageTimer("store_audio", timings):
                raise ValueError("boom")
        assert set(timings) == {"_store_audio_failed"}


class TestLogIngestMetrics:
    """Tests for log_ingest_metrics()."""

    def test_emits_single_json_line(self, capsys):
        log_ingest_metrics(_make_metrics())

        out = capsys.readouterr().out.strip().splitlines()
        assert len(out) == 1
        entry = json.loads(out[0])
        assert entry["metric_type"] == "response_ingest"
        assert entry["severity"] == "INFO"
        assert entry["response_id"] == "rec_abc"
        assert "timestamp" in entry
