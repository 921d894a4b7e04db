"""Ingestion metrics collection and reporting.

Provides IngestMetrics dataclass for structured observability data,
StageTimer context manager for measuring stage durations, and
log_ingest_metrics() for emitting metrics as structured JSON to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class IngestMetrics:
    """All metrics collected for a single response ingestion."""

    project_id: str
    session_id: str
    status: str
    input_method: str
    audio_size_bytes: int = 0
    duration_seconds: float = 0.0
    transcription_attempts: int = 0
    audio_retained: bool = False
    processing_wall_time_seconds: float = 0.0
    stage_timings: dict[str, float] = field(default_factory=dict)
    response_id: str | None = None
    batch_id: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of a stage.

    When given a timings dict, the elapsed time is stored under the stage
    name on success and under `_{stage}_failed` when the block raises.

    Usage:
        timer = StageTimer("transcribe", timings)
        with timer:
            do_work()
        print(timer.duration_seconds)
    """

    def __init__(
        self, stage_name: str, timings: dict[str, float] | None = None
    ) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._timings = timings
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        elapsed = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)
        self.duration_seconds = elapsed
        if self._timings is not None:
            if exc_type is not None:
                self._timings[f"_{self.stage_name}_failed"] = elapsed
            else:
                self._timings[self.stage_name] = elapsed


def log_ingest_metrics(metrics: IngestMetrics) -> None:
    """Emit ingest metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated IngestMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "response_ingest",
        **asdict(metrics),
    }
    print(json.dumps(entry))
