"""Runtime settings for the ingestion pipeline, read from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class IngestSettings:
    """Limits, retry bounds, and cost constants for ingestion and batches.

    Provider and storage credentials are read by their own clients.
    """

    max_audio_size_mb: int = 10
    transcription_provider: str = "whisper"
    transcription_timeout_seconds: float = 30.0
    transcription_max_retries: int = 2
    backoff_base_seconds: float = 2.0
    backoff_jitter_seconds: float = 1.0
    default_language: str = "es"
    cost_per_minute_usd: float = 0.006
    batch_seconds_per_item: int = 2
    batch_default_item_seconds: int = 60
    allowed_domains_ttl_seconds: float = 300.0
    worker_concurrency: int = 1
    worker_queue_size: int = 100
    batch_worker_queue_size: int = 20

    @property
    def max_audio_size_bytes(self) -> int:
        return self.max_audio_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> IngestSettings:
        defaults = cls()
        return cls(
            max_audio_size_mb=_env_int("MAX_AUDIO_SIZE_MB", defaults.max_audio_size_mb),
            transcription_provider=os.environ.get(
                "TRANSCRIPTION_PROVIDER", defaults.transcription_provider
            ),
            transcription_timeout_seconds=_env_float(
                "TRANSCRIPTION_TIMEOUT_SECONDS", defaults.transcription_timeout_seconds
            ),
            transcription_max_retries=_env_int(
                "TRANSCRIPTION_MAX_RETRIES", defaults.transcription_max_retries
            ),
            backoff_base_seconds=_env_float(
                "TRANSCRIPTION_BACKOFF_BASE_SECONDS", defaults.backoff_base_seconds
            ),
            backoff_jitter_seconds=_env_float(
                "TRANSCRIPTION_BACKOFF_JITTER_SECONDS", defaults.backoff_jitter_seconds
            ),
            default_language=os.environ.get("DEFAULT_LANGUAGE", defaults.default_language),
            cost_per_minute_usd=_env_float(
                "WHISPER_COST_PER_MINUTE", defaults.cost_per_minute_usd
            ),
            batch_seconds_per_item=_env_int(
                "BATCH_SECONDS_PER_ITEM", defaults.batch_seconds_per_item
            ),
            batch_default_item_seconds=_env_int(
                "BATCH_DEFAULT_ITEM_SECONDS", defaults.batch_default_item_seconds
            ),
            allowed_domains_ttl_seconds=_env_float(
                "ALLOWED_DOMAINS_TTL_SECONDS", defaults.allowed_domains_ttl_seconds
            ),
            worker_concurrency=_env_int("WORKER_CONCURRENCY", defaults.worker_concurrency),
            worker_queue_size=_env_int("WORKER_QUEUE_SIZE", defaults.worker_queue_size),
            batch_worker_queue_size=_env_int(
                "BATCH_WORKER_QUEUE_SIZE", defaults.batch_worker_queue_size
            ),
        )
