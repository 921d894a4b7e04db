"""Data models for responses, batches, usage, and tenant context.

Rows are exchanged with the record store as plain dicts; to_row() and
from_row() convert between the two.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

# Audio pointer sentinels. Anything else is a real storage path.
AUDIO_NOT_RETAINED = "transcribed-immediate"
AUDIO_TEXT_INPUT = "text-input"
AUDIO_STORE_FAILED = "failed-no-audio"

AUDIO_SENTINELS = frozenset({AUDIO_NOT_RETAINED, AUDIO_TEXT_INPUT, AUDIO_STORE_FAILED})


class ResponseStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchStatus(str, Enum):
    PENDING_CONFIRMATION = "pending_confirmation"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_BATCH_STATUSES = frozenset(
    {
        BatchStatus.COMPLETED,
        BatchStatus.PARTIAL,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }
)


class InputMethod(str, Enum):
    VOICE = "voice"
    TEXT = "text"


def generate_id(prefix: str = "") -> str:
    """Return a prefixed URL-safe random identifier (e.g. 'rec_Xy3...')."""
    return f"{prefix}{secrets.token_urlsafe(9)}"


def utc_now() -> datetime:
    return datetime.now(UTC)


def has_retained_audio(audio_path: str | None) -> bool:
    """True when the pointer references stored bytes rather than a sentinel."""
    return bool(audio_path) and audio_path not in AUDIO_SENTINELS


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Response:
    """One respondent answer to one question in one session."""

    project_id: str
    session_id: str
    input_method: InputMethod
    audio_path: str
    status: ResponseStatus
    question_id: str | None = None
    audio_size_bytes: int = 0
    duration_seconds: int | None = None
    transcription: str | None = None
    language_detected: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    error_message: str | None = None
    batch_id: str | None = None
    previous_transcription: str | None = None
    id: str = field(default_factory=lambda: generate_id("rec_"))
    created_at: datetime = field(default_factory=utc_now)
    transcribed_at: datetime | None = None

    @property
    def has_audio(self) -> bool:
        return has_retained_audio(self.audio_path)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "session_id": self.session_id,
            "question_id": self.question_id,
            "input_method": self.input_method.value,
            "audio_path": self.audio_path,
            "audio_size_bytes": self.audio_size_bytes,
            "duration_seconds": self.duration_seconds,
            "transcription": self.transcription,
            "language_detected": self.language_detected,
            "metadata": self.metadata,
            "status": self.status.value,
            "error_message": self.error_message,
            "batch_id": self.batch_id,
            "previous_transcription": self.previous_transcription,
            "created_at": _format_timestamp(self.created_at),
            "transcribed_at": _format_timestamp(self.transcribed_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Response:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            session_id=row["session_id"],
            question_id=row.get("question_id"),
            input_method=InputMethod(row.get("input_method") or "voice"),
            audio_path=row.get("audio_path") or AUDIO_STORE_FAILED,
            audio_size_bytes=row.get("audio_size_bytes") or 0,
            duration_seconds=row.get("duration_seconds"),
            transcription=row.get("transcription"),
            language_detected=row.get("language_detected"),
            metadata=row.get("metadata") or {},
            status=ResponseStatus(row["status"]),
            error_message=row.get("error_message"),
            batch_id=row.get("batch_id"),
            previous_transcription=row.get("previous_transcription"),
            created_at=_parse_timestamp(row.get("created_at")) or utc_now(),
            transcribed_at=_parse_timestamp(row.get("transcribed_at")),
        )


@dataclass
class Batch:
    """A set of responses submitted together for bulk transcription."""

    project_id: str
    user_id: str
    status: BatchStatus
    session_ids_requested: list[str] = field(default_factory=list)
    session_ids_not_found: list[str] = field(default_factory=list)
    total_recordings: int = 0
    completed_count: int = 0
    failed_count: int = 0
    estimated_cost_usd: float = 0.0
    actual_cost_usd: float | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    id: str = field(default_factory=lambda: generate_id("batch_"))
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_BATCH_STATUSES

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "session_ids_requested": self.session_ids_requested,
            "session_ids_not_found": self.session_ids_not_found,
            "total_recordings": self.total_recordings,
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "estimated_cost_usd": self.estimated_cost_usd,
            "actual_cost_usd": self.actual_cost_usd,
            "confirmed_at": _format_timestamp(self.confirmed_at),
            "completed_at": _format_timestamp(self.completed_at),
            "created_at": _format_timestamp(self.created_at),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Batch:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            user_id=row["user_id"],
            status=BatchStatus(row["status"]),
            session_ids_requested=list(row.get("session_ids_requested") or []),
            session_ids_not_found=list(row.get("session_ids_not_found") or []),
            total_recordings=row.get("total_recordings") or 0,
            completed_count=row.get("completed_count") or 0,
            failed_count=row.get("failed_count") or 0,
            estimated_cost_usd=row.get("estimated_cost_usd") or 0.0,
            actual_cost_usd=row.get("actual_cost_usd"),
            confirmed_at=_parse_timestamp(row.get("confirmed_at")),
            completed_at=_parse_timestamp(row.get("completed_at")),
            created_at=_parse_timestamp(row.get("created_at")) or utc_now(),
        )


@dataclass
class BillingSubject:
    """Entity whose quota is checked: an account, optionally in an org pool."""

    user_id: str
    plan_key: str = "free"
    org_id: str | None = None
    org_plan_key: str | None = None

    @property
    def is_pooled(self) -> bool:
        return self.org_id is not None


@dataclass
class UsageCounter:
    """Count of completed responses for one subject in one period."""

    scope: str
    subject_id: str
    period: str
    responses_count: int = 0


@dataclass
class ProjectContext:
    """The project a request was resolved to by its public key."""

    id: str
    owner_id: str
    language: str | None = None
    transcription_mode: str = "realtime"
    allowed_domains: list[str] = field(default_factory=list)


@dataclass
class TenantContext:
    """Resolved project plus the request headers the guards inspect."""

    project: ProjectContext
    origin: str | None = None
    referer: str | None = None

    @property
    def tenant_key(self) -> str:
        return self.project.owner_id
