"""Request shape validation for audio, text, and batch inputs.

Each request type is a dataclass built by a from_*() classmethod that
raises ValidationError on the first invalid field. Nothing here touches
storage or the provider.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

from voice_intake.asr.languages import VALID_LANGUAGES
from voice_intake.audio.formats import ALLOWED_AUDIO_MIME_TYPES, base_mime_type
from voice_intake.utils.errors import ValidationError

SESSION_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-.:]+$")
MAX_SESSION_ID_LENGTH = 100
MAX_QUESTION_ID_LENGTH = 50
MAX_TEXT_LENGTH = 5000
MAX_BATCH_SESSION_IDS = 10000


def validate_audio_payload(
    data: bytes | None, content_type: str | None, max_size_bytes: int
) -> tuple[bytes, str]:
    """Check an uploaded audio payload; return it with its normalized MIME type."""
    if data is None:
        raise ValidationError("No audio file provided", field="audio")

    mime = base_mime_type(content_type)
    if mime not in ALLOWED_AUDIO_MIME_TYPES:
        raise ValidationError(
            "Invalid audio format. Supported: " + ", ".join(ALLOWED_AUDIO_MIME_TYPES),
            field="audio",
        )
    if len(data) == 0:
        raise ValidationError("Empty audio file", field="audio")
    if len(data) > max_size_bytes:
        max_mb = max_size_bytes // (1024 * 1024)
        raise ValidationError(f"File too large. Maximum size: {max_mb}MB", field="audio")
    return data, mime


def _session_id(value: Any) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError("Missing or invalid 'session_id'", field="session_id")
    if len(value) > MAX_SESSION_ID_LENGTH:
        raise ValidationError(
            f"'session_id' exceeds {MAX_SESSION_ID_LENGTH} characters",
            field="session_id",
        )
    if not SESSION_ID_PATTERN.match(value):
        raise ValidationError("Invalid session ID characters", field="session_id")
    return value


def _question_id(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or len(value) > MAX_QUESTION_ID_LENGTH:
        raise ValidationError(
            f"'question_id' must be a string of at most {MAX_QUESTION_ID_LENGTH} characters",
            field="question_id",
        )
    return value


def _language(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if value not in VALID_LANGUAGES:
        raise ValidationError(f"Unsupported language: '{value}'", field="language")
    return value


def _metadata(value: Any) -> dict[str, Any]:
    if value is None or value == "":
        return {}
    if isinstance(value, str):
        # Multipart forms carry metadata as a JSON string.
        try:
            value = json.loads(value)
        except ValueError as exc:
            raise ValidationError("'metadata' is not valid JSON", field="metadata") from exc
    if not isinstance(value, dict):
        raise ValidationError("'metadata' must be an object", field="metadata")
    return value


def _duration(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        duration = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "'duration_seconds' must be an integer", field="duration_seconds"
        ) from exc
    if duration < 1:
        raise ValidationError(
            "'duration_seconds' must be at least 1", field="duration_seconds"
        )
    return duration


@dataclass
class AudioForm:
    """Form fields accompanying an audio upload."""

    session_id: str
    question_id: str | None = None
    duration_seconds: int | None = None
    language: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_form(cls, form: dict[str, Any]) -> AudioForm:
        """Validate multipart form fields.

        Raises:
            ValidationError: If a field is missing or invalid.
        """
        return cls(
            session_id=_session_id(form.get("session_id")),
            question_id=_question_id(form.get("question_id")),
            duration_seconds=_duration(form.get("duration_seconds")),
            language=_language(form.get("language")),
            metadata=_metadata(form.get("metadata")),
        )


@dataclass
class TextInput:
    """A typed answer. Empty or whitespace-only text means 'clear'."""

    session_id: str
    text: str
    question_id: str | None = None
    language: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> TextInput:
        text = body.get("text")
        if text is None:
            text = ""
        if not isinstance(text, str):
            raise ValidationError("'text' must be a string", field="text")
        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationError(
                f"'text' exceeds {MAX_TEXT_LENGTH} characters", field="text"
            )
        return cls(
            session_id=_session_id(body.get("session_id")),
            text=text,
            question_id=_question_id(body.get("question_id")),
            language=_language(body.get("language")),
            metadata=_metadata(body.get("metadata")),
        )


@dataclass
class BatchRequest:
    """Session identifiers submitted for a batch quote."""

    session_ids: list[str]

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> BatchRequest:
        session_ids = body.get("session_ids")
        if not isinstance(session_ids, list) or not session_ids:
            raise ValidationError(
                "'session_ids' must be a non-empty list", field="session_ids"
            )
        if len(session_ids) > MAX_BATCH_SESSION_IDS:
            raise ValidationError(
                f"At most {MAX_BATCH_SESSION_IDS} session ids per batch",
                field="session_ids",
            )
        if not all(isinstance(s, str) and s for s in session_ids):
            raise ValidationError(
                "'session_ids' must contain non-empty strings", field="session_ids"
            )
        # Keep first-seen order, drop duplicates.
        return cls(session_ids=list(dict.fromkeys(session_ids)))
