"""Tests for typed-answer create/update/clear semantics."""

from __future__ import annotations

import pytest

from conftest import PERIOD
from voice_intake.models import AUDIO_TEXT_INPUT, InputMethod, ResponseStatus
from voice_intake.quota.resolver import SCOPE_PERSONAL
from voice_intake.utils.errors import (
    DomainUnauthorizedError,
    QuotaExceededError,
    ValidationError,
)

USAGE_KEY = (SCOPE_PERSONAL, "owner-1", PERIOD)


def _body(text: str, **extra) -> dict:
    return {"session_id": "sess-1", "question_id": "q1", "text": text, **extra}


class TestUpsertText:
    async def test_blank_text_without_row_is_noop(self, upserter, records, tenant) -> None:
        result = await upserter.upsert_text(_body("   "), tenant)

        assert result.action == "noop"
        assert result.response_id is None
        assert records.responses == {}
        assert records.usage == {}

    async def test_create_inserts_completed_text_row(self, upserter, records, tenant) -> None:
        result = await upserter.upsert_text(_body("  Great service  "), tenant)

        assert result.action == "created"
        assert result.status == "completed"
        response = records.responses[result.response_id]
        assert response.input_method == InputMethod.TEXT
        assert response.status == ResponseStatus.COMPLETED
        assert response.transcription == "Great service"
        assert response.audio_path == AUDIO_TEXT_INPUT
        assert response.audio_size_bytes == 0
        assert response.duration_seconds == 0
        assert response.language_detected == "es"
        assert response.metadata["_platform"] == "alchemer"
        assert records.usage == {USAGE_KEY: 1}

    async def test_updates_do_not_increment_again(self, upserter, records, tenant) -> None:
        created = await upserter.upsert_text(_body("first"), tenant)
        first_stamp = records.responses[created.response_id].transcribed_at

        for text in ("second", "third", "third"):
            result = await upserter.upsert_text(_body(text, language="en"), tenant)
            assert result.action == "updated"
            assert result.response_id == created.response_id

        response = records.responses[created.response_id]
        assert response.transcription == "third"
        assert response.language_detected == "en"
        assert response.transcribed_at >= first_stamp
        assert len(records.responses) == 1
        assert records.usage == {USAGE_KEY: 1}

    async def test_blank_text_clears_existing_row(self, upserter, records, tenant) -> None:
        created = await upserter.upsert_text(_body("answer"), tenant)

        result = await upserter.upsert_text(_body(""), tenant)

        assert result.action == "cleared"
        assert result.response_id == created.response_id
        assert records.responses == {}
        # Clearing does not refund the counted response.
        assert records.usage == {USAGE_KEY: 1}

    async def test_key_includes_question(self, upserter, records, tenant) -> None:
        await upserter.upsert_text(_body("a", question_id="q1"), tenant)
        await upserter.upsert_text(_body("b", question_id="q2"), tenant)
        await upserter.upsert_text({"session_id": "sess-1", "text": "c"}, tenant)

        assert len(records.responses) == 3
        assert records.usage == {USAGE_KEY: 3}

    async def test_voice_rows_are_not_matched(self, upserter, records, tenant) -> None:
        records.add_response(question_id="q1", status=ResponseStatus.COMPLETED)

        result = await upserter.upsert_text(_body("typed"), tenant)

        assert result.action == "created"
        assert len(records.responses) == 2

    async def test_quota_gates_creation_only(self, upserter, records, tenant) -> None:
        created = await upserter.upsert_text(_body("first"), tenant)
        records.usage[USAGE_KEY] = 1000

        updated = await upserter.upsert_text(_body("edited"), tenant)
        assert updated.action == "updated"

        with pytest.raises(QuotaExceededError):
            await upserter.upsert_text(_body("new", question_id="q2"), tenant)
        assert set(records.responses) == {created.response_id}

    async def test_invalid_body_rejected(self, upserter, tenant) -> None:
        with pytest.raises(ValidationError):
            await upserter.upsert_text({"text": "no session"}, tenant)

    async def test_origin_checked(self, upserter, records, tenant) -> None:
        tenant.project.allowed_domains = ["*.typeform.com"]
        with pytest.raises(DomainUnauthorizedError):
            await upserter.upsert_text(_body("hi"), tenant)
        assert records.responses == {}

    async def test_result_to_dict(self, upserter, tenant) -> None:
        body = (await upserter.upsert_text(_body("hi"), tenant)).to_dict()
        assert body["action"] == "created"
        assert body["status"] == "completed"
        assert body["recording_id"].startswith("rec_")
