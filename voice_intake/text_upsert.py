"""Typed-answer path: create, update, or clear a text response.

There is at most one text response per (project, session, question). The
widget saves on every edit, so repeated calls must not create duplicates or
count usage more than once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from voice_intake.guards.domain import AllowedDomainsCache, authorize_origin
from voice_intake.guards.platform import enrich_metadata
from voice_intake.ingest.validation import TextInput
from voice_intake.models import (
    AUDIO_TEXT_INPUT,
    InputMethod,
    Response,
    ResponseStatus,
    TenantContext,
    utc_now,
)
from voice_intake.quota.resolver import QuotaResolver
from voice_intake.storage.interface import RecordStore
from voice_intake.utils.errors import StorageError

logger = logging.getLogger(__name__)

ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_CLEARED = "cleared"
ACTION_NOOP = "noop"


@dataclass
class UpsertResult:
    action: str
    status: str
    response_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": True,
            "action": self.action,
            "status": self.status,
        }
        if self.response_id is not None:
            body["recording_id"] = self.response_id
        return body


class TextResponseUpserter:
    """Applies create/update/clear semantics to typed answers.

    Quota is checked only when a new row would be created; edits and clears
    of an existing answer are always accepted. Clearing does not refund the
    usage counted at creation.
    """

    def __init__(
        self,
        records: RecordStore,
        quota: QuotaResolver,
        domains_cache: AllowedDomainsCache | None = None,
    ) -> None:
        self._records = records
        self._quota = quota
        self._domains_cache = domains_cache

    async def upsert_text(
        self, body: dict[str, Any], tenant: TenantContext
    ) -> UpsertResult:
        """Save, update, or clear a typed answer.

        Args:
            body: Request body (session_id, question_id, text, language,
                metadata).
            tenant: Resolved project and request headers.

        Returns:
            UpsertResult whose action is created, updated, cleared, or noop.

        Raises:
            ValidationError, DomainUnauthorizedError: Before any lookup.
            QuotaExceededError: Only when a new row would be created.
            StorageError: If a row cannot be read or written.
        """
        project = tenant.project
        if self._domains_cache is not None:
            allowed = await self._domains_cache.get(project.id)
        else:
            allowed = project.allowed_domains
        authorize_origin(tenant.origin, tenant.referer, allowed, project_id=project.id)

        data = TextInput.from_body(body)
        existing = await self._records.find_text_response(
            project.id, data.session_id, data.question_id
        )

        if data.is_blank:
            if existing is None:
                return UpsertResult(action=ACTION_NOOP, status=ACTION_NOOP)
            await self._records.delete_response(existing.id)
            logger.info(
                "Text response %s cleared",
                existing.id,
                extra={"response_id": existing.id, "session_id": data.session_id},
            )
            return UpsertResult(
                action=ACTION_CLEARED, status=ACTION_CLEARED, response_id=existing.id
            )

        text = data.text.strip()
        language = data.language or project.language
        metadata = enrich_metadata(data.metadata, tenant.origin, tenant.referer)

        if existing is not None:
            await self._records.update_response(
                existing.id,
                {
                    "transcription": text,
                    "language_detected": language,
                    "metadata": metadata,
                    "transcribed_at": utc_now(),
                },
            )
            return UpsertResult(
                action=ACTION_UPDATED,
                status=ResponseStatus.COMPLETED.value,
                response_id=existing.id,
            )

        quota_status = await self._quota.check(tenant.tenant_key)
        response = Response(
            project_id=project.id,
            session_id=data.session_id,
            question_id=data.question_id,
            input_method=InputMethod.TEXT,
            audio_path=AUDIO_TEXT_INPUT,
            audio_size_bytes=0,
            duration_seconds=0,
            transcription=text,
            language_detected=language,
            metadata=metadata,
            status=ResponseStatus.COMPLETED,
            transcribed_at=utc_now(),
        )
        await self._records.insert_response(response)

        try:
            await self._quota.increment(quota_status)
        except StorageError:
            logger.error(
                "Failed to increment usage for response %s",
                response.id,
                extra={"response_id": response.id},
                exc_info=True,
            )

        return UpsertResult(
            action=ACTION_CREATED,
            status=ResponseStatus.COMPLETED.value,
            response_id=response.id,
        )
