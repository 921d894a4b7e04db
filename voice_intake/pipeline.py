"""Response ingestion pipeline.

Immediate path: guard -> validate -> quota -> duration -> enrich ->
transcribe -> store completed row (audio discarded) -> count usage.
When transcription fails after retries the raw audio is kept in blob
storage and the row is stored as failed so it can be re-transcribed later.

Also contains the deferred upload path (store audio first, transcribe in the
background) and process_response(), the single-response worker step shared
by the background queue, the re-transcribe action and batch processing.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from voice_intake.asr.adapter import TranscriptionAdapter
from voice_intake.audio.formats import extension_for_mime, extension_from_path
from voice_intake.config import IngestSettings
from voice_intake.guards.domain import AllowedDomainsCache, authorize_origin
from voice_intake.guards.duration import check_duration
from voice_intake.guards.platform import enrich_metadata
from voice_intake.ingest.validation import AudioForm, validate_audio_payload
from voice_intake.models import (
    AUDIO_NOT_RETAINED,
    AUDIO_STORE_FAILED,
    InputMethod,
    Response,
    ResponseStatus,
    TenantContext,
    utc_now,
)
from voice_intake.observability.metrics import (
    IngestMetrics,
    StageTimer,
    log_ingest_metrics,
)
from voice_intake.queue.worker import TaskHandle, TaskWorker
from voice_intake.quota.resolver import QuotaResolver, QuotaStatus
from voice_intake.storage.interface import BlobStore, RecordStore
from voice_intake.utils.errors import (
    InvalidStateError,
    NotFoundError,
    QueueFullError,
    StorageError,
    TranscriptionError,
)

logger = logging.getLogger(__name__)

FALLBACK_RETAINED_MESSAGE = "Transcription failed, audio retained for retry: {error}"
FALLBACK_LOST_MESSAGE = "Transcription and storage both failed: {error}"
NO_AUDIO_MESSAGE = "No retained audio to transcribe"


@dataclass
class IngestResult:
    """Outcome of an audio submission.

    `status` is the response lifecycle status; receipt of the submission
    itself succeeded whenever an IngestResult is returned.
    """

    response_id: str
    status: str
    text: str | None = None
    error: str | None = None
    audio_retained: bool = False
    task: TaskHandle | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": True,
            "recording_id": self.response_id,
            "status": self.status,
        }
        if self.text is not None:
            body["transcription"] = self.text
        if self.error is not None:
            body["error"] = self.error
        return body


def fallback_audio_path(
    project_id: str, session_id: str, extension: str, now_ms: int | None = None
) -> str:
    """Storage key for raw audio: {project}/{session}_{epoch_ms}.{ext}."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{project_id}/{session_id}_{now_ms}.{extension}"


class ResponseIngestor:
    """Accepts audio answers and drives them through transcription.

    Args:
        records: Row storage for responses and usage.
        blobs: Raw audio storage for the fallback and deferred paths.
        quota: Plan and usage resolver.
        adapter: Retrying transcription adapter.
        worker: Background queue for deferred and re-run transcription.
        settings: Size limits and defaults.
        domains_cache: Optional allow-list cache; without it the list on
            the tenant's project is used as-is.
    """

    def __init__(
        self,
        records: RecordStore,
        blobs: BlobStore,
        quota: QuotaResolver,
        adapter: TranscriptionAdapter,
        worker: TaskWorker,
        settings: IngestSettings | None = None,
        domains_cache: AllowedDomainsCache | None = None,
    ) -> None:
        self._records = records
        self._blobs = blobs
        self._quota = quota
        self._adapter = adapter
        self._worker = worker
        self._settings = settings or IngestSettings()
        self._domains_cache = domains_cache

    async def authorize(self, tenant: TenantContext) -> None:
        """Reject the request when its origin is not on the project allow-list."""
        project = tenant.project
        if self._domains_cache is not None:
            allowed = await self._domains_cache.get(project.id)
        else:
            allowed = project.allowed_domains
        authorize_origin(tenant.origin, tenant.referer, allowed, project_id=project.id)

    async def _admit(
        self,
        audio: bytes | None,
        content_type: str | None,
        form: dict[str, Any],
        tenant: TenantContext,
    ) -> tuple[bytes, str, AudioForm, QuotaStatus]:
        """Run every rejection check; nothing is persisted before this passes."""
        await self.authorize(tenant)
        data, mime = validate_audio_payload(
            audio, content_type, self._settings.max_audio_size_bytes
        )
        fields = AudioForm.from_form(form)
        status = await self._quota.check(tenant.tenant_key)
        check_duration(fields.duration_seconds, status.plan.max_duration)
        return data, mime, fields, status

    async def ingest_audio(
        self,
        audio: bytes | None,
        content_type: str | None,
        form: dict[str, Any],
        tenant: TenantContext,
    ) -> IngestResult:
        """Transcribe an uploaded answer immediately and store only its text.

        Args:
            audio: Uploaded audio bytes.
            content_type: MIME type of the upload.
            form: Multipart fields (session_id, question_id,
                duration_seconds, language, metadata).
            tenant: Resolved project and request headers.

        Returns:
            IngestResult with status "completed" and the text, or "failed"
            when the provider could not transcribe the audio.

        Raises:
            ValidationError, DomainUnauthorizedError, QuotaExceededError:
                Before any state is written.
            StorageError: If the response row cannot be written.
        """
        wall_start = time.monotonic()
        timings: dict[str, float] = {}
        project = tenant.project

        with StageTimer("validate", timings):
            data, mime, fields, quota_status = await self._admit(
                audio, content_type, form, tenant
            )

        metadata = enrich_metadata(fields.metadata, tenant.origin, tenant.referer)
        extension = extension_for_mime(mime)
        language = fields.language or project.language

        metrics = IngestMetrics(
            project_id=project.id,
            session_id=fields.session_id,
            status=ResponseStatus.FAILED.value,
            input_method=InputMethod.VOICE.value,
            audio_size_bytes=len(data),
            stage_timings=timings,
        )

        try:
            with StageTimer("transcribe", timings):
                result = await self._adapter.transcribe(data, extension, language)
        except TranscriptionError as exc:
            metrics.transcription_attempts = getattr(exc, "_retry_count", 0) + 1
            logger.error(
                "Transcription failed after retries for session %s: %s",
                fields.session_id,
                exc,
                extra={"session_id": fields.session_id, "stage": "transcribe"},
            )
            ingest_result = await self._store_fallback(
                data, mime, extension, fields, metadata, tenant, exc, timings
            )
            metrics.audio_retained = ingest_result.audio_retained
            metrics.error_message = ingest_result.error
        else:
            metrics.transcription_attempts = result.attempts
            metrics.duration_seconds = result.duration
            response = Response(
                project_id=project.id,
                session_id=fields.session_id,
                question_id=fields.question_id,
                input_method=InputMethod.VOICE,
                audio_path=AUDIO_NOT_RETAINED,
                audio_size_bytes=len(data),
                duration_seconds=round(result.duration),
                transcription=result.text,
                language_detected=result.language,
                metadata=metadata,
                status=ResponseStatus.COMPLETED,
                transcribed_at=utc_now(),
            )
            with StageTimer("store", timings):
                await self._records.insert_response(response)
            await self._count_usage(quota_status, response.id)
            ingest_result = IngestResult(
                response_id=response.id,
                status=ResponseStatus.COMPLETED.value,
                text=result.text,
            )

        metrics.response_id = ingest_result.response_id
        metrics.status = ingest_result.status
        metrics.processing_wall_time_seconds = time.monotonic() - wall_start
        log_ingest_metrics(metrics)
        return ingest_result

    async def _store_fallback(
        self,
        audio: bytes,
        mime: str,
        extension: str,
        fields: AudioForm,
        metadata: dict[str, Any],
        tenant: TenantContext,
        error: TranscriptionError,
        timings: dict[str, float],
    ) -> IngestResult:
        """Keep the raw audio for a later retry and record a failed response."""
        project_id = tenant.project.id
        audio_path: str | None = None
        try:
            with StageTimer("fallback_store", timings):
                audio_path = await self._blobs.put(
                    fallback_audio_path(project_id, fields.session_id, extension),
                    audio,
                    mime,
                )
        except StorageError as exc:
            logger.error(
                "Storage fallback also failed for session %s: %s",
                fields.session_id,
                exc,
                extra={"session_id": fields.session_id, "stage": "fallback_store"},
            )

        if audio_path:
            message = FALLBACK_RETAINED_MESSAGE.format(error=error)
        else:
            message = FALLBACK_LOST_MESSAGE.format(error=error)

        response = Response(
            project_id=project_id,
            session_id=fields.session_id,
            question_id=fields.question_id,
            input_method=InputMethod.VOICE,
            audio_path=audio_path or AUDIO_STORE_FAILED,
            audio_size_bytes=len(audio),
            duration_seconds=fields.duration_seconds,
            metadata=metadata,
            status=ResponseStatus.FAILED,
            error_message=message,
        )
        with StageTimer("store", timings):
            await self._records.insert_response(response)

        return IngestResult(
            response_id=response.id,
            status=ResponseStatus.FAILED.value,
            error=(
                "Transcription failed. Audio saved for retry."
                if audio_path
                else "Transcription failed. Please try again."
            ),
            audio_retained=audio_path is not None,
        )

    async def _count_usage(self, status: QuotaStatus, response_id: str) -> None:
        # The response is already stored; counter failures are logged only.
        try:
            await self._quota.increment(status)
        except StorageError:
            logger.error(
                "Failed to increment usage for response %s",
                response_id,
                extra={"response_id": response_id},
                exc_info=True,
            )

    async def ingest_deferred(
        self,
        audio: bytes | None,
        content_type: str | None,
        form: dict[str, Any],
        tenant: TenantContext,
    ) -> IngestResult:
        """Store the audio first and transcribe it later.

        Projects in realtime mode get the response queued for background
        transcription right away ("processing"); projects in batch mode
        leave it "pending" for a batch run. When the worker queue is full the
        response is also left "pending".

        Raises:
            StorageError: If the audio or the row cannot be written.
        """
        data, mime, fields, quota_status = await self._admit(
            audio, content_type, form, tenant
        )
        project = tenant.project

        audio_path = await self._blobs.put(
            fallback_audio_path(project.id, fields.session_id, extension_for_mime(mime)),
            data,
            mime,
        )
        response = Response(
            project_id=project.id,
            session_id=fields.session_id,
            question_id=fields.question_id,
            input_method=InputMethod.VOICE,
            audio_path=audio_path,
            audio_size_bytes=len(data),
            duration_seconds=fields.duration_seconds,
            metadata=enrich_metadata(fields.metadata, tenant.origin, tenant.referer),
            status=ResponseStatus.PENDING,
        )
        await self._records.insert_response(response)

        pending = IngestResult(
            response_id=response.id,
            status=ResponseStatus.PENDING.value,
            audio_retained=True,
        )
        if project.transcription_mode != "realtime":
            return pending

        await self._records.update_response(
            response.id, {"status": ResponseStatus.PROCESSING}
        )
        try:
            handle = self._worker.submit(
                self.process_response,
                response.id,
                language=fields.language or project.language,
                usage=quota_status,
                name=f"transcribe:{response.id}",
            )
        except QueueFullError:
            # The upload is kept; the response waits for a batch or a re-run.
            logger.warning(
                "Transcription queue full, leaving response %s pending",
                response.id,
                extra={"response_id": response.id, "project_id": project.id},
            )
            await self._records.update_response(
                response.id, {"status": ResponseStatus.PENDING}
            )
            return pending
        return IngestResult(
            response_id=response.id,
            status=ResponseStatus.PROCESSING.value,
            audio_retained=True,
            task=handle,
        )

    async def process_response(
        self,
        response_id: str,
        language: str | None = None,
        usage: QuotaStatus | None = None,
    ) -> bool:
        """Transcribe a stored response from its retained audio.

        Moves the response to "processing", then to "completed" or "failed".
        When `usage` is given, a completion is counted against that quota.

        Returns:
            True if the response ended completed.

        Raises:
            NotFoundError: If the response does not exist.
            StorageError: If the row itself cannot be updated.
        """
        response = await self._records.get_response(response_id)
        if response is None:
            raise NotFoundError(f"Recording not found: {response_id}", resource="response")

        if not response.has_audio:
            await self._mark_failed(response_id, NO_AUDIO_MESSAGE)
            return False

        await self._records.update_response(
            response_id, {"status": ResponseStatus.PROCESSING}
        )

        try:
            audio = await self._blobs.fetch(response.audio_path)
            result = await self._adapter.transcribe(
                audio,
                extension_from_path(response.audio_path),
                language or response.language_detected,
            )
        except (TranscriptionError, StorageError) as exc:
            logger.warning(
                "Transcription failed for response %s: %s",
                response_id,
                exc,
                extra={"response_id": response_id, "batch_id": response.batch_id},
            )
            await self._mark_failed(response_id, str(exc))
            return False

        await self._records.update_response(
            response_id,
            {
                "status": ResponseStatus.COMPLETED,
                "transcription": result.text,
                "language_detected": result.language,
                "duration_seconds": round(result.duration),
                "error_message": None,
                "transcribed_at": utc_now(),
            },
        )
        if usage is not None:
            await self._count_usage(usage, response_id)
        logger.info(
            "Response %s transcribed",
            response_id,
            extra={"response_id": response_id, "duration_seconds": result.duration},
        )
        return True

    async def _mark_failed(self, response_id: str, message: str) -> None:
        await self._records.update_response(
            response_id,
            {"status": ResponseStatus.FAILED, "error_message": message},
        )

    async def retranscribe(
        self, project_id: str, response_id: str, language: str | None = None
    ) -> TaskHandle:
        """Re-run transcription for a response, keeping the old transcript.

        The current transcript is copied to previous_transcription before
        the response re-enters "processing". Without an explicit language
        the project's language is used.

        Raises:
            NotFoundError: If the response is not in the project.
            InvalidStateError: If the response has no retained audio.
            QueueFullError: If the worker refuses the job; the response is
                left as it was.
        """
        response = await self._records.get_response(response_id, project_id=project_id)
        if response is None:
            raise NotFoundError("Recording not found", resource="response")
        if not response.has_audio:
            raise InvalidStateError(
                "Recording has no retained audio to re-transcribe",
                current_status=response.status.value,
                response_id=response_id,
            )

        language = language or await self._records.get_project_language(project_id)
        await self._records.update_response(
            response_id,
            {
                "previous_transcription": response.transcription,
                "status": ResponseStatus.PROCESSING,
                "error_message": None,
            },
        )
        try:
            return self._worker.submit(
                self.process_response,
                response_id,
                language=language,
                name=f"retranscribe:{response_id}",
            )
        except QueueFullError:
            await self._records.update_response(
                response_id,
                {
                    "previous_transcription": response.previous_transcription,
                    "status": response.status,
                    "error_message": response.error_message,
                },
            )
            raise
