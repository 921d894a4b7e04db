"""Bulk (re-)transcription of responses selected by session id.

Lifecycle: pending_confirmation -> processing -> completed | partial |
failed, or pending_confirmation -> cancelled.

quote() freezes which sessions were found and prices the work; confirm()
assigns the responses to the batch and hands process_batch() to the
background worker. Items are transcribed one at a time and the batch
counters are written after every item, so a crash leaves an accurate
partial count. A batch interrupted by a restart is not resumed.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from voice_intake.config import IngestSettings
from voice_intake.ingest.validation import BatchRequest
from voice_intake.models import (
    Batch,
    BatchStatus,
    Response,
    ResponseStatus,
    utc_now,
)
from voice_intake.pipeline import ResponseIngestor
from voice_intake.queue.worker import TaskHandle, TaskWorker
from voice_intake.quota.resolver import QuotaResolver
from voice_intake.storage.interface import RecordStore
from voice_intake.utils.errors import (
    InvalidStateError,
    NotFoundError,
    QueueFullError,
    QuotaExceededError,
)

logger = logging.getLogger(__name__)


def calculate_transcription_cost(
    duration_seconds: float, cost_per_minute: float = 0.006
) -> float:
    """Provider cost in USD, rounded up to the next 1/10000 dollar."""
    minutes = duration_seconds / 60
    # Round off float noise before taking the ceiling.
    return math.ceil(round(minutes * cost_per_minute * 10000, 6)) / 10000


def rollup_status(completed: int, failed: int, total: int) -> BatchStatus:
    """Final batch status from per-item outcomes.

    Mixed outcomes are partial; all-failed is failed. A batch with no
    items is completed.
    """
    if completed > 0 and failed > 0:
        return BatchStatus.PARTIAL
    if total > 0 and failed >= total:
        return BatchStatus.FAILED
    return BatchStatus.COMPLETED


@dataclass
class BatchQuote:
    batch_id: str
    requested: int
    found: int
    not_found: int
    already_transcribed: int
    to_transcribe: int
    not_found_session_ids: list[str]
    estimated_duration_minutes: int
    estimated_cost_usd: float
    status: str = BatchStatus.PENDING_CONFIRMATION.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "batch_id": self.batch_id,
            "summary": {
                "requested": self.requested,
                "found": self.found,
                "not_found": self.not_found,
                "already_transcribed": self.already_transcribed,
                "to_transcribe": self.to_transcribe,
            },
            "not_found_session_ids": self.not_found_session_ids,
            "estimated_duration_minutes": self.estimated_duration_minutes,
            "estimated_cost_usd": self.estimated_cost_usd,
            "status": self.status,
        }


@dataclass
class BatchConfirmation:
    batch_id: str
    status: str
    recordings_queued: int
    estimated_completion: datetime
    task: TaskHandle | None = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "batch_id": self.batch_id,
            "status": self.status,
            "recordings_queued": self.recordings_queued,
            "estimated_completion": self.estimated_completion.isoformat(),
        }


@dataclass
class BatchProgress:
    batch_id: str
    status: str
    total: int
    completed: int
    failed: int
    pending: int
    failed_recordings: list[dict[str, Any]]
    estimated_cost_usd: float
    actual_cost_usd: float | None
    started_at: datetime | None
    estimated_completion: datetime | None
    completed_at: datetime | None

    def to_dict(self) -> dict[str, Any]:
        def iso(value: datetime | None) -> str | None:
            return value.isoformat() if value is not None else None

        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "progress": {
                "total": self.total,
                "completed": self.completed,
                "failed": self.failed,
                "pending": self.pending,
            },
            "failed_recordings": self.failed_recordings,
            "estimated_cost_usd": self.estimated_cost_usd,
            "actual_cost_usd": self.actual_cost_usd,
            "started_at": iso(self.started_at),
            "estimated_completion": iso(self.estimated_completion),
            "completed_at": iso(self.completed_at),
        }


class BatchOrchestrator:
    """Quote, confirm, cancel, run, and report transcription batches.

    Args:
        records: Row storage for batches and responses.
        ingestor: Supplies process_response() for each item.
        worker: Background queue that runs process_batch().
        quota: Used to check the plan includes batch transcription.
        settings: Cost and timing constants.
        clock: Current-time source, injectable for tests.
    """

    def __init__(
        self,
        records: RecordStore,
        ingestor: ResponseIngestor,
        worker: TaskWorker,
        quota: QuotaResolver,
        settings: IngestSettings | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._records = records
        self._ingestor = ingestor
        self._worker = worker
        self._quota = quota
        self._settings = settings or IngestSettings()
        self._clock = clock

    def _cost(self, duration_seconds: float) -> float:
        return calculate_transcription_cost(
            duration_seconds, self._settings.cost_per_minute_usd
        )

    async def _get_batch(
        self, project_id: str, batch_id: str, user_id: str | None = None
    ) -> Batch:
        batch = await self._records.get_batch(batch_id, project_id=project_id)
        if batch is None or (user_id is not None and batch.user_id != user_id):
            raise NotFoundError("Batch not found", resource="batch")
        return batch

    async def quote(
        self, project_id: str, user_id: str, body: dict[str, Any]
    ) -> BatchQuote:
        """Partition the requested sessions and persist a priced batch.

        Raises:
            ValidationError: If session_ids is missing or malformed.
            QuotaExceededError: If the plan does not include batches.
        """
        request = BatchRequest.from_body(body)
        status = await self._quota.resolve(user_id)
        if not status.plan.batch:
            raise QuotaExceededError(
                f"Batch transcription is not included in the {status.plan.name} plan"
            )

        responses = await self._records.list_responses_by_sessions(
            project_id, request.session_ids
        )
        found = {r.session_id for r in responses}
        not_found = [s for s in request.session_ids if s not in found]
        already = [r for r in responses if r.status == ResponseStatus.COMPLETED]
        to_process = [r for r in responses if r.status != ResponseStatus.COMPLETED]

        default_seconds = self._settings.batch_default_item_seconds
        total_seconds = sum(r.duration_seconds or default_seconds for r in to_process)

        batch = Batch(
            project_id=project_id,
            user_id=user_id,
            status=BatchStatus.PENDING_CONFIRMATION,
            session_ids_requested=request.session_ids,
            session_ids_not_found=not_found,
            total_recordings=len(to_process),
            estimated_cost_usd=self._cost(total_seconds),
        )
        await self._records.insert_batch(batch)
        logger.info(
            "Batch %s quoted: %d to transcribe, %d not found",
            batch.id,
            len(to_process),
            len(not_found),
            extra={"batch_id": batch.id, "project_id": project_id},
        )

        return BatchQuote(
            batch_id=batch.id,
            requested=len(request.session_ids),
            found=len(found),
            not_found=len(not_found),
            already_transcribed=len(already),
            to_transcribe=len(to_process),
            not_found_session_ids=not_found,
            estimated_duration_minutes=math.ceil(total_seconds / 60),
            estimated_cost_usd=batch.estimated_cost_usd,
        )

    async def confirm(
        self, project_id: str, user_id: str, batch_id: str
    ) -> BatchConfirmation:
        """Assign the batch's responses and start processing in the background.

        Raises:
            NotFoundError: If the batch is not the user's batch in the project.
            InvalidStateError: If the batch is not pending confirmation.
        """
        batch = await self._get_batch(project_id, batch_id, user_id=user_id)
        if batch.status != BatchStatus.PENDING_CONFIRMATION:
            raise InvalidStateError(
                f"Batch cannot be confirmed. Current status: {batch.status.value}",
                batch_id=batch_id,
                current_status=batch.status.value,
            )

        not_found = set(batch.session_ids_not_found)
        valid_sessions = [s for s in batch.session_ids_requested if s not in not_found]
        responses = await self._records.list_responses_by_sessions(
            project_id, valid_sessions
        )
        items = [r for r in responses if r.status != ResponseStatus.COMPLETED]
        response_ids = [r.id for r in items]

        await self._records.assign_responses_to_batch(response_ids, batch_id)
        now = self._clock()
        await self._records.update_batch(
            batch_id,
            {
                "status": BatchStatus.PROCESSING,
                "confirmed_at": now,
                "total_recordings": len(response_ids),
            },
        )

        try:
            handle = self._worker.submit(
                self.process_batch, batch_id, name=f"batch:{batch_id}"
            )
        except QueueFullError:
            logger.warning(
                "Batch queue full, returning batch %s to pending confirmation",
                batch_id,
                extra={"batch_id": batch_id},
            )
            await self._release(batch, items)
            raise
        logger.info(
            "Batch %s confirmed with %d recordings",
            batch_id,
            len(response_ids),
            extra={"batch_id": batch_id},
        )

        seconds = len(response_ids) * self._settings.batch_seconds_per_item
        return BatchConfirmation(
            batch_id=batch_id,
            status=BatchStatus.PROCESSING.value,
            recordings_queued=len(response_ids),
            estimated_completion=now + timedelta(seconds=seconds),
            task=handle,
        )

    async def _release(self, batch: Batch, items: list[Response]) -> None:
        """Undo confirm() for a batch the worker refused."""
        for item in items:
            await self._records.update_response(
                item.id, {"status": item.status, "batch_id": item.batch_id}
            )
        await self._records.update_batch(
            batch.id,
            {
                "status": BatchStatus.PENDING_CONFIRMATION,
                "confirmed_at": None,
                "total_recordings": batch.total_recordings,
            },
        )

    async def cancel(self, project_id: str, batch_id: str) -> Batch:
        """Cancel a batch that has not been confirmed.

        Raises:
            NotFoundError: If the batch is not in the project.
            InvalidStateError: If the batch is past pending confirmation.
        """
        batch = await self._get_batch(project_id, batch_id)
        if batch.status != BatchStatus.PENDING_CONFIRMATION:
            raise InvalidStateError(
                "Only pending batches can be cancelled",
                batch_id=batch_id,
                current_status=batch.status.value,
            )
        await self._records.update_batch(batch_id, {"status": BatchStatus.CANCELLED})
        batch.status = BatchStatus.CANCELLED
        return batch

    async def process_batch(self, batch_id: str) -> BatchStatus:
        """Transcribe every processing item of a confirmed batch, in order.

        A failure on one item marks only that item failed. A failure of the
        loop itself marks the whole batch failed.

        Returns:
            The final batch status.
        """
        try:
            return await self._run_batch(batch_id)
        except Exception as exc:
            logger.error(
                "Batch processing failed for %s: %s",
                batch_id,
                exc,
                extra={"batch_id": batch_id},
                exc_info=True,
            )
            try:
                await self._records.update_batch(
                    batch_id,
                    {"status": BatchStatus.FAILED, "completed_at": self._clock()},
                )
            except Exception:
                logger.error(
                    "Failed to mark batch %s failed",
                    batch_id,
                    extra={"batch_id": batch_id},
                    exc_info=True,
                )
            return BatchStatus.FAILED

    async def _run_batch(self, batch_id: str) -> BatchStatus:
        batch = await self._records.get_batch(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}", resource="batch")
        if batch.status != BatchStatus.PROCESSING:
            logger.warning(
                "Batch %s is %s, not processing; skipping",
                batch_id,
                batch.status.value,
                extra={"batch_id": batch_id},
            )
            return batch.status

        items = await self._records.list_batch_responses(
            batch_id, status=ResponseStatus.PROCESSING.value
        )
        language = await self._records.get_project_language(batch.project_id)
        completed = 0
        failed = 0

        for item in items:
            try:
                ok = await self._ingestor.process_response(item.id, language=language)
            except Exception as exc:
                logger.error(
                    "Batch item %s failed: %s",
                    item.id,
                    exc,
                    extra={"batch_id": batch_id, "response_id": item.id},
                    exc_info=True,
                )
                ok = False
                await self._mark_item_failed(item.id, str(exc))

            if ok:
                completed += 1
            else:
                failed += 1

            await self._records.update_batch(
                batch_id, {"completed_count": completed, "failed_count": failed}
            )

        done = await self._records.list_batch_responses(
            batch_id, status=ResponseStatus.COMPLETED.value
        )
        total_seconds = sum(r.duration_seconds or 0 for r in done)
        final = rollup_status(completed, failed, len(items))

        await self._records.update_batch(
            batch_id,
            {
                "status": final,
                "actual_cost_usd": self._cost(total_seconds),
                "completed_at": self._clock(),
            },
        )
        logger.info(
            "Batch %s finished %s: %d completed, %d failed",
            batch_id,
            final.value,
            completed,
            failed,
            extra={"batch_id": batch_id},
        )
        return final

    async def _mark_item_failed(self, response_id: str, message: str) -> None:
        try:
            await self._records.update_response(
                response_id,
                {"status": ResponseStatus.FAILED, "error_message": message},
            )
        except Exception:
            logger.error(
                "Failed to mark batch item %s failed",
                response_id,
                extra={"response_id": response_id},
                exc_info=True,
            )

    async def status(self, project_id: str, batch_id: str) -> BatchProgress:
        """Progress snapshot recomputed from the live item statuses.

        Raises:
            NotFoundError: If the batch is not in the project.
        """
        batch = await self._get_batch(project_id, batch_id)
        items = await self._records.list_batch_responses(batch_id)

        completed = sum(1 for r in items if r.status == ResponseStatus.COMPLETED)
        failed_items = [r for r in items if r.status == ResponseStatus.FAILED]
        pending = sum(
            1
            for r in items
            if r.status in (ResponseStatus.PENDING, ResponseStatus.PROCESSING)
        )

        estimated_completion = None
        if batch.status == BatchStatus.PROCESSING and pending > 0:
            estimated_completion = self._clock() + timedelta(
                seconds=pending * self._settings.batch_seconds_per_item
            )

        return BatchProgress(
            batch_id=batch.id,
            status=batch.status.value,
            total=batch.total_recordings,
            completed=completed,
            failed=len(failed_items),
            pending=pending,
            failed_recordings=[
                {"id": r.id, "session_id": r.session_id, "error": r.error_message}
                for r in failed_items
            ],
            estimated_cost_usd=batch.estimated_cost_usd,
            actual_cost_usd=batch.actual_cost_usd,
            started_at=batch.confirmed_at,
            estimated_completion=estimated_completion,
            completed_at=batch.completed_at,
        )
