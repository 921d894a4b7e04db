"""Shared fixtures: in-memory stores, a scripted engine, wired components."""

from __future__ import annotations

import asyncio
import copy
from typing import Any

import pytest

from voice_intake.asr.adapter import TranscriptionAdapter, is_transient_error
from voice_intake.asr.interface import TranscriptionEngine, TranscriptionResult
from voice_intake.batch import BatchOrchestrator
from voice_intake.config import IngestSettings
from voice_intake.models import (
    Batch,
    BillingSubject,
    InputMethod,
    ProjectContext,
    Response,
    ResponseStatus,
    TenantContext,
)
from voice_intake.pipeline import ResponseIngestor
from voice_intake.queue.worker import TaskWorker
from voice_intake.quota.resolver import QuotaResolver
from voice_intake.storage.interface import BlobStore, RecordStore
from voice_intake.text_upsert import TextResponseUpserter
from voice_intake.utils.errors import StorageError
from voice_intake.utils.retry import RetryPolicy

PERIOD = "2026-10"


class InMemoryRecordStore(RecordStore):
    """RecordStore keeping rows in dicts, with PostgREST-like semantics."""

    def __init__(self) -> None:
        self.responses: dict[str, Response] = {}
        self.batches: dict[str, Batch] = {}
        self.usage: dict[tuple[str, str, str], int] = {}
        self.subjects: dict[str, BillingSubject] = {}
        self.allowed_domains: dict[str, list[str]] = {}
        self.project_languages: dict[str, str] = {}
        self.fail_inserts = False
        self.fail_increments = False
        self.batch_updates: list[dict[str, Any]] = []

    async def get_billing_subject(self, user_id: str) -> BillingSubject:
        return self.subjects.get(user_id) or BillingSubject(user_id=user_id)

    async def get_allowed_domains(self, project_id: str) -> list[str]:
        return list(self.allowed_domains.get(project_id, []))

    async def get_project_language(self, project_id: str) -> str | None:
        return self.project_languages.get(project_id)

    async def get_usage(self, scope: str, subject_id: str, period: str) -> int:
        return self.usage.get((scope, subject_id, period), 0)

    async def increment_usage(self, scope: str, subject_id: str, period: str) -> int:
        if self.fail_increments:
            raise StorageError("usage upsert failed", operation="increment_usage")
        key = (scope, subject_id, period)
        self.usage[key] = self.usage.get(key, 0) + 1
        return self.usage[key]

    async def insert_response(self, response: Response) -> Response:
        if self.fail_inserts:
            raise StorageError("insert failed", operation="insert_response")
        self.responses[response.id] = copy.deepcopy(response)
        return response

    async def get_response(
        self, response_id: str, project_id: str | None = None
    ) -> Response | None:
        response = self.responses.get(response_id)
        if response is None:
            return None
        if project_id is not None and response.project_id != project_id:
            return None
        return copy.deepcopy(response)

    async def update_response(self, response_id: str, fields: dict[str, Any]) -> None:
        response = self.responses.get(response_id)
        if response is None:
            return
        for key, value in fields.items():
            setattr(response, key, value)

    async def delete_response(self, response_id: str) -> None:
        self.responses.pop(response_id, None)

    async def find_text_response(
        self, project_id: str, session_id: str, question_id: str | None
    ) -> Response | None:
        for response in self.responses.values():
            if (
                response.project_id == project_id
                and response.session_id == session_id
                and response.question_id == question_id
                and response.input_method == InputMethod.TEXT
            ):
                return copy.deepcopy(response)
        return None

    async def list_responses_by_sessions(
        self, project_id: str, session_ids: list[str]
    ) -> list[Response]:
        wanted = set(session_ids)
        return [
            copy.deepcopy(r)
            for r in self.responses.values()
            if r.project_id == project_id and r.session_id in wanted
        ]

    async def list_batch_responses(
        self, batch_id: str, status: str | None = None
    ) -> list[Response]:
        return [
            copy.deepcopy(r)
            for r in self.responses.values()
            if r.batch_id == batch_id and (status is None or r.status == status)
        ]

    async def assign_responses_to_batch(
        self, response_ids: list[str], batch_id: str
    ) -> None:
        for response_id in response_ids:
            response = self.responses[response_id]
            response.status = ResponseStatus.PROCESSING
            response.batch_id = batch_id

    async def insert_batch(self, batch: Batch) -> Batch:
        self.batches[batch.id] = copy.deepcopy(batch)
        return batch

    async def get_batch(
        self, batch_id: str, project_id: str | None = None
    ) -> Batch | None:
        batch = self.batches.get(batch_id)
        if batch is None:
            return None
        if project_id is not None and batch.project_id != project_id:
            return None
        return copy.deepcopy(batch)

    async def update_batch(self, batch_id: str, fields: dict[str, Any]) -> None:
        self.batch_updates.append(dict(fields))
        batch = self.batches.get(batch_id)
        if batch is None:
            return
        for key, value in fields.items():
            setattr(batch, key, value)

    def add_response(self, **overrides: Any) -> Response:
        """Seed a stored voice response with retained audio."""
        values: dict[str, Any] = {
            "project_id": "proj-1",
            "session_id": "sess-1",
            "input_method": InputMethod.VOICE,
            "audio_path": "proj-1/sess-1_1700000000000.webm",
            "status": ResponseStatus.PENDING,
            "duration_seconds": 30,
        }
        values.update(overrides)
        response = Response(**values)
        self.responses[response.id] = response
        return response


class InMemoryBlobStore(BlobStore):
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.fail_puts = False
        self.fail_fetches = False

    async def put(self, key: str, data: bytes, content_type: str = "") -> str:
        if self.fail_puts:
            raise StorageError(f"Failed to put object '{key}'", operation="put_object")
        self.objects[key] = data
        return key

    async def fetch(self, key: str) -> bytes:
        if self.fail_fetches or key not in self.objects:
            raise StorageError(
                f"Failed to fetch object '{key}'", operation="fetch_object"
            )
        return self.objects[key]

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)


class ScriptedEngine(TranscriptionEngine):
    """Engine that replays a list of outcomes, repeating the last one.

    Each outcome is a TranscriptionResult to return or an exception to raise.
    """

    name = "scripted"

    def __init__(self, *outcomes: TranscriptionResult | BaseException) -> None:
        self.outcomes = list(outcomes) or [
            TranscriptionResult(text="hola mundo", language="spanish", duration=12.4)
        ]
        self.calls: list[tuple[bytes, str, str]] = []

    async def transcribe(
        self, audio: bytes, extension: str, language: str
    ) -> TranscriptionResult:
        self.calls.append((audio, extension, language))
        index = min(len(self.calls) - 1, len(self.outcomes) - 1)
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return copy.copy(outcome)


async def fill_queue(worker: TaskWorker) -> asyncio.Event:
    """Occupy every worker and queue slot until the returned event is set."""
    gate = asyncio.Event()
    for _ in range(worker.concurrency):
        worker.submit(gate.wait, name="occupy")
    while worker.pending:
        await asyncio.sleep(0)
    for _ in range(worker.max_queue_size):
        worker.submit(gate.wait, name="occupy")
    return gate


def make_adapter(engine: TranscriptionEngine, max_retries: int = 2) -> TranscriptionAdapter:
    """Adapter with zero backoff so retry tests run instantly."""
    return TranscriptionAdapter(
        engine,
        timeout_seconds=1.0,
        retry_policy=RetryPolicy(
            max_retries=max_retries,
            base_delay=0.0,
            jitter=0.0,
            is_retryable=is_transient_error,
        ),
    )


@pytest.fixture
def records() -> InMemoryRecordStore:
    store = InMemoryRecordStore()
    store.subjects["owner-1"] = BillingSubject(user_id="owner-1", plan_key="freelancer")
    store.project_languages["proj-1"] = "es"
    return store


@pytest.fixture
def blobs() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def engine() -> ScriptedEngine:
    return ScriptedEngine()


@pytest.fixture
def quota(records: InMemoryRecordStore) -> QuotaResolver:
    return QuotaResolver(records, period_fn=lambda: PERIOD)


@pytest.fixture
async def worker():
    task_worker = TaskWorker(concurrency=1, max_queue_size=10)
    yield task_worker
    await task_worker.stop(timeout=1.0)


@pytest.fixture
async def batch_worker():
    task_worker = TaskWorker(concurrency=1, max_queue_size=10)
    yield task_worker
    await task_worker.stop(timeout=1.0)


@pytest.fixture
def settings() -> IngestSettings:
    return IngestSettings()


@pytest.fixture
def ingestor(records, blobs, quota, engine, worker, settings) -> ResponseIngestor:
    return ResponseIngestor(
        records, blobs, quota, make_adapter(engine), worker, settings=settings
    )


@pytest.fixture
def upserter(records, quota) -> TextResponseUpserter:
    return TextResponseUpserter(records, quota)


@pytest.fixture
def orchestrator(records, ingestor, batch_worker, quota, settings) -> BatchOrchestrator:
    return BatchOrchestrator(records, ingestor, batch_worker, quota, settings=settings)


@pytest.fixture
def project() -> ProjectContext:
    return ProjectContext(id="proj-1", owner_id="owner-1", language="es")


@pytest.fixture
def tenant(project: ProjectContext) -> TenantContext:
    return TenantContext(project=project, origin="https://acme.alchemer.com")
