"""Process entry point for the ingestion service.

Wires the storage clients, transcription adapter, and background workers
into the ingestion, text-upsert, and batch components, then runs the
workers alongside a lightweight HTTP health check server. Batches run on
their own worker so a long batch never delays single-response jobs. Handles SIGTERM
for graceful shutdown: queued transcription jobs get a bounded window to
finish before they are cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass

from voice_intake.asr.adapter import TranscriptionAdapter
from voice_intake.asr.registry import engine_from_env
from voice_intake.batch import BatchOrchestrator
from voice_intake.config import IngestSettings
from voice_intake.guards.domain import AllowedDomainsCache
from voice_intake.observability.logger import StructuredJsonFormatter
from voice_intake.pipeline import ResponseIngestor
from voice_intake.queue.worker import TaskWorker
from voice_intake.quota.resolver import QuotaResolver
from voice_intake.storage.blob_client import S3BlobStore
from voice_intake.storage.interface import BlobStore, RecordStore
from voice_intake.storage.supabase_client import SupabaseRecordStore
from voice_intake.text_upsert import TextResponseUpserter

logger = logging.getLogger(__name__)

# Leaves a buffer before the platform's hard kill after SIGTERM.
SHUTDOWN_TIMEOUT_SECONDS = 25


@dataclass
class Services:
    """The wired components the HTTP layer calls into."""

    settings: IngestSettings
    records: RecordStore
    blobs: BlobStore
    worker: TaskWorker
    batch_worker: TaskWorker
    ingestor: ResponseIngestor
    text: TextResponseUpserter
    batches: BatchOrchestrator


def _setup_logging() -> None:
    """Configure root logger with structured JSON output."""
    root = logging.getLogger()
    root.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)


def build_services(
    settings: IngestSettings | None = None,
    records: RecordStore | None = None,
    blobs: BlobStore | None = None,
    adapter: TranscriptionAdapter | None = None,
) -> Services:
    """Construct every component, using environment-configured clients
    for whatever is not passed in."""
    settings = settings or IngestSettings.from_env()
    records = records or SupabaseRecordStore()
    blobs = blobs or S3BlobStore()
    if adapter is None:
        engine = engine_from_env(settings.transcription_provider)
        adapter = TranscriptionAdapter.from_settings(engine, settings)

    worker = TaskWorker(
        concurrency=settings.worker_concurrency,
        max_queue_size=settings.worker_queue_size,
    )
    batch_worker = TaskWorker(
        concurrency=1, max_queue_size=settings.batch_worker_queue_size
    )
    quota = QuotaResolver(records)
    domains = AllowedDomainsCache(
        records.get_allowed_domains, ttl_seconds=settings.allowed_domains_ttl_seconds
    )
    ingestor = ResponseIngestor(
        records,
        blobs,
        quota,
        adapter,
        worker,
        settings=settings,
        domains_cache=domains,
    )
    return Services(
        settings=settings,
        records=records,
        blobs=blobs,
        worker=worker,
        batch_worker=batch_worker,
        ingestor=ingestor,
        text=TextResponseUpserter(records, quota, domains_cache=domains),
        batches=BatchOrchestrator(
            records, ingestor, batch_worker, quota, settings=settings
        ),
    )


async def _health_handler(reader: StreamReader, writer: StreamWriter) -> None:
    """Minimal HTTP handler that returns 200 OK for liveness probes."""
    await reader.read(4096)
    response = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/plain\r\n"
        "Content-Length: 2\r\n"
        "\r\n"
        "ok"
    )
    writer.write(response.encode())
    await writer.drain()
    writer.close()


async def _run(*workers: TaskWorker) -> None:
    """Run the health server and background workers until signalled."""
    port = int(os.environ.get("PORT", "8080"))
    server = await asyncio.start_server(_health_handler, "0.0.0.0", port)
    logger.info("Health server listening on port %d", port)

    for worker in workers:
        worker.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _shutdown() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown)

    await stop_event.wait()
    await asyncio.gather(
        *(worker.stop(timeout=SHUTDOWN_TIMEOUT_SECONDS) for worker in workers)
    )
    server.close()
    await server.wait_closed()


def main() -> None:
    """Start the ingestion service."""
    _setup_logging()
    logger.info("Voice intake service starting")

    services = build_services()
    asyncio.run(_run(services.worker, services.batch_worker))


if __name__ == "__main__":
    main()
