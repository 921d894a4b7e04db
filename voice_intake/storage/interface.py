"""Storage interfaces consumed by the ingestion pipeline.

RecordStore covers responses, batches, usage counters, and the read-only
tenant lookups. BlobStore covers raw audio bytes. Implementations raise
StorageError on failure.
"""

from abc import ABC, abstractmethod
from typing import Any

from voice_intake.models import Batch, BillingSubject, Response


class RecordStore(ABC):
    """Row storage for responses, batches, and usage counters."""

    # Tenant lookups (read-only)

    @abstractmethod
    async def get_billing_subject(self, user_id: str) -> BillingSubject:
        """Return the billing subject for an account."""

    @abstractmethod
    async def get_allowed_domains(self, project_id: str) -> list[str]:
        """Return the domain allow-list configured for a project."""

    @abstractmethod
    async def get_project_language(self, project_id: str) -> str | None:
        """Return the project's transcription language, if it has one."""

    # Usage counters

    @abstractmethod
    async def get_usage(self, scope: str, subject_id: str, period: str) -> int:
        """Return the counter value, 0 when no row exists for the period."""

    @abstractmethod
    async def increment_usage(self, scope: str, subject_id: str, period: str) -> int:
        """Add one to the counter, creating it lazily. Returns the new value."""

    # Responses

    @abstractmethod
    async def insert_response(self, response: Response) -> Response:
        """Insert a response row."""

    @abstractmethod
    async def get_response(
        self, response_id: str, project_id: str | None = None
    ) -> Response | None:
        """Fetch a response by id, optionally scoped to a project."""

    @abstractmethod
    async def update_response(self, response_id: str, fields: dict[str, Any]) -> None:
        """Apply a partial update to a response row."""

    @abstractmethod
    async def delete_response(self, response_id: str) -> None:
        """Delete a response row."""

    @abstractmethod
    async def find_text_response(
        self, project_id: str, session_id: str, question_id: str | None
    ) -> Response | None:
        """Return the text-method response for (project, session, question)."""

    @abstractmethod
    async def list_responses_by_sessions(
        self, project_id: str, session_ids: list[str]
    ) -> list[Response]:
        """Return all responses in a project matching any of the sessions."""

    @abstractmethod
    async def list_batch_responses(
        self, batch_id: str, status: str | None = None
    ) -> list[Response]:
        """Return the responses assigned to a batch, optionally by status."""

    @abstractmethod
    async def assign_responses_to_batch(
        self, response_ids: list[str], batch_id: str
    ) -> None:
        """Mark responses as processing under a batch reference."""

    # Batches

    @abstractmethod
    async def insert_batch(self, batch: Batch) -> Batch:
        """Insert a batch row."""

    @abstractmethod
    async def get_batch(
        self, batch_id: str, project_id: str | None = None
    ) -> Batch | None:
        """Fetch a batch by id, optionally scoped to a project."""

    @abstractmethod
    async def update_batch(self, batch_id: str, fields: dict[str, Any]) -> None:
        """Apply a partial update to a batch row."""


class BlobStore(ABC):
    """Object storage for raw audio bytes."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "") -> str:
        """Store bytes under key and return the stored path."""

    @abstractmethod
    async def fetch(self, key: str) -> bytes:
        """Return the bytes stored under key."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the object stored under key."""
