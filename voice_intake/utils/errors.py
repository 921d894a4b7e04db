"""Exception hierarchy for the response ingestion pipeline.

All exceptions inherit from IngestError, enabling targeted handling at
request and worker boundaries while preserving specific failure context.
Each class carries the HTTP status the request layer should answer with.
"""


class IngestError(Exception):
    """Base exception for all ingestion pipeline errors."""

    http_status = 500

    def __init__(
        self,
        message: str,
        response_id: str | None = None,
        batch_id: str | None = None,
    ) -> None:
        self.response_id = response_id
        self.batch_id = batch_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.batch_id:
            return f"[batch={self.batch_id}] {super().__str__()}"
        if self.response_id:
            return f"[response={self.response_id}] {super().__str__()}"
        return super().__str__()


class ValidationError(IngestError):
    """Raised when request input has a bad shape, size, or type."""

    http_status = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class QuotaExceededError(IngestError):
    """Raised when the billing subject is over its monthly limit."""

    http_status = 429

    def __init__(
        self,
        message: str,
        limit: int | None = None,
        current: int | None = None,
    ) -> None:
        self.limit = limit
        self.current = current
        super().__init__(message)


class DomainUnauthorizedError(IngestError):
    """Raised when the request origin is not on the project allow-list."""

    http_status = 403

    def __init__(self, message: str, origin: str | None = None) -> None:
        self.origin = origin
        super().__init__(message)


class TranscriptionError(IngestError):
    """Raised when the speech-to-text provider call fails."""

    http_status = 502

    def __init__(
        self,
        message: str,
        response_id: str | None = None,
        provider: str | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, response_id=response_id)


class TransientProviderError(TranscriptionError):
    """Provider failure worth retrying (timeout, rate limit, 5xx)."""


class PermanentProviderError(TranscriptionError):
    """Provider failure that retrying cannot fix (bad request, auth)."""

    def __init__(
        self,
        message: str,
        response_id: str | None = None,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, response_id=response_id, provider=provider)


class StorageError(IngestError):
    """Raised when record or blob storage operations fail."""

    http_status = 500

    def __init__(
        self,
        message: str,
        response_id: str | None = None,
        batch_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, response_id=response_id, batch_id=batch_id)


class NotFoundError(IngestError):
    """Raised when a project, response, or batch does not exist."""

    http_status = 404

    def __init__(self, message: str, resource: str | None = None) -> None:
        self.resource = resource
        super().__init__(message)


class InvalidStateError(IngestError):
    """Raised when a lifecycle transition is not legal from the current state."""

    http_status = 409

    def __init__(
        self,
        message: str,
        batch_id: str | None = None,
        current_status: str | None = None,
        response_id: str | None = None,
    ) -> None:
        self.current_status = current_status
        super().__init__(message, response_id=response_id, batch_id=batch_id)


class QueueFullError(IngestError):
    """Raised when the background worker queue cannot accept more tasks."""

    http_status = 503
