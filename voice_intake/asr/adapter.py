"""Transcription adapter: bounded, retried calls to the speech-to-text engine.

Each attempt runs under its own timeout. Timeouts and other transient
failures are retried with exponential backoff plus jitter; permanent
provider errors are raised on the first failure.
"""

from __future__ import annotations

import asyncio
import logging

from voice_intake.asr.interface import TranscriptionEngine, TranscriptionResult
from voice_intake.asr.languages import (
    DEFAULT_LANGUAGE,
    normalize_language_code,
    normalize_language_hint,
)
from voice_intake.config import IngestSettings
from voice_intake.utils.errors import (
    PermanentProviderError,
    TranscriptionError,
    TransientProviderError,
)
from voice_intake.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


def is_transient_error(exc: BaseException) -> bool:
    """Everything except a permanent provider error is worth retrying."""
    return not isinstance(exc, PermanentProviderError)


class TranscriptionAdapter:
    """Wraps a TranscriptionEngine with a per-attempt timeout and retries.

    Args:
        engine: The provider engine to call.
        timeout_seconds: Upper bound for a single provider attempt.
        retry_policy: Attempt bound and backoff schedule.
        default_language: Code used when the hint is missing or unknown.
    """

    def __init__(
        self,
        engine: TranscriptionEngine,
        timeout_seconds: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        default_language: str = DEFAULT_LANGUAGE,
    ) -> None:
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=2,
            base_delay=2.0,
            jitter=1.0,
            is_retryable=is_transient_error,
        )
        self.default_language = default_language

    @classmethod
    def from_settings(
        cls, engine: TranscriptionEngine, settings: IngestSettings
    ) -> TranscriptionAdapter:
        return cls(
            engine,
            timeout_seconds=settings.transcription_timeout_seconds,
            retry_policy=RetryPolicy(
                max_retries=settings.transcription_max_retries,
                base_delay=settings.backoff_base_seconds,
                jitter=settings.backoff_jitter_seconds,
                is_retryable=is_transient_error,
            ),
            default_language=settings.default_language,
        )

    async def transcribe(
        self,
        audio: bytes,
        extension: str,
        language: str | None = None,
    ) -> TranscriptionResult:
        """Transcribe audio, retrying transient failures.

        Args:
            audio: Raw audio bytes.
            extension: Format hint derived from the content type.
            language: Caller's language hint; normalized before the call.

        Returns:
            TranscriptionResult with the language normalized to a short
            code and `attempts` set to the number of provider calls made.

        Raises:
            PermanentProviderError: Immediately, without retry.
            TranscriptionError: The last transient error once the retry
                bound is exhausted. `_retry_count` is attached.
        """
        hint = normalize_language_hint(language, self.default_language)
        attempts = 0

        async def attempt() -> TranscriptionResult:
            nonlocal attempts
            attempts += 1
            return await self._attempt(audio, extension, hint)

        result = await self.retry_policy.run(attempt)
        result.language = normalize_language_code(result.language) or hint
        result.attempts = attempts
        return result

    async def _attempt(
        self, audio: bytes, extension: str, language: str
    ) -> TranscriptionResult:
        try:
            return await asyncio.wait_for(
                self.engine.transcribe(audio, extension, language),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as exc:
            raise TransientProviderError(
                f"Transcription timed out after {self.timeout_seconds:g}s",
                provider=self.engine.name,
            ) from exc
        except TranscriptionError:
            raise
        except Exception as exc:
            logger.warning(
                "Unexpected error from %s engine: %s", self.engine.name, exc
            )
            raise TransientProviderError(
                f"Transcription failed: {exc}", provider=self.engine.name
            ) from exc
