"""Abstract speech-to-text engine interface.

Concrete providers (e.g., Whisper) subclass TranscriptionEngine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class TranscriptionResult:
    """Text, language, and duration reported by the provider."""

    text: str
    language: str | None
    duration: float
    raw_response: dict = field(default_factory=dict)
    attempts: int = 1


class TranscriptionEngine(ABC):
    """Abstract base class for speech-to-text provider implementations.

    Subclasses must implement transcribe() and raise TransientProviderError
    or PermanentProviderError on failure.
    """

    name = "unknown"

    @abstractmethod
    async def transcribe(
        self, audio: bytes, extension: str, language: str
    ) -> TranscriptionResult:
        """Transcribe audio bytes and return the provider's result.

        Args:
            audio: Raw audio bytes as uploaded.
            extension: File extension hint (e.g. "webm", "mp3").
            language: Short language code sent to the provider.

        Returns:
            TranscriptionResult with text, language, and duration.
        """
