"""OpenAI Whisper speech-to-text client.

Posts audio to the OpenAI audio transcription endpoint with a
verbose_json response format and converts the result to the internal
TranscriptionResult model. HTTP failures are classified as permanent
(bad request, authentication) or transient (everything else).
"""

import logging

import httpx

from voice_intake.asr.interface import TranscriptionEngine, TranscriptionResult
from voice_intake.audio.formats import mime_for_extension
from voice_intake.utils.errors import PermanentProviderError, TransientProviderError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "whisper-1"
PERMANENT_STATUS_CODES = {400, 401, 403, 404, 413, 415, 422}


def classify_status(status_code: int, detail: str) -> Exception:
    """Map a non-200 provider status to the matching provider error."""
    if status_code in PERMANENT_STATUS_CODES:
        return PermanentProviderError(
            f"Whisper rejected request with status {status_code}: {detail}",
            provider="whisper",
            status_code=status_code,
        )
    return TransientProviderError(
        f"Whisper request failed with status {status_code}: {detail}",
        provider="whisper",
    )


class WhisperEngine(TranscriptionEngine):
    """OpenAI Whisper transcription engine.

    Args:
        api_key: OpenAI API key.
        base_url: API base URL (default production endpoint).
        model: Transcription model name.
        client: Optional shared AsyncClient; a short-lived client is
            created per call when omitted.
    """

    name = "whisper"

    def __init__(
        self,
        api_key: str = "",
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._client = client

    async def transcribe(
        self, audio: bytes, extension: str, language: str
    ) -> TranscriptionResult:
        """Transcribe audio bytes via the Whisper API.

        Raises:
            PermanentProviderError: On 4xx errors retrying cannot fix.
            TransientProviderError: On network errors, 429, and 5xx.
        """
        if self._client is not None:
            body = await self._post(self._client, audio, extension, language)
        else:
            # No client-level timeout; the adapter bounds each attempt.
            async with httpx.AsyncClient(timeout=None) as client:
                body = await self._post(client, audio, extension, language)
        return self._convert_response(body)

    async def _post(
        self,
        client: httpx.AsyncClient,
        audio: bytes,
        extension: str,
        language: str,
    ) -> dict:
        url = f"{self._base_url}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        files = {
            "file": (f"audio.{extension}", audio, mime_for_extension(extension)),
        }
        data = {
            "model": self._model,
            "language": language,
            "response_format": "verbose_json",
        }

        try:
            response = await client.post(url, headers=headers, files=files, data=data)
        except httpx.HTTPError as exc:
            raise TransientProviderError(
                f"Whisper request failed: {exc}", provider="whisper"
            ) from exc

        if response.status_code != 200:
            raise classify_status(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as exc:
            raise TransientProviderError(
                "Whisper returned a non-JSON body", provider="whisper"
            ) from exc

    def _convert_response(self, body: dict) -> TranscriptionResult:
        return TranscriptionResult(
            text=(body.get("text") or "").strip(),
            language=body.get("language"),
            duration=float(body.get("duration") or 0.0),
            raw_response=body,
        )
