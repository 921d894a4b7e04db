"""Tests for the transcription engine interface and registry."""

import pytest

from voice_intake.asr.interface import TranscriptionEngine, TranscriptionResult
from voice_intake.asr.registry import (
    TRANSCRIPTION_ENGINES,
    engine_from_env,
    get_transcription_engine,
)
from voice_intake.asr.whisper import DEFAULT_BASE_URL, DEFAULT_MODEL, WhisperEngine
from voice_intake.utils.errors import TranscriptionError


class TestTranscriptionEngineABC:
    def test_cannot_instantiate_directly(self) -> None:
        with pytest.raises(TypeError):
            TranscriptionEngine()  # type: ignore[abstract]

    def test_result_defaults(self) -> None:
        result = TranscriptionResult(text="hi", language="en", duration=1.5)
        assert result.raw_response == {}
        assert result.attempts == 1


class TestGetTranscriptionEngine:
    def test_whisper_returns_instance(self) -> None:
        engine = get_transcription_engine("whisper", api_key="sk-test")
        assert isinstance(engine, WhisperEngine)

    def test_unknown_provider_raises(self) -> None:
        with pytest.raises(TranscriptionError, match="Unknown transcription provider: 'nope'"):
            get_transcription_engine("nope")

    def test_error_message_lists_available_providers(self) -> None:
        with pytest.raises(TranscriptionError) as exc_info:
            get_transcription_engine("nonexistent")
        message = str(exc_info.value)
        assert "whisper" in message
        assert "Available:" in message

    def test_registered_engine_retrievable(self) -> None:
        class MockEngine(TranscriptionEngine):
            async def transcribe(self, audio, extension, language):
                return TranscriptionResult(text="", language=language, duration=0.0)

        original = TRANSCRIPTION_ENGINES.copy()
        try:
            TRANSCRIPTION_ENGINES["mock"] = MockEngine
            assert isinstance(get_transcription_engine("mock"), MockEngine)
        finally:
            TRANSCRIPTION_ENGINES.clear()
            TRANSCRIPTION_ENGINES.update(original)


class TestEngineFromEnv:
    def test_reads_provider_variables(self) -> None:
        engine = engine_from_env(
            "whisper",
            {
                "OPENAI_API_KEY": "sk-env",
                "WHISPER_BASE_URL": "https://proxy.example.com/v1/",
                "WHISPER_MODEL": "whisper-large",
            },
        )
        assert isinstance(engine, WhisperEngine)
        assert engine._api_key == "sk-env"
        assert engine._base_url == "https://proxy.example.com/v1"
        assert engine._model == "whisper-large"

    def test_unset_variables_keep_engine_defaults(self) -> None:
        engine = engine_from_env(
            "whisper", {"OPENAI_API_KEY": "sk-env", "WHISPER_MODEL": ""}
        )
        assert engine._base_url == DEFAULT_BASE_URL
        assert engine._model == DEFAULT_MODEL

    def test_missing_api_key_rejected(self) -> None:
        with pytest.raises(ValueError, match="api_key"):
            engine_from_env("whisper", {})

    def test_defaults_to_process_environment(self, monkeypatch) -> None:
        monkeypatch.setenv("OPENAI_API_KEY", "sk-process")
        monkeypatch.delenv("WHISPER_MODEL", raising=False)
        engine = engine_from_env("whisper")
        assert engine._api_key == "sk-process"

    def test_unknown_provider_raises(self) -> None:
        with pytest.raises(TranscriptionError, match="Unknown transcription provider"):
            engine_from_env("nope", {"OPENAI_API_KEY": "sk-env"})
