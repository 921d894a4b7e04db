"""Transcription provider lookup.

Providers are registered by name with the environment variables that
configure them. engine_from_env() is what the service uses at startup;
get_transcription_engine() takes explicit keyword arguments instead.
"""

from __future__ import annotations

import os
from collections.abc import Mapping

from voice_intake.asr.interface import TranscriptionEngine
from voice_intake.asr.whisper import WhisperEngine
from voice_intake.utils.errors import TranscriptionError

TRANSCRIPTION_ENGINES: dict[str, type[TranscriptionEngine]] = {
    "whisper": WhisperEngine,
}

# Constructor argument -> environment variable, per provider.
ENGINE_ENV: dict[str, dict[str, str]] = {
    "whisper": {
        "api_key": "OPENAI_API_KEY",
        "base_url": "WHISPER_BASE_URL",
        "model": "WHISPER_MODEL",
    },
}


def _engine_class(provider: str) -> type[TranscriptionEngine]:
    engine_cls = TRANSCRIPTION_ENGINES.get(provider)
    if not engine_cls:
        available = ", ".join(sorted(TRANSCRIPTION_ENGINES))
        raise TranscriptionError(
            f"Unknown transcription provider: '{provider}'. Available: {available}",
            provider=provider,
        )
    return engine_cls


def get_transcription_engine(provider: str, **kwargs: object) -> TranscriptionEngine:
    """Create a transcription engine by provider name.

    Raises:
        TranscriptionError: If the provider name is not registered.
    """
    return _engine_class(provider)(**kwargs)


def engine_from_env(
    provider: str, environ: Mapping[str, str] | None = None
) -> TranscriptionEngine:
    """Create a provider's engine from its environment variables.

    Unset or empty variables are left to the engine's defaults; a missing
    API key surfaces as the engine's own ValueError.

    Raises:
        TranscriptionError: If the provider name is not registered.
    """
    engine_cls = _engine_class(provider)
    env = os.environ if environ is None else environ
    kwargs = {
        arg: env[var]
        for arg, var in ENGINE_ENV.get(provider, {}).items()
        if env.get(var)
    }
    return engine_cls(**kwargs)
