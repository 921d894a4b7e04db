"""Speech-to-text provider modules."""

from voice_intake.asr.registry import engine_from_env, get_transcription_engine

__all__ = ["engine_from_env", "get_transcription_engine"]
