"""Audio duration guard, checked before any provider call."""

from voice_intake.utils.errors import ValidationError


def check_duration(duration_seconds: float | None, plan_max: int) -> None:
    """Reject a declared duration above the plan's maximum.

    A missing duration passes; the provider reports the real one later.
    """
    if duration_seconds is not None and duration_seconds > plan_max:
        raise ValidationError(
            f"Audio too long. Maximum duration for your plan: {plan_max} seconds",
            field="duration_seconds",
        )
