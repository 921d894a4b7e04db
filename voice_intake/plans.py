"""Plan definitions: the single source of truth for tier limits.

Plans are static configuration owned by account management. This module
only reads them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime


@dataclass(frozen=True)
class Plan:
    key: str
    name: str
    price: int
    max_responses: int
    max_projects: int | None
    max_duration: int
    languages: tuple[str, ...] | None
    export_formats: tuple[str, ...]
    batch: bool


PLANS: dict[str, Plan] = {
    "free": Plan(
        key="free",
        name="Free",
        price=0,
        max_responses=100,
        max_projects=2,
        max_duration=90,
        languages=("es",),
        export_formats=("csv",),
        batch=False,
    ),
    "freelancer": Plan(
        key="freelancer",
        name="Freelancer",
        price=39,
        max_responses=1000,
        max_projects=10,
        max_duration=180,
        languages=("es", "en", "pt", "fr", "de", "it", "ja", "ko", "zh"),
        export_formats=("csv", "xlsx"),
        batch=True,
    ),
    "pro": Plan(
        key="pro",
        name="Pro",
        price=199,
        max_responses=10000,
        max_projects=None,
        max_duration=300,
        languages=None,
        export_formats=("csv", "xlsx", "api"),
        batch=True,
    ),
    "enterprise": Plan(
        key="enterprise",
        name="Enterprise",
        price=499,
        max_responses=50000,
        max_projects=None,
        max_duration=600,
        languages=None,
        export_formats=("csv", "xlsx", "api"),
        batch=True,
    ),
}


def get_plan(plan_key: str | None) -> Plan:
    """Return the plan for a key, falling back to the free tier."""
    return PLANS.get(plan_key or "free", PLANS["free"])


def current_period(now: datetime | None = None) -> str:
    """Return the calendar-month quota period as 'YYYY-MM' (UTC)."""
    now = now or datetime.now(UTC)
    return f"{now.year:04d}-{now.month:02d}"
