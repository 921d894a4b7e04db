"""Quota resolution and usage counting per billing subject.

A subject in an organization pool is gated by the pool's plan and counter;
the member's own counter is still read and incremented for reporting.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from voice_intake.models import BillingSubject, UsageCounter
from voice_intake.plans import Plan, current_period, get_plan
from voice_intake.storage.interface import RecordStore
from voice_intake.utils.errors import QuotaExceededError

logger = logging.getLogger(__name__)

SCOPE_PERSONAL = "personal"
SCOPE_ORGANIZATION = "organization"


@dataclass
class QuotaStatus:
    """Effective plan and usage for one billing subject in one period."""

    subject: BillingSubject
    plan: Plan
    period: str
    usage_current: int
    usage_scope: str
    personal_current: int

    @property
    def quota_exceeded(self) -> bool:
        return self.usage_current >= self.plan.max_responses

    @property
    def remaining(self) -> int:
        return max(0, self.plan.max_responses - self.usage_current)


class QuotaResolver:
    """Resolves plan limits and current usage; increments counters.

    The check in resolve() and the write in increment() are separate
    round-trips, so concurrent requests near the limit can overshoot it by
    a small amount.
    """

    def __init__(
        self,
        store: RecordStore,
        period_fn: Callable[[], str] = current_period,
    ) -> None:
        self._store = store
        self._period_fn = period_fn

    async def resolve(self, tenant_key: str) -> QuotaStatus:
        subject = await self._store.get_billing_subject(tenant_key)
        period = self._period_fn()
        personal = await self._store.get_usage(SCOPE_PERSONAL, subject.user_id, period)

        if subject.is_pooled:
            plan = get_plan(subject.org_plan_key)
            current = await self._store.get_usage(
                SCOPE_ORGANIZATION, subject.org_id, period
            )
            scope = SCOPE_ORGANIZATION
        else:
            plan = get_plan(subject.plan_key)
            current = personal
            scope = SCOPE_PERSONAL

        return QuotaStatus(
            subject=subject,
            plan=plan,
            period=period,
            usage_current=current,
            usage_scope=scope,
            personal_current=personal,
        )

    @staticmethod
    def ensure_within_quota(status: QuotaStatus) -> None:
        """Raise QuotaExceededError when one more response is not allowed."""
        if status.quota_exceeded:
            raise QuotaExceededError(
                f"Monthly response limit reached ({status.plan.max_responses} "
                f"on the {status.plan.name} plan)",
                limit=status.plan.max_responses,
                current=status.usage_current,
            )

    async def check(self, tenant_key: str) -> QuotaStatus:
        """Resolve and gate in one step."""
        status = await self.resolve(tenant_key)
        self.ensure_within_quota(status)
        return status

    async def increment(self, status: QuotaStatus) -> list[UsageCounter]:
        """Count one completed response against the subject's quota.

        Pooled subjects increment the pool counter and the member's personal
        counter; individual subjects increment the personal counter only.

        Returns:
            The counters after the increment, pool first when pooled.
        """
        subject = status.subject
        counters: list[UsageCounter] = []
        if subject.is_pooled:
            count = await self._store.increment_usage(
                SCOPE_ORGANIZATION, subject.org_id, status.period
            )
            counters.append(
                UsageCounter(SCOPE_ORGANIZATION, subject.org_id, status.period, count)
            )
        count = await self._store.increment_usage(
            SCOPE_PERSONAL, subject.user_id, status.period
        )
        counters.append(UsageCounter(SCOPE_PERSONAL, subject.user_id, status.period, count))
        logger.debug(
            "Usage incremented for %s (%s scope, period %s)",
            subject.user_id,
            status.usage_scope,
            status.period,
        )
        return counters
