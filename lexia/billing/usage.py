"""
Usage and quota — plans, monthly periods, recording.

QuotaManager answers "may this user make another request this month?"
before any model is called, and records the credits charged afterwards.
Recording is idempotent by trace id: the store ignores a trace it has
already seen and reports that through the return value.

Usage:
    quota = QuotaManager(db)
    status = await quota.check_credits_remaining(user_id)
    if not status.allowed:
        ...  # refuse without calling a model

    recorded = await quota.record_lexia_usage(
        user_id, decision.trace_id, "legal_analysis", 3, tokens_used=1820,
    )
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional, Protocol

from lexia.billing.credits import (
    DEFAULT_PLAN_CREDITS,
    DEFAULT_PLAN_SLUG,
    get_credits_for_intent,
)
from lexia.llm.llm_config import LexiaIntent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserPlan:
    slug: str
    credits_per_month: int


@dataclass(frozen=True)
class PeriodUsage:
    credits_used: float = 0.0
    tokens_used: int = 0


@dataclass(frozen=True)
class CreditsRemaining:
    allowed: bool
    remaining: float
    limit: int


DEFAULT_PLAN = UserPlan(slug=DEFAULT_PLAN_SLUG, credits_per_month=DEFAULT_PLAN_CREDITS)


def get_period_start(today: Optional[date] = None) -> date:
    """First day of the current calendar month. Computed on every call."""
    today = today or date.today()
    return today.replace(day=1)


class UsageStore(Protocol):
    """Data-store capability consumed by the quota manager."""

    def get_user_plan(self, user_id: str) -> Optional[UserPlan]:
        """The user's assigned plan, or None when unassigned."""
        ...

    def get_period_usage(self, user_id: str, period_start: date) -> Optional[PeriodUsage]:
        ...

    def record_usage(
        self,
        user_id: str,
        trace_id: str,
        intent: str,
        credits_charged: float,
        tokens_used: int,
        period_start: date,
    ) -> bool:
        """Atomically log one request; False if the trace id was already logged."""
        ...


class QuotaManager:
    """Monthly credit accounting over a UsageStore."""

    def __init__(
        self,
        store: UsageStore,
        credits_by_intent: Optional[Mapping[LexiaIntent, float]] = None,
    ):
        self._store = store
        self._credits_by_intent = credits_by_intent

    def credits_for(self, intent: str | LexiaIntent) -> float:
        return get_credits_for_intent(intent, self._credits_by_intent)

    async def get_user_plan(self, user_id: str) -> UserPlan:
        """The user's plan; unassigned users get the individual plan."""
        plan = await asyncio.to_thread(self._store.get_user_plan, user_id)
        return plan or DEFAULT_PLAN

    async def get_current_period_usage(self, user_id: str) -> PeriodUsage:
        usage = await asyncio.to_thread(
            self._store.get_period_usage, user_id, get_period_start(),
        )
        return usage or PeriodUsage()

    async def check_credits_remaining(self, user_id: str) -> CreditsRemaining:
        plan, usage = await asyncio.gather(
            self.get_user_plan(user_id),
            self.get_current_period_usage(user_id),
        )

        limit = plan.credits_per_month
        remaining = max(0, limit - usage.credits_used)
        status = CreditsRemaining(allowed=remaining > 0, remaining=remaining, limit=limit)

        if not status.allowed:
            logger.info(
                "quota_exhausted",
                extra={"user_id": user_id, "plan": plan.slug, "limit": limit},
            )
        return status

    async def record_lexia_usage(
        self,
        user_id: str,
        trace_id: str,
        intent: str | LexiaIntent,
        credits_charged: float,
        tokens_used: int = 0,
    ) -> bool:
        """Record one request. Returns False when the trace was already recorded."""
        intent_value = intent.value if isinstance(intent, LexiaIntent) else str(intent)
        recorded = await asyncio.to_thread(
            self._store.record_usage,
            user_id,
            trace_id,
            intent_value,
            credits_charged,
            tokens_used,
            get_period_start(),
        )

        if recorded:
            logger.info(
                "usage_recorded",
                extra={
                    "trace_id": trace_id,
                    "user_id": user_id,
                    "intent": intent_value,
                    "credits": credits_charged,
                    "tokens": tokens_used,
                },
            )
        else:
            logger.info("usage_duplicate_ignored", extra={"trace_id": trace_id})
        return recorded
