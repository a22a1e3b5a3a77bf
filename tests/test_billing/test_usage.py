"""
Tests for the quota manager.

Runs against InMemoryDataStore, which has the same idempotency contract
as the record_lexia_usage RPC.
"""

import asyncio
from datetime import date
from unittest.mock import MagicMock

import pytest

from lexia.billing.usage import (
    DEFAULT_PLAN,
    PeriodUsage,
    QuotaManager,
    UserPlan,
    get_period_start,
)
from lexia.llm.llm_config import LexiaIntent
from lexia.testing.memory_store import InMemoryDataStore


@pytest.fixture
def store():
    return InMemoryDataStore()


@pytest.fixture
def quota(store):
    return QuotaManager(store)


class TestPeriodStart:

    def test_first_of_month(self):
        assert get_period_start(date(2024, 3, 17)) == date(2024, 3, 1)

    def test_already_first(self):
        assert get_period_start(date(2024, 1, 1)) == date(2024, 1, 1)

    def test_defaults_to_today(self):
        assert get_period_start() == date.today().replace(day=1)


class TestUserPlan:

    @pytest.mark.asyncio
    async def test_unassigned_gets_individual(self, quota):
        assert await quota.get_user_plan("nobody") == DEFAULT_PLAN
        assert DEFAULT_PLAN.credits_per_month == 300

    @pytest.mark.asyncio
    async def test_assigned_plan(self, store, quota):
        store.assign_plan("u-1", "estudio")
        assert await quota.get_user_plan("u-1") == UserPlan("estudio", 1000)

    @pytest.mark.asyncio
    async def test_no_usage_row_is_zero(self, quota):
        assert await quota.get_current_period_usage("u-1") == PeriodUsage(0.0, 0)


class TestCheckCreditsRemaining:

    @pytest.mark.asyncio
    async def test_fresh_user(self, quota):
        status = await quota.check_credits_remaining("u-1")
        assert status.allowed is True
        assert status.remaining == 300
        assert status.limit == 300

    @pytest.mark.asyncio
    async def test_partial_usage(self, store, quota):
        store.set_period_usage("u-1", get_period_start(), 120.5)
        status = await quota.check_credits_remaining("u-1")
        assert status.remaining == pytest.approx(179.5)
        assert status.allowed is True

    @pytest.mark.asyncio
    async def test_exhausted(self, store, quota, caplog):
        store.set_period_usage("u-1", get_period_start(), 300)
        with caplog.at_level("INFO", logger="lexia.billing.usage"):
            status = await quota.check_credits_remaining("u-1")
        assert status.allowed is False
        assert status.remaining == 0
        assert any(r.getMessage() == "quota_exhausted" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_overdrawn_clamped_to_zero(self, store, quota):
        store.set_period_usage("u-1", get_period_start(), 302)
        status = await quota.check_credits_remaining("u-1")
        assert status.remaining == 0
        assert status.allowed is False

    @pytest.mark.asyncio
    async def test_previous_month_ignored(self, store, quota):
        store.set_period_usage("u-1", date(2000, 1, 1), 999)
        assert (await quota.check_credits_remaining("u-1")).allowed is True


class TestRecordUsage:

    @pytest.mark.asyncio
    async def test_records_and_accumulates(self, store, quota):
        assert await quota.record_lexia_usage("u-1", "t-1", LexiaIntent.LEGAL_ANALYSIS, 3, 1820)
        assert await quota.record_lexia_usage("u-1", "t-2", "general_chat", 0.5, 200)

        usage = await quota.get_current_period_usage("u-1")
        assert usage.credits_used == pytest.approx(3.5)
        assert usage.tokens_used == 2020
        assert store.usage_log["t-1"]["intent"] == "legal_analysis"

    @pytest.mark.asyncio
    async def test_duplicate_trace_ignored(self, store, quota):
        assert await quota.record_lexia_usage("u-1", "t-1", "legal_analysis", 3) is True
        assert await quota.record_lexia_usage("u-1", "t-1", "legal_analysis", 3) is False

        usage = await quota.get_current_period_usage("u-1")
        assert usage.credits_used == 3

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_count_once(self, store, quota):
        results = await asyncio.gather(*(
            quota.record_lexia_usage("u-1", "t-1", "document_drafting", 2) for _ in range(10)
        ))
        assert results.count(True) == 1
        assert (await quota.get_current_period_usage("u-1")).credits_used == 2

    @pytest.mark.asyncio
    async def test_passes_current_period(self):
        store = MagicMock()
        store.record_usage.return_value = True
        await QuotaManager(store).record_lexia_usage("u-1", "t-1", "case_query", 0.5, 10)
        store.record_usage.assert_called_once_with(
            "u-1", "t-1", "case_query", 0.5, 10, get_period_start(),
        )

    def test_credits_for_uses_override_table(self, store):
        quota = QuotaManager(store, {LexiaIntent.LEGAL_ANALYSIS: 4})
        assert quota.credits_for("legal_analysis") == 4
        assert quota.credits_for("document_drafting") == 1
