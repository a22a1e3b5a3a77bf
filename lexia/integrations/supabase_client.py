"""
Supabase client wrapper for the Lexia routing core.

Implements the data-store capabilities the core consumes: the composite
case snapshot used by context enrichment, plan and period lookups for the
quota manager, idempotent usage recording and the audit trail.

Every call is synchronous (supabase-py); async callers run them through
asyncio.to_thread. Failures surface as DependencyError.
"""

from __future__ import annotations

import logging
import os
from datetime import date
from typing import Any, Callable, Mapping, Optional, TypeVar

from supabase import Client, create_client

from lexia.billing.credits import PLAN_CREDITS, get_plan_credits_limit
from lexia.billing.usage import PeriodUsage, UserPlan
from lexia.exceptions import DependencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

CASE_SNAPSHOT_SELECT = (
    "*, "
    "companies(company_name), "
    "deadlines(title, due_date, status), "
    "tasks(title, status, priority), "
    "case_notes(content, created_at)"
)


class LexiaDB:
    """
    Database client for Lexia.

    Uses the Supabase service role key (bypasses RLS); usage recording
    goes through the record_lexia_usage RPC, which owns idempotency.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        plan_credits: Optional[Mapping[str, int]] = None,
    ):
        if client is None:
            url = os.environ.get("SUPABASE_URL")
            key = os.environ.get("SUPABASE_SERVICE_KEY")
            if not url or not key:
                raise EnvironmentError(
                    "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
                )
            client = create_client(url, key)
        self.client: Client = client
        self._plan_credits = plan_credits or PLAN_CREDITS

    def _run(self, operation: str, query: Callable[[], T]) -> T:
        try:
            return query()
        except Exception as e:
            logger.warning(
                "supabase_call_failed",
                extra={"operation": operation, "error": str(e)[:200]},
            )
            raise DependencyError(
                f"Supabase {operation} failed: {e}",
                service="supabase",
                operation=operation,
            ) from e

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    def fetch_case_snapshot(self, case_id: str) -> Optional[dict[str, Any]]:
        """Case row with company, deadlines, tasks and notes in one query."""
        result = self._run(
            "fetch_case_snapshot",
            lambda: (
                self.client.table("cases")
                .select(CASE_SNAPSHOT_SELECT)
                .eq("id", case_id)
                .limit(1)
                .execute()
            ),
        )
        if not result.data:
            return None

        row = result.data[0]
        company = row.get("companies") or {}
        deadlines = sorted(row.get("deadlines") or [], key=lambda d: d.get("due_date") or "")
        notes = sorted(
            row.get("case_notes") or [],
            key=lambda n: n.get("created_at") or "",
            reverse=True,
        )
        return {
            "status": row.get("status"),
            "description": row.get("description"),
            "company_name": company.get("company_name") if isinstance(company, dict) else None,
            "deadlines": deadlines,
            "tasks": row.get("tasks") or [],
            "notes": notes,
        }

    # ------------------------------------------------------------------
    # Plans & Usage
    # ------------------------------------------------------------------

    def get_user_plan(self, user_id: str) -> Optional[UserPlan]:
        """Plan assigned via profiles.lexia_plan_id, or None."""
        profile = self._run(
            "get_user_plan",
            lambda: (
                self.client.table("profiles")
                .select("lexia_plan_id")
                .eq("id", user_id)
                .limit(1)
                .execute()
            ),
        )
        plan_id = profile.data[0].get("lexia_plan_id") if profile.data else None
        if not plan_id:
            return None

        plan = self._run(
            "get_user_plan",
            lambda: (
                self.client.table("lexia_plans")
                .select("slug, credits_per_month")
                .eq("id", plan_id)
                .limit(1)
                .execute()
            ),
        )
        if not plan.data:
            return None

        row = plan.data[0]
        slug = row["slug"]
        credits = row.get("credits_per_month")
        if credits is None:
            credits = get_plan_credits_limit(slug, self._plan_credits)
        return UserPlan(slug=slug, credits_per_month=int(credits))

    def get_period_usage(self, user_id: str, period_start: date) -> Optional[PeriodUsage]:
        result = self._run(
            "get_period_usage",
            lambda: (
                self.client.table("lexia_usage_periods")
                .select("credits_used, tokens_used")
                .eq("user_id", user_id)
                .eq("period_start", period_start.isoformat())
                .limit(1)
                .execute()
            ),
        )
        if not result.data:
            return None
        row = result.data[0]
        return PeriodUsage(
            credits_used=float(row.get("credits_used") or 0),
            tokens_used=int(row.get("tokens_used") or 0),
        )

    def record_usage(
        self,
        user_id: str,
        trace_id: str,
        intent: str,
        credits_charged: float,
        tokens_used: int,
        period_start: date,
    ) -> bool:
        """Log one request via the RPC; False when the trace id already exists."""
        result = self._run(
            "record_usage",
            lambda: self.client.rpc(
                "record_lexia_usage",
                {
                    "p_user_id": user_id,
                    "p_trace_id": trace_id,
                    "p_intent": intent,
                    "p_credits_charged": credits_charged,
                    "p_tokens_used": tokens_used,
                    "p_period_start": period_start.isoformat(),
                },
            ).execute(),
        )
        return bool(result.data)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def insert_audit_entry(self, entry: Mapping[str, Any]) -> dict:
        """Store a Lexia request in activity_log."""
        data = {
            "user_id": entry["user_id"],
            "action_type": "lexia_request",
            "entity_type": "lexia",
            "entity_id": entry.get("case_id") or entry["user_id"],
            "case_id": entry.get("case_id"),
            "description": f"Consulta a Lexia ({entry['intent']})",
            "new_values": dict(entry),
        }
        result = self._run(
            "insert_audit_entry",
            lambda: self.client.table("activity_log").insert(data).execute(),
        )
        return result.data[0] if result.data else {}
