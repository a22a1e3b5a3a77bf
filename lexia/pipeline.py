"""
Lexia request pipeline — wires the core components for one request.

    message → classify → route → (enrich) → prompt → quota check
            → stream (with fallback) → record usage → audit

start() runs everything up to the point where a stream is available and
hands it back; the caller forwards tokens to its transport. finish() is
called once the stream has been consumed and charges credits for the
intent that was actually served.

Usage:
    pipeline = LexiaPipeline(controller, orchestrator, quota, db)
    run = await pipeline.start(messages, user_id, case_input)
    if not run.allowed:
        ...  # quota exhausted, no model was called
    async for chunk in run.stream:
        ...
    audit = await pipeline.finish(run)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from lexia.billing.usage import CreditsRemaining, QuotaManager
from lexia.controller.context import (
    CaseContextData,
    CaseContextInput,
    CaseDataStore,
    enrich_case_context,
)
from lexia.controller.controller import AuditEntry, ControllerDecision, LexiaController
from lexia.llm.orchestrator import OrchestratorResult, StreamingOrchestrator
from lexia.llm.streaming import TokenStream
from lexia.llm.tools import ToolContext, get_tools_for_intent
from lexia.observability.logging_config import set_trace_id

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def insert_audit_entry(self, entry: Mapping[str, Any]) -> dict:
        ...


def latest_user_message(messages: list[dict[str, Any]]) -> str:
    """Text of the last user message; multi-part content is joined."""
    for message in reversed(messages):
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return " ".join(
                part.get("text", "")
                for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            )
        return ""
    return ""


@dataclass
class PipelineRun:
    """State of one request between start() and finish()."""

    allowed: bool
    user_id: str
    decision: ControllerDecision
    credits: CreditsRemaining
    message_count: int
    case_context: Optional[CaseContextData] = None
    result: Optional[OrchestratorResult] = None
    started_at: float = 0.0

    @property
    def stream(self) -> Optional[TokenStream]:
        return self.result.stream if self.result else None

    @property
    def final_decision(self) -> ControllerDecision:
        """The decision that actually served the request (fallback aware)."""
        return self.result.decision if self.result else self.decision


class LexiaPipeline:
    """Runs the control flow for one request at a time; shared across requests."""

    def __init__(
        self,
        controller: LexiaController,
        orchestrator: StreamingOrchestrator,
        quota: QuotaManager,
        store: CaseDataStore,
        audit_sink: Optional[AuditSink] = None,
        holidays: frozenset = frozenset(),
    ):
        self.controller = controller
        self.orchestrator = orchestrator
        self.quota = quota
        self.store = store
        self.audit_sink = audit_sink
        self.holidays = holidays

    async def start(
        self,
        messages: list[dict[str, Any]],
        user_id: str,
        case_input: Optional[CaseContextInput] = None,
    ) -> PipelineRun:
        started_at = time.monotonic()
        message = latest_user_message(messages)

        pending = self.controller.process_request(message, case_input, user_id)
        set_trace_id(pending.trace_id)

        case_context = None
        if pending.enrich_context and case_input is not None:
            case_context = await enrich_case_context(self.store, case_input)

        decision = self.controller.finalize_decision(pending, case_context)

        credits = await self.quota.check_credits_remaining(user_id)
        run = PipelineRun(
            allowed=credits.allowed,
            user_id=user_id,
            decision=decision,
            credits=credits,
            message_count=len(messages),
            case_context=case_context,
            started_at=started_at,
        )
        if not credits.allowed:
            logger.info(
                "request_refused_quota",
                extra={"trace_id": decision.trace_id, "user_id": user_id, "limit": credits.limit},
            )
            return run

        tools = get_tools_for_intent(decision.classification.tools_allowed)
        run.result = await self.orchestrator.run_stream_with_fallback(
            messages,
            decision,
            tools,
            ToolContext(case_context=case_context, holidays=self.holidays),
        )
        return run

    async def finish(self, run: PipelineRun) -> Optional[AuditEntry]:
        """Charge credits and write the audit entry. No-op for refused runs."""
        if not run.allowed or run.result is None:
            return None

        decision = run.final_decision
        stats = run.result.stream.stats
        intent = decision.classification.intent

        await self.quota.record_lexia_usage(
            run.user_id,
            decision.trace_id,
            intent,
            self.quota.credits_for(intent),
            stats.total_tokens,
        )

        entry = self.controller.create_audit_entry(
            decision,
            user_id=run.user_id,
            message_count=run.message_count,
            tokens_used=stats.total_tokens,
            duration_ms=int((time.monotonic() - run.started_at) * 1000),
            tools_invoked=stats.tools_invoked,
            case_id=decision.case_input.case_id if decision.case_input else None,
        )

        if self.audit_sink is not None:
            try:
                await asyncio.to_thread(self.audit_sink.insert_audit_entry, entry.to_dict())
            except Exception as e:
                logger.warning(
                    "audit_write_failed",
                    extra={"trace_id": entry.trace_id, "error": str(e)[:200]},
                )

        logger.info(
            "request_completed",
            extra={
                "trace_id": entry.trace_id,
                "user_id": entry.user_id,
                "intent": entry.intent.value,
                "model": entry.model,
                "tool_name": ",".join(entry.tools_invoked) or None,
                "duration_ms": entry.duration_ms,
            },
        )
        return entry
