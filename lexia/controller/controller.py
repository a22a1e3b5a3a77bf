"""
Lexia Controller — central decision layer.

The controller:
1. Classifies the user's intent from their latest message
2. Decides which provider/model serves it
3. Flags whether case context must be fetched
4. Builds the service configuration (prompt filled in later)

It never calls a model and never touches the database. process_request()
returns a PendingDecision; once enrichment has run (or been skipped),
finalize_decision() turns it into a ControllerDecision carrying the
system prompt. Keeping the two states as distinct types means a decision
without a prompt can never reach the streaming layer.

Usage:
    controller = LexiaController()
    pending = controller.process_request(message, case_input, user_id)
    case_context = await enrich_case_context(db, case_input) if pending.enrich_context else None
    decision = controller.finalize_decision(pending, case_context)
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from lexia.controller.classifier import IntentClassifier
from lexia.controller.context import CaseContextData, CaseContextInput
from lexia.controller.prompts import build_system_prompt
from lexia.llm.llm_config import (
    AIProvider,
    IntentClassification,
    LexiaIntent,
    LLMConfig,
    ServiceConfig,
    get_default_config,
)

logger = logging.getLogger(__name__)


def generate_trace_id() -> str:
    """Unique per request: lexia-<epoch ms>-<random hex>."""
    return f"lexia-{int(time.time() * 1000)}-{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PendingDecision:
    """Routing decision before the system prompt is built."""

    classification: IntentClassification
    service_config: ServiceConfig
    enrich_context: bool
    trace_id: str
    case_input: Optional[CaseContextInput] = None


@dataclass(frozen=True)
class ControllerDecision:
    """Finalized decision, ready for the streaming layer."""

    classification: IntentClassification
    service_config: ServiceConfig
    enrich_context: bool
    trace_id: str
    case_input: Optional[CaseContextInput] = None

    @property
    def intent(self) -> LexiaIntent:
        return self.classification.intent


@dataclass(frozen=True)
class AuditEntry:
    """Traceability record for one completed request."""

    trace_id: str
    user_id: str
    timestamp: str
    intent: LexiaIntent
    provider: AIProvider
    model: str
    case_id: Optional[str]
    message_count: int
    tokens_used: int
    duration_ms: int
    tools_invoked: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "trace_id": self.trace_id,
            "user_id": self.user_id,
            "timestamp": self.timestamp,
            "intent": self.intent.value,
            "provider": self.provider.value,
            "model": self.model,
            "case_id": self.case_id,
            "message_count": self.message_count,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
            "tools_invoked": list(self.tools_invoked),
        }


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class LexiaController:
    """Turns a user message into a routing decision. Stateless per request."""

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        classifier: Optional[IntentClassifier] = None,
    ):
        self.config = config or get_default_config()
        self.classifier = classifier or IntentClassifier()

    def process_request(
        self,
        message: str,
        case_input: Optional[CaseContextInput],
        user_id: str,
    ) -> PendingDecision:
        """
        Classify and route a request. No I/O.

        Raises:
            RoutingConfigurationError: the routing table points at a model
                missing from the registry.
        """
        has_case = case_input is not None
        result = self.classifier.classify(message, has_case)

        classification = self.config.resolve_intent_routing(
            result.intent, result.confidence, has_case,
        )
        rule = self.config.get_routing_rule(result.intent)

        service_config = ServiceConfig(
            provider=classification.provider,
            model=classification.model,
            temperature=rule.temperature,
            max_tokens=rule.max_tokens,
        )

        pending = PendingDecision(
            classification=classification,
            service_config=service_config,
            enrich_context=classification.requires_context and has_case,
            trace_id=generate_trace_id(),
            case_input=case_input,
        )

        logger.info(
            "intent_classified",
            extra={
                "trace_id": pending.trace_id,
                "user_id": user_id,
                "intent": classification.intent.value,
                "confidence": round(classification.confidence, 3),
                "model": classification.model,
                "enrich_context": pending.enrich_context,
            },
        )
        return pending

    def finalize_decision(
        self,
        pending: PendingDecision,
        case_context: Optional[CaseContextData],
    ) -> ControllerDecision:
        """Attach the system prompt built from the intent and case context."""
        # Never empty: without case context the prompt is the bare intent template.
        system_prompt = build_system_prompt(pending.classification.intent, case_context)
        return ControllerDecision(
            classification=pending.classification,
            service_config=replace(pending.service_config, system_prompt=system_prompt),
            enrich_context=pending.enrich_context,
            trace_id=pending.trace_id,
            case_input=pending.case_input,
        )

    def create_audit_entry(
        self,
        decision: ControllerDecision,
        user_id: str,
        message_count: int,
        tokens_used: int,
        duration_ms: int,
        tools_invoked: list[str] | tuple[str, ...],
        case_id: Optional[str] = None,
    ) -> AuditEntry:
        return AuditEntry(
            trace_id=decision.trace_id,
            user_id=user_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            intent=decision.classification.intent,
            provider=decision.classification.provider,
            model=decision.classification.model,
            case_id=case_id,
            message_count=message_count,
            tokens_used=tokens_used,
            duration_ms=duration_ms,
            tools_invoked=tuple(tools_invoked),
        )


# ---------------------------------------------------------------------------
# Module-level shortcuts
# ---------------------------------------------------------------------------

_default_controller: Optional[LexiaController] = None


def _get_default_controller() -> LexiaController:
    global _default_controller
    if _default_controller is None:
        _default_controller = LexiaController()
    return _default_controller


def process_request(
    message: str,
    case_input: Optional[CaseContextInput],
    user_id: str,
) -> PendingDecision:
    return _get_default_controller().process_request(message, case_input, user_id)


def finalize_decision(
    pending: PendingDecision,
    case_context: Optional[CaseContextData],
) -> ControllerDecision:
    return _get_default_controller().finalize_decision(pending, case_context)


def create_audit_entry(
    decision: ControllerDecision,
    user_id: str,
    message_count: int,
    tokens_used: int,
    duration_ms: int,
    tools_invoked: list[str] | tuple[str, ...],
    case_id: Optional[str] = None,
) -> AuditEntry:
    return _get_default_controller().create_audit_entry(
        decision, user_id, message_count, tokens_used, duration_ms, tools_invoked, case_id,
    )
