"""
Tests for the Lexia controller decision flow.

Covers:
- process_request(): intent, routing, enrich flag, trace id
- finalize_decision(): prompt attached, nothing else changed
- create_audit_entry(): traceability record
"""

import re
from dataclasses import replace
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from lexia.controller.classifier import ClassificationResult
from lexia.controller.context import CaseContextData, CaseContextInput
from lexia.controller.controller import (
    ControllerDecision,
    LexiaController,
    PendingDecision,
    generate_trace_id,
    process_request,
)
from lexia.controller.prompts import (
    GENERAL_CHAT_PROMPT,
    PROCEDURAL_QUERY_PROMPT,
    build_system_prompt,
)
from lexia.exceptions import RoutingConfigurationError
from lexia.llm.llm_config import DEFAULT_ROUTING, LexiaIntent, LLMConfig, RoutingRule

TRACE_ID_RE = re.compile(r"^lexia-\d+-[0-9a-f]{32}$")


@pytest.fixture
def controller():
    return LexiaController()


@pytest.fixture
def case_input():
    return CaseContextInput(
        case_id="c-1", case_number="EXP-2024-001", title="Perez c/ Gomez", type="civil",
    )


class TestTraceId:

    def test_format(self):
        assert TRACE_ID_RE.match(generate_trace_id())

    def test_unique(self):
        assert len({generate_trace_id() for _ in range(100)}) == 100


class TestProcessRequest:

    def test_procedural_without_case(self, controller):
        pending = controller.process_request("¿Cuántos días tengo para apelar?", None, "user-1")

        assert isinstance(pending, PendingDecision)
        assert pending.classification.intent == LexiaIntent.PROCEDURAL_QUERY
        assert pending.classification.confidence == pytest.approx(0.25)
        assert pending.classification.model == "openai/gpt-4-turbo"
        assert pending.classification.requires_context is False
        assert pending.enrich_context is False
        assert pending.service_config.temperature == 0.3
        assert pending.service_config.max_tokens == 2048
        assert pending.service_config.system_prompt == ""
        assert TRACE_ID_RE.match(pending.trace_id)

    def test_open_case_requests_enrichment(self, controller, case_input):
        pending = controller.process_request("Hola", case_input, "user-1")
        assert pending.classification.intent == LexiaIntent.GENERAL_CHAT
        assert pending.classification.requires_context is True
        assert pending.enrich_context is True
        assert pending.case_input is case_input

    def test_case_scoped_intent_without_case_does_not_enrich(self, controller):
        pending = controller.process_request(
            "¿Qué jurisprudencia hay sobre prescripción?", None, "user-1",
        )
        assert pending.classification.intent == LexiaIntent.LEGAL_ANALYSIS
        assert pending.classification.requires_context is True
        assert pending.enrich_context is False

    def test_uses_injected_classifier(self, case_input):
        classifier = MagicMock()
        classifier.classify.return_value = ClassificationResult(LexiaIntent.DOCUMENT_DRAFTING, 0.9)
        controller = LexiaController(classifier=classifier)

        pending = controller.process_request("anything", case_input, "user-1")

        classifier.classify.assert_called_once_with("anything", True)
        assert pending.classification.model == "anthropic/claude-sonnet-4-20250514"
        assert pending.service_config.max_tokens == 4096

    def test_broken_routing_table_raises(self):
        rules = dict(DEFAULT_ROUTING)
        rules[LexiaIntent.GENERAL_CHAT] = RoutingRule(
            intent=LexiaIntent.GENERAL_CHAT,
            primary_model="missing",
            fallback_model="gpt4o",
            temperature=0.7,
            max_tokens=1024,
        )
        controller = LexiaController(LLMConfig(rules=rules))
        with pytest.raises(RoutingConfigurationError):
            controller.process_request("Hola", None, "user-1")

    def test_module_level_shortcut(self):
        pending = process_request("Hola", None, "user-1")
        assert pending.classification.intent == LexiaIntent.GENERAL_CHAT

    def test_logs_classification(self, controller, caplog):
        with caplog.at_level("INFO", logger="lexia.controller.controller"):
            pending = controller.process_request("Hola", None, "user-1")
        record = next(r for r in caplog.records if r.getMessage() == "intent_classified")
        assert record.trace_id == pending.trace_id
        assert record.intent == "general_chat"


class TestFinalizeDecision:

    def test_prompt_without_case(self, controller):
        pending = controller.process_request("¿Cuántos días tengo para apelar?", None, "user-1")
        decision = controller.finalize_decision(pending, None)

        assert isinstance(decision, ControllerDecision)
        assert decision.service_config.system_prompt == PROCEDURAL_QUERY_PROMPT
        assert decision.classification == pending.classification
        assert decision.trace_id == pending.trace_id
        assert decision.intent == LexiaIntent.PROCEDURAL_QUERY

    def test_prompt_with_case(self, controller, case_input):
        pending = controller.process_request("Hola", case_input, "user-1")
        ctx = CaseContextData(
            case_id="c-1", case_number="EXP-2024-001", title="Perez c/ Gomez",
            type="civil", status="active",
        )
        decision = controller.finalize_decision(pending, ctx)
        prompt = decision.service_config.system_prompt
        assert prompt.startswith(GENERAL_CHAT_PROMPT)
        assert "Numero: EXP-2024-001" in prompt

    def test_enrichment_failure_keeps_template(self, controller, case_input):
        pending = controller.process_request("Hola", case_input, "user-1")
        decision = controller.finalize_decision(pending, None)
        assert decision.service_config.system_prompt == GENERAL_CHAT_PROMPT
        assert decision.enrich_context is True

    @pytest.mark.parametrize("intent", list(LexiaIntent))
    def test_prompt_never_empty_without_context(self, controller, intent):
        pending = controller.process_request("Hola", None, "user-1")
        pending = replace(pending, classification=replace(pending.classification, intent=intent))
        decision = controller.finalize_decision(pending, None)
        prompt = decision.service_config.system_prompt
        assert prompt
        assert prompt == build_system_prompt(intent, None)


class TestAuditEntry:

    def test_fields(self, controller, case_input):
        pending = controller.process_request("Hola", case_input, "user-1")
        decision = controller.finalize_decision(pending, None)

        entry = controller.create_audit_entry(
            decision,
            user_id="user-1",
            message_count=3,
            tokens_used=420,
            duration_ms=1500,
            tools_invoked=["queryCaseInfo"],
            case_id="c-1",
        )

        assert entry.trace_id == decision.trace_id
        assert entry.intent == LexiaIntent.GENERAL_CHAT
        assert entry.model == "openai/gpt-4o-mini"
        assert entry.tools_invoked == ("queryCaseInfo",)
        assert datetime.fromisoformat(entry.timestamp).tzinfo is not None

        data = entry.to_dict()
        assert data["intent"] == "general_chat"
        assert data["provider"] == "gateway"
        assert data["case_id"] == "c-1"
        assert data["tools_invoked"] == ["queryCaseInfo"]
