"""
Tests for the streaming orchestrator's single-retry fallback.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from lexia.controller.controller import ControllerDecision
from lexia.exceptions import ProviderNotConfiguredError
from lexia.llm.llm_config import (
    DEFAULT_MODELS,
    DEFAULT_ROUTING,
    LexiaIntent,
    LLMConfig,
    RoutingRule,
    ServiceConfig,
)
from lexia.llm.orchestrator import StreamingOrchestrator, build_fallback_decision
from lexia.llm.resolver import resolve_model
from lexia.llm.streaming import StreamStats
from lexia.llm.tools import ToolContext


def _decision(intent=LexiaIntent.DOCUMENT_SUMMARY, config=None) -> ControllerDecision:
    config = config or LLMConfig()
    classification = config.resolve_intent_routing(intent, 0.7, has_case_context=False)
    rule = config.get_routing_rule(intent)
    return ControllerDecision(
        classification=classification,
        service_config=ServiceConfig(
            provider=classification.provider,
            model=classification.model,
            temperature=rule.temperature,
            max_tokens=rule.max_tokens,
            system_prompt="Eres LEXIA",
        ),
        enrich_context=False,
        trace_id="lexia-1-abc",
    )


def _fake_stream():
    stream = MagicMock()
    stream.stats = StreamStats()
    return stream


def _streamer(*outcomes):
    streamer = MagicMock()
    streamer.start_stream = AsyncMock(side_effect=list(outcomes))
    return streamer


MESSAGES = [{"role": "user", "content": "Resumí este contrato"}]


class TestBuildFallbackDecision:

    def test_swaps_model_and_clamps_tokens(self):
        decision = _decision(LexiaIntent.LEGAL_ANALYSIS)
        fallback = build_fallback_decision(decision, DEFAULT_MODELS["claude-haiku"], 3000)

        assert fallback.classification.model == "anthropic/claude-3-5-haiku-20241022"
        assert fallback.service_config.model == "anthropic/claude-3-5-haiku-20241022"
        assert fallback.service_config.max_tokens == 2048
        assert fallback.service_config.temperature == decision.service_config.temperature
        assert fallback.service_config.system_prompt == "Eres LEXIA"
        assert fallback.classification.intent == LexiaIntent.LEGAL_ANALYSIS
        assert fallback.trace_id == decision.trace_id

    def test_rule_limit_kept_when_smaller(self):
        fallback = build_fallback_decision(_decision(), DEFAULT_MODELS["gpt4o"], 1024)
        assert fallback.service_config.max_tokens == 1024

    def test_original_untouched(self):
        decision = _decision()
        build_fallback_decision(decision, DEFAULT_MODELS["claude-haiku"], 2048)
        assert decision.service_config.model == "openai/gpt-4o"


class TestRunStreamWithFallback:

    @pytest.mark.asyncio
    async def test_primary_success(self):
        stream = _fake_stream()
        streamer = _streamer(stream)
        decision = _decision()
        context = ToolContext()

        result = await StreamingOrchestrator(streamer).run_stream_with_fallback(
            MESSAGES, decision, {}, context,
        )

        assert result.stream is stream
        assert result.decision is decision
        assert result.is_fallback is False
        assert stream.stats.is_fallback is False

        args, kwargs = streamer.start_stream.call_args
        assert args[0] == resolve_model("openai/gpt-4o")
        assert kwargs["system_prompt"] == "Eres LEXIA"
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 2048
        assert kwargs["tool_context"] is context

    @pytest.mark.asyncio
    async def test_fallback_on_startup_failure(self):
        stream = _fake_stream()
        streamer = _streamer(ConnectionError("primary down"), stream)

        result = await StreamingOrchestrator(streamer).run_stream_with_fallback(
            MESSAGES, _decision(), {},
        )

        assert result.is_fallback is True
        assert result.stream is stream
        assert stream.stats.is_fallback is True
        assert result.decision.classification.model == "anthropic/claude-3-5-haiku-20241022"
        assert result.decision.classification.intent == LexiaIntent.DOCUMENT_SUMMARY
        assert streamer.start_stream.await_count == 2
        assert streamer.start_stream.call_args.args[0] == resolve_model(
            "anthropic/claude-3-5-haiku-20241022"
        )

    @pytest.mark.asyncio
    async def test_missing_client_triggers_fallback(self):
        streamer = _streamer(ProviderNotConfiguredError("no openai", family="openai"), _fake_stream())
        result = await StreamingOrchestrator(streamer).run_stream_with_fallback(
            MESSAGES, _decision(), {},
        )
        assert result.is_fallback is True

    @pytest.mark.asyncio
    async def test_both_fail_raises_fallback_error(self):
        primary = ConnectionError("primary down")
        fallback = TimeoutError("fallback down")
        streamer = _streamer(primary, fallback)

        with pytest.raises(TimeoutError) as exc_info:
            await StreamingOrchestrator(streamer).run_stream_with_fallback(
                MESSAGES, _decision(), {},
            )

        assert exc_info.value.__cause__ is primary
        assert streamer.start_stream.await_count == 2

    @pytest.mark.asyncio
    async def test_no_fallback_descriptor_reraises_primary(self):
        rules = dict(DEFAULT_ROUTING)
        rules[LexiaIntent.DOCUMENT_SUMMARY] = RoutingRule(
            intent=LexiaIntent.DOCUMENT_SUMMARY,
            primary_model="gpt4o",
            fallback_model="retired-model",
            temperature=0.3,
            max_tokens=2048,
        )
        config = LLMConfig(rules=rules)
        streamer = _streamer(ConnectionError("primary down"))

        with pytest.raises(ConnectionError, match="primary down"):
            await StreamingOrchestrator(streamer, config).run_stream_with_fallback(
                MESSAGES, _decision(config=config), {},
            )

        assert streamer.start_stream.await_count == 1

    @pytest.mark.asyncio
    async def test_cancellation_skips_fallback(self):
        streamer = _streamer(asyncio.CancelledError(), _fake_stream())

        with pytest.raises(asyncio.CancelledError):
            await StreamingOrchestrator(streamer).run_stream_with_fallback(
                MESSAGES, _decision(), {},
            )

        assert streamer.start_stream.await_count == 1
