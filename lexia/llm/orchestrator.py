"""
Stream Orchestrator — one place that starts the model stream, with fallback.

Resolves the decision's model string, starts the stream and, if starting
fails, retries exactly once with the intent's fallback model. Only the
startup is guarded: once a stream is returned, errors during iteration
belong to the caller.

Usage:
    orchestrator = StreamingOrchestrator(ProviderStreamer.from_env())
    result = await orchestrator.run_stream_with_fallback(messages, decision, tools)
    async for chunk in result.stream:
        ...
    if result.is_fallback:
        ...  # result.decision names the model that actually served
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping, Optional

from lexia.controller.controller import ControllerDecision
from lexia.llm.llm_config import LLMConfig, ModelDescriptor, get_default_config
from lexia.llm.resolver import resolve_model
from lexia.llm.streaming import ProviderStreamer, TokenStream
from lexia.llm.tools import LexiaTool, ToolContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrchestratorResult:
    """Running stream plus the decision that actually produced it."""

    stream: TokenStream
    decision: ControllerDecision
    is_fallback: bool = False


def build_fallback_decision(
    decision: ControllerDecision,
    descriptor: ModelDescriptor,
    rule_max_tokens: int,
) -> ControllerDecision:
    """
    Point a decision at the fallback model.

    Provider and model change in both the classification and the service
    config; max_tokens is clamped to what the fallback model supports.
    Temperature and system prompt carry over.
    """
    return replace(
        decision,
        classification=decision.classification.with_model(descriptor),
        service_config=replace(
            decision.service_config,
            provider=descriptor.provider,
            model=descriptor.model,
            max_tokens=min(rule_max_tokens, descriptor.max_tokens),
        ),
    )


class StreamingOrchestrator:
    """Starts streams for finalized decisions with a single fallback retry."""

    def __init__(self, streamer: ProviderStreamer, config: Optional[LLMConfig] = None):
        self._streamer = streamer
        self._config = config or get_default_config()

    async def _start(
        self,
        decision: ControllerDecision,
        messages: list[dict[str, Any]],
        tools: Mapping[str, LexiaTool],
        tool_context: Optional[ToolContext],
    ) -> TokenStream:
        cfg = decision.service_config
        handle = resolve_model(cfg.model)
        return await self._streamer.start_stream(
            handle,
            system_prompt=cfg.system_prompt,
            messages=messages,
            tools=tools,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
            tool_context=tool_context,
        )

    async def run_stream_with_fallback(
        self,
        messages: list[dict[str, Any]],
        decision: ControllerDecision,
        tools: Mapping[str, LexiaTool],
        tool_context: Optional[ToolContext] = None,
    ) -> OrchestratorResult:
        """
        Start the primary stream; on failure, start the fallback once.

        Raises:
            The primary error when no fallback descriptor exists.
            The fallback error (chained to the primary) when both fail.
        """
        intent = decision.classification.intent

        try:
            stream = await self._start(decision, messages, tools, tool_context)
            return OrchestratorResult(stream=stream, decision=decision)
        except Exception as primary_error:
            logger.warning(
                "stream_primary_failed",
                extra={
                    "trace_id": decision.trace_id,
                    "intent": intent.value,
                    "model": decision.service_config.model,
                    "error": str(primary_error)[:200],
                },
            )

            rule = self._config.get_routing_rule(intent)
            descriptor = self._config.get_model_config(rule.fallback_model)
            if descriptor is None:
                raise

            fallback_decision = build_fallback_decision(decision, descriptor, rule.max_tokens)

            try:
                stream = await self._start(fallback_decision, messages, tools, tool_context)
            except Exception as fallback_error:
                logger.error(
                    "stream_fallback_also_failed",
                    extra={
                        "trace_id": decision.trace_id,
                        "intent": intent.value,
                        "primary_error": str(primary_error)[:100],
                        "fallback_error": str(fallback_error)[:100],
                    },
                )
                raise fallback_error from primary_error

            stream.stats.is_fallback = True
            logger.info(
                "stream_fallback_used",
                extra={
                    "trace_id": decision.trace_id,
                    "intent": intent.value,
                    "provider": descriptor.provider.value,
                    "model": descriptor.model,
                },
            )
            return OrchestratorResult(stream=stream, decision=fallback_decision, is_fallback=True)
