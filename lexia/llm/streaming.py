"""
Streaming Model Calls — AsyncIterator interface over provider streams.

ProviderStreamer opens a streaming request against Anthropic or OpenAI
(async SDK clients) and returns a TokenStream. Opening the request is the
only awaited step before the caller gets the stream back, so connection and
authentication failures surface there, where a fallback can still be tried.

TokenStream yields text deltas as they arrive. When the model asks for
tools, it runs them (see lexia.llm.tools), yields their progress, feeds the
results back and opens the next request, up to max_steps model requests per
turn. The last chunk is marked is_final and carries usage statistics.

Usage:
    streamer = ProviderStreamer.from_env()
    stream = await streamer.start_stream(
        resolve_model("openai/gpt-4o"),
        system_prompt="Eres LEXIA...",
        messages=[{"role": "user", "content": "Hola"}],
        tools=get_tools_for_intent([]),
        temperature=0.5,
        max_tokens=1024,
    )
    async for chunk in stream:
        print(chunk.text, end="", flush=True)

    print(stream.stats.total_tokens)
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

from lexia.exceptions import LexiaError, ModelStreamError, ProviderNotConfiguredError
from lexia.llm.llm_config import LLMConfig, get_default_config
from lexia.llm.resolver import ANTHROPIC, OPENAI, ModelHandle
from lexia.llm.tools import (
    LexiaTool,
    ToolCall,
    ToolContext,
    ToolResult,
    execute_tool_call,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 5


# ---------------------------------------------------------------------------
# Stream Chunk
# ---------------------------------------------------------------------------

@dataclass
class StreamChunk:
    """A single chunk of streamed output from a provider."""

    text: str                   # The new text fragment
    provider: str = ""          # "anthropic", "openai"
    model: str = ""             # Model string, e.g. "openai/gpt-4o"
    is_final: bool = False      # True for the last chunk (stats available)
    input_tokens: int = 0       # Only populated on final chunk
    output_tokens: int = 0      # Only populated on final chunk
    cost: float = 0.0           # Only populated on final chunk
    latency_ms: float = 0.0     # Only populated on final chunk
    tool_name: str = ""                              # Set on tool chunks
    tool_progress: Optional[dict[str, Any]] = None   # Progress marker
    tool_output: Optional[str] = None                # Result fed back to the model

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def is_tool_event(self) -> bool:
        return bool(self.tool_name)


# ---------------------------------------------------------------------------
# Stream Stats
# ---------------------------------------------------------------------------

@dataclass
class StreamStats:
    """Statistics for one stream. Filled in as the stream is consumed."""

    provider: str = ""
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0
    latency_ms: float = 0.0
    total_text_length: int = 0
    chunk_count: int = 0
    steps: int = 0
    tools_invoked: list[str] = field(default_factory=list)
    is_fallback: bool = False
    completed: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cost": self.cost,
            "latency_ms": self.latency_ms,
            "total_text_length": self.total_text_length,
            "chunk_count": self.chunk_count,
            "steps": self.steps,
            "tools_invoked": list(self.tools_invoked),
            "is_fallback": self.is_fallback,
        }


@dataclass
class _Turn:
    """What one model request produced."""

    text_parts: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def text(self) -> str:
        return "".join(self.text_parts)


def _parse_tool_call(call_id: str, name: str, json_parts: list[str]) -> ToolCall:
    raw = "".join(json_parts)
    try:
        arguments = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        arguments = {}
    if not isinstance(arguments, dict):
        arguments = {}
    return ToolCall(id=call_id, name=name, arguments=arguments, raw_arguments=raw or "{}")


# ---------------------------------------------------------------------------
# Token Stream
# ---------------------------------------------------------------------------

class TokenStream:
    """
    Async iterator over one streamed turn, including tool round trips.

    Provider errors raised after the first request was accepted are wrapped
    in ModelStreamError; they are not eligible for fallback because output
    may already have reached the caller.
    """

    def __init__(
        self,
        handle: ModelHandle,
        first_response: Any,
        open_request: Callable[[list[dict[str, Any]]], Awaitable[Any]],
        messages: list[dict[str, Any]],
        tools: Mapping[str, LexiaTool],
        tool_context: ToolContext,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        cost_per_1k_input: float = 0.0,
        cost_per_1k_output: float = 0.0,
        started_at: Optional[float] = None,
    ):
        self.handle = handle
        self.stats = StreamStats(provider=handle.family, model=handle.model_string)
        self._current = first_response
        self._open_request = open_request
        self._messages = list(messages)
        self._tools = tools
        self._tool_context = tool_context
        self._max_steps = max_steps
        self._cost_in = cost_per_1k_input
        self._cost_out = cost_per_1k_output
        self._started_at = started_at if started_at is not None else time.monotonic()
        self._iterator: Optional[AsyncIterator[StreamChunk]] = None

    def __aiter__(self) -> TokenStream:
        return self

    async def __anext__(self) -> StreamChunk:
        if self._iterator is None:
            self._iterator = self._run()
        return await self._iterator.__anext__()

    async def aclose(self) -> None:
        """Abandon the stream and release the provider connection."""
        if self._iterator is not None:
            await self._iterator.aclose()
        await self._close_current()

    async def _close_current(self) -> None:
        current, self._current = self._current, None
        close = getattr(current, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    # --- Main loop ---

    async def _run(self) -> AsyncIterator[StreamChunk]:
        step = 0
        model = self.handle.model_string
        try:
            while True:
                step += 1
                self.stats.steps = step
                turn = _Turn()

                if self.handle.family == ANTHROPIC:
                    deltas = self._read_anthropic(self._current, turn)
                else:
                    deltas = self._read_openai(self._current, turn)

                async for text in deltas:
                    self.stats.chunk_count += 1
                    self.stats.total_text_length += len(text)
                    yield StreamChunk(text=text, provider=self.handle.family, model=model)

                self.stats.input_tokens += turn.input_tokens
                self.stats.output_tokens += turn.output_tokens

                if not turn.tool_calls or step >= self._max_steps:
                    if turn.tool_calls:
                        logger.warning(
                            "stream_step_limit_reached",
                            extra={"model": model, "steps": step},
                        )
                    break

                results: list[ToolResult] = []
                for call in turn.tool_calls:
                    run = execute_tool_call(self._tools, call, self._tool_context)
                    self.stats.tools_invoked.append(run.tool_name)
                    for marker in run.progress:
                        yield StreamChunk(
                            text="", provider=self.handle.family, model=model,
                            tool_name=run.tool_name, tool_progress=marker,
                        )
                    yield StreamChunk(
                        text="", provider=self.handle.family, model=model,
                        tool_name=run.tool_name, tool_output=run.result.content,
                    )
                    results.append(run.result)

                self._append_tool_round(turn, results)
                await self._close_current()
                self._current = await self._open_request(self._messages)

        except LexiaError:
            raise
        except Exception as e:
            logger.error(
                "stream_failed_mid_flight",
                extra={"model": model, "step": step, "error": str(e)[:200]},
            )
            raise ModelStreamError(
                f"Stream from {model} failed at step {step}: {e}",
                model=model,
                step=step,
            ) from e
        finally:
            await self._close_current()

        yield self._finish()

    def _finish(self) -> StreamChunk:
        s = self.stats
        s.latency_ms = (time.monotonic() - self._started_at) * 1000
        s.cost = (
            s.input_tokens / 1000 * self._cost_in
            + s.output_tokens / 1000 * self._cost_out
        )
        s.completed = True

        logger.info(
            "stream_completed",
            extra={
                "provider": s.provider,
                "model": s.model,
                "chunks": s.chunk_count,
                "steps": s.steps,
                "tools": len(s.tools_invoked),
                "tokens": s.total_tokens,
                "cost": f"${s.cost:.4f}",
                "duration_ms": round(s.latency_ms, 1),
                "is_fallback": s.is_fallback,
            },
        )
        return StreamChunk(
            text="",
            provider=s.provider,
            model=s.model,
            is_final=True,
            input_tokens=s.input_tokens,
            output_tokens=s.output_tokens,
            cost=s.cost,
            latency_ms=s.latency_ms,
        )

    # --- Provider event readers ---

    async def _read_anthropic(self, response: Any, turn: _Turn) -> AsyncIterator[str]:
        """Read raw Messages API stream events."""
        tool_blocks: dict[int, dict[str, Any]] = {}

        async for event in response:
            event_type = getattr(event, "type", "")

            if event_type == "message_start":
                usage = getattr(event.message, "usage", None)
                if usage is not None:
                    turn.input_tokens += getattr(usage, "input_tokens", 0) or 0

            elif event_type == "content_block_start":
                block = event.content_block
                if getattr(block, "type", None) == "tool_use":
                    tool_blocks[event.index] = {"id": block.id, "name": block.name, "json": []}

            elif event_type == "content_block_delta":
                delta = event.delta
                delta_type = getattr(delta, "type", None)
                if delta_type == "text_delta" and delta.text:
                    turn.text_parts.append(delta.text)
                    yield delta.text
                elif delta_type == "input_json_delta" and event.index in tool_blocks:
                    tool_blocks[event.index]["json"].append(delta.partial_json)

            elif event_type == "message_delta":
                usage = getattr(event, "usage", None)
                if usage is not None:
                    turn.output_tokens += getattr(usage, "output_tokens", 0) or 0

        for index in sorted(tool_blocks):
            block = tool_blocks[index]
            turn.tool_calls.append(_parse_tool_call(block["id"], block["name"], block["json"]))

    async def _read_openai(self, response: Any, turn: _Turn) -> AsyncIterator[str]:
        """Read Chat Completions stream chunks."""
        pending: dict[int, dict[str, Any]] = {}

        async for chunk in response:
            usage = getattr(chunk, "usage", None)
            if usage is not None:
                turn.input_tokens += usage.prompt_tokens or 0
                turn.output_tokens += usage.completion_tokens or 0

            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            if delta.content:
                turn.text_parts.append(delta.content)
                yield delta.content

            for tc in getattr(delta, "tool_calls", None) or []:
                entry = pending.setdefault(tc.index, {"id": "", "name": "", "json": []})
                if tc.id:
                    entry["id"] = tc.id
                function = getattr(tc, "function", None)
                if function is not None:
                    if function.name:
                        entry["name"] = function.name
                    if function.arguments:
                        entry["json"].append(function.arguments)

        for index in sorted(pending):
            entry = pending[index]
            turn.tool_calls.append(_parse_tool_call(entry["id"], entry["name"], entry["json"]))

    # --- Conversation continuation ---

    def _append_tool_round(self, turn: _Turn, results: list[ToolResult]) -> None:
        """Append the assistant's tool request and the tool results."""
        if self.handle.family == ANTHROPIC:
            content: list[dict[str, Any]] = []
            if turn.text:
                content.append({"type": "text", "text": turn.text})
            for call in turn.tool_calls:
                content.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })
            self._messages.append({"role": "assistant", "content": content})
            self._messages.append({"role": "user", "content": [r.to_anthropic() for r in results]})
        else:
            self._messages.append({
                "role": "assistant",
                "content": turn.text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.raw_arguments},
                    }
                    for call in turn.tool_calls
                ],
            })
            self._messages.extend(r.to_openai() for r in results)


# ---------------------------------------------------------------------------
# Provider Streamer
# ---------------------------------------------------------------------------

class ProviderStreamer:
    """
    Opens provider streams for resolved model handles.

    Holds only the SDK clients; every TokenStream is independent, so one
    streamer is shared across concurrent requests.
    """

    def __init__(
        self,
        anthropic_client: Any = None,
        openai_client: Any = None,
        *,
        max_steps: int = DEFAULT_MAX_STEPS,
        config: Optional[LLMConfig] = None,
    ):
        self._anthropic = anthropic_client
        self._openai = openai_client
        self._max_steps = max_steps
        self._config = config or get_default_config()

    @classmethod
    def from_env(cls, **kwargs: Any) -> ProviderStreamer:
        """Build async SDK clients from ANTHROPIC_API_KEY / OPENAI_API_KEY."""
        anthropic_client = None
        openai_client = None

        if os.environ.get("ANTHROPIC_API_KEY"):
            import anthropic
            anthropic_client = anthropic.AsyncAnthropic()
        if os.environ.get("OPENAI_API_KEY"):
            import openai
            openai_client = openai.AsyncOpenAI()

        return cls(anthropic_client=anthropic_client, openai_client=openai_client, **kwargs)

    @property
    def configured_families(self) -> list[str]:
        families = []
        if self._openai is not None:
            families.append(OPENAI)
        if self._anthropic is not None:
            families.append(ANTHROPIC)
        return families

    async def start_stream(
        self,
        handle: ModelHandle,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: Mapping[str, LexiaTool],
        temperature: float,
        max_tokens: int,
        tool_context: Optional[ToolContext] = None,
    ) -> TokenStream:
        """
        Open the first request and return the stream over it.

        Raises:
            ProviderNotConfiguredError: no client for the handle's family.
            Any SDK error raised while opening the request.
        """
        started_at = time.monotonic()

        if handle.family == ANTHROPIC:
            if self._anthropic is None:
                raise ProviderNotConfiguredError(
                    "Anthropic client not configured. "
                    "Pass anthropic_client to ProviderStreamer().",
                    family=ANTHROPIC,
                )
            tool_defs = [t.definition.to_anthropic() for t in tools.values()]
            open_request = partial(
                self._open_anthropic, handle.model_id, system_prompt,
                tool_defs, temperature, max_tokens,
            )
        elif handle.family == OPENAI:
            if self._openai is None:
                raise ProviderNotConfiguredError(
                    "OpenAI client not configured. "
                    "Pass openai_client to ProviderStreamer().",
                    family=OPENAI,
                )
            tool_defs = [t.definition.to_openai() for t in tools.values()]
            open_request = partial(
                self._open_openai, handle.model_id, system_prompt,
                tool_defs, temperature, max_tokens,
            )
        else:
            raise ProviderNotConfiguredError(
                f"Unsupported model family for streaming: {handle.family}",
                family=handle.family,
            )

        first_response = await open_request(list(messages))

        descriptor = self._config.find_by_model_string(handle.model_string)
        logger.debug(
            "stream_opened",
            extra={"provider": handle.family, "model": handle.model_string, "tools": len(tools)},
        )
        return TokenStream(
            handle,
            first_response,
            open_request,
            messages,
            tools,
            tool_context or ToolContext(),
            max_steps=self._max_steps,
            cost_per_1k_input=descriptor.cost_per_1k_input if descriptor else 0.0,
            cost_per_1k_output=descriptor.cost_per_1k_output if descriptor else 0.0,
            started_at=started_at,
        )

    # --- Request openers ---

    async def _open_anthropic(
        self,
        model_id: str,
        system_prompt: str,
        tool_defs: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
        messages: list[dict[str, Any]],
    ) -> Any:
        kwargs: dict[str, Any] = {
            "model": model_id,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": messages,
            "stream": True,
        }
        if tool_defs:
            kwargs["tools"] = tool_defs
            kwargs["tool_choice"] = {"type": "auto"}
        return await self._anthropic.messages.create(**kwargs)

    async def _open_openai(
        self,
        model_id: str,
        system_prompt: str,
        tool_defs: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
        messages: list[dict[str, Any]],
    ) -> Any:
        kwargs: dict[str, Any] = {
            "model": model_id,
            "messages": [{"role": "system", "content": system_prompt}] + messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tool_defs:
            kwargs["tools"] = tool_defs
            kwargs["tool_choice"] = "auto"
        return await self._openai.chat.completions.create(**kwargs)


# ---------------------------------------------------------------------------
# Helper: Collect full stream into text
# ---------------------------------------------------------------------------

async def collect_stream(
    stream: AsyncIterator[StreamChunk],
) -> tuple[str, StreamChunk]:
    """
    Consume a full stream and return (full_text, final_chunk).

        text, final = await collect_stream(result.stream)
        print(f"Tokens: {final.total_tokens}")
    """
    collected = []
    final_chunk = StreamChunk(text="", is_final=True)

    async for chunk in stream:
        if chunk.is_final:
            final_chunk = chunk
        elif chunk.text:
            collected.append(chunk.text)

    return "".join(collected), final_chunk
