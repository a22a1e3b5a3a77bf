"""
LLM Configuration — Model registry and intent routing rules.

Defines which models exist (keyed by a short registry name, distinct from
the wire model string) and which model, sampling parameters and tools
each intent gets. Tables are immutable: built once at import (or by the
YAML loader at startup) and shared by reference across requests.

Usage:
    from lexia.llm.llm_config import LLMConfig, LexiaIntent

    config = LLMConfig()
    rule = config.get_routing_rule("procedural_query")
    # → RoutingRule(primary_model="gpt4-turbo", fallback_model="gpt4o", ...)

    classification = config.resolve_intent_routing(
        LexiaIntent.PROCEDURAL_QUERY, confidence=0.25, has_case_context=False,
    )
    # → IntentClassification(model="openai/gpt-4-turbo", requires_context=False, ...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from lexia.exceptions import RoutingConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Intent Categories
# ---------------------------------------------------------------------------

class LexiaIntent(str, Enum):
    """High-level intents the controller can classify."""

    LEGAL_ANALYSIS = "legal_analysis"        # Reasoning, jurisprudence, strategy
    DOCUMENT_DRAFTING = "document_drafting"  # Writing and reformulation
    PROCEDURAL_QUERY = "procedural_query"    # Checklists, deadlines, process steps
    DOCUMENT_SUMMARY = "document_summary"    # Summarizing legal documents
    CASE_QUERY = "case_query"                # Questions about the open case
    GENERAL_CHAT = "general_chat"            # Casual / general questions
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: str | LexiaIntent) -> LexiaIntent:
        """Parse a string intent; unrecognized values become UNKNOWN."""
        if isinstance(value, LexiaIntent):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


# Intents that are meaningless without case grounding
CASE_SCOPED_INTENTS = frozenset({LexiaIntent.LEGAL_ANALYSIS, LexiaIntent.CASE_QUERY})


class AIProvider(str, Enum):
    """How a model is reached. The model string carries the vendor family."""

    GATEWAY = "gateway"
    OPENAI_DIRECT = "openai_direct"
    ANTHROPIC_DIRECT = "anthropic_direct"


# ---------------------------------------------------------------------------
# Model Descriptor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelDescriptor:
    """Capability metadata for one model in the registry."""

    provider: AIProvider
    model: str                  # Wire model string, e.g. "openai/gpt-4o"
    display_name: str
    max_tokens: int = 4096
    default_temperature: float = 0.5
    cost_per_1k_input: float = 0.0   # USD per 1K input tokens
    cost_per_1k_output: float = 0.0  # USD per 1K output tokens
    strengths: tuple[LexiaIntent, ...] = ()

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            input_tokens / 1000 * self.cost_per_1k_input
            + output_tokens / 1000 * self.cost_per_1k_output
        )


# ---------------------------------------------------------------------------
# Routing Rule
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RoutingRule:
    """
    Routing rule: intent → primary model + fallback, sampling and tools.

    Model fields are registry keys, not wire model strings. The rule's
    temperature and max_tokens override the descriptor defaults.
    """

    intent: LexiaIntent
    primary_model: str
    fallback_model: str
    temperature: float
    max_tokens: int
    tools_allowed: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Classification & Service Config
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IntentClassification:
    """Routing outcome for a classified intent. Never edited in place."""

    intent: LexiaIntent
    confidence: float
    provider: AIProvider
    model: str
    requires_context: bool
    tools_allowed: tuple[str, ...] = ()

    def with_model(self, descriptor: ModelDescriptor) -> IntentClassification:
        """Return a copy pointing at another model (used on fallback)."""
        return replace(self, provider=descriptor.provider, model=descriptor.model)


@dataclass(frozen=True)
class ServiceConfig:
    """Parameters for a single model call."""

    provider: AIProvider
    model: str
    temperature: float
    max_tokens: int
    system_prompt: str = ""


# ---------------------------------------------------------------------------
# Default Model Registry
# ---------------------------------------------------------------------------

GPT4_TURBO = ModelDescriptor(
    provider=AIProvider.GATEWAY,
    model="openai/gpt-4-turbo",
    display_name="GPT-4 Turbo",
    max_tokens=4096,
    default_temperature=0.7,
    cost_per_1k_input=0.01,
    cost_per_1k_output=0.03,
    strengths=(
        LexiaIntent.LEGAL_ANALYSIS,
        LexiaIntent.PROCEDURAL_QUERY,
        LexiaIntent.GENERAL_CHAT,
    ),
)

GPT4O = ModelDescriptor(
    provider=AIProvider.GATEWAY,
    model="openai/gpt-4o",
    display_name="GPT-4o",
    max_tokens=4096,
    default_temperature=0.5,
    cost_per_1k_input=0.005,
    cost_per_1k_output=0.015,
    strengths=(
        LexiaIntent.DOCUMENT_SUMMARY,
        LexiaIntent.CASE_QUERY,
        LexiaIntent.GENERAL_CHAT,
    ),
)

GPT4O_MINI = ModelDescriptor(
    provider=AIProvider.GATEWAY,
    model="openai/gpt-4o-mini",
    display_name="GPT-4o Mini",
    max_tokens=2048,
    default_temperature=0.5,
    cost_per_1k_input=0.00015,
    cost_per_1k_output=0.0006,
    strengths=(LexiaIntent.CASE_QUERY, LexiaIntent.GENERAL_CHAT),
)

CLAUDE_SONNET = ModelDescriptor(
    provider=AIProvider.GATEWAY,
    model="anthropic/claude-sonnet-4-20250514",
    display_name="Claude Sonnet 4",
    max_tokens=4096,
    default_temperature=0.7,
    cost_per_1k_input=0.003,
    cost_per_1k_output=0.015,
    strengths=(
        LexiaIntent.DOCUMENT_DRAFTING,
        LexiaIntent.DOCUMENT_SUMMARY,
        LexiaIntent.LEGAL_ANALYSIS,
    ),
)

CLAUDE_HAIKU = ModelDescriptor(
    provider=AIProvider.GATEWAY,
    model="anthropic/claude-3-5-haiku-20241022",
    display_name="Claude 3.5 Haiku",
    max_tokens=2048,
    default_temperature=0.5,
    cost_per_1k_input=0.0008,
    cost_per_1k_output=0.004,
    strengths=(LexiaIntent.DOCUMENT_SUMMARY, LexiaIntent.GENERAL_CHAT),
)

DEFAULT_MODELS: Mapping[str, ModelDescriptor] = MappingProxyType({
    "gpt4-turbo": GPT4_TURBO,
    "gpt4o": GPT4O,
    "gpt4o-mini": GPT4O_MINI,
    "claude-sonnet": CLAUDE_SONNET,
    "claude-haiku": CLAUDE_HAIKU,
})


# ---------------------------------------------------------------------------
# Default Routing Table
# ---------------------------------------------------------------------------

DEFAULT_ROUTING: Mapping[LexiaIntent, RoutingRule] = MappingProxyType({
    LexiaIntent.LEGAL_ANALYSIS: RoutingRule(
        intent=LexiaIntent.LEGAL_ANALYSIS,
        primary_model="gpt4-turbo",
        fallback_model="claude-sonnet",
        temperature=0.4,
        max_tokens=3000,
        tools_allowed=("getProceduralChecklist", "queryCaseInfo", "calculateDeadline"),
    ),
    LexiaIntent.DOCUMENT_DRAFTING: RoutingRule(
        intent=LexiaIntent.DOCUMENT_DRAFTING,
        primary_model="claude-sonnet",
        fallback_model="gpt4-turbo",
        temperature=0.6,
        max_tokens=4096,
        tools_allowed=("generateDraft", "queryCaseInfo"),
    ),
    LexiaIntent.DOCUMENT_SUMMARY: RoutingRule(
        intent=LexiaIntent.DOCUMENT_SUMMARY,
        primary_model="gpt4o",
        fallback_model="claude-haiku",
        temperature=0.3,
        max_tokens=2048,
        tools_allowed=("summarizeDocument",),
    ),
    LexiaIntent.PROCEDURAL_QUERY: RoutingRule(
        intent=LexiaIntent.PROCEDURAL_QUERY,
        primary_model="gpt4-turbo",
        fallback_model="gpt4o",
        temperature=0.3,
        max_tokens=2048,
        tools_allowed=("getProceduralChecklist", "calculateDeadline"),
    ),
    LexiaIntent.CASE_QUERY: RoutingRule(
        intent=LexiaIntent.CASE_QUERY,
        primary_model="gpt4o-mini",
        fallback_model="gpt4o",
        temperature=0.2,
        max_tokens=1024,
        tools_allowed=("queryCaseInfo", "calculateDeadline"),
    ),
    LexiaIntent.GENERAL_CHAT: RoutingRule(
        intent=LexiaIntent.GENERAL_CHAT,
        primary_model="gpt4o-mini",
        fallback_model="gpt4o",
        temperature=0.7,
        max_tokens=1024,
        tools_allowed=(),
    ),
    LexiaIntent.UNKNOWN: RoutingRule(
        intent=LexiaIntent.UNKNOWN,
        primary_model="gpt4o",
        fallback_model="gpt4o-mini",
        temperature=0.5,
        max_tokens=1024,
        tools_allowed=("queryCaseInfo",),
    ),
})


# ---------------------------------------------------------------------------
# LLM Config
# ---------------------------------------------------------------------------

class LLMConfig:
    """
    Immutable model registry + routing table.

    Lookups by intent fall back to the 'unknown' rule, which must exist.
    Nothing here mutates after construction, so one instance is safely
    shared by every concurrent request.
    """

    def __init__(
        self,
        models: Optional[Mapping[str, ModelDescriptor]] = None,
        rules: Optional[Mapping[LexiaIntent, RoutingRule]] = None,
    ):
        self._models: Mapping[str, ModelDescriptor] = MappingProxyType(
            dict(DEFAULT_MODELS if models is None else models)
        )
        self._rules: Mapping[LexiaIntent, RoutingRule] = MappingProxyType(
            dict(DEFAULT_ROUTING if rules is None else rules)
        )
        if LexiaIntent.UNKNOWN not in self._rules:
            raise RoutingConfigurationError(
                "Routing table must define a rule for the 'unknown' intent",
                intent=LexiaIntent.UNKNOWN.value,
            )

    @property
    def models(self) -> Mapping[str, ModelDescriptor]:
        return self._models

    @property
    def rules(self) -> Mapping[LexiaIntent, RoutingRule]:
        return self._rules

    # --- Lookups ---

    def get_routing_rule(self, intent: str | LexiaIntent) -> RoutingRule:
        """Rule for an intent, or the 'unknown' rule. Never raises."""
        intent = LexiaIntent.coerce(intent)
        return self._rules.get(intent) or self._rules[LexiaIntent.UNKNOWN]

    def get_model_config(self, key: str) -> Optional[ModelDescriptor]:
        """Look up a model descriptor by registry key."""
        return self._models.get(key)

    def require_model(self, key: str, intent: Optional[LexiaIntent] = None) -> ModelDescriptor:
        """Look up a model descriptor; a missing key is a configuration defect."""
        descriptor = self._models.get(key)
        if descriptor is None:
            raise RoutingConfigurationError(
                f'Model "{key}" not found in model registry',
                model_key=key,
                intent=intent.value if intent else None,
            )
        return descriptor

    def find_by_model_string(self, model: str) -> Optional[ModelDescriptor]:
        """Reverse lookup from a wire model string."""
        for descriptor in self._models.values():
            if descriptor.model == model:
                return descriptor
        return None

    # --- Routing ---

    def resolve_intent_routing(
        self,
        intent: str | LexiaIntent,
        confidence: float,
        has_case_context: bool,
    ) -> IntentClassification:
        """
        Build the IntentClassification for a classified intent.

        Raises:
            RoutingConfigurationError: the rule's primary model key is not
                in the registry.
        """
        intent = LexiaIntent.coerce(intent)
        rule = self.get_routing_rule(intent)
        descriptor = self.require_model(rule.primary_model, intent)

        return IntentClassification(
            intent=intent,
            confidence=confidence,
            provider=descriptor.provider,
            model=descriptor.model,
            requires_context=has_case_context or intent in CASE_SCOPED_INTENTS,
            tools_allowed=rule.tools_allowed,
        )

    # --- Introspection ---

    def validate(self) -> list[str]:
        """Return cross-reference problems between rules and the model registry."""
        problems = []
        for intent, rule in self._rules.items():
            if rule.intent != intent:
                problems.append(
                    f"Rule keyed '{intent.value}' declares intent '{rule.intent.value}'"
                )
            for role, key in (("primary", rule.primary_model), ("fallback", rule.fallback_model)):
                if key not in self._models:
                    problems.append(
                        f"Intent '{intent.value}' {role} model '{key}' not in registry"
                    )
        return problems

    def list_routes(self) -> list[dict[str, Any]]:
        """Return a summary of all configured routes."""
        routes = []
        for rule in self._rules.values():
            primary = self._models.get(rule.primary_model)
            fallback = self._models.get(rule.fallback_model)
            routes.append({
                "intent": rule.intent.value,
                "primary": primary.model if primary else rule.primary_model,
                "fallback": fallback.model if fallback else rule.fallback_model,
                "temperature": rule.temperature,
                "max_tokens": rule.max_tokens,
                "tools": list(rule.tools_allowed),
            })
        return routes


# ---------------------------------------------------------------------------
# Process-wide default
# ---------------------------------------------------------------------------

_default_config = LLMConfig()


def get_default_config() -> LLMConfig:
    return _default_config


def resolve_intent_routing(
    intent: str | LexiaIntent,
    confidence: float,
    has_case_context: bool,
) -> IntentClassification:
    return _default_config.resolve_intent_routing(intent, confidence, has_case_context)


def get_routing_rule(intent: str | LexiaIntent) -> RoutingRule:
    return _default_config.get_routing_rule(intent)


def get_model_config(key: str) -> Optional[ModelDescriptor]:
    return _default_config.get_model_config(key)
