"""
Pydantic schema for the optional routing override file.

A deployment can ship a routing.yaml that adds or replaces models, routing
rules, credit costs, plan limits and classifier tunables. Every section is
optional; entries are merged over the built-in defaults key by key, so a
file only needs to state what it changes.

Example:
    models:
      gpt4o-mini:
        provider: gateway
        model: openai/gpt-4o-mini
        display_name: GPT-4o Mini
        max_tokens: 2048
    routing:
      general_chat:
        primary_model: gpt4o-mini
        fallback_model: gpt4o
        temperature: 0.6
        max_tokens: 1024
    credits:
      by_intent:
        legal_analysis: 4
      plans:
        estudio: 1500
    classifier:
      case_context_boost: 0.25
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from lexia.exceptions import RoutingConfigurationError
from lexia.llm.llm_config import AIProvider, LexiaIntent
from lexia.llm.resolver import resolve_model


class ModelEntry(BaseModel):
    """One model registry entry."""
    provider: AIProvider = AIProvider.GATEWAY
    model: str = Field(..., description="Wire model string, '<family>/<model-id>'")
    display_name: str
    max_tokens: int = Field(4096, gt=0)
    default_temperature: float = Field(0.5, ge=0.0, le=2.0)
    cost_per_1k_input: float = Field(0.0, ge=0.0)
    cost_per_1k_output: float = Field(0.0, ge=0.0)
    strengths: list[LexiaIntent] = Field(default_factory=list)

    @field_validator("model")
    @classmethod
    def validate_model_string(cls, v: str) -> str:
        try:
            resolve_model(v)
        except RoutingConfigurationError as e:
            raise ValueError(str(e)) from e
        return v


class RoutingEntry(BaseModel):
    """Routing rule for one intent. Model fields are registry keys."""
    primary_model: str
    fallback_model: str
    temperature: float = Field(..., ge=0.0, le=2.0)
    max_tokens: int = Field(..., gt=0)
    tools_allowed: list[str] = Field(default_factory=list)


class CreditsConfig(BaseModel):
    by_intent: dict[LexiaIntent, float] = Field(default_factory=dict)
    plans: dict[str, int] = Field(default_factory=dict)

    @field_validator("by_intent")
    @classmethod
    def validate_non_negative(cls, v: dict[LexiaIntent, float]) -> dict[LexiaIntent, float]:
        negative = [k.value for k, cost in v.items() if cost < 0]
        if negative:
            raise ValueError(f"Credit costs must be >= 0: {', '.join(negative)}")
        return v


class ClassifierConfig(BaseModel):
    case_context_boost: float = Field(0.3, ge=0.0)
    min_score: float = Field(0.1, ge=0.0, le=1.0)
    default_confidence: float = Field(0.5, ge=0.0, le=1.0)


class RoutingFileConfig(BaseModel):
    """Top-level routing.yaml document."""
    models: dict[str, ModelEntry] = Field(default_factory=dict)
    routing: dict[LexiaIntent, RoutingEntry] = Field(default_factory=dict)
    credits: CreditsConfig = Field(default_factory=CreditsConfig)
    classifier: Optional[ClassifierConfig] = None
