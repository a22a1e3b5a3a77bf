"""
Configuration loader for the Lexia routing core.

Loads the optional routing.yaml, validates it against the Pydantic schema,
merges it over the built-in tables and checks cross references, so a
broken deployment fails at startup instead of on the first request.

The file path comes from the argument or from LEXIA_ROUTING_CONFIG. With
neither, the built-in defaults are returned.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError

from lexia.billing.credits import CREDITS_BY_INTENT, PLAN_CREDITS
from lexia.config.schema import RoutingFileConfig
from lexia.controller.classifier import ClassifierSettings
from lexia.exceptions import RoutingConfigurationError
from lexia.llm.llm_config import (
    DEFAULT_MODELS,
    DEFAULT_ROUTING,
    LexiaIntent,
    LLMConfig,
    ModelDescriptor,
    RoutingRule,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "LEXIA_ROUTING_CONFIG"
_DEFAULTS_KEY = "<defaults>"


@dataclass(frozen=True)
class LexiaSettings:
    """Everything the routing core reads from configuration."""

    llm: LLMConfig
    classifier: ClassifierSettings
    credits_by_intent: Mapping[LexiaIntent, float]
    plan_credits: Mapping[str, int]
    source: Optional[Path] = None


# Module-level cache: resolved path (or "<defaults>") -> LexiaSettings
_loaded_settings: dict[str, LexiaSettings] = {}


def _build_settings(file_config: RoutingFileConfig, source: Optional[Path]) -> LexiaSettings:
    models = dict(DEFAULT_MODELS)
    for key, entry in file_config.models.items():
        models[key] = ModelDescriptor(
            provider=entry.provider,
            model=entry.model,
            display_name=entry.display_name,
            max_tokens=entry.max_tokens,
            default_temperature=entry.default_temperature,
            cost_per_1k_input=entry.cost_per_1k_input,
            cost_per_1k_output=entry.cost_per_1k_output,
            strengths=tuple(entry.strengths),
        )

    rules = dict(DEFAULT_ROUTING)
    for intent, entry in file_config.routing.items():
        rules[intent] = RoutingRule(
            intent=intent,
            primary_model=entry.primary_model,
            fallback_model=entry.fallback_model,
            temperature=entry.temperature,
            max_tokens=entry.max_tokens,
            tools_allowed=tuple(entry.tools_allowed),
        )

    llm = LLMConfig(models=models, rules=rules)
    problems = llm.validate()
    if problems:
        raise RoutingConfigurationError(
            "Invalid routing configuration:\n  " + "\n  ".join(problems),
            details={"problems": problems, "source": str(source) if source else None},
        )

    classifier = (
        ClassifierSettings(**file_config.classifier.model_dump())
        if file_config.classifier is not None
        else ClassifierSettings()
    )

    return LexiaSettings(
        llm=llm,
        classifier=classifier,
        credits_by_intent=MappingProxyType({**CREDITS_BY_INTENT, **file_config.credits.by_intent}),
        plan_credits=MappingProxyType({**PLAN_CREDITS, **file_config.credits.plans}),
        source=source,
    )


def load_settings(config_path: Optional[str | Path] = None) -> LexiaSettings:
    """
    Load, validate and cache the routing configuration.

    Raises:
        FileNotFoundError: the configured file doesn't exist.
        ValueError: the file is empty or fails schema validation.
        RoutingConfigurationError: a rule references a model key that is
            not in the registry.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR) or None

    if config_path is None:
        if _DEFAULTS_KEY not in _loaded_settings:
            _loaded_settings[_DEFAULTS_KEY] = _build_settings(RoutingFileConfig(), None)
        return _loaded_settings[_DEFAULTS_KEY]

    config_path = Path(config_path).resolve()
    cache_key = str(config_path)
    if cache_key in _loaded_settings:
        return _loaded_settings[cache_key]

    if not config_path.exists():
        raise FileNotFoundError(
            f"Routing config not found: {config_path}\n"
            f"Unset {CONFIG_ENV_VAR} to use the built-in routing table."
        )

    with open(config_path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ValueError(f"Config file is empty: {config_path}")

    try:
        file_config = RoutingFileConfig.model_validate(raw)
    except ValidationError as e:
        raise ValueError(f"Invalid routing config '{config_path}':\n{e}") from e

    settings = _build_settings(file_config, config_path)
    _loaded_settings[cache_key] = settings

    logger.info(
        "routing_config_loaded",
        extra={
            "source": cache_key,
            "models": len(settings.llm.models),
            "rules": len(settings.llm.rules),
        },
    )
    return settings


def load_llm_config(config_path: Optional[str | Path] = None) -> LLMConfig:
    """Load only the model registry and routing table."""
    return load_settings(config_path).llm


def clear_cache() -> None:
    """Clear the config cache. Useful for testing."""
    _loaded_settings.clear()
