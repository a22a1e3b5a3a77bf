"""
Model Resolver — maps "<family>/<model-id>" strings to model handles.

The registry stores wire model strings such as 'openai/gpt-4-turbo' or
'anthropic/claude-sonnet-4-20250514'. The streaming layer needs to know
which SDK family to call and the bare model id to send. Resolution is a
pure function: no clients, no state.

Usage:
    from lexia.llm.resolver import resolve_model

    handle = resolve_model("openai/gpt-4o")
    # → ModelHandle(family="openai", model_id="gpt-4o")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from lexia.exceptions import RoutingConfigurationError

OPENAI = "openai"
ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class ModelHandle:
    """A concrete model for one SDK family."""

    family: str      # "openai" | "anthropic"
    model_id: str    # Model id as the vendor API expects it

    @property
    def model_string(self) -> str:
        return f"{self.family}/{self.model_id}"


def _openai_model(model_id: str) -> ModelHandle:
    return ModelHandle(family=OPENAI, model_id=model_id)


def _anthropic_model(model_id: str) -> ModelHandle:
    return ModelHandle(family=ANTHROPIC, model_id=model_id)


_FAMILY_CONSTRUCTORS: dict[str, Callable[[str], ModelHandle]] = {
    OPENAI: _openai_model,
    ANTHROPIC: _anthropic_model,
}

SUPPORTED_FAMILIES = tuple(_FAMILY_CONSTRUCTORS)


def resolve_model(model_string: str) -> ModelHandle:
    """
    Resolve a model string to a ModelHandle.

    Raises:
        RoutingConfigurationError: unsupported prefix or empty model id.
    """
    family, sep, model_id = model_string.partition("/")
    constructor = _FAMILY_CONSTRUCTORS.get(family) if sep else None
    if constructor is None or not model_id:
        supported = ", ".join(f'"{f}/..."' for f in SUPPORTED_FAMILIES)
        raise RoutingConfigurationError(
            f"Unsupported model string: {model_string}. Use {supported}.",
            details={"model": model_string},
        )
    return constructor(model_id)
