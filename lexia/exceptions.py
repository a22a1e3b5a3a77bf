"""
Custom exception hierarchy for the Lexia routing core.

Structured error handling with clear categories:
- Configuration errors (routing tables, model strings; fatal)
- Provider errors (client missing, stream failed mid-flight)
- Dependency failures (data store unreachable)
- Tool errors (bad input from the model)

Quota exhaustion and duplicate usage recording are NOT exceptions:
they are returned as values by the quota manager.

Usage:
    from lexia.exceptions import RoutingConfigurationError

    descriptor = config.get_model_config(key)
    if descriptor is None:
        raise RoutingConfigurationError(f"Model '{key}' not found", model_key=key)
"""

from __future__ import annotations

from typing import Optional


class LexiaError(Exception):
    """
    Base exception for all Lexia errors.

    All custom exceptions inherit from this, so you can catch
    `LexiaError` to handle any Lexia-specific error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class RoutingConfigurationError(LexiaError):
    """
    Raised when the routing tables or a model string are invalid.

    Examples:
    - A routing rule references a model key missing from the registry
    - The mandatory 'unknown' routing rule is absent
    - A model string has an unsupported provider prefix

    This indicates a deployment defect, never a transient condition.
    """

    def __init__(
        self,
        message: str,
        *,
        model_key: Optional[str] = None,
        intent: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.model_key = model_key
        self.intent = intent


# ── Provider Errors ───────────────────────────────────────────────


class ProviderNotConfiguredError(LexiaError):
    """
    Raised when a model family is selected but no SDK client was supplied.

    Raised while starting a stream, so the orchestrator treats it like
    any other startup failure and tries the fallback model.
    """

    def __init__(
        self,
        message: str,
        *,
        family: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.family = family


class ModelStreamError(LexiaError):
    """
    Raised when a provider stream fails after tokens started flowing.

    Not eligible for fallback: partial output may already have reached
    the caller.
    """

    def __init__(
        self,
        message: str,
        *,
        model: Optional[str] = None,
        step: int = 0,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.model = model
        self.step = step


# ── Dependency Errors ─────────────────────────────────────────────


class DependencyError(LexiaError):
    """
    Raised when an external dependency (database, API) is unavailable
    or returns an unexpected response.
    """

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        operation: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.service = service
        self.operation = operation


# ── Tool Errors ───────────────────────────────────────────────────


class ToolExecutionError(LexiaError):
    """
    Raised when a tool cannot run: unknown name, invalid arguments or a
    failure inside the tool.

    The streaming layer converts it into an error tool result for the
    model; it never reaches the caller.
    """

    def __init__(
        self,
        message: str,
        *,
        tool_name: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.tool_name = tool_name
