"""
Credits by intent and plan limits.

Every request costs a number of credits that depends only on the intent
that served it; every plan grants a monthly credit allowance. Both tables
can be overridden from the routing YAML (see lexia.config.loader).
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Optional

from lexia.llm.llm_config import LexiaIntent

# ---------------------------------------------------------------------------
# Credits per intent
# ---------------------------------------------------------------------------

CREDITS_BY_INTENT: Mapping[LexiaIntent, float] = MappingProxyType({
    LexiaIntent.GENERAL_CHAT: 0.5,
    LexiaIntent.CASE_QUERY: 0.5,
    LexiaIntent.UNKNOWN: 0.5,
    LexiaIntent.PROCEDURAL_QUERY: 0.5,
    LexiaIntent.DOCUMENT_SUMMARY: 1,
    LexiaIntent.DOCUMENT_DRAFTING: 2,
    LexiaIntent.LEGAL_ANALYSIS: 3,
})

DEFAULT_CREDITS = 1


def get_credits_for_intent(
    intent: str | LexiaIntent,
    table: Optional[Mapping[LexiaIntent, float]] = None,
) -> float:
    """Credit cost of one request for an intent."""
    table = CREDITS_BY_INTENT if table is None else table
    try:
        intent = LexiaIntent(intent)
    except ValueError:
        return DEFAULT_CREDITS
    return table.get(intent, DEFAULT_CREDITS)


# ---------------------------------------------------------------------------
# Plan limits (credits per month)
# ---------------------------------------------------------------------------

PLAN_CREDITS: Mapping[str, int] = MappingProxyType({
    "individual": 300,
    "professional": 600,
    "estudio": 1000,
})

DEFAULT_PLAN_SLUG = "individual"
DEFAULT_PLAN_CREDITS = 300


def get_plan_credits_limit(
    plan_slug: str,
    table: Optional[Mapping[str, int]] = None,
) -> int:
    """Monthly limit for a plan slug. Unknown slugs get the individual limit."""
    table = PLAN_CREDITS if table is None else table
    return table.get(plan_slug, DEFAULT_PLAN_CREDITS)
