"""
Case Context — the light case reference from the UI and its enriched form.

The caller sends a minimal CaseContextInput. When the controller decides a
request needs grounding, enrich_case_context() fetches status, deadlines,
open tasks and recent notes in one composite query and bounds them so the
prompt size does not depend on how large the case is.

Enrichment is an enhancement, not a precondition: a missing case or a
failing data store yields None and the request proceeds ungrounded.

Usage:
    case_input = CaseContextInput.from_dict(body["caseContext"])
    case_context = await enrich_case_context(db, case_input)
    if case_context is None:
        ...  # answer without grounding
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

logger = logging.getLogger(__name__)

MAX_DEADLINES = 5
MAX_TASKS = 5
MAX_NOTES = 3

COMPLETED_TASK_STATUS = "completed"


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CaseContextInput:
    """Case reference supplied by the caller."""

    case_id: str
    case_number: str
    title: str
    type: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CaseContextInput:
        """Build from a request payload (camelCase or snake_case keys)."""
        return cls(
            case_id=str(data.get("caseId") or data.get("case_id") or ""),
            case_number=str(data.get("caseNumber") or data.get("case_number") or ""),
            title=str(data.get("title") or ""),
            type=str(data.get("type") or ""),
        )


@dataclass(frozen=True)
class CaseDeadline:
    title: str
    due_date: str
    status: str


@dataclass(frozen=True)
class CaseTask:
    title: str
    status: str
    priority: str


@dataclass(frozen=True)
class CaseNote:
    content: str
    created_at: str


@dataclass(frozen=True)
class CaseContextData:
    """Enriched case snapshot. Created per request, never cached."""

    case_id: str
    case_number: str
    title: str
    type: str
    status: str
    description: Optional[str] = None
    company_name: Optional[str] = None
    deadlines: tuple[CaseDeadline, ...] = ()
    tasks: tuple[CaseTask, ...] = ()
    recent_notes: tuple[CaseNote, ...] = ()


class CaseDataStore(Protocol):
    """Data-store capability consumed by enrichment."""

    def fetch_case_snapshot(self, case_id: str) -> Optional[dict[str, Any]]:
        """
        Return the case row with related rows, or None if not found.

        Shape: {"status", "description", "company_name",
                "deadlines": [{"title", "due_date", "status"}],
                "tasks": [{"title", "status", "priority"}],
                "notes": [{"content", "created_at"}]}
        """
        ...


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------

def build_case_context(
    case_input: CaseContextInput,
    snapshot: Mapping[str, Any],
) -> CaseContextData:
    """Convert a raw snapshot into a bounded CaseContextData."""
    deadlines = snapshot.get("deadlines") or []
    tasks = snapshot.get("tasks") or []
    notes = snapshot.get("notes") or []

    open_tasks = [t for t in tasks if t.get("status") != COMPLETED_TASK_STATUS]

    return CaseContextData(
        case_id=case_input.case_id,
        case_number=case_input.case_number,
        title=case_input.title,
        type=case_input.type,
        status=snapshot.get("status") or "unknown",
        description=snapshot.get("description") or None,
        company_name=snapshot.get("company_name") or None,
        deadlines=tuple(
            CaseDeadline(
                title=d.get("title", ""),
                due_date=d.get("due_date", ""),
                status=d.get("status", ""),
            )
            for d in deadlines[:MAX_DEADLINES]
        ),
        tasks=tuple(
            CaseTask(
                title=t.get("title", ""),
                status=t.get("status", ""),
                priority=t.get("priority", ""),
            )
            for t in open_tasks[:MAX_TASKS]
        ),
        recent_notes=tuple(
            CaseNote(
                content=n.get("content") or "",
                created_at=n.get("created_at", ""),
            )
            for n in notes[:MAX_NOTES]
        ),
    )


async def enrich_case_context(
    store: CaseDataStore,
    case_input: CaseContextInput,
) -> Optional[CaseContextData]:
    """
    Fetch and enrich case context from the data store.

    Returns None (never raises) when the case is missing or the store
    fails; the caller treats that as "proceed without grounding".
    """
    try:
        snapshot = await asyncio.to_thread(store.fetch_case_snapshot, case_input.case_id)
    except Exception as e:
        logger.warning(
            "case_enrichment_failed",
            extra={"case_id": case_input.case_id, "error": str(e)[:200]},
        )
        return None

    if not snapshot:
        logger.info("case_not_found", extra={"case_id": case_input.case_id})
        return None

    try:
        context = build_case_context(case_input, snapshot)
    except (AttributeError, TypeError) as e:
        logger.warning(
            "case_snapshot_malformed",
            extra={"case_id": case_input.case_id, "error": str(e)[:200]},
        )
        return None

    logger.debug(
        "case_context_enriched",
        extra={
            "case_id": case_input.case_id,
            "deadlines": len(context.deadlines),
            "tasks": len(context.tasks),
            "notes": len(context.recent_notes),
        },
    )
    return context
