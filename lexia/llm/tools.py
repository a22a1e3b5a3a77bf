"""
Tool Registry — what the model may invoke, and how each tool runs.

Tools come in two variants:

DETERMINISTIC: plain computation, no model round trip. Cannot fail
because a model is unavailable.
  - calculateDeadline
  - queryCaseInfo

SEMANTIC: the model writes the actual content. The tool only validates
its input and yields progress markers ("analyzing" ... "ready") that the
model consumes while composing the answer.
  - summarizeDocument
  - generateDraft
  - getProceduralChecklist

Input contracts are pydantic models; their JSON schema is translated into
Anthropic's tool format and OpenAI's function_calling format.

Usage:
    from lexia.llm.tools import get_tools_for_intent, run_tool, ToolCall

    tools = get_tools_for_intent(decision.classification.tools_allowed)
    run = run_tool(tools["calculateDeadline"], call, ToolContext())
    print(run.result.content)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterator, Literal, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from lexia.controller.context import CaseContextData
from lexia.exceptions import ToolExecutionError
from lexia.llm.llm_config import AIProvider, LexiaIntent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool Definition (provider-agnostic schema)
# ---------------------------------------------------------------------------

@dataclass
class ToolDefinition:
    """
    Provider-agnostic tool/function definition.

    Translates to both Anthropic's tool format and OpenAI's
    function_calling format.
    """

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    def _properties(self) -> dict[str, Any]:
        properties = {}
        for param_name, param_spec in self.parameters.items():
            if isinstance(param_spec, dict):
                properties[param_name] = param_spec
            else:
                properties[param_name] = {"type": "string", "description": str(param_spec)}
        return properties

    def to_anthropic(self) -> dict[str, Any]:
        """Convert to Anthropic Claude tool format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": self._properties(),
                "required": self.required,
            },
        }

    def to_openai(self) -> dict[str, Any]:
        """Convert to OpenAI function_calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": self._properties(),
                    "required": self.required,
                },
            },
        }


@dataclass
class ToolCall:
    """Represents a tool call requested by the LLM."""

    id: str                         # Provider's tool_call id
    name: str                       # Tool function name
    arguments: dict[str, Any]       # Parsed arguments
    raw_arguments: str = ""         # Raw JSON string from provider


@dataclass
class ToolResult:
    """Result of executing a tool, to be fed back to the LLM."""

    tool_call_id: str               # Must match the ToolCall.id
    content: str                    # Stringified result
    is_error: bool = False

    def to_anthropic(self) -> dict[str, Any]:
        """Convert to Anthropic tool_result format."""
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_call_id,
            "content": self.content,
            "is_error": self.is_error,
        }

    def to_openai(self) -> dict[str, Any]:
        """Convert to OpenAI tool response format."""
        return {
            "role": "tool",
            "tool_call_id": self.tool_call_id,
            "content": self.content,
        }


# ---------------------------------------------------------------------------
# Registry Types
# ---------------------------------------------------------------------------

class ToolCategory(str, Enum):
    DETERMINISTIC = "deterministic"
    SEMANTIC = "semantic"


@dataclass(frozen=True)
class ToolRegistryEntry:
    """Metadata the controller and admin UIs read about a tool."""

    name: str
    category: ToolCategory
    description: str
    allowed_intents: tuple[LexiaIntent, ...]
    preferred_provider: Optional[AIProvider] = None
    preferred_model: Optional[str] = None


@dataclass(frozen=True)
class ToolContext:
    """Request-scoped data deterministic tools may read."""

    case_context: Optional[CaseContextData] = None
    holidays: frozenset[date] = frozenset()


def _definition_from_model(name: str, description: str, model: type[BaseModel]) -> ToolDefinition:
    schema = model.model_json_schema(by_alias=True)
    return ToolDefinition(
        name=name,
        description=description,
        parameters=schema.get("properties", {}),
        required=list(schema.get("required", [])),
    )


@dataclass(frozen=True)
class DeterministicTool:
    """Pure computation: compute(args, context) -> result dict."""

    name: str
    description: str
    input_model: type[BaseModel]
    compute: Callable[[Any, ToolContext], dict[str, Any]]
    allowed_intents: tuple[LexiaIntent, ...] = ()

    @property
    def category(self) -> ToolCategory:
        return ToolCategory.DETERMINISTIC

    @property
    def definition(self) -> ToolDefinition:
        return _definition_from_model(self.name, self.description, self.input_model)

    def registry_entry(self) -> ToolRegistryEntry:
        return ToolRegistryEntry(
            name=self.name,
            category=self.category,
            description=self.description,
            allowed_intents=self.allowed_intents,
        )


@dataclass(frozen=True)
class SemanticTool:
    """
    Model-assisted tool: stage(args) yields progress markers.

    The last marker yielded is returned to the model as the tool result;
    the earlier ones are surfaced to the caller as progress.
    """

    name: str
    description: str
    input_model: type[BaseModel]
    stage: Callable[[Any], Iterator[dict[str, Any]]]
    allowed_intents: tuple[LexiaIntent, ...] = ()
    preferred_provider: AIProvider = AIProvider.GATEWAY
    preferred_model: Optional[str] = None

    @property
    def category(self) -> ToolCategory:
        return ToolCategory.SEMANTIC

    @property
    def definition(self) -> ToolDefinition:
        return _definition_from_model(self.name, self.description, self.input_model)

    def registry_entry(self) -> ToolRegistryEntry:
        return ToolRegistryEntry(
            name=self.name,
            category=self.category,
            description=self.description,
            allowed_intents=self.allowed_intents,
            preferred_provider=self.preferred_provider,
            preferred_model=self.preferred_model,
        )


LexiaTool = Union[DeterministicTool, SemanticTool]


# ---------------------------------------------------------------------------
# Deterministic: calculateDeadline
# ---------------------------------------------------------------------------

Jurisdiction = Literal["federal", "cordoba", "buenos_aires", "otro"]

DEADLINE_BUSINESS_DAYS: Mapping[str, int] = MappingProxyType({
    "apelacion_5dias": 5,
    "apelacion_10dias": 10,
    "contestacion_15dias": 15,
    "ofrecimiento_prueba": 10,
    "alegatos": 6,
    "recurso_extraordinario": 10,
})


class CalculateDeadlineInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: date = Field(..., alias="startDate", description="Starting date (YYYY-MM-DD)")
    deadline_type: Literal[
        "apelacion_5dias", "apelacion_10dias", "contestacion_15dias",
        "ofrecimiento_prueba", "alegatos", "recurso_extraordinario", "custom",
    ] = Field(..., alias="deadlineType")
    custom_days: Optional[int] = Field(
        None, alias="customDays", description="Days for custom deadline",
    )
    jurisdiction: Jurisdiction = "cordoba"

    @model_validator(mode="after")
    def _custom_needs_days(self) -> CalculateDeadlineInput:
        # customDays is ignored for the named deadline types
        if self.deadline_type != "custom":
            return self
        if self.custom_days is None:
            raise ValueError("customDays is required when deadlineType is 'custom'")
        if not 1 <= self.custom_days <= 365:
            raise ValueError("customDays must be between 1 and 365")
        return self


def add_business_days(
    start: date,
    business_days: int,
    holidays: frozenset[date] = frozenset(),
) -> date:
    """Date of the Nth business day after start (Mon–Fri, skipping holidays)."""
    current = start
    remaining = business_days
    while remaining > 0:
        current += timedelta(days=1)
        if current.weekday() < 5 and current not in holidays:
            remaining -= 1
    return current


def _calculate_deadline(args: CalculateDeadlineInput, context: ToolContext) -> dict[str, Any]:
    if args.deadline_type == "custom":
        days = args.custom_days or 0
    else:
        days = DEADLINE_BUSINESS_DAYS[args.deadline_type]
    due = add_business_days(args.start_date, days, context.holidays)
    return {
        "state": "ready",
        "startDate": args.start_date.isoformat(),
        "businessDays": days,
        "dueDate": due.isoformat(),
        "jurisdiction": args.jurisdiction,
        "message": (
            f"Plazo de {days} dias habiles desde {args.start_date.isoformat()}: "
            f"vence el {due.isoformat()}."
        ),
    }


# ---------------------------------------------------------------------------
# Deterministic: queryCaseInfo
# ---------------------------------------------------------------------------

class QueryCaseInfoInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query_type: Literal["documents", "notes", "deadlines", "tasks", "summary"] = Field(
        ..., alias="queryType", description="What to query",
    )


def _query_case_info(args: QueryCaseInfoInput, context: ToolContext) -> dict[str, Any]:
    case = context.case_context
    if case is None:
        return {"found": False, "count": None, "message": "No hay un caso activo en esta conversacion."}

    if args.query_type == "deadlines":
        items = [f"{d.title} ({d.due_date}) - {d.status}" for d in case.deadlines]
    elif args.query_type == "tasks":
        items = [f"{t.title} [{t.priority}]" for t in case.tasks]
    elif args.query_type == "notes":
        items = [n.content for n in case.recent_notes]
    elif args.query_type == "summary":
        return {
            "found": True,
            "count": None,
            "message": (
                f"Caso {case.case_number} ({case.status}): "
                f"{len(case.deadlines)} vencimientos, {len(case.tasks)} tareas pendientes, "
                f"{len(case.recent_notes)} notas recientes."
            ),
        }
    else:
        # Documents are not part of the enriched snapshot.
        return {
            "found": False,
            "count": None,
            "message": "Los documentos del caso no estan incluidos en el contexto activo.",
        }

    return {
        "found": bool(items),
        "count": len(items),
        "message": "\n".join(items) if items else f"Sin {args.query_type} registrados.",
    }


# ---------------------------------------------------------------------------
# Semantic tools
# ---------------------------------------------------------------------------

class SummarizeDocumentInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_text: str = Field(
        ..., alias="documentText", min_length=1,
        description="The legal document text to summarize",
    )
    summary_type: Literal["brief", "detailed", "key_points"] = Field(
        ..., alias="summaryType", description="Type of summary",
    )


def _stage_summary(args: SummarizeDocumentInput) -> Iterator[dict[str, Any]]:
    yield {"state": "analyzing", "message": "Analizando documento..."}
    yield {
        "state": "ready",
        "summaryType": args.summary_type,
        "message": "Documento analizado. Generando resumen...",
    }


DRAFT_TEMPLATES: Mapping[str, str] = MappingProxyType({
    "demanda": "Escrito de Demanda",
    "contestacion": "Contestacion de Demanda",
    "apelacion": "Recurso de Apelacion",
    "contrato": "Contrato",
    "poder": "Poder",
    "carta_documento": "Carta Documento",
    "escrito_judicial": "Escrito Judicial",
    "recurso": "Recurso",
    "ofrecimiento_prueba": "Ofrecimiento de Prueba",
})


class GenerateDraftInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    template_type: Literal[
        "demanda", "contestacion", "apelacion", "contrato", "poder",
        "carta_documento", "escrito_judicial", "recurso", "ofrecimiento_prueba",
    ] = Field(..., alias="templateType", description="Type of document")
    context: Optional[str] = Field(None, description="Additional context for the document")
    jurisdiction: Jurisdiction = "cordoba"


def _stage_draft(args: GenerateDraftInput) -> Iterator[dict[str, Any]]:
    yield {"state": "preparing", "message": "Preparando plantilla..."}
    name = DRAFT_TEMPLATES[args.template_type]
    yield {
        "state": "ready",
        "templateName": name,
        "jurisdiction": args.jurisdiction,
        "message": f'Plantilla "{name}" lista.',
    }


CHECKLIST_CASE_TYPES: Mapping[str, str] = MappingProxyType({
    "civil_ordinario": "Juicio Civil Ordinario",
    "civil_ejecutivo": "Juicio Ejecutivo",
    "laboral": "Juicio Laboral",
    "familia_divorcio": "Divorcio",
    "familia_alimentos": "Alimentos",
    "sucesion": "Sucesion",
    "penal": "Proceso Penal",
    "amparo": "Accion de Amparo",
    "desalojo": "Desalojo",
})


class ProceduralChecklistInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    case_type: Literal[
        "civil_ordinario", "civil_ejecutivo", "laboral", "familia_divorcio",
        "familia_alimentos", "sucesion", "penal", "amparo", "desalojo",
    ] = Field(..., alias="caseType", description="Type of case")
    stage: Literal["inicial", "prueba", "alegatos", "sentencia", "ejecucion", "completo"] = "completo"


def _stage_checklist(args: ProceduralChecklistInput) -> Iterator[dict[str, Any]]:
    yield {"state": "loading", "message": "Cargando checklist..."}
    name = CHECKLIST_CASE_TYPES[args.case_type]
    yield {
        "state": "ready",
        "caseTypeName": name,
        "stage": args.stage,
        "message": f'Checklist para "{name}" disponible.',
    }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

CALCULATE_DEADLINE = DeterministicTool(
    name="calculateDeadline",
    description=(
        "Calculate legal deadlines based on Argentine procedural law, "
        "considering business days and holidays."
    ),
    input_model=CalculateDeadlineInput,
    compute=_calculate_deadline,
    allowed_intents=(
        LexiaIntent.PROCEDURAL_QUERY, LexiaIntent.CASE_QUERY, LexiaIntent.GENERAL_CHAT,
    ),
)

QUERY_CASE_INFO = DeterministicTool(
    name="queryCaseInfo",
    description=(
        "Query information about the current case including documents, notes, "
        "deadlines, and tasks. Only available when a case context is active."
    ),
    input_model=QueryCaseInfoInput,
    compute=_query_case_info,
    allowed_intents=(
        LexiaIntent.CASE_QUERY, LexiaIntent.LEGAL_ANALYSIS, LexiaIntent.GENERAL_CHAT,
    ),
)

SUMMARIZE_DOCUMENT = SemanticTool(
    name="summarizeDocument",
    description=(
        "Summarize a legal document or text. Returns a structured summary with "
        "key points, parties, obligations, and dates."
    ),
    input_model=SummarizeDocumentInput,
    stage=_stage_summary,
    allowed_intents=(
        LexiaIntent.DOCUMENT_SUMMARY, LexiaIntent.LEGAL_ANALYSIS, LexiaIntent.GENERAL_CHAT,
    ),
    preferred_model="openai/gpt-4o",
)

GENERATE_DRAFT = SemanticTool(
    name="generateDraft",
    description=(
        "Generate a draft legal document. Templates: demanda, contestacion, apelacion, "
        "contrato, poder, carta_documento, escrito_judicial, recurso, ofrecimiento_prueba."
    ),
    input_model=GenerateDraftInput,
    stage=_stage_draft,
    allowed_intents=(LexiaIntent.DOCUMENT_DRAFTING, LexiaIntent.GENERAL_CHAT),
    preferred_model="anthropic/claude-sonnet-4-20250514",
)

GET_PROCEDURAL_CHECKLIST = SemanticTool(
    name="getProceduralChecklist",
    description="Get a procedural checklist for a specific type of legal case in Argentine law.",
    input_model=ProceduralChecklistInput,
    stage=_stage_checklist,
    allowed_intents=(
        LexiaIntent.PROCEDURAL_QUERY, LexiaIntent.LEGAL_ANALYSIS, LexiaIntent.GENERAL_CHAT,
    ),
    preferred_model="openai/gpt-4-turbo",
)

TOOL_REGISTRY: Mapping[str, LexiaTool] = MappingProxyType({
    tool.name: tool
    for tool in (
        SUMMARIZE_DOCUMENT,
        GENERATE_DRAFT,
        GET_PROCEDURAL_CHECKLIST,
        CALCULATE_DEADLINE,
        QUERY_CASE_INFO,
    )
})

DETERMINISTIC_TOOL_NAMES: tuple[str, ...] = tuple(
    name for name, tool in TOOL_REGISTRY.items() if isinstance(tool, DeterministicTool)
)


def get_tools_for_intent(allowed_tool_names: Sequence[str]) -> dict[str, LexiaTool]:
    """
    Filter the registry down to the tools an intent may use.

    An empty allow-list means no restriction. Deterministic tools are
    always included; unknown names are ignored.
    """
    if not allowed_tool_names:
        return dict(TOOL_REGISTRY)

    filtered: dict[str, LexiaTool] = {}
    for name in allowed_tool_names:
        if name in TOOL_REGISTRY:
            filtered[name] = TOOL_REGISTRY[name]

    for name in DETERMINISTIC_TOOL_NAMES:
        filtered[name] = TOOL_REGISTRY[name]

    return filtered


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolRun:
    """Outcome of one tool call: progress markers plus the model-facing result."""

    tool_name: str
    progress: tuple[dict[str, Any], ...]
    result: ToolResult


def _error_result(call: ToolCall, error: ToolExecutionError) -> ToolResult:
    return ToolResult(
        tool_call_id=call.id,
        content=json.dumps({"error": str(error), **error.details}, ensure_ascii=False, default=str),
        is_error=True,
    )


def run_tool(tool: LexiaTool, call: ToolCall, context: ToolContext) -> ToolRun:
    """
    Validate a call's arguments and run the tool.

    Invalid arguments and failures inside the tool become an error
    ToolResult so the model can correct itself; nothing is raised to the
    caller.
    """
    try:
        args = tool.input_model.model_validate(call.arguments)
    except ValidationError as e:
        error = ToolExecutionError(
            f"Invalid arguments for {tool.name}",
            tool_name=tool.name,
            details={"validation": e.errors(include_url=False, include_context=False)},
        )
        logger.warning(
            "tool_arguments_invalid",
            extra={"tool_name": tool.name, "errors": e.error_count()},
        )
        return ToolRun(tool_name=tool.name, progress=(), result=_error_result(call, error))

    try:
        if isinstance(tool, DeterministicTool):
            progress: tuple[dict[str, Any], ...] = ()
            output = tool.compute(args, context)
        else:
            states = list(tool.stage(args))
            progress = tuple(states[:-1])
            output = states[-1] if states else {"state": "ready"}
    except Exception as e:
        error = ToolExecutionError(
            f"{tool.name} failed: {e}",
            tool_name=tool.name,
            details={"error_type": type(e).__name__},
        )
        logger.warning(
            "tool_execution_failed",
            extra={"tool_name": tool.name, "error_type": type(e).__name__, "error": str(e)},
        )
        return ToolRun(tool_name=tool.name, progress=(), result=_error_result(call, error))

    logger.debug(
        "tool_executed",
        extra={"tool_name": tool.name, "category": tool.category.value},
    )
    return ToolRun(
        tool_name=tool.name,
        progress=progress,
        result=ToolResult(
            tool_call_id=call.id,
            content=json.dumps(output, ensure_ascii=False, default=str),
        ),
    )


def execute_tool_call(
    tools: Mapping[str, LexiaTool],
    call: ToolCall,
    context: ToolContext,
) -> ToolRun:
    """Look up and run a tool by the name the model used."""
    tool = tools.get(call.name)
    if tool is None:
        error = ToolExecutionError(f"Unknown tool: {call.name}", tool_name=call.name)
        logger.warning("tool_unknown", extra={"tool_name": call.name})
        return ToolRun(tool_name=call.name, progress=(), result=_error_result(call, error))
    return run_tool(tool, call, context)
