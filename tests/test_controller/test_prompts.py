"""Tests for system prompt assembly."""

import pytest

from lexia.controller.context import CaseContextData, CaseDeadline, CaseNote, CaseTask
from lexia.controller.prompts import (
    DISCLAIMER,
    DOCUMENT_DRAFTING_PROMPT,
    GENERAL_CHAT_PROMPT,
    INTENT_PROMPTS,
    NOTE_PREVIEW_CHARS,
    PROCEDURAL_QUERY_PROMPT,
    build_case_block,
    build_system_prompt,
)
from lexia.llm.llm_config import LexiaIntent


@pytest.fixture
def case_context():
    return CaseContextData(
        case_id="c-1",
        case_number="EXP-2024-001",
        title="Perez c/ Gomez s/ Daños",
        type="civil",
        status="active",
        description="Accidente de transito",
        company_name="Transportes SA",
        deadlines=(
            CaseDeadline(title="Contestar demanda", due_date="2024-03-10", status="pending"),
        ),
        tasks=(
            CaseTask(title="Preparar prueba", status="pending", priority="high"),
            CaseTask(title="Archivar copia", status="completed", priority="low"),
        ),
        recent_notes=(CaseNote(content="x" * 250, created_at="2024-03-01T10:00:00Z"),),
    )


class TestIntentTemplates:

    def test_every_intent_has_a_template(self):
        assert set(INTENT_PROMPTS) == set(LexiaIntent)

    def test_every_template_has_disclaimer(self):
        for prompt in INTENT_PROMPTS.values():
            assert DISCLAIMER in prompt
            assert prompt.startswith("Eres LEXIA")

    def test_case_and_unknown_use_general(self):
        assert INTENT_PROMPTS[LexiaIntent.CASE_QUERY] == GENERAL_CHAT_PROMPT
        assert INTENT_PROMPTS[LexiaIntent.UNKNOWN] == GENERAL_CHAT_PROMPT


class TestBuildSystemPrompt:

    def test_without_case_is_template(self):
        assert build_system_prompt(LexiaIntent.PROCEDURAL_QUERY, None) == PROCEDURAL_QUERY_PROMPT

    def test_string_intent(self):
        assert build_system_prompt("document_drafting", None) == DOCUMENT_DRAFTING_PROMPT

    def test_unrecognized_intent_uses_general(self):
        assert build_system_prompt("nonsense", None) == GENERAL_CHAT_PROMPT

    def test_case_block_appended(self, case_context):
        prompt = build_system_prompt(LexiaIntent.CASE_QUERY, case_context)
        assert prompt.startswith(GENERAL_CHAT_PROMPT + "\n\n--- CONTEXTO DE CASO ACTIVO ---")

    def test_pure(self, case_context):
        a = build_system_prompt(LexiaIntent.LEGAL_ANALYSIS, case_context)
        b = build_system_prompt(LexiaIntent.LEGAL_ANALYSIS, case_context)
        assert a == b


class TestBuildCaseBlock:

    def test_header_fields(self, case_context):
        block = build_case_block(case_context)
        assert "Numero: EXP-2024-001" in block
        assert "Titulo: Perez c/ Gomez s/ Daños" in block
        assert "Tipo: civil" in block
        assert "Estado: active" in block
        assert "Descripcion: Accidente de transito" in block
        assert "Cliente/Empresa: Transportes SA" in block

    def test_deadlines_and_tasks(self, case_context):
        block = build_case_block(case_context)
        assert "Vencimientos proximos:\n- Contestar demanda (2024-03-10) - pending" in block
        assert "Tareas pendientes:\n- Preparar prueba [high]" in block
        assert "Archivar copia" not in block

    def test_note_truncated(self, case_context):
        block = build_case_block(case_context)
        assert "- " + "x" * NOTE_PREVIEW_CHARS + "..." in block
        assert "x" * (NOTE_PREVIEW_CHARS + 1) not in block

    def test_optional_sections_omitted(self):
        block = build_case_block(CaseContextData(
            case_id="c-2", case_number="EXP-2", title="T", type="laboral", status="active",
        ))
        assert "Descripcion:" not in block
        assert "Cliente/Empresa:" not in block
        assert "Vencimientos proximos:" not in block
        assert "Tareas pendientes:" not in block
        assert "Notas recientes:" not in block
        assert block.endswith("usa este contexto.")

    def test_short_note_not_marked(self):
        block = build_case_block(CaseContextData(
            case_id="c-3", case_number="EXP-3", title="T", type="civil", status="active",
            recent_notes=(CaseNote(content="Llamar al perito", created_at=""),),
        ))
        assert "- Llamar al perito\n" in block
