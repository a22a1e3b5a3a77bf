"""
Tests for the rule-based intent classifier.

Covers scoring normalization, the case-context boost, tie-breaking,
the low-score floor and confidence clamping.
"""

import re

import pytest

from lexia.controller.classifier import (
    INTENT_PATTERNS,
    ClassifierSettings,
    IntentClassifier,
    classify_intent,
)
from lexia.llm.llm_config import LexiaIntent


@pytest.fixture
def classifier():
    return IntentClassifier()


class TestPatterns:

    def test_unknown_has_no_patterns(self):
        assert INTENT_PATTERNS[LexiaIntent.UNKNOWN] == ()

    def test_patterns_are_case_insensitive(self):
        for patterns in INTENT_PATTERNS.values():
            for p in patterns:
                assert p.flags & re.IGNORECASE


class TestScore:

    def test_score_is_match_ratio(self, classifier):
        scores = classifier.score("¿Cuántos días tengo para apelar?", has_case_context=False)
        assert scores == {LexiaIntent.PROCEDURAL_QUERY: 0.25}

    def test_unmatched_intents_absent(self, classifier):
        assert classifier.score("asdf qwerty", has_case_context=False) == {}

    def test_case_boost_needs_reference_word(self, classifier):
        assert LexiaIntent.CASE_QUERY not in classifier.score("Hola", has_case_context=True)

    def test_case_boost_added(self, classifier):
        scores = classifier.score("¿Qué tengo pendiente en el expediente?", has_case_context=True)
        assert scores[LexiaIntent.CASE_QUERY] == pytest.approx(0.55)

    def test_no_boost_without_case(self, classifier):
        scores = classifier.score("¿Qué tengo pendiente en el expediente?", has_case_context=False)
        assert scores[LexiaIntent.CASE_QUERY] == pytest.approx(0.25)


class TestClassify:

    def test_procedural(self):
        result = classify_intent("¿Cuántos días tengo para apelar?", has_case_context=False)
        assert result.intent == LexiaIntent.PROCEDURAL_QUERY
        assert result.confidence == pytest.approx(0.25)

    def test_greeting(self, classifier):
        result = classifier.classify("Hola, gracias", has_case_context=False)
        assert result.intent == LexiaIntent.GENERAL_CHAT
        assert result.confidence == pytest.approx(0.5)

    def test_no_match_defaults_to_general_chat(self, classifier):
        result = classifier.classify("asdf qwerty", has_case_context=False)
        assert result.intent == LexiaIntent.GENERAL_CHAT
        assert result.confidence == 0.5

    def test_empty_message(self, classifier):
        assert classifier.classify("", has_case_context=True).intent == LexiaIntent.GENERAL_CHAT

    def test_summary_beats_case_boost(self, classifier):
        result = classifier.classify("Necesito un resumen de este contrato", has_case_context=True)
        assert result.intent == LexiaIntent.DOCUMENT_SUMMARY
        assert result.confidence == pytest.approx(2 / 3)

    def test_legal_analysis(self, classifier):
        result = classifier.classify(
            "¿Qué jurisprudencia hay sobre prescripción?", has_case_context=False,
        )
        assert result.intent == LexiaIntent.LEGAL_ANALYSIS
        assert result.confidence == pytest.approx(0.5)

    def test_tie_keeps_first_intent(self, classifier):
        scores = classifier.score("borrador con síntesis", has_case_context=False)
        assert scores[LexiaIntent.DOCUMENT_DRAFTING] == scores[LexiaIntent.DOCUMENT_SUMMARY]
        result = classifier.classify("borrador con síntesis", has_case_context=False)
        assert result.intent == LexiaIntent.DOCUMENT_DRAFTING

    def test_confidence_clamped(self, classifier):
        message = (
            "Estado del caso: tareas pendientes, ¿qué tengo pendiente? "
            "y datos del expediente"
        )
        result = classifier.classify(message, has_case_context=True)
        assert result.intent == LexiaIntent.CASE_QUERY
        assert result.confidence == 1.0

    def test_min_score_floor(self):
        classifier = IntentClassifier(settings=ClassifierSettings(min_score=0.3))
        result = classifier.classify("¿Cuántos días tengo para apelar?", has_case_context=False)
        assert result.intent == LexiaIntent.GENERAL_CHAT
        assert result.confidence == 0.5

    def test_custom_boost(self):
        classifier = IntentClassifier(settings=ClassifierSettings(case_context_boost=0.9))
        result = classifier.classify("Necesito un resumen de este contrato", has_case_context=True)
        assert result.intent == LexiaIntent.CASE_QUERY
        assert result.confidence == pytest.approx(0.9)

    def test_deterministic(self, classifier):
        message = "Redactá una carta documento por despido"
        assert classifier.classify(message, False) == classifier.classify(message, False)
