"""
Intent Classifier — deterministic, rule-based, no model call.

Each intent owns an ordered list of regular expressions over Spanish legal
vocabulary. An intent's score is the fraction of its patterns that match,
so intents with more patterns are not favored. When a case is open and the
message refers to it, case_query gets a fixed boost.

Classification never fails: a message that matches nothing is treated as
conversation (general_chat at confidence 0.5), not as an error.

Future improvement: replace the patterns with a lightweight classifier
model or embeddings once there is labelled traffic to tune against.

Usage:
    from lexia.controller.classifier import classify_intent

    result = classify_intent("¿Cuántos días tengo para apelar?", has_case_context=False)
    # → ClassificationResult(intent=LexiaIntent.PROCEDURAL_QUERY, confidence=0.25)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Pattern

from lexia.llm.llm_config import LexiaIntent

logger = logging.getLogger(__name__)


def _compile(*patterns: str) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


INTENT_PATTERNS: Mapping[LexiaIntent, tuple[Pattern[str], ...]] = MappingProxyType({
    LexiaIntent.DOCUMENT_DRAFTING: _compile(
        r"\b(redact|escrib|borrador|draft|generar?\s+(un|el|la)?\s*(escrito|demanda|contestaci|contrato|poder|carta|recurso|apelaci|ofrecimiento))",
        r"\b(plantilla|modelo\s+de|template|carta\s+documento)\b",
        r"\b(redacci[oó]n|mejorar?\s+texto|reescrib)",
    ),
    LexiaIntent.DOCUMENT_SUMMARY: _compile(
        r"\b(resum|sintetiz|analiz[ae]\s+(este|el|la|un)\s*(documento|texto|escrito|contrato|sentencia))",
        r"\b(resumen|s[ií]ntesis|puntos?\s+clave|extracto)\b",
        r"\b(qu[eé]\s+dice|de\s+qu[eé]\s+trata|identific[ae]\s+(las\s+)?partes)\b",
    ),
    LexiaIntent.LEGAL_ANALYSIS: _compile(
        r"\b(anali[zs]|evalua|dictam[ei]n|jurisprudencia|doctrina|fundament)",
        r"\b(estrategia\s+legal|viabilidad|posibilidad|chances|probabilidad)",
        r"\b(argumento|defensa|impugn|nulidadd?|prescripci[oó]n|caducidad)\b",
        r"\b(qu[eé]\s+opinas?\s+sobre|c[oó]mo\s+analiz|qu[eé]\s+dice\s+la\s+ley)\b",
    ),
    LexiaIntent.PROCEDURAL_QUERY: _compile(
        r"\b(checklist|lista\s+de\s+(pasos|verificaci)|paso\s+a\s+paso)\b",
        r"\b(plazo|vencimiento|t[eé]rmino|d[ií]as?\s+h[aá]biles|calcul[ae]\s+(el\s+)?plazo)\b",
        r"\b(procedimiento|etapa\s+procesal|tr[aá]mite|requisitos?\s+formales)\b",
        r"\b(cu[aá]nto\s+tiempo|cu[aá]ntos\s+d[ií]as|cu[aá]ndo\s+vence|fecha\s+l[ií]mite)\b",
    ),
    LexiaIntent.CASE_QUERY: _compile(
        r"\b(este\s+caso|el\s+caso|mi\s+caso|estado\s+del\s+caso)\b",
        r"\b(tareas?\s+pendientes?|documentos?\s+del\s+caso|notas?\s+del\s+caso)\b",
        r"\b(qu[eé]\s+tengo\s+pendiente|pr[oó]ximos?\s+vencimientos?)\b",
        r"\b(informaci[oó]n\s+del\s+caso|datos?\s+del\s+expediente)\b",
    ),
    LexiaIntent.GENERAL_CHAT: _compile(
        r"\b(hola|buenas?|gracias|adi[oó]s|chau)\b",
        r"\b(qu[eé]\s+puedes?\s+hacer|ayuda|c[oó]mo\s+funciona)\b",
    ),
    LexiaIntent.UNKNOWN: (),
})

# Words that make an ambiguous message likely to be about the open case
CASE_REFERENCE_PATTERN = re.compile(r"\b(caso|expediente|este|el)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ClassifierSettings:
    """
    Tunable constants. Their values carry no derivation; they are kept
    for compatibility and may be retuned without changing semantics.
    """

    case_context_boost: float = 0.3
    min_score: float = 0.1
    default_confidence: float = 0.5


@dataclass(frozen=True)
class ClassificationResult:
    intent: LexiaIntent
    confidence: float


class IntentClassifier:
    """Scores a message against every intent's pattern set."""

    def __init__(
        self,
        patterns: Optional[Mapping[LexiaIntent, tuple[Pattern[str], ...]]] = None,
        settings: Optional[ClassifierSettings] = None,
    ):
        self._patterns = INTENT_PATTERNS if patterns is None else patterns
        self._settings = settings or ClassifierSettings()

    @property
    def settings(self) -> ClassifierSettings:
        return self._settings

    def score(self, message: str, has_case_context: bool) -> dict[LexiaIntent, float]:
        """Normalized match ratio per intent; intents with no match are absent."""
        scores: dict[LexiaIntent, float] = {}

        for intent, patterns in self._patterns.items():
            if not patterns:
                continue
            match_count = sum(1 for p in patterns if p.search(message))
            if match_count > 0:
                scores[intent] = match_count / len(patterns)

        if has_case_context and CASE_REFERENCE_PATTERN.search(message):
            scores[LexiaIntent.CASE_QUERY] = (
                scores.get(LexiaIntent.CASE_QUERY, 0.0) + self._settings.case_context_boost
            )

        return scores

    def classify(self, message: str, has_case_context: bool) -> ClassificationResult:
        """Return the best-scoring intent; ties keep the first found."""
        scores = self.score(message, has_case_context)

        best_intent = LexiaIntent.GENERAL_CHAT
        best_score = 0.0
        for intent, score in scores.items():
            if score > best_score:
                best_score = score
                best_intent = intent

        if best_score < self._settings.min_score:
            result = ClassificationResult(
                intent=LexiaIntent.GENERAL_CHAT,
                confidence=self._settings.default_confidence,
            )
        else:
            result = ClassificationResult(intent=best_intent, confidence=min(best_score, 1.0))

        logger.debug(
            "intent_scored",
            extra={
                "intent": result.intent.value,
                "confidence": round(result.confidence, 3),
                "scores": {k.value: round(v, 3) for k, v in scores.items()},
            },
        )
        return result


_default_classifier = IntentClassifier()


def classify_intent(message: str, has_case_context: bool) -> ClassificationResult:
    return _default_classifier.classify(message, has_case_context)
