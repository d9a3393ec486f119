from __future__ import annotations

import re
from typing import Callable

import structlog

from .types import ConversationContext, Intent, IntentClassification, IntentClassifier, IntentVerdict

logger = structlog.get_logger(__name__)

SELECTION_CONFIDENCE = 0.95
FOLLOW_UP_CONFIDENCE = 0.8
DEFAULT_MODEL_CONFIDENCE = 0.5

NUMERAL_RE = re.compile(r"^(\d+)$")
PHRASE_RE = re.compile(
    r"(?:go\s+(?:with|for)|option|suggestion|yes|yeah|do|pick|choose|select)\s*(\d+)\s*$",
    re.IGNORECASE,
)
ORDINAL_RE = re.compile(
    r"(?:the\s+)?(first|second|third|fourth|fifth)(?:\s+(?:one|suggestion|option))?$",
    re.IGNORECASE,
)
AFFIRMATIVE_RE = re.compile(r"^(?:yes|yeah|sure|ok|okay|yep|yup|do it|go ahead|proceed|continue)$")

ORDINALS = {"first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5}

_INTENT_LABELS = {
    "newtask": Intent.NEW_TASK,
    "followup": Intent.FOLLOW_UP,
    "selectsuggestion": Intent.SELECT_SUGGESTION,
}

Matcher = Callable[[str, ConversationContext], IntentClassification | None]


def _select(index: int, context: ConversationContext) -> IntentClassification | None:
    if index < 1 or index > len(context.available_suggestions):
        return None
    return IntentClassification(
        intent=Intent.SELECT_SUGGESTION,
        resolved_task=context.available_suggestions[index - 1],
        suggestion_index=index,
        confidence=SELECTION_CONFIDENCE,
        reasoning=f"Matched suggestion selection pattern for suggestion #{index}",
    )


def match_numeral(text: str, context: ConversationContext) -> IntentClassification | None:
    m = NUMERAL_RE.match(text)
    return _select(int(m.group(1)), context) if m else None


def match_selection_phrase(text: str, context: ConversationContext) -> IntentClassification | None:
    m = PHRASE_RE.search(text)
    return _select(int(m.group(1)), context) if m else None


def match_ordinal(text: str, context: ConversationContext) -> IntentClassification | None:
    m = ORDINAL_RE.search(text)
    return _select(ORDINALS[m.group(1).lower()], context) if m else None


def match_affirmative(text: str, context: ConversationContext) -> IntentClassification | None:
    if not AFFIRMATIVE_RE.match(text):
        return None
    # With suggestions on the table a bare "yes" does not say which one.
    if context.available_suggestions or not context.previous_task:
        return None
    return IntentClassification(
        intent=Intent.FOLLOW_UP,
        resolved_task=f"Continue with: {context.previous_task}",
        confidence=FOLLOW_UP_CONFIDENCE,
        reasoning="Affirmative response to continue previous task",
    )


DEFAULT_MATCHERS: tuple[Matcher, ...] = (
    match_numeral,
    match_selection_phrase,
    match_ordinal,
    match_affirmative,
)


def parse_intent(label: str | None) -> Intent:
    key = re.sub(r"[^a-z]", "", (label or "").lower())
    return _INTENT_LABELS.get(key, Intent.NEW_TASK)


class IntentRouter:
    """
    Resolves raw input to an actionable task.

    Deterministic matchers run first, in order; the first hit wins and the
    model-backed classifier is only consulted when none of them match.
    """

    def __init__(self, classifier: IntentClassifier, matchers: tuple[Matcher, ...] = DEFAULT_MATCHERS) -> None:
        self.classifier = classifier
        self.matchers = matchers

    def classify(self, user_input: str, context: ConversationContext) -> IntentClassification:
        fast = self.try_fast_classify(user_input, context)
        if fast is not None:
            logger.debug("intent_fast_path", intent=fast.intent.value, index=fast.suggestion_index)
            return fast
        return self._model_classify(user_input, context)

    def try_fast_classify(self, user_input: str, context: ConversationContext) -> IntentClassification | None:
        normalized = user_input.strip().lower()
        for matcher in self.matchers:
            result = matcher(normalized, context)
            if result is not None:
                return result
        return None

    def _model_classify(self, user_input: str, context: ConversationContext) -> IntentClassification:
        verdict: IntentVerdict = self.classifier.classify(
            user_input=user_input,
            previous_task=context.previous_task,
            previous_solution_summary=context.previous_solution_summary,
            available_suggestions=list(context.available_suggestions),
        )
        intent = parse_intent(verdict.intent)

        index = verdict.suggestion_index
        if index is not None and not 1 <= index <= len(context.available_suggestions):
            index = None

        resolved = (verdict.resolved_task or "").strip()
        if not resolved:
            if intent is Intent.SELECT_SUGGESTION and index is not None:
                resolved = context.available_suggestions[index - 1]
            else:
                resolved = user_input

        confidence = DEFAULT_MODEL_CONFIDENCE if verdict.confidence is None else float(verdict.confidence)
        classification = IntentClassification(
            intent=intent,
            resolved_task=resolved,
            suggestion_index=index,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=verdict.reasoning or "Model classification",
        )
        logger.debug("intent_model_path", intent=intent.value, confidence=classification.confidence)
        return classification
