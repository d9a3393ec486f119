import pytest

from looped.router import IntentRouter, parse_intent
from looped.types import ConversationContext, Intent, IntentVerdict


class CountingClassifier:
    def __init__(self, verdict: IntentVerdict | None = None) -> None:
        self.calls = 0
        self.last_kwargs: dict = {}
        self.verdict = verdict or IntentVerdict(
            intent="new_task", resolved_task="model task", confidence=0.7, reasoning="model"
        )

    def classify(self, user_input, previous_task, previous_solution_summary, available_suggestions) -> IntentVerdict:
        self.calls += 1
        self.last_kwargs = {
            "user_input": user_input,
            "previous_task": previous_task,
            "previous_solution_summary": previous_solution_summary,
            "available_suggestions": available_suggestions,
        }
        return self.verdict


WITH_SUGGESTIONS = ConversationContext(
    previous_task="Write factorial function",
    previous_solution_summary="def factorial(n): ...",
    available_suggestions=["A", "B", "C"],
)
NO_SUGGESTIONS = ConversationContext(previous_task="X", previous_solution_summary="sol", available_suggestions=[])
EMPTY = ConversationContext()


def test_numeral_selects_without_model() -> None:
    classifier = CountingClassifier()
    result = IntentRouter(classifier).classify("2", WITH_SUGGESTIONS)

    assert result.intent is Intent.SELECT_SUGGESTION
    assert result.suggestion_index == 2
    assert result.confidence == 0.95
    assert result.resolved_task == "B"
    assert classifier.calls == 0


@pytest.mark.parametrize(
    "text,index",
    [
        ("go with 1", 1),
        ("go for 2", 2),
        ("option 3", 3),
        ("suggestion 2", 2),
        ("yes 1", 1),
        ("yeah 2", 2),
        ("do 3", 3),
        ("pick 1", 1),
        ("Choose 2", 2),
        ("select 3 ", 3),
        ("let's go with 2", 2),
    ],
)
def test_selection_phrases(text: str, index: int) -> None:
    classifier = CountingClassifier()
    result = IntentRouter(classifier).classify(text, WITH_SUGGESTIONS)

    assert result.intent is Intent.SELECT_SUGGESTION
    assert result.suggestion_index == index
    assert result.resolved_task == WITH_SUGGESTIONS.available_suggestions[index - 1]
    assert classifier.calls == 0


@pytest.mark.parametrize(
    "text,index",
    [("first", 1), ("the second one", 2), ("third suggestion", 3), ("the first option", 1)],
)
def test_ordinals(text: str, index: int) -> None:
    classifier = CountingClassifier()
    result = IntentRouter(classifier).classify(text, WITH_SUGGESTIONS)

    assert result.suggestion_index == index
    assert result.confidence == 0.95
    assert classifier.calls == 0


@pytest.mark.parametrize("text", ["0", "4", "option 9", "the fifth one"])
def test_out_of_range_selection_falls_through(text: str) -> None:
    classifier = CountingClassifier()
    result = IntentRouter(classifier).classify(text, WITH_SUGGESTIONS)

    assert classifier.calls == 1
    assert result.resolved_task == "model task"


def test_numeral_without_suggestions_uses_model() -> None:
    classifier = CountingClassifier()
    IntentRouter(classifier).classify("1", EMPTY)
    assert classifier.calls == 1


def test_affirmative_with_suggestions_is_ambiguous() -> None:
    classifier = CountingClassifier()
    IntentRouter(classifier).classify("yes", WITH_SUGGESTIONS)

    assert classifier.calls == 1
    assert classifier.last_kwargs["available_suggestions"] == ["A", "B", "C"]
    assert classifier.last_kwargs["previous_task"] == "Write factorial function"


@pytest.mark.parametrize("text", ["yes", "OK", "go ahead", " continue "])
def test_affirmative_without_suggestions_follows_up(text: str) -> None:
    classifier = CountingClassifier()
    result = IntentRouter(classifier).classify(text, NO_SUGGESTIONS)

    assert result.intent is Intent.FOLLOW_UP
    assert "X" in result.resolved_task
    assert result.confidence == 0.8
    assert result.suggestion_index is None
    assert classifier.calls == 0


def test_affirmative_without_previous_task_uses_model() -> None:
    classifier = CountingClassifier()
    IntentRouter(classifier).classify("sure", EMPTY)
    assert classifier.calls == 1


def test_free_text_goes_to_model() -> None:
    classifier = CountingClassifier(
        IntentVerdict(intent="follow_up", resolved_task="Add tests to factorial", confidence=0.9, reasoning="refines")
    )
    result = IntentRouter(classifier).classify("now add tests", WITH_SUGGESTIONS)

    assert result.intent is Intent.FOLLOW_UP
    assert result.resolved_task == "Add tests to factorial"
    assert result.confidence == 0.9
    assert classifier.last_kwargs["user_input"] == "now add tests"


def test_model_reply_is_sanitized() -> None:
    classifier = CountingClassifier(IntentVerdict(intent="", suggestion_index=7, confidence=3.0))
    result = IntentRouter(classifier).classify("something else", WITH_SUGGESTIONS)

    assert result.intent is Intent.NEW_TASK
    assert result.resolved_task == "something else"
    assert result.suggestion_index is None
    assert result.confidence == 1.0
    assert result.reasoning


def test_model_selection_without_text_uses_suggestion() -> None:
    classifier = CountingClassifier(IntentVerdict(intent="select_suggestion", suggestion_index=3))
    result = IntentRouter(classifier).classify("the one about input validation", WITH_SUGGESTIONS)

    assert result.intent is Intent.SELECT_SUGGESTION
    assert result.suggestion_index == 3
    assert result.resolved_task == "C"
    assert result.confidence == 0.5


@pytest.mark.parametrize(
    "label,intent",
    [
        ("new_task", Intent.NEW_TASK),
        ("FOLLOW_UP", Intent.FOLLOW_UP),
        (" select_suggestion ", Intent.SELECT_SUGGESTION),
        ("SelectSuggestion", Intent.SELECT_SUGGESTION),
        ("banana", Intent.NEW_TASK),
        (None, Intent.NEW_TASK),
    ],
)
def test_parse_intent(label, intent) -> None:
    assert parse_intent(label) is intent
