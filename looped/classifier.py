from __future__ import annotations

import json
from dataclasses import dataclass

from .openai_backend import parse_json_reply
from .types import IntentVerdict, LLMBackend

CLASSIFY_PROMPT = """Classify user input and resolve it to an executable task.

Intents:
- new_task: an unrelated new request
- follow_up: continues or refines the previous task
- select_suggestion: picks one of the numbered suggestions

Previous task: {previous_task}
Previous solution summary: {previous_solution_summary}
Available suggestions:
{suggestions}

User input: {user_input}

Reply with a JSON object only:
{{"intent": "new_task|follow_up|select_suggestion", "resolved_task": "<executable task, suggestion text when selecting>", "suggestion_index": <1-based index or null>, "confidence": <0.0-1.0>, "reasoning": "<brief explanation>"}}"""


def _optional_int(value: object) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _optional_float(value: object) -> float | None:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


@dataclass(slots=True)
class LLMIntentClassifier:
    backend: LLMBackend
    temperature: float = 0.0

    def classify(
        self,
        user_input: str,
        previous_task: str | None,
        previous_solution_summary: str | None,
        available_suggestions: list[str],
    ) -> IntentVerdict:
        numbered = "\n".join(f"{i}. {s}" for i, s in enumerate(available_suggestions, start=1)) or "(none)"
        prompt = CLASSIFY_PROMPT.format(
            previous_task=previous_task or "(none)",
            previous_solution_summary=previous_solution_summary or "(none)",
            suggestions=numbered,
            user_input=json.dumps(user_input),
        )
        data = parse_json_reply(self.backend.generate(prompt, temperature=self.temperature))
        return IntentVerdict(
            intent=str(data.get("intent") or ""),
            resolved_task=str(data["resolved_task"]) if data.get("resolved_task") else None,
            suggestion_index=_optional_int(data.get("suggestion_index")),
            confidence=_optional_float(data.get("confidence")),
            reasoning=str(data["reasoning"]) if data.get("reasoning") else None,
        )
