from __future__ import annotations

import json
from dataclasses import dataclass

import structlog

from .openai_backend import parse_json_reply
from .types import Judgment, LLMBackend

logger = structlog.get_logger(__name__)

JUDGE_PROMPT = """Evaluate code quality and correctness. Be critical and thorough.

Task:
{task}

Expected behavior:
{expected_behavior}

Solution:
{solution}

Reply with a JSON object only:
{{"score": <0.0-10.0>, "passed": <true|false>, "critique": "<analysis>", "suggestions": ["<improvement>", ...]}}"""


def _clamp(value: float, lower: float = 0.0, upper: float = 10.0) -> float:
    return max(lower, min(upper, value))


def to_feedback(judgment: Judgment) -> str:
    """Render a judgment as the feedback text stored with each training result."""

    parts = [
        f"Score: {judgment.score}/10",
        f"Status: {'PASSED' if judgment.passed else 'FAILED'}",
        "",
        "Critique:",
        judgment.critique,
    ]
    if judgment.suggestions:
        parts.append("")
        parts.append("Suggestions for improvement:")
        for i, suggestion in enumerate(judgment.suggestions, start=1):
            parts.append(f"  {i}. {suggestion}")
    return "\n".join(parts)


@dataclass(slots=True)
class LLMJudge:
    """LLM-as-judge scoring solutions on a 0-10 scale."""

    backend: LLMBackend
    temperature: float = 0.0

    def evaluate(self, task: str, solution: str, expected_behavior: str = "") -> Judgment:
        prompt = JUDGE_PROMPT.format(
            task=task,
            solution=solution,
            expected_behavior=expected_behavior or infer_expected_behavior(task),
        )
        data = parse_json_reply(self.backend.generate(prompt, temperature=self.temperature))

        try:
            score = _clamp(float(data.get("score") or 0.0))
        except (TypeError, ValueError):
            logger.warning("judge_score_unparsable", raw=json.dumps(data.get("score")))
            score = 0.0
        suggestions = data.get("suggestions") or []
        if isinstance(suggestions, str):
            suggestions = [suggestions]
        return Judgment(
            score=score,
            passed=bool(data.get("passed", False)),
            critique=str(data.get("critique") or ""),
            suggestions=[str(s) for s in suggestions if str(s).strip()],
        )


def infer_expected_behavior(task: str) -> str:
    return f"The solution should correctly and completely address the task: {task}"
