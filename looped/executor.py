from __future__ import annotations

import structlog

from .judge import to_feedback
from .state import LearningStateStore
from .types import (
    OBSERVATION_ROLE,
    THOUGHT_ROLE,
    Judge,
    Judgment,
    LLMBackend,
    TrainingResult,
)

logger = structlog.get_logger(__name__)

DEFAULT_INSTRUCTIONS: dict[str, str] = {
    THOUGHT_ROLE: (
        "Complete the coding task. Think through the approach before answering "
        "and explain the decisions behind the solution."
    ),
    OBSERVATION_ROLE: (
        "Interpret any provided context and previous results carefully, and "
        "state which files the solution creates or modifies."
    ),
}


class InstructedExecutor:
    """
    Single-pass task executor driven by the current instruction snapshot.

    Every run checks the snapshot's ``updated_at`` and swaps in newly
    optimized instructions before generating, then judges the solution and
    records the outcome in the learning state store.
    """

    def __init__(
        self,
        backend: LLMBackend,
        judge: Judge,
        store: LearningStateStore,
        temperature: float = 0.7,
    ) -> None:
        self.backend = backend
        self.judge = judge
        self.store = store
        self.temperature = temperature
        self.instructions: dict[str, str] = dict(DEFAULT_INSTRUCTIONS)
        self.generation = 0
        self.instructions_token: str | None = None
        self.last_judgment: Judgment | None = None
        self.maybe_reload_instructions()

    def run(self, task: str, context: str = "") -> TrainingResult:
        self.maybe_reload_instructions()

        solution = self.backend.generate(
            prompt=self._build_prompt(task),
            context=context,
            temperature=self.temperature,
        )
        judgment = self.judge.evaluate(task=task, solution=solution)
        result = TrainingResult(
            task=task,
            solution=solution,
            score=judgment.score,
            feedback=to_feedback(judgment),
        )
        self.store.append_result(result)
        self.last_judgment = judgment
        logger.info("task_executed", score=result.score, passed=judgment.passed, generation=self.generation)
        return result

    def maybe_reload_instructions(self) -> bool:
        snapshot = self.store.load_instruction_snapshot()
        if snapshot is None or snapshot.updated_at == self.instructions_token:
            return False

        instructions = dict(DEFAULT_INSTRUCTIONS)
        for role, text in snapshot.instructions.items():
            if text:
                instructions[role] = text
        self.instructions = instructions
        self.generation = snapshot.generation
        self.instructions_token = snapshot.updated_at
        logger.info("instructions_reloaded", generation=snapshot.generation, score=snapshot.score)
        return True

    def _build_prompt(self, task: str) -> str:
        lines = [self.instructions[THOUGHT_ROLE], self.instructions[OBSERVATION_ROLE]]
        lines.extend(
            text for role, text in sorted(self.instructions.items()) if role not in DEFAULT_INSTRUCTIONS
        )
        lines.append("")
        lines.append("Task:")
        lines.append(task.strip())
        return "\n".join(lines)
