from __future__ import annotations

from dataclasses import dataclass
from statistics import mean

import structlog

from .types import (
    EngineConfig,
    FeedbackFn,
    InstructionProgram,
    LLMBackend,
    MetricFn,
    OptimizationResult,
    TrainingExample,
)

logger = structlog.get_logger(__name__)

REFLECT_PROMPT = """You maintain the instruction for the "{role}" step of a coding agent.

Current instruction:
{instruction}

Judged feedback from recent tasks (lowest scores first):
{notes}

Rewrite the instruction so the agent avoids the problems above while keeping
what worked. Reply with the new instruction text only."""

MAX_NOTE_CHARS = 1200


@dataclass(slots=True)
class ReflectiveEngine:
    """
    Optimization engine doing one reflection pass per role.

    The batch score is the mean metric over the examples within the metric
    budget; each role's instruction is rewritten from its own slice of the
    feedback on the weakest ``minibatch_size`` examples.
    """

    backend: LLMBackend
    temperature: float = 0.7

    def compile(
        self,
        program: InstructionProgram,
        trainset: list[TrainingExample],
        metric: MetricFn,
        feedback_map: dict[str, FeedbackFn],
        config: EngineConfig,
    ) -> OptimizationResult:
        examples = trainset[: max(config.max_metric_calls, 0)]
        if not examples:
            return OptimizationResult(optimized_program=program, best_score=None)

        scored = [(metric(ex, None).score, ex) for ex in examples]
        best_score = mean(score for score, _ in scored)
        if config.skip_perfect_score and best_score >= config.perfect_score:
            logger.info("reflection_skipped_perfect", best_score=best_score)
            return OptimizationResult(optimized_program=program, best_score=best_score)

        scored.sort(key=lambda item: item[0])
        minibatch = [ex for _, ex in scored[: max(config.minibatch_size, 1)]]

        optimized = program
        for role, role_feedback in feedback_map.items():
            notes = []
            for idx, example in enumerate(minibatch, start=1):
                part = role_feedback(example, None)
                notes.append(f"{idx}. Task: {example.inputs.get('task', '')}\n{part.feedback[:MAX_NOTE_CHARS]}")
            prompt = REFLECT_PROMPT.format(
                role=role,
                instruction=program.instruction_for(role) or "(built-in default)",
                notes="\n\n".join(notes),
            )
            text = self.backend.generate(prompt, temperature=self.temperature).strip()
            if text:
                optimized = optimized.with_instruction(role, text)
            logger.debug("role_reflected", role=role, changed=bool(text))

        return OptimizationResult(optimized_program=optimized, best_score=best_score)
