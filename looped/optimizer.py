from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Callable

import structlog

from .state import LearningStateStore
from .types import (
    EngineConfig,
    FeedbackFn,
    InstructionProgram,
    InstructionSnapshot,
    OBSERVATION_ROLE,
    OptimizationEngine,
    ScoredFeedback,
    TrainingExample,
    THOUGHT_ROLE,
    TrainingResult,
)

logger = structlog.get_logger(__name__)

_SHARED_FEEDBACK = r"score|critique|suggestion"
ROLE_FEEDBACK_PATTERNS: dict[str, re.Pattern[str]] = {
    THOUGHT_ROLE: re.compile(rf"reason|think|plan|approach|logic|decision|{_SHARED_FEEDBACK}", re.IGNORECASE),
    OBSERVATION_ROLE: re.compile(rf"observ|interpret|understand|result|output|{_SHARED_FEEDBACK}", re.IGNORECASE),
}

PERFECT_SCORE = 10.0

Gate = Callable[[InstructionSnapshot | None, float], bool]


@dataclass(slots=True)
class SchedulerConfig:
    batch_size: int = 5
    check_interval: float = 60.0
    max_metric_calls: int = 32
    max_backoff: float = 900.0


@dataclass(slots=True)
class OptimizationOutcome:
    generation: int
    best_score: float
    consumed: int
    applied: bool
    snapshot: InstructionSnapshot | None = None


def filter_feedback(feedback: str, pattern: re.Pattern[str]) -> str:
    """Keep the lines of ``feedback`` matching ``pattern``; keep everything if none do."""

    lines = [line for line in feedback.splitlines(keepends=True) if pattern.search(line)]
    return "".join(lines) if lines else feedback


def build_trainset(results: list[TrainingResult]) -> list[TrainingExample]:
    return [
        TrainingExample(
            inputs={"task": r.task, "context": "", "history": []},
            expected={"solution": r.solution},
            metadata={"score": r.score, "feedback": r.feedback},
        )
        for r in results
    ]


def metadata_metric(example: TrainingExample, prediction: Any = None) -> ScoredFeedback:
    """Score from the precomputed judgment instead of judging again."""

    return ScoredFeedback(
        score=float(example.metadata.get("score") or 0.0),
        feedback=str(example.metadata.get("feedback") or ""),
    )


def build_feedback_map(patterns: dict[str, re.Pattern[str]] | None = None) -> dict[str, FeedbackFn]:
    feedback_map: dict[str, FeedbackFn] = {}
    for role, pattern in (patterns or ROLE_FEEDBACK_PATTERNS).items():

        def role_feedback(
            example: TrainingExample, prediction: Any = None, _pattern: re.Pattern[str] = pattern
        ) -> ScoredFeedback:
            base = metadata_metric(example, prediction)
            return ScoredFeedback(score=base.score, feedback=filter_feedback(base.feedback, _pattern))

        feedback_map[role] = role_feedback
    return feedback_map


def program_from_snapshot(snapshot: InstructionSnapshot | None, roles: list[str]) -> InstructionProgram:
    """None per role means the executor's built-in default."""

    instructions: dict[str, str | None] = {role: None for role in roles}
    if snapshot is not None:
        instructions.update(snapshot.instructions)
    return InstructionProgram(instructions=instructions)


def improvement_gate(previous: InstructionSnapshot | None, best_score: float) -> bool:
    return previous is None or best_score > previous.score


class OptimizationScheduler:
    """
    Background loop that turns buffered results into a new instruction snapshot.

    Every ``check_interval`` seconds it peeks the buffer; once ``batch_size``
    results are waiting it hands them to the optimization engine, saves the
    returned instructions as the next generation and archives the batch.
    """

    def __init__(
        self,
        store: LearningStateStore,
        engine: OptimizationEngine,
        config: SchedulerConfig | None = None,
        gate: Gate | None = None,
        feedback_patterns: dict[str, re.Pattern[str]] | None = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.config = config or SchedulerConfig()
        self.gate = gate
        self.feedback_patterns = feedback_patterns or ROLE_FEEDBACK_PATTERNS
        self.roles = list(self.feedback_patterns)
        self.consecutive_failures = 0
        self.last_error: str | None = None
        self._running = False
        self._stop_requested = False
        self._wake: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._stop_requested:
            # stop() arrived before the loop got scheduled
            self._stop_requested = False
            return
        self._running = True
        self._wake = asyncio.Event()
        structlog.contextvars.bind_contextvars(loop="optimizer")
        logger.info("optimizer_started", interval=self.config.check_interval, batch_size=self.config.batch_size)
        try:
            while self._running:
                await self.tick()
                if not self._running:
                    break
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self._next_delay())
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            self._stop_requested = False
            logger.info("optimizer_stopped")

    def stop(self) -> None:
        self._stop_requested = True
        self._running = False
        if self._wake is not None:
            self._wake.set()

    async def tick(self) -> OptimizationOutcome | None:
        """One polling step; engine failures are logged and retried next tick."""

        try:
            outcome = await self.check_and_optimize()
        except Exception as exc:
            self.consecutive_failures += 1
            self.last_error = str(exc)
            logger.exception("optimization_failed", failures=self.consecutive_failures)
            return None
        self.consecutive_failures = 0
        self.last_error = None
        return outcome

    async def check_and_optimize(self) -> OptimizationOutcome | None:
        buffer = await asyncio.to_thread(self.store.peek_buffer)
        if len(buffer) < self.config.batch_size:
            logger.debug("optimizer_waiting", buffer_size=len(buffer), batch_size=self.config.batch_size)
            return None
        return await self.optimize(buffer)

    async def optimize(self, results: list[TrainingResult]) -> OptimizationOutcome | None:
        trainset = build_trainset(results)
        if not trainset:
            return None

        current = await asyncio.to_thread(self.store.load_instruction_snapshot)
        program = program_from_snapshot(current, self.roles)
        engine_config = EngineConfig(
            max_metric_calls=self.config.max_metric_calls,
            minibatch_size=min(self.config.batch_size, len(trainset)),
            perfect_score=PERFECT_SCORE,
            skip_perfect_score=True,
            use_merge=len(trainset) >= 4,
        )

        logger.info("optimization_started", examples=len(trainset), generation=current.generation if current else 0)
        result = await asyncio.to_thread(
            self.engine.compile,
            program,
            trainset,
            metadata_metric,
            build_feedback_map(self.feedback_patterns),
            engine_config,
        )

        best_score = float(result.best_score or 0.0)
        generation = current.generation + 1 if current else 1
        applied = self.gate is None or self.gate(current, best_score)

        snapshot = None
        if applied:
            snapshot = await asyncio.to_thread(
                self.store.save_instruction_snapshot,
                {role: result.optimized_program.instruction_for(role) for role in self.roles},
                best_score,
                generation,
            )
        else:
            logger.info("optimization_rejected", best_score=best_score, previous_score=current.score if current else None)

        consumed = await asyncio.to_thread(self.store.consume_buffer, len(results))
        logger.info("optimization_finished", generation=generation, best_score=best_score, applied=applied)
        return OptimizationOutcome(
            generation=generation,
            best_score=best_score,
            consumed=len(consumed),
            applied=applied,
            snapshot=snapshot,
        )

    def _next_delay(self) -> float:
        if not self.consecutive_failures:
            return self.config.check_interval
        return min(self.config.check_interval * 2 ** self.consecutive_failures, self.config.max_backoff)
