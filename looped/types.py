from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Protocol

THOUGHT_ROLE = "thought_generator"
OBSERVATION_ROLE = "observation_processor"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def coerce_score(value: Any) -> float:
    """Read a persisted score; anything unparseable counts as 0.0."""

    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


@dataclass(frozen=True, slots=True)
class TrainingResult:
    task: str
    solution: str
    score: float
    feedback: str
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "solution": self.solution,
            "score": self.score,
            "feedback": self.feedback,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TrainingResult":
        return cls(
            task=str(data.get("task") or ""),
            solution=str(data.get("solution") or ""),
            score=coerce_score(data.get("score")),
            feedback=str(data.get("feedback") or ""),
            timestamp=str(data.get("timestamp") or utc_now()),
        )


@dataclass(slots=True)
class InstructionSnapshot:
    """Currently active per-role instructions for the task executor."""

    instructions: dict[str, str | None]
    score: float = 0.0
    generation: int = 0
    updated_at: str = field(default_factory=utc_now)

    def instruction_for(self, role: str) -> str | None:
        return self.instructions.get(role)


@dataclass(slots=True)
class Judgment:
    score: float
    passed: bool
    critique: str
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "passed": self.passed,
            "critique": self.critique,
            "suggestions": list(self.suggestions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Judgment":
        return cls(
            score=coerce_score(data.get("score")),
            passed=bool(data.get("passed") or False),
            critique=str(data.get("critique") or ""),
            suggestions=[str(s) for s in data.get("suggestions") or []],
        )


@dataclass(slots=True)
class ConversationTurn:
    task: str
    resolved_task: str
    solution: str
    score: float
    turn_number: int
    suggestions: list[str] = field(default_factory=list)
    judgment: Judgment | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task": self.task,
            "resolved_task": self.resolved_task,
            "solution": self.solution,
            "score": self.score,
            "suggestions": list(self.suggestions),
            "judgment": self.judgment.to_dict() if self.judgment else None,
            "timestamp": self.timestamp,
            "turn_number": self.turn_number,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConversationTurn":
        judgment = data.get("judgment")
        return cls(
            task=str(data.get("task") or ""),
            resolved_task=str(data.get("resolved_task") or ""),
            solution=str(data.get("solution") or ""),
            score=coerce_score(data.get("score")),
            suggestions=[str(s) for s in data.get("suggestions") or []],
            judgment=Judgment.from_dict(judgment) if judgment else None,
            timestamp=str(data.get("timestamp") or utc_now()),
            turn_number=int(data.get("turn_number") or 1),
        )


@dataclass(slots=True)
class ConversationContext:
    """Lean projection of the conversation handed to the router and prompts."""

    previous_task: str | None = None
    previous_solution_summary: str | None = None
    available_suggestions: list[str] = field(default_factory=list)


class Intent(str, Enum):
    NEW_TASK = "new_task"
    FOLLOW_UP = "follow_up"
    SELECT_SUGGESTION = "select_suggestion"


@dataclass(slots=True)
class IntentClassification:
    intent: Intent
    resolved_task: str
    confidence: float
    reasoning: str
    suggestion_index: int | None = None


@dataclass(slots=True)
class IntentVerdict:
    """Raw reply of a probabilistic intent classifier, before normalization."""

    intent: str = ""
    resolved_task: str | None = None
    suggestion_index: int | None = None
    confidence: float | None = None
    reasoning: str | None = None


@dataclass(slots=True)
class TrainingExample:
    inputs: dict[str, Any]
    expected: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ScoredFeedback:
    score: float
    feedback: str


@dataclass(slots=True)
class InstructionProgram:
    """Program handle handed to the optimization engine: one instruction per role."""

    instructions: dict[str, str | None]

    def instruction_for(self, role: str) -> str | None:
        return self.instructions.get(role)

    def with_instruction(self, role: str, instruction: str | None) -> "InstructionProgram":
        updated = dict(self.instructions)
        updated[role] = instruction
        return InstructionProgram(instructions=updated)


@dataclass(slots=True)
class EngineConfig:
    max_metric_calls: int = 32
    minibatch_size: int = 5
    perfect_score: float = 10.0
    skip_perfect_score: bool = True
    use_merge: bool = False


@dataclass(slots=True)
class OptimizationResult:
    optimized_program: InstructionProgram
    best_score: float | None = None


MetricFn = Callable[[TrainingExample, Any], ScoredFeedback]
FeedbackFn = Callable[[TrainingExample, Any], ScoredFeedback]


class TaskExecutor(Protocol):
    """Runs one task and reports the judged outcome."""

    def run(self, task: str, context: str = "") -> TrainingResult:
        """Execute a task end to end."""


class Judge(Protocol):
    def evaluate(self, task: str, solution: str, expected_behavior: str = "") -> Judgment:
        """Score and critique a solution."""


class IntentClassifier(Protocol):
    def classify(
        self,
        user_input: str,
        previous_task: str | None,
        previous_solution_summary: str | None,
        available_suggestions: list[str],
    ) -> IntentVerdict:
        """Classify free-form input with a model."""


class OptimizationEngine(Protocol):
    def compile(
        self,
        program: InstructionProgram,
        trainset: list[TrainingExample],
        metric: MetricFn,
        feedback_map: dict[str, FeedbackFn],
        config: EngineConfig,
    ) -> OptimizationResult:
        """Search for better per-role instructions over the trainset."""


class LLMBackend(Protocol):
    """Backend interface for a frozen language model."""

    def generate(self, prompt: str, context: str | None = None, temperature: float = 0.7) -> str:
        """Generate one response from a frozen model."""
