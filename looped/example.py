from __future__ import annotations

import argparse
import asyncio
import os
from dataclasses import dataclass
from statistics import mean

from .application import Application
from .classifier import LLMIntentClassifier
from .config import LoopedConfig
from .conversation import ConversationMemory
from .executor import InstructedExecutor
from .judge import LLMJudge
from .observability import setup_logging
from .openai_backend import OpenAIResponsesBackend
from .optimizer import OptimizationScheduler, SchedulerConfig
from .reflection import ReflectiveEngine
from .router import IntentRouter
from .state import LearningStateStore
from .types import (
    EngineConfig,
    FeedbackFn,
    IntentVerdict,
    InstructionProgram,
    Judgment,
    MetricFn,
    OptimizationResult,
    TrainingExample,
)


@dataclass
class ToyBackend:
    """
    Offline backend whose answers get better once instructions mention verification.
    This simulates the instruction-only learning setting without a model.
    """

    def generate(self, prompt: str, context: str | None = None, temperature: float = 0.7) -> str:
        task = prompt.rsplit("Task:", 1)[-1].strip() or "the task"
        if "verify" in prompt.lower():
            return f"Plan: break down {task!r}.\nImplementation written and verified with a quick check."
        return f"Implementation for {task!r}."


@dataclass
class ToyJudge:
    def evaluate(self, task: str, solution: str, expected_behavior: str = "") -> Judgment:
        verified = "verified" in solution
        score = 8.5 if verified else 5.0
        suggestions = [] if verified else ["Add a test for edge cases", "Explain the approach"]
        return Judgment(
            score=score,
            passed=verified,
            critique="Solution is checked." if verified else "Reasoning is thin and nothing verifies the output.",
            suggestions=suggestions,
        )


@dataclass
class ToyClassifier:
    def classify(
        self,
        user_input: str,
        previous_task: str | None,
        previous_solution_summary: str | None,
        available_suggestions: list[str],
    ) -> IntentVerdict:
        return IntentVerdict(intent="new_task", resolved_task=user_input, confidence=0.6, reasoning="Toy classifier")


@dataclass
class ToyEngine:
    def compile(
        self,
        program: InstructionProgram,
        trainset: list[TrainingExample],
        metric: MetricFn,
        feedback_map: dict[str, FeedbackFn],
        config: EngineConfig,
    ) -> OptimizationResult:
        best = mean(metric(ex, None).score for ex in trainset) if trainset else 0.0
        optimized = program
        for role in feedback_map:
            current = program.instruction_for(role) or ""
            if "verify" not in current:
                optimized = optimized.with_instruction(role, (current + " Always verify the result.").strip())
        return OptimizationResult(optimized_program=optimized, best_score=best)


def build_application(config: LoopedConfig, backend: str = "toy") -> Application:
    store = LearningStateStore(config.storage_path)
    if backend == "openai":
        if not os.getenv("OPENAI_API_KEY"):
            raise RuntimeError("Set OPENAI_API_KEY before using the OpenAI backend.")
        executor = InstructedExecutor(
            backend=OpenAIResponsesBackend(model=config.model),
            judge=LLMJudge(backend=OpenAIResponsesBackend(model=config.judge_model)),
            store=store,
        )
        classifier = LLMIntentClassifier(backend=OpenAIResponsesBackend(model=config.model))
        engine = ReflectiveEngine(backend=OpenAIResponsesBackend(model=config.reflection_model))
    else:
        executor = InstructedExecutor(backend=ToyBackend(), judge=ToyJudge(), store=store)
        classifier = ToyClassifier()
        engine = ToyEngine()

    scheduler = OptimizationScheduler(
        store=store,
        engine=engine,
        config=SchedulerConfig(
            batch_size=config.batch_size,
            check_interval=config.check_interval,
            max_metric_calls=config.max_metric_calls,
        ),
    )
    return Application(
        store=store,
        executor=executor,
        memory=ConversationMemory(config.storage_path, max_turns=config.max_turns),
        router=IntentRouter(classifier=classifier),
        scheduler=scheduler,
    )


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Self-improving task loop")
    parser.add_argument(
        "--backend",
        choices=["toy", "openai"],
        default="toy",
        help="Collaborators to use.",
    )
    parser.add_argument("--model", default=None, help="Model used when --backend openai.")
    parser.add_argument("--storage-dir", default=None, help="State directory (default: ~/.looped).")
    parser.add_argument("--task", default=None, help="Run a single task and exit.")
    parser.add_argument("--context", default="", help="Extra context for --task.")
    args = parser.parse_args(argv)

    config = LoopedConfig.from_env(storage_dir=args.storage_dir, model=args.model)
    setup_logging(config.log_level, config.log_format)
    app = build_application(config, backend=args.backend)

    if args.task:
        result = app.run_task(args.task, context=args.context)
        print(f"Score: {result.score:.2f}/10")
        print(result.solution)
        print()
        print(result.feedback)
        return

    asyncio.run(app.run())


if __name__ == "__main__":
    main()
