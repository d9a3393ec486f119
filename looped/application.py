from __future__ import annotations

import asyncio
import contextlib
from typing import Callable

import structlog

from .conversation import ConversationMemory
from .optimizer import OptimizationScheduler
from .router import IntentRouter
from .state import LearningStateStore
from .types import Intent, TaskExecutor, TrainingResult

logger = structlog.get_logger(__name__)

PROMPT = "looped> "

HELP_TEXT = """
=== Looped Commands ===

<task>          Execute a coding task
<number>        Execute suggestion #N from the previous response
status          Show optimization status
history         Show recent task history (training buffer)
conversation    Show conversation history
clear           Clear conversation history
context <text>  Set extra context for following tasks
help            Show this help message
quit            Exit

After getting suggestions, type a number (1, 2, 3) to implement one.
You can also say "go for 1", "option 2", "the first one", etc.
"""


def _truncate(text: str, length: int, omission: str = "...") -> str:
    if len(text) <= length:
        return text
    return text[: length - len(omission)] + omission


class Application:
    """Interactive foreground loop with the optimizer running in the background."""

    def __init__(
        self,
        store: LearningStateStore,
        executor: TaskExecutor,
        memory: ConversationMemory,
        router: IntentRouter,
        scheduler: OptimizationScheduler,
        read_line: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ) -> None:
        self.store = store
        self.executor = executor
        self.memory = memory
        self.router = router
        self.scheduler = scheduler
        self.read_line = read_line
        self.write = write
        self.current_context = ""
        self._running = False

    async def run(self) -> None:
        self._running = True
        self.write("Type a coding task and press Enter. Type 'help' for commands, 'quit' to exit.")
        if self.memory.turn_count:
            self.write(f"Restored {self.memory.turn_count} conversation turn(s) from previous session.")

        optimizer_task = asyncio.create_task(self.scheduler.start())
        try:
            await self._interactive_loop()
        finally:
            self.scheduler.stop()
            with contextlib.suppress(asyncio.CancelledError):
                await optimizer_task

    def stop(self) -> None:
        self._running = False
        self.scheduler.stop()

    def run_task(self, task: str, context: str = "") -> TrainingResult:
        return self.executor.run(task, context)

    async def handle_input(self, text: str) -> str:
        command = text.strip()
        lowered = command.lower()
        if lowered == "status":
            return self.show_status()
        if lowered == "history":
            return self.show_history()
        if lowered == "conversation":
            return self.show_conversation()
        if lowered == "clear":
            self.memory.clear()
            return "Conversation history cleared."
        if lowered == "help":
            return HELP_TEXT
        if lowered.startswith("context "):
            self.current_context = command[len("context "):].strip()
            return f"Context set to: {self.current_context}"
        return await self.process_with_intent(command)

    async def process_with_intent(self, text: str) -> str:
        context = self.memory.to_context()
        try:
            classification = await asyncio.to_thread(self.router.classify, text, context)
        except Exception as exc:
            logger.exception("intent_routing_failed")
            return f"Error: {exc}"

        header = f"[Intent: {classification.intent.value}] {classification.reasoning}"
        body = await self.execute_resolved_task(
            original_input=text,
            resolved_task=classification.resolved_task,
            include_previous_context=classification.intent is Intent.FOLLOW_UP,
        )
        return f"{header}\n\n{body}"

    async def execute_resolved_task(
        self,
        original_input: str,
        resolved_task: str,
        include_previous_context: bool = False,
    ) -> str:
        context = self.current_context
        last = self.memory.last_turn
        if include_previous_context and last is not None:
            context = f"{context}\n\nPrevious solution:\n{last.solution}"

        with structlog.contextvars.bound_contextvars(turn=self.memory.turn_count + 1):
            try:
                result = await asyncio.to_thread(self.executor.run, resolved_task, context)
            except Exception as exc:
                logger.exception("task_failed", task=_truncate(resolved_task, 80))
                return f"Error: {exc}"

        judgment = getattr(self.executor, "last_judgment", None)
        self.memory.add_turn(
            task=original_input,
            resolved_task=resolved_task,
            solution=result.solution,
            score=result.score,
            suggestions=list(judgment.suggestions) if judgment else [],
            judgment=judgment,
        )

        lines = [
            f"Executing: {_truncate(resolved_task, 80)}",
            "",
            "=== Result ===",
            f"Score: {result.score:.2f}/10",
            "",
            "Solution:",
            result.solution,
            "",
            "Feedback:",
            result.feedback,
        ]
        suggestions = self.memory.current_suggestions()
        if suggestions:
            lines.extend(["", "Suggestions for improvement:"])
            lines.extend(f"  {i}. {s}" for i, s in enumerate(suggestions, start=1))
            lines.extend(["", "(Type a number to implement a suggestion)"])
        return "\n".join(lines)

    def show_status(self) -> str:
        snapshot = self.store.load_instruction_snapshot()
        buffer = self.store.peek_buffer()
        lines = ["=== Looped Status ===", ""]
        if snapshot is not None:
            lines.extend(
                [
                    "Current Instructions:",
                    f"  Generation: {snapshot.generation}",
                    f"  Best Score: {snapshot.score:.2f}/10",
                    f"  Updated: {snapshot.updated_at}",
                ]
            )
        else:
            lines.append("No optimized instructions yet (using defaults)")
        lines.append("")
        lines.append(f"Training Buffer: {len(buffer)} results")
        lines.append(f"Optimizer: {'Running' if self.scheduler.running else 'Stopped'}")
        if self.scheduler.last_error:
            lines.append(f"Last optimizer error: {self.scheduler.last_error}")
        return "\n".join(lines)

    def show_history(self) -> str:
        buffer = self.store.peek_buffer()
        if not buffer:
            return "No tasks completed yet."
        lines = ["=== Recent Tasks ===", ""]
        for i, result in enumerate(buffer[-5:], start=1):
            lines.append(f"{i}. {_truncate(result.task, 60)}")
            lines.append(f"   Score: {result.score:.2f}/10 | {result.timestamp}")
        return "\n".join(lines)

    def show_conversation(self) -> str:
        turns = self.memory.turns
        if not turns:
            return "No conversation history yet."
        lines = ["=== Conversation History ===", ""]
        for turn in turns:
            lines.append(f"Turn {turn.turn_number}:")
            lines.append(f"  Input: {_truncate(turn.task, 60)}")
            if turn.task != turn.resolved_task:
                lines.append(f"  Resolved: {_truncate(turn.resolved_task, 60)}")
            lines.append(f"  Score: {turn.score:.2f}/10")
            if turn.suggestions:
                lines.append(f"  Suggestions: {len(turn.suggestions)} available")
        return "\n".join(lines)

    async def _interactive_loop(self) -> None:
        while self._running:
            try:
                line = await asyncio.to_thread(self.read_line, PROMPT)
            except EOFError:
                line = None

            if line is None or line.strip().lower() == "quit":
                self.write("Goodbye!")
                self._running = False
                break
            if not line.strip():
                continue

            self.write(await self.handle_input(line))
