from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import structlog

from .errors import StorageFault
from .state import write_json_atomic
from .types import ConversationContext, ConversationTurn, Judgment, utc_now

logger = structlog.get_logger(__name__)

CONVERSATION_FILE = "conversation.json"
DEFAULT_MAX_TURNS = 10
SUMMARY_LIMIT = 200
ELLIPSIS = "..."


def summarize_solution(solution: str | None) -> str | None:
    if solution is None:
        return None
    if len(solution) <= SUMMARY_LIMIT:
        return solution
    return solution[:SUMMARY_LIMIT] + ELLIPSIS


class ConversationMemory:
    """Bounded turn history, persisted after every change."""

    def __init__(self, storage_dir: str | os.PathLike[str], max_turns: int = DEFAULT_MAX_TURNS) -> None:
        self._root = Path(storage_dir).expanduser()
        self.max_turns = max_turns
        self._turns: list[ConversationTurn] = []
        self._current_suggestions: list[str] = []
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageFault(str(self._root), exc.strerror or str(exc)) from exc
        self._load()

    @property
    def path(self) -> Path:
        return self._root / CONVERSATION_FILE

    @property
    def turns(self) -> list[ConversationTurn]:
        return list(self._turns)

    @property
    def last_turn(self) -> ConversationTurn | None:
        return self._turns[-1] if self._turns else None

    @property
    def turn_count(self) -> int:
        return len(self._turns)

    def add_turn(
        self,
        task: str,
        resolved_task: str,
        solution: str,
        score: float,
        suggestions: list[str] | None = None,
        judgment: Judgment | None = None,
    ) -> ConversationTurn:
        # Numbered by position in the retained window, so eviction renumbers.
        turn = ConversationTurn(
            task=task,
            resolved_task=resolved_task,
            solution=solution,
            score=float(score),
            turn_number=len(self._turns) + 1,
            suggestions=list(suggestions or []),
            judgment=judgment,
        )
        self._turns.append(turn)
        if len(self._turns) > self.max_turns:
            self._turns = self._turns[-self.max_turns:]
        self._current_suggestions = list(turn.suggestions)
        self._save()
        return turn

    def to_context(self) -> ConversationContext:
        last = self.last_turn
        return ConversationContext(
            previous_task=last.resolved_task if last else None,
            previous_solution_summary=summarize_solution(last.solution) if last else None,
            available_suggestions=list(self._current_suggestions),
        )

    def suggestion_at(self, index: int) -> str | None:
        """1-based lookup into the current suggestions."""

        if index < 1 or index > len(self._current_suggestions):
            return None
        return self._current_suggestions[index - 1]

    def current_suggestions(self) -> list[str]:
        return list(self._current_suggestions)

    def clear(self) -> None:
        self._turns = []
        self._current_suggestions = []
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageFault(str(self.path), exc.strerror or str(exc)) from exc
        logger.info("conversation_cleared")

    def _save(self) -> None:
        write_json_atomic(
            self.path,
            {
                "turns": [turn.to_dict() for turn in self._turns],
                "current_suggestions": list(self._current_suggestions),
                "updated_at": utc_now(),
            },
        )

    def _load(self) -> None:
        try:
            data: Any = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except ValueError as exc:
            logger.warning("corrupt_conversation_file", path=str(self.path), error=str(exc))
            return

        try:
            turns = [ConversationTurn.from_dict(item) for item in data.get("turns") or []]
            suggestions = [str(s) for s in data.get("current_suggestions") or []]
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("corrupt_conversation_file", path=str(self.path), error=str(exc))
            return

        self._turns = turns[-self.max_turns:]
        self._current_suggestions = suggestions
