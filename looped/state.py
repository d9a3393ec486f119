from __future__ import annotations

import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable

import structlog

from .errors import StorageFault
from .types import InstructionSnapshot, TrainingResult, coerce_score, utc_now

logger = structlog.get_logger(__name__)

INSTRUCTIONS_FILE = "instructions.json"
BUFFER_FILE = "training_buffer.json"
HISTORY_DIR = "history"


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON to a sibling temp file and rename it over ``path``."""

    try:
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
                fh.write("\n")
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as exc:
        raise StorageFault(str(path), exc.strerror or str(exc)) from exc


def _read_json(path: Path) -> Any:
    """Return parsed JSON, or None when the file is missing or malformed."""

    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except ValueError as exc:
        logger.warning("corrupt_state_file", path=str(path), error=str(exc))
        return None


class LearningStateStore:
    """
    Durable learning state rooted at one directory:
    - ``training_buffer.json``: FIFO of results awaiting optimization
    - ``history/``: append-only archive of consumed batches
    - ``instructions.json``: the current instruction snapshot
    """

    def __init__(self, storage_dir: str | os.PathLike[str], clock: Callable[[], float] = time.time) -> None:
        self._root = Path(storage_dir).expanduser()
        self._clock = clock
        self._lock = threading.Lock()
        try:
            (self._root / HISTORY_DIR).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageFault(str(self._root), exc.strerror or str(exc)) from exc

    @property
    def storage_dir(self) -> Path:
        return self._root

    @property
    def buffer_path(self) -> Path:
        return self._root / BUFFER_FILE

    @property
    def instructions_path(self) -> Path:
        return self._root / INSTRUCTIONS_FILE

    @property
    def history_dir(self) -> Path:
        return self._root / HISTORY_DIR

    # Training buffer

    def append_result(self, result: TrainingResult) -> None:
        with self._lock:
            buffer = self._load_buffer_raw()
            buffer.append(result.to_dict())
            write_json_atomic(self.buffer_path, buffer)
        logger.debug("result_appended", buffer_size=len(buffer), score=result.score)

    def peek_buffer(self) -> list[TrainingResult]:
        with self._lock:
            raw = self._load_buffer_raw()
        return [TrainingResult.from_dict(item) for item in raw]

    def consume_buffer(self, limit: int | None = None) -> list[TrainingResult]:
        """
        Archive and remove the buffered results, oldest first.

        With ``limit`` only the oldest ``limit`` results are consumed and any
        later appends stay in the live buffer. An empty buffer returns []
        without writing an archive record.
        """

        with self._lock:
            raw = self._load_buffer_raw()
            taken = raw if limit is None else raw[: max(limit, 0)]
            if not taken:
                return []
            remaining = raw[len(taken):]

            archive_path = self._next_archive_path()
            write_json_atomic(archive_path, taken)
            write_json_atomic(self.buffer_path, remaining)

        logger.info(
            "buffer_consumed",
            consumed=len(taken),
            remaining=len(remaining),
            archive=archive_path.name,
        )
        return [TrainingResult.from_dict(item) for item in taken]

    def archived_batches(self) -> list[Path]:
        return sorted(self.history_dir.glob("*.json"), key=_archive_sort_key)

    # Instruction snapshot

    def load_instruction_snapshot(self) -> InstructionSnapshot | None:
        data = _read_json(self.instructions_path)
        if not isinstance(data, dict):
            return None

        instructions = data.get("instructions") or {}
        if not isinstance(instructions, dict):
            instructions = {}
        try:
            return InstructionSnapshot(
                instructions={str(k): (None if v is None else str(v)) for k, v in instructions.items()},
                score=coerce_score(data.get("score")),
                generation=int(data.get("generation") or 0),
                updated_at=str(data.get("updated_at") or utc_now()),
            )
        except (TypeError, ValueError) as exc:
            logger.warning("corrupt_instruction_snapshot", error=str(exc))
            return None

    def save_instruction_snapshot(
        self,
        instructions: dict[str, str | None],
        score: float,
        generation: int,
    ) -> InstructionSnapshot:
        snapshot = InstructionSnapshot(
            instructions=dict(instructions),
            score=float(score),
            generation=int(generation),
            updated_at=utc_now(),
        )
        write_json_atomic(
            self.instructions_path,
            {
                "instructions": snapshot.instructions,
                "score": snapshot.score,
                "generation": snapshot.generation,
                "updated_at": snapshot.updated_at,
            },
        )
        logger.info("instructions_saved", generation=generation, score=snapshot.score)
        return snapshot

    def _load_buffer_raw(self) -> list[dict[str, Any]]:
        data = _read_json(self.buffer_path)
        if not isinstance(data, list):
            return []
        return [item for item in data if isinstance(item, dict)]

    def _next_archive_path(self) -> Path:
        stamp = int(self._clock())
        candidate = self.history_dir / f"{stamp}.json"
        suffix = 0
        while candidate.exists():
            suffix += 1
            candidate = self.history_dir / f"{stamp}-{suffix}.json"
        return candidate


def _archive_sort_key(path: Path) -> tuple[int, int]:
    stamp, _, suffix = path.stem.partition("-")
    try:
        return int(stamp), int(suffix or 0)
    except ValueError:
        return 0, 0
