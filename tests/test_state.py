import json
import os
import threading
from pathlib import Path

import pytest

from looped.errors import StorageFault
from looped.state import LearningStateStore
from looped.types import TrainingResult


def _result(i: int, score: float = 5.0) -> TrainingResult:
    return TrainingResult(
        task=f"task {i}",
        solution=f"solution {i}",
        score=score,
        feedback=f"feedback {i}",
        timestamp=f"2024-01-01T10:00:0{i}Z",
    )


class FixedClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_creates_storage_and_history_dirs(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path / "state")
    assert store.storage_dir.is_dir()
    assert store.history_dir.is_dir()


def test_append_then_peek_preserves_order_and_is_idempotent(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    for i in range(3):
        store.append_result(_result(i))

    first = store.peek_buffer()
    raw_before = store.buffer_path.read_bytes()
    second = store.peek_buffer()

    assert [r.task for r in first] == ["task 0", "task 1", "task 2"]
    assert first == second
    assert store.buffer_path.read_bytes() == raw_before


def test_buffer_file_shape(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.append_result(_result(1, score=7.5))

    data = json.loads(store.buffer_path.read_text())
    assert data == [
        {
            "task": "task 1",
            "solution": "solution 1",
            "score": 7.5,
            "feedback": "feedback 1",
            "timestamp": "2024-01-01T10:00:01Z",
        }
    ]


def test_consume_empty_buffer_creates_no_archive(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    assert store.consume_buffer() == []
    assert store.archived_batches() == []


def test_consume_archives_then_clears(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path, clock=FixedClock())
    store.append_result(_result(1))
    store.append_result(_result(2))

    consumed = store.consume_buffer()

    assert [r.task for r in consumed] == ["task 1", "task 2"]
    assert store.peek_buffer() == []
    archives = store.archived_batches()
    assert [p.name for p in archives] == ["1700000000.json"]
    assert [item["task"] for item in json.loads(archives[0].read_text())] == ["task 1", "task 2"]

    store.append_result(_result(3))
    assert [r.task for r in store.peek_buffer()] == ["task 3"]
    assert len(json.loads(archives[0].read_text())) == 2


def test_consumes_in_same_tick_do_not_overwrite(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path, clock=FixedClock())
    for batch in range(3):
        store.append_result(_result(batch))
        store.consume_buffer()

    names = [p.name for p in store.archived_batches()]
    assert names == ["1700000000.json", "1700000000-1.json", "1700000000-2.json"]


def test_consume_with_limit_keeps_later_results(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    for i in range(4):
        store.append_result(_result(i))

    consumed = store.consume_buffer(limit=3)

    assert [r.task for r in consumed] == ["task 0", "task 1", "task 2"]
    assert [r.task for r in store.peek_buffer()] == ["task 3"]


def test_corrupt_buffer_is_treated_as_empty(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.buffer_path.write_text("{not json")

    assert store.peek_buffer() == []
    assert store.consume_buffer() == []
    store.append_result(_result(1))
    assert len(store.peek_buffer()) == 1


def test_missing_fields_get_defaults(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.buffer_path.write_text(json.dumps([{"task": "only task"}]))

    (result,) = store.peek_buffer()
    assert result.task == "only task"
    assert result.solution == ""
    assert result.score == 0.0
    assert result.feedback == ""
    assert result.timestamp


def test_snapshot_absent_by_default(tmp_path: Path) -> None:
    assert LearningStateStore(tmp_path).load_instruction_snapshot() is None


def test_snapshot_round_trip_with_null_roles(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.save_instruction_snapshot(
        instructions={"thought_generator": None, "observation_processor": "Only this one"},
        score=8.5,
        generation=3,
    )

    loaded = store.load_instruction_snapshot()
    assert loaded is not None
    assert loaded.instruction_for("thought_generator") is None
    assert loaded.instruction_for("observation_processor") == "Only this one"
    assert loaded.score == 8.5
    assert loaded.generation == 3
    assert loaded.updated_at

    data = json.loads(store.instructions_path.read_text())
    assert set(data) == {"instructions", "score", "generation", "updated_at"}


def test_corrupt_snapshot_is_absent(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.instructions_path.write_text("[[[")
    assert store.load_instruction_snapshot() is None


def test_snapshot_missing_fields_default(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.instructions_path.write_text(json.dumps({"instructions": {"planner": "Plan first"}}))

    loaded = store.load_instruction_snapshot()
    assert loaded is not None
    assert loaded.instructions == {"planner": "Plan first"}
    assert loaded.score == 0.0
    assert loaded.generation == 0


def test_unwritable_medium_raises_storage_fault(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    store = LearningStateStore(tmp_path)
    store.append_result(_result(1))
    before = store.buffer_path.read_bytes()

    def full_disk(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(os, "replace", full_disk)
    with pytest.raises(StorageFault) as excinfo:
        store.append_result(_result(2))

    assert excinfo.value.reason == "No space left on device"
    assert store.buffer_path.read_bytes() == before
    assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".")] == []


def test_non_numeric_score_reads_as_zero(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.buffer_path.write_text(
        json.dumps([{"task": "t", "score": "high"}, {"task": "u", "score": [1]}, {"task": "v", "score": "7.5"}])
    )

    assert [(r.task, r.score) for r in store.peek_buffer()] == [("t", 0.0), ("u", 0.0), ("v", 7.5)]
    consumed = store.consume_buffer()
    assert [r.score for r in consumed] == [0.0, 0.0, 7.5]
    assert store.peek_buffer() == []


def test_snapshot_with_non_numeric_score(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    store.instructions_path.write_text(json.dumps({"instructions": {"planner": "p"}, "score": "n/a", "generation": 2}))

    loaded = store.load_instruction_snapshot()
    assert loaded is not None
    assert loaded.score == 0.0
    assert loaded.generation == 2


def test_concurrent_append_and_consume_keep_every_result_once(tmp_path: Path) -> None:
    store = LearningStateStore(tmp_path)
    writers, per_writer = 4, 25
    done = threading.Event()
    consumed: list[str] = []

    def write(w: int) -> None:
        for i in range(per_writer):
            store.append_result(TrainingResult(task=f"w{w}-{i}", solution="s", score=1.0, feedback="f"))

    def consume() -> None:
        while not done.is_set():
            consumed.extend(r.task for r in store.consume_buffer(limit=3))

    consumer = threading.Thread(target=consume)
    threads = [threading.Thread(target=write, args=(w,)) for w in range(writers)]
    consumer.start()
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    done.set()
    consumer.join()

    remaining = [r.task for r in store.peek_buffer()]
    archived = [item["task"] for path in store.archived_batches() for item in json.loads(path.read_text())]
    expected = {f"w{w}-{i}" for w in range(writers) for i in range(per_writer)}

    assert sorted(archived) == sorted(consumed)
    assert len(archived) + len(remaining) == writers * per_writer
    assert set(archived) | set(remaining) == expected
    assert not set(archived) & set(remaining)
    for w in range(writers):
        order = [t for t in archived + remaining if t.startswith(f"w{w}-")]
        assert order == [f"w{w}-{i}" for i in range(per_writer)]
