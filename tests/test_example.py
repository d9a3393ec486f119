import asyncio
from pathlib import Path

from looped.config import LoopedConfig
from looped.example import build_application, main
from looped.types import THOUGHT_ROLE


def test_toy_loop_improves_after_optimization(tmp_path: Path) -> None:
    app = build_application(LoopedConfig(storage_dir=str(tmp_path), batch_size=3), backend="toy")

    before = [app.run_task(f"Compute sum {i}") for i in range(3)]
    assert all(r.score == 5.0 for r in before)

    outcome = asyncio.run(app.scheduler.tick())
    assert outcome is not None
    assert outcome.generation == 1

    snapshot = app.store.load_instruction_snapshot()
    assert "verify" in snapshot.instruction_for(THOUGHT_ROLE)

    after = app.run_task("Compute sum 4")
    assert after.score == 8.5
    assert len(app.store.peek_buffer()) == 1


def test_main_single_task(tmp_path: Path, capsys) -> None:
    main(["--storage-dir", str(tmp_path), "--task", "Write hello world"])

    out = capsys.readouterr().out
    assert "Score: 5.00/10" in out
    assert "Implementation for 'Write hello world'." in out
    assert (tmp_path / "training_buffer.json").exists()
