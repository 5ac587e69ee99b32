from __future__ import annotations

from executor import RunSummary, StepResult, new_run_id
from persistence import RunRecorder, init_db, recent_runs, run_steps


def test_recorder_persists_run_and_steps() -> None:
    init_db()
    recorder = RunRecorder()
    run_id = new_run_id()

    recorder.run_started(run_id, 2)
    recorder.step_finished(run_id, 0, "goto", StepResult(ok=True))
    recorder.step_finished(run_id, 1, "click", StepResult(ok=False, error="Timeout 10000ms exceeded."))
    summary = RunSummary(run_id=run_id, total=2, results=[StepResult(ok=True), StepResult(ok=False)])
    recorder.run_finished(summary)

    latest = recent_runs(limit=1)[0]
    assert latest.run_id == run_id
    assert latest.total_actions == 2
    assert latest.failed_actions == 1
    assert latest.finished_at is not None

    steps = run_steps(run_id)
    assert [(s.step, s.action_type, s.ok) for s in steps] == [(0, "goto", True), (1, "click", False)]
    assert steps[1].error.startswith("Timeout")
