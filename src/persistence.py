from datetime import datetime, timezone
from typing import List, Optional

from sqlmodel import Field, SQLModel, Session, create_engine, select

from settings import settings

engine = create_engine(settings.sqlite_url, echo=False, connect_args={"check_same_thread": False})


class RunRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: str = Field(index=True)
    total_actions: int = 0
    failed_actions: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None


class StepRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: str = Field(index=True)
    step: int
    action_type: Optional[str] = None
    ok: bool = False
    skipped: bool = False
    error: Optional[str] = None


def init_db():
    SQLModel.metadata.create_all(engine)

def get_session():
    return Session(engine)

def start_run(run_id: str, total_actions: int) -> RunRecord:
    with get_session() as s:
        run = RunRecord(run_id=run_id, total_actions=total_actions)
        s.add(run); s.commit(); s.refresh(run)
        return run

def finish_run(run_id: str, failed_actions: int) -> Optional[RunRecord]:
    with get_session() as s:
        run = s.exec(select(RunRecord).where(RunRecord.run_id == run_id)).first()
        if run is None:
            return None
        run.failed_actions = failed_actions
        run.finished_at = datetime.now(timezone.utc)
        s.add(run); s.commit(); s.refresh(run)
        return run

def record_step(run_id: str, step: int, action_type: Optional[str], ok: bool,
                skipped: bool = False, error: Optional[str] = None) -> StepRecord:
    with get_session() as s:
        r = StepRecord(run_id=run_id, step=step, action_type=action_type, ok=ok,
                       skipped=skipped, error=(error or None) and error[:500])
        s.add(r); s.commit(); s.refresh(r)
        return r

def recent_runs(limit: int = 5) -> List[RunRecord]:
    with get_session() as s:
        stmt = select(RunRecord).order_by(RunRecord.id.desc()).limit(limit)
        return list(s.exec(stmt).all())

def run_steps(run_id: str) -> List[StepRecord]:
    with get_session() as s:
        stmt = select(StepRecord).where(StepRecord.run_id == run_id).order_by(StepRecord.step)
        return list(s.exec(stmt).all())


class RunRecorder:
    """Executor hook that persists every run and step outcome."""

    def run_started(self, run_id: str, total: int) -> None:
        start_run(run_id, total)

    def step_finished(self, run_id: str, step: int, action_type: Optional[str], result) -> None:
        record_step(run_id, step, action_type, result.ok, result.skipped, result.error)

    def run_finished(self, summary) -> None:
        finish_run(summary.run_id, summary.failed)
