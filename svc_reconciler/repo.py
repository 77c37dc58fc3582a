from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .core.oplog import ReconcileResult
from .db import SessionLocal
from .models import ReconcileAction, ReconcileRun

STATUS_RUNNING = "running"


@contextmanager
def db_session() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def start_run(db: Session, scope_dn: str, group_name: str, dry_run: bool, triggered_by: str) -> ReconcileRun:
    run = ReconcileRun(
        scope_dn=scope_dn,
        group_name=group_name,
        dry_run=dry_run,
        status=STATUS_RUNNING,
        triggered_by=triggered_by,
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def finish_run(db: Session, run_id: int, result: ReconcileResult) -> ReconcileRun:
    run = db.get(ReconcileRun, run_id)
    if run is None:
        raise LookupError(f"run {run_id} not found")

    for seq, e in enumerate(result.log, start=1):
        db.add(
            ReconcileAction(
                run_id=run_id,
                seq=seq,
                account=e.account,
                account_dn=e.account_dn,
                action=e.action.value,
                outcome=e.outcome.value,
                reason=(e.reason or "")[:512],
                attempts=e.attempts,
            )
        )

    run.group_name = result.group or run.group_name
    run.status = result.status.value
    run.failures = result.failures
    run.actions_total = len(result.log)
    run.message = (result.message or "")[:1024]
    run.finished_ts = datetime.utcnow()
    db.commit()
    db.refresh(run)
    return run


def get_run(db: Session, run_id: int) -> ReconcileRun | None:
    return db.get(ReconcileRun, run_id)


def get_run_actions(db: Session, run_id: int) -> list[ReconcileAction]:
    stmt = select(ReconcileAction).where(ReconcileAction.run_id == run_id).order_by(ReconcileAction.seq)
    return list(db.scalars(stmt))


def list_runs(db: Session, limit: int = 50) -> list[ReconcileRun]:
    stmt = select(ReconcileRun).order_by(ReconcileRun.id.desc()).limit(max(1, min(500, limit)))
    return list(db.scalars(stmt))


def last_run(db: Session, include_dry_run: bool = False) -> ReconcileRun | None:
    stmt = select(ReconcileRun).where(ReconcileRun.status != STATUS_RUNNING)
    if not include_dry_run:
        stmt = stmt.where(ReconcileRun.dry_run.is_(False))
    return db.scalar(stmt.order_by(ReconcileRun.started_ts.desc()).limit(1))


def running_run(db: Session) -> ReconcileRun | None:
    stmt = select(ReconcileRun).where(ReconcileRun.status == STATUS_RUNNING).order_by(ReconcileRun.id.desc()).limit(1)
    return db.scalar(stmt)


def release_stale_runs(db: Session, max_age: timedelta = timedelta(hours=6)) -> int:
    """Mark runs stuck in `running` (worker crashed) as aborted."""
    cutoff = datetime.utcnow() - max_age
    res = db.execute(
        update(ReconcileRun)
        .where(ReconcileRun.status == STATUS_RUNNING, ReconcileRun.started_ts < cutoff)
        .values(status="aborted", message="Прервано: зависший запуск", finished_ts=datetime.utcnow())
    )
    db.commit()
    return res.rowcount or 0
