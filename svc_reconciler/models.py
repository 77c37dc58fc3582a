from __future__ import annotations

from datetime import datetime
from sqlalchemy import String, DateTime, Boolean, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class ReconcileRun(Base):
    __tablename__ = "reconcile_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_ts: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    finished_ts: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    scope_dn: Mapped[str] = mapped_column(String(1024), default="", nullable=False)
    group_name: Mapped[str] = mapped_column(String(256), default="", nullable=False)
    dry_run: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    status: Mapped[str] = mapped_column(String(16), default="running", nullable=False)  # running|reconciled|partial|aborted|cancelled
    failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    actions_total: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message: Mapped[str] = mapped_column(String(1024), default="", nullable=False)
    triggered_by: Mapped[str] = mapped_column(String(16), default="api", nullable=False)  # api|schedule|task


class ReconcileAction(Base):
    __tablename__ = "reconcile_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(Integer, ForeignKey("reconcile_runs.id", ondelete="CASCADE"), index=True, nullable=False)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)

    account: Mapped[str] = mapped_column(String(256), default="", nullable=False)
    account_dn: Mapped[str] = mapped_column(String(1024), default="", nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)   # add|remove|updateAttribute
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)  # applied|skipped-dryrun|skipped-declined|failed
    reason: Mapped[str] = mapped_column(String(512), default="", nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
