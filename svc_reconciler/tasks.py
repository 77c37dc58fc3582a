from __future__ import annotations

from datetime import datetime, timedelta

from celery.utils.log import get_task_logger

from .celery_app import celery_app
from .env_settings import get_env
from .errors import DirectoryUnavailableError
from .repo import db_session, last_run, release_stale_runs, running_run
from .schema import ensure_schema
from .services import build_directory, run_reconciliation


logger = get_task_logger(__name__)

_STALE_RUN_AGE = timedelta(hours=6)


@celery_app.task(name="svc_reconciler.tasks.maybe_run_reconcile")
def maybe_run_reconcile(force: bool = False) -> dict:
    """Lightweight gatekeeper task triggered by Celery Beat.

    The Beat schedule is static (every 60s); this task decides whether the
    real run is due based on RECONCILE_INTERVAL_MIN and the run ledger.
    """
    env = get_env()
    if not force and env.reconcile_interval_min <= 0:
        return {"status": "disabled"}
    if not (env.reconcile_scope_dn and env.reconcile_group):
        return {"status": "not_configured"}

    ensure_schema()
    now = datetime.utcnow()

    with db_session() as db:
        released = release_stale_runs(db, _STALE_RUN_AGE)
        if released:
            logger.warning("Released %d stale reconcile run(s)", released)

        if running_run(db):
            return {"status": "running"}

        if not force:
            prev = last_run(db)
            if prev and (now - prev.started_ts).total_seconds() < env.reconcile_interval_min * 60:
                return {"status": "not_due"}

    run_reconcile.delay(triggered_by="schedule")
    return {"status": "scheduled"}


@celery_app.task(name="svc_reconciler.tasks.run_reconcile")
def run_reconcile(
    dry_run: bool = False,
    scope_dn: str | None = None,
    group: str | None = None,
    triggered_by: str = "task",
) -> dict:
    """Reconcile the configured (or given) container and group."""
    ensure_schema()
    env = get_env()
    scope_dn = (scope_dn or env.reconcile_scope_dn).strip()
    group = (group or env.reconcile_group).strip()

    try:
        directory = build_directory(env)
    except DirectoryUnavailableError as e:
        logger.error("Reconcile skipped: %s", e)
        return {"status": "aborted", "message": str(e)}

    try:
        run_id, result = run_reconciliation(
            directory,
            env,
            scope_dn=scope_dn,
            group=group,
            dry_run=dry_run,
            triggered_by=triggered_by,
        )
    except ValueError as e:
        logger.error("Reconcile rejected: %s", e)
        return {"status": "aborted", "message": str(e)}

    logger.info("Reconcile run %d done: %s", run_id, result.message)
    return {"run_id": run_id, **result.to_dict()}
