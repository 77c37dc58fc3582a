"""Reconciliation runs with a persisted ledger.

Fatal errors of the reconciler are turned into an `aborted` run here, so
API and task callers always get a structured result.
"""
from __future__ import annotations

import logging
import threading

from ..core import GroupMembershipReconciler, ReconcileResult, ReconcileStatus, make_removal_guard
from ..core.ports import DirectoryGateway
from ..env_settings import EnvSettings
from ..errors import ReconcilerError
from ..repo import db_session, finish_run, start_run

log = logging.getLogger(__name__)


def build_reconciler(
    directory: DirectoryGateway,
    env: EnvSettings,
    cancel_event: threading.Event | None = None,
    logger: logging.Logger | None = None,
) -> GroupMembershipReconciler:
    return GroupMembershipReconciler(
        directory,
        attribute=env.reconcile_attribute,
        sentinel=env.reconcile_sentinel,
        kinds=env.kinds,
        subtree=env.reconcile_subtree,
        workers=env.reconcile_workers,
        retries=env.reconcile_retries,
        confirm=make_removal_guard(env.reconcile_max_removals),
        cancel_event=cancel_event,
        logger=logger,
    )


def _aborted(scope_dn: str, group: str, dry_run: bool, message: str) -> ReconcileResult:
    return ReconcileResult(
        status=ReconcileStatus.ABORTED,
        scope_dn=scope_dn,
        group=group,
        dry_run=dry_run,
        message=message,
    )


def run_reconciliation(
    directory: DirectoryGateway,
    env: EnvSettings,
    *,
    scope_dn: str,
    group: str,
    dry_run: bool = False,
    triggered_by: str = "api",
    cancel_event: threading.Event | None = None,
) -> tuple[int, ReconcileResult]:
    """Run one reconciliation and store it; returns (run_id, result).

    A malformed scope (ValueError) and any unexpected error are recorded as
    aborted and re-raised, so the run never stays `running`.
    """
    reconciler = build_reconciler(directory, env, cancel_event=cancel_event)

    with db_session() as db:
        run_id = start_run(db, scope_dn, group, dry_run, triggered_by).id

    try:
        result = reconciler.reconcile(scope_dn, group, dry_run=dry_run)
    except ReconcilerError as e:
        log.error("Согласование группы %s прервано: %s", group, e)
        result = _aborted(scope_dn, group, dry_run, str(e))
    except ValueError as e:
        with db_session() as db:
            finish_run(db, run_id, _aborted(scope_dn, group, dry_run, str(e)))
        raise
    except Exception as e:
        log.exception("Согласование группы %s завершилось с ошибкой", group)
        with db_session() as db:
            finish_run(db, run_id, _aborted(scope_dn, group, dry_run, f"{type(e).__name__}: {e}"))
        raise

    with db_session() as db:
        finish_run(db, run_id, result)
    return run_id, result
