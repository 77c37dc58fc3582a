from __future__ import annotations

import io
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from openpyxl.styles import Font

from ..core.ports import DirectoryGateway
from ..deps import get_directory, require_api_token
from ..env_settings import get_env
from ..models import ReconcileAction, ReconcileRun
from ..payloads import ReconcileRequest
from ..repo import db_session, get_run, get_run_actions, list_runs, running_run
from ..services import run_reconciliation

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", dependencies=[Depends(require_api_token)])


def _run_to_dict(run: ReconcileRun) -> dict:
    return {
        "id": run.id,
        "started_ts": run.started_ts.isoformat(timespec="seconds") if run.started_ts else None,
        "finished_ts": run.finished_ts.isoformat(timespec="seconds") if run.finished_ts else None,
        "scope_dn": run.scope_dn,
        "group": run.group_name,
        "dry_run": run.dry_run,
        "status": run.status,
        "failures": run.failures,
        "actions_total": run.actions_total,
        "message": run.message,
        "triggered_by": run.triggered_by,
    }


def _action_to_dict(a: ReconcileAction) -> dict:
    return {
        "seq": a.seq,
        "account": a.account,
        "account_dn": a.account_dn,
        "action": a.action,
        "outcome": a.outcome,
        "reason": a.reason,
        "attempts": a.attempts,
    }


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/reconcile")
def reconcile(req: ReconcileRequest, directory: DirectoryGateway = Depends(get_directory)):
    env = get_env()
    scope_dn = req.scope_dn or env.reconcile_scope_dn
    group = req.group or env.reconcile_group
    if not scope_dn or not group:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Не заданы контейнер и/или группа.")

    with db_session() as db:
        current = running_run(db)
        current_id = current.id if current else None
    if current_id is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Уже выполняется согласование (run {current_id}).",
        )

    if req.background:
        # Imported lazily: the web app should start without a broker.
        from ..tasks import run_reconcile

        task = run_reconcile.delay(dry_run=req.dry_run, scope_dn=scope_dn, group=group, triggered_by="api")
        return {"status": "queued", "task_id": task.id}

    try:
        run_id, result = run_reconciliation(
            directory,
            env,
            scope_dn=scope_dn,
            group=group,
            dry_run=req.dry_run,
            triggered_by="api",
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    log.info("Run %d (%s): %s", run_id, result.status.value, result.message)
    return {"run_id": run_id, **result.to_dict()}


@router.get("/runs")
def runs(limit: int = 50) -> list[dict]:
    with db_session() as db:
        return [_run_to_dict(r) for r in list_runs(db, limit=limit)]


@router.get("/runs/{run_id}")
def run_details(run_id: int) -> dict:
    with db_session() as db:
        run = get_run(db, run_id)
        if not run:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
        data = _run_to_dict(run)
        data["actions"] = [_action_to_dict(a) for a in get_run_actions(db, run_id)]
    return data


@router.get("/runs/{run_id}/export.xlsx")
def run_export(run_id: int):
    with db_session() as db:
        run = get_run(db, run_id)
        if not run:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Run not found")
        actions = get_run_actions(db, run_id)

    wb = Workbook()
    ws = wb.active
    ws.title = "Операции"

    ws.append(["#", "Учётная запись", "DN", "Действие", "Результат", "Причина", "Попыток"])
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for a in actions:
        ws.append([a.seq, a.account, a.account_dn, a.action, a.outcome, a.reason or "", a.attempts])

    for i, w in enumerate([6, 24, 60, 18, 18, 40, 10], start=1):
        ws.column_dimensions[chr(ord("A") + i - 1)].width = w

    bio = io.BytesIO()
    wb.save(bio)
    bio.seek(0)

    headers = {"Content-Disposition": f"attachment; filename=\"reconcile-run-{run_id}.xlsx\""}
    return StreamingResponse(
        bio,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers=headers,
    )
