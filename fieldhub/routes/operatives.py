from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_operative
from ..db import get_db
from ..models.models import User, WorkLog
from ..schemas.worklogs import WorkLogSubmitRequest
from ..services import worklog_lifecycle as lifecycle, worklog_queries as queries


router = APIRouter(prefix="/operatives", tags=["operatives"])


def _entry_to_dict(work_log: WorkLog) -> dict:
    """What an operative sees of their own entry (no history, no invoice data)."""
    def number(value) -> Optional[float]:
        return float(value) if value is not None else None

    return {
        "id": work_log.id,
        "job_id": work_log.job_display_id,
        "work_type": work_log.work_type,
        "project": work_log.project,
        "block": work_log.block,
        "floor": work_log.floor,
        "apartment": work_log.apartment,
        "zone": work_log.zone,
        "quantity": number(work_log.quantity),
        "unit_price": number(work_log.unit_price),
        "total": number(work_log.total),
        "status": work_log.status or "pending",
        "work_was_edited": bool(work_log.work_was_edited),
        "submitted_at": work_log.submitted_at.isoformat() if work_log.submitted_at else None,
    }


@router.get("/work-log")
def my_work_logs(db: Session = Depends(get_db), me: User = Depends(get_current_operative)):
    entries = queries.list_operative_work_logs(db, me.company_id, me.id)
    return {"entries": [_entry_to_dict(e) for e in entries]}


@router.post("/work-log", status_code=201)
def submit_work_log(
    payload: WorkLogSubmitRequest,
    db: Session = Depends(get_db),
    me: User = Depends(get_current_operative),
):
    work_log = lifecycle.submit_work_log(db, me.company_id, me.id, payload.model_dump())
    return {
        "message": "Work entry submitted. Manager will review it in Work Logs.",
        "entry": _entry_to_dict(work_log),
    }


@router.post("/work-log/{work_log_id}/confirm")
def confirm_edit(work_log_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_operative)):
    return {"entry": _entry_to_dict(lifecycle.confirm_work_log_edit(db, me.company_id, me.id, work_log_id))}


@router.post("/work-log/{work_log_id}/contest")
def contest_edit(work_log_id: int, db: Session = Depends(get_db), me: User = Depends(get_current_operative)):
    return {"entry": _entry_to_dict(lifecycle.contest_work_log_edit(db, me.company_id, me.id, work_log_id))}
