from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_manager
from ..db import get_db
from ..documents.invoice_pdf import render_invoice_pdf
from ..models.models import Company, Manager, WorkLog
from ..schemas.worklogs import JobIdsRequest, WorkLogCreateRequest, WorkLogUpdateRequest
from ..services import invoicing, worklog_lifecycle as lifecycle, worklog_queries as queries
from ..services.errors import storage_guard
from ..services.worklog_history import list_edit_records, serialize_edit_record


router = APIRouter(prefix="/worklogs", tags=["worklogs"])


def _number(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _work_log_to_dict(work_log: WorkLog, db: Optional[Session] = None) -> dict:
    """Helper function to convert WorkLog to dict; pass db to include the edit history"""
    result = {
        "id": work_log.id,
        "job_id": work_log.job_display_id,
        "worker_name": work_log.worker_name,
        "submitted_by_user_id": work_log.submitted_by_user_id,
        "project_id": work_log.project_id,
        "project": work_log.project,
        "block": work_log.block,
        "floor": work_log.floor,
        "apartment": work_log.apartment,
        "zone": work_log.zone,
        "work_type": work_log.work_type,
        "quantity": _number(work_log.quantity),
        "unit_price": _number(work_log.unit_price),
        "total": _number(work_log.total),
        "status": work_log.status,
        "description": work_log.description,
        "photo_urls": list(work_log.photo_urls or []),
        "invoice_file_path": work_log.invoice_file_path,
        "work_was_edited": bool(work_log.work_was_edited),
        "archived": bool(work_log.archived),
        "submitted_at": work_log.submitted_at.isoformat() if work_log.submitted_at else None,
        "updated_at": work_log.updated_at.isoformat() if work_log.updated_at else None,
    }
    if db is not None:
        result["edit_history"] = [serialize_edit_record(e) for e in list_edit_records(db, work_log.id)]
    return result


def _invoice_to_dict(invoice: dict) -> dict:
    return {
        "job_ids": invoice["job_ids"],
        "job_count": invoice["job_count"],
        "generated_at": invoice["generated_at"].isoformat(),
        "rows": [
            {
                **row,
                "quantity": _number(row["quantity"]),
                "unit_price": _number(row["unit_price"]),
                "total": _number(row["total"]),
            }
            for row in invoice["rows"]
        ],
        "grand_total": _number(invoice["grand_total"]),
    }


@router.get("")
def list_worklogs(
    worker: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    location: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    me: Manager = Depends(get_current_manager),
):
    work_logs = queries.list_work_logs(
        db,
        me.company_id,
        worker=worker,
        status=status,
        date_from=date_from,
        date_to=date_to,
        location=location,
        search=search,
        include_archived=include_archived,
    )
    return {"jobs": [_work_log_to_dict(w) for w in work_logs]}


@router.post("", status_code=201)
def create_worklog(
    payload: WorkLogCreateRequest,
    db: Session = Depends(get_db),
    me: Manager = Depends(get_current_manager),
):
    """Record work on behalf of one of the company's operatives."""
    data = payload.model_dump(exclude={"user_id"})
    work_log = lifecycle.submit_work_log(db, me.company_id, payload.user_id, data)
    return {"job": _work_log_to_dict(work_log, db)}


@router.get("/workers")
def list_workers(db: Session = Depends(get_db), me: Manager = Depends(get_current_manager)):
    return {"workers": queries.list_workers(db, me.company_id)}


@router.get("/stats")
def worklog_stats(db: Session = Depends(get_db), me: Manager = Depends(get_current_manager)):
    summary = queries.cost_summary(db, me.company_id)
    return {
        "total_cost": _number(summary["total_cost"]),
        "weekly_cost": _number(summary["weekly_cost"]),
        "monthly_cost": _number(summary["monthly_cost"]),
        "total_jobs": summary["total_jobs"],
        "approved_jobs": summary["approved_jobs"],
    }


@router.get("/invoice")
def preview_invoice(
    job_ids: Optional[List[int]] = Query(None),
    db: Session = Depends(get_db),
    me: Manager = Depends(get_current_manager),
):
    """Invoice for the given approved jobs, or for every approved job when none are given."""
    return _invoice_to_dict(invoicing.build_invoice(db, me.company_id, job_ids))


@router.get("/invoice.pdf")
def invoice_pdf(
    job_ids: Optional[List[int]] = Query(None),
    db: Session = Depends(get_db),
    me: Manager = Depends(get_current_manager),
):
    invoice = invoicing.build_invoice(db, me.company_id, job_ids)
    with storage_guard(db, "invoice_pdf", me.company_id):
        company = db.query(Company).filter(Company.id == me.company_id).first()
    pdf = render_invoice_pdf(invoice, company.name if company else None)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": 'attachment; filename="invoice.pdf"'},
    )


@router.post("/invoice/confirm")
def confirm_invoice(
    payload: JobIdsRequest,
    db: Session = Depends(get_db),
    me: Manager = Depends(get_current_manager),
):
    invoice = invoicing.confirm_invoice(db, me.company_id, payload.job_ids or None)
    result = _invoice_to_dict(invoice)
    result["archived"] = invoice["archived"]
    return result


@router.post("/archive-bulk")
def archive_bulk(
    payload: JobIdsRequest,
    db: Session = Depends(get_db),
    me: Manager = Depends(get_current_manager),
):
    return {"archived": lifecycle.archive_work_logs(db, me.company_id, payload.job_ids)}


@router.get("/{work_log_id}")
def get_worklog(work_log_id: int, db: Session = Depends(get_db), me: Manager = Depends(get_current_manager)):
    with storage_guard(db, "get", me.company_id, work_log_id):
        work_log = lifecycle.get_work_log(db, me.company_id, work_log_id)
        return {"job": _work_log_to_dict(work_log, db)}


@router.patch("/{work_log_id}")
def update_worklog(
    work_log_id: int,
    payload: WorkLogUpdateRequest,
    db: Session = Depends(get_db),
    me: Manager = Depends(get_current_manager),
):
    work_log = lifecycle.edit_work_log(db, me.company_id, work_log_id, me.display_name, payload.model_dump())
    return {"job": _work_log_to_dict(work_log, db)}


@router.post("/{work_log_id}/approve")
def approve_worklog(work_log_id: int, db: Session = Depends(get_db), me: Manager = Depends(get_current_manager)):
    return {"job": _work_log_to_dict(lifecycle.approve_work_log(db, me.company_id, work_log_id))}


@router.post("/{work_log_id}/reject")
def reject_worklog(work_log_id: int, db: Session = Depends(get_db), me: Manager = Depends(get_current_manager)):
    return {"job": _work_log_to_dict(lifecycle.reject_work_log(db, me.company_id, work_log_id))}


@router.post("/{work_log_id}/complete")
def complete_worklog(work_log_id: int, db: Session = Depends(get_db), me: Manager = Depends(get_current_manager)):
    return {"job": _work_log_to_dict(lifecycle.complete_work_log(db, me.company_id, work_log_id))}


@router.post("/{work_log_id}/archive")
def archive_worklog(work_log_id: int, db: Session = Depends(get_db), me: Manager = Depends(get_current_manager)):
    return {"job": _work_log_to_dict(lifecycle.archive_work_log(db, me.company_id, work_log_id))}
