"""
Invoice batches over approved work logs.

An invoice is a read-only view of a set of approved entries; confirming it
archives exactly that set so the same work is never billed twice.
"""
from decimal import Decimal
from typing import Any, Iterable, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..models.models import WorkLog, utcnow
from .errors import Conflict, ValidationFailed, storage_guard
from .worklog_history import round_money
from .worklog_lifecycle import clean_job_ids, mark_archived


logger = structlog.get_logger(__name__)


def format_location(work_log: WorkLog) -> str:
    parts = [work_log.project, work_log.block, work_log.floor, work_log.apartment, work_log.zone]
    return ", ".join(p for p in parts if p) or "—"


def line_total(work_log: WorkLog) -> Decimal:
    if work_log.total is not None:
        return Decimal(work_log.total)
    if work_log.quantity is not None and work_log.unit_price is not None:
        return round_money(Decimal(work_log.quantity) * Decimal(work_log.unit_price))
    return Decimal("0.00")


def _invoice_query(db: Session, company_id: int, job_ids: Optional[Iterable[Any]] = None):
    """
    Approved, non-archived entries of the company.

    With job_ids the result is narrowed to those ids; pending, rejected,
    archived, missing and foreign ids drop out silently. Returns None when
    job_ids were given but none of them is a valid id.
    """
    query = db.query(WorkLog).filter(
        WorkLog.company_id == company_id,
        WorkLog.archived.is_(False),
        WorkLog.status == "approved",
    )
    if job_ids:
        ids = clean_job_ids(job_ids)
        if not ids:
            return None
        query = query.filter(WorkLog.id.in_(ids))
    return query


def select_invoice_entries(db: Session, company_id: int, job_ids: Optional[Iterable[Any]] = None) -> List[WorkLog]:
    """The entries an invoice covers, oldest submission first."""
    query = _invoice_query(db, company_id, job_ids)
    if query is None:
        return []
    with storage_guard(db, "invoice", company_id):
        return query.order_by(WorkLog.submitted_at, WorkLog.id).all()


def invoice_from_entries(company_id: int, entries: List[WorkLog]) -> dict:
    rows = []
    grand_total = Decimal("0.00")
    for entry in entries:
        amount = line_total(entry)
        grand_total += amount
        rows.append({
            "id": entry.id,
            "job_id": entry.job_display_id,
            "worker_name": entry.worker_name,
            "location": format_location(entry),
            "work_type": entry.work_type,
            "quantity": entry.quantity,
            "unit_price": entry.unit_price,
            "total": amount,
        })
    return {
        "company_id": company_id,
        "generated_at": utcnow(),
        "job_ids": [row["id"] for row in rows],
        "job_count": len(rows),
        "rows": rows,
        "grand_total": grand_total,
    }


def build_invoice(db: Session, company_id: int, job_ids: Optional[Iterable[Any]] = None) -> dict:
    return invoice_from_entries(company_id, select_invoice_entries(db, company_id, job_ids))


def confirm_invoice(db: Session, company_id: int, job_ids: Optional[Iterable[Any]] = None) -> dict:
    """
    Archive the invoiced entries and return the invoice that was confirmed.

    The archiving UPDATE only touches entries that are still approved and not
    archived. If any invoiced entry changed after it was read, nothing is
    archived and Conflict is raised, so the returned totals always match the
    archived set.
    """
    entries = select_invoice_entries(db, company_id, job_ids)
    invoice = invoice_from_entries(company_id, entries)
    if not entries:
        raise ValidationFailed("There are no jobs to invoice.")

    with storage_guard(db, "invoice_confirm", company_id):
        archived = mark_archived(
            db.query(WorkLog).filter(
                WorkLog.company_id == company_id,
                WorkLog.id.in_(invoice["job_ids"]),
                WorkLog.status == "approved",
                WorkLog.archived.is_(False),
            )
        )
        if archived != invoice["job_count"]:
            db.rollback()
            logger.warning(
                "invoice_confirm_conflict",
                company_id=company_id,
                expected=invoice["job_count"],
                archived=archived,
            )
            raise Conflict("Some jobs changed while the invoice was being confirmed. Please review it again.")
        db.commit()

    logger.info(
        "invoice_confirmed",
        company_id=company_id,
        job_count=invoice["job_count"],
        archived=archived,
        grand_total=str(invoice["grand_total"]),
    )
    invoice["archived"] = archived
    return invoice
