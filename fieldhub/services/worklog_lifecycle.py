"""
Work log lifecycle.

    pending --edit--> waiting_worker --confirm--> edited --approve--> approved --complete--> completed
                      waiting_worker --contest--> pending
    any state --approve/reject--> approved|rejected
    any state --archive--> same state, archived=True

Every function is scoped by company: an entry that belongs to another company
is reported exactly like one that does not exist. Functions commit their own
transaction.
"""
from typing import Any, Dict, Iterable, List, Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..models.models import Project, ProjectAssignment, User, WorkLog, utcnow
from .errors import (
    Conflict,
    InvalidTransition,
    NoProjectAssigned,
    NotFound,
    ValidationFailed,
    WorkerConfirmationPending,
    storage_guard,
)
from .job_ids import next_job_display_id
from .worklog_history import (
    EDITABLE_FIELDS,
    append_edit_records,
    check_column_width,
    compute_numeric_diff,
    parse_field,
    round_money,
)


logger = structlog.get_logger(__name__)

LOCATION_FIELDS = ("block", "floor", "apartment", "zone")


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_photo_urls(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationFailed("photo_urls must be a list.")
    return [str(url).strip() for url in value if url and str(url).strip()]


def get_work_log(db: Session, company_id: int, work_log_id: int) -> WorkLog:
    work_log = (
        db.query(WorkLog)
        .filter(WorkLog.id == work_log_id, WorkLog.company_id == company_id)
        .first()
    )
    if work_log is None:
        raise NotFound()
    return work_log


def resolve_project_id(db: Session, user: User) -> Optional[int]:
    """The operative's direct project, else their most recent assignment."""
    if user.project_id is not None:
        return user.project_id
    assignment = (
        db.query(ProjectAssignment)
        .filter(ProjectAssignment.user_id == user.id)
        .order_by(ProjectAssignment.assigned_at.desc(), ProjectAssignment.id.desc())
        .first()
    )
    return assignment.project_id if assignment else None


def submit_work_log(db: Session, company_id: int, user_id: int, data: Dict[str, Any]) -> WorkLog:
    """
    Create a pending work log for an operative.

    Args:
        db: Database session
        company_id: Tenant of the caller
        user_id: Submitting operative
        data: work_type (required), block, floor, apartment, zone, quantity,
            unit_price, total, description, photo_urls, invoice_file_path

    Returns:
        The stored WorkLog

    Raises:
        ValidationFailed, NoProjectAssigned, NotFound, Conflict, StorageUnavailable
    """
    work_type = _clean_text(data.get("work_type"))
    if not work_type:
        raise ValidationFailed("Work type is required.")
    quantity = parse_field("quantity", data.get("quantity"))
    unit_price = parse_field("unit_price", data.get("unit_price"))
    total = parse_field("total", data.get("total"))
    if total is None and quantity is not None and unit_price is not None:
        total = check_column_width(round_money(quantity * unit_price), *EDITABLE_FIELDS["total"], field="total")
    photo_urls = _clean_photo_urls(data.get("photo_urls"))

    with storage_guard(db, "submit", company_id):
        user = db.query(User).filter(User.id == user_id, User.company_id == company_id).first()
        if user is None:
            raise NotFound("User not found.")
        project_id = resolve_project_id(db, user)
        project = db.query(Project).filter(Project.id == project_id).first() if project_id is not None else None
        if project is None or project.company_id != company_id:
            raise NoProjectAssigned()
        project_name = project.name
        worker_name = user.display_name

        for attempt in range(2):
            now = utcnow()
            try:
                job_display_id = next_job_display_id(db, company_id, resync=attempt > 0)
            except IntegrityError:
                # Another submission created the company counter first
                db.rollback()
                if attempt:
                    raise Conflict("Could not allocate a job id. Please retry.")
                continue
            work_log = WorkLog(
                company_id=company_id,
                job_display_id=job_display_id,
                submitted_by_user_id=user_id,
                project_id=project_id,
                worker_name=worker_name,
                project=project_name,
                work_type=work_type,
                quantity=quantity,
                unit_price=unit_price,
                total=total,
                description=_clean_text(data.get("description")),
                photo_urls=photo_urls,
                invoice_file_path=_clean_text(data.get("invoice_file_path")),
                status="pending",
                work_was_edited=False,
                archived=False,
                submitted_at=now,
                updated_at=now,
                **{field: _clean_text(data.get(field)) for field in LOCATION_FIELDS},
            )
            db.add(work_log)
            try:
                db.commit()
                break
            except IntegrityError:
                db.rollback()
                logger.warning("work_log_job_id_collision", company_id=company_id, attempt=attempt + 1)
                if attempt:
                    raise Conflict("Could not allocate a job id. Please retry.")
        db.refresh(work_log)

    logger.info(
        "work_log_submitted",
        company_id=company_id,
        work_log_id=work_log.id,
        job_display_id=work_log.job_display_id,
        user_id=user_id,
    )
    return work_log


def edit_work_log(
    db: Session,
    company_id: int,
    work_log_id: int,
    editor_name: str,
    updates: Dict[str, Any],
) -> WorkLog:
    """
    Apply a manager's changes to quantity / unit_price / total.

    Fields whose value is numerically unchanged are ignored. If nothing changes
    the entry is returned untouched; otherwise one history record per changed
    field is written in the same transaction as the new values, the entry is
    flagged as edited and handed back to the worker (waiting_worker).
    A concurrent writer makes the commit fail on the version check; the edit is
    then re-read and re-applied once before giving up with Conflict.
    """
    parsed = {field: parse_field(field, updates.get(field)) for field in EDITABLE_FIELDS}
    editor_name = (editor_name or "").strip() or "Manager"

    for attempt in range(2):
        with storage_guard(db, "edit", company_id, work_log_id):
            work_log = get_work_log(db, company_id, work_log_id)
            if work_log.archived or work_log.status == "completed":
                raise InvalidTransition("Archived or completed jobs cannot be edited.")
            current = {field: getattr(work_log, field) for field in EDITABLE_FIELDS}
            diff = compute_numeric_diff(current, parsed)
            if not diff:
                return work_log

            now = utcnow()
            append_edit_records(db, work_log, diff, editor_name, now)
            for field, change in diff.items():
                setattr(work_log, field, change["after"])
            work_log.work_was_edited = True
            work_log.status = "waiting_worker"
            work_log.updated_at = now
            try:
                db.commit()
            except (StaleDataError, IntegrityError):
                db.rollback()
                logger.warning("work_log_edit_conflict", company_id=company_id, work_log_id=work_log_id, attempt=attempt + 1)
                if attempt:
                    raise Conflict()
                continue
            db.refresh(work_log)

        logger.info(
            "work_log_edited",
            company_id=company_id,
            work_log_id=work_log_id,
            fields=list(diff.keys()),
            editor=editor_name,
        )
        return work_log
    raise Conflict()


def _set_status(db: Session, work_log: WorkLog, status: str, operation: str) -> WorkLog:
    previous = work_log.status
    work_log.status = status
    work_log.updated_at = utcnow()
    with storage_guard(db, operation, work_log.company_id, work_log.id):
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise Conflict()
        db.refresh(work_log)
    logger.info(
        "work_log_status_changed",
        company_id=work_log.company_id,
        work_log_id=work_log.id,
        operation=operation,
        before=previous,
        after=status,
    )
    return work_log


def _load(db: Session, company_id: int, work_log_id: int, operation: str) -> WorkLog:
    with storage_guard(db, operation, company_id, work_log_id):
        return get_work_log(db, company_id, work_log_id)


def approve_work_log(db: Session, company_id: int, work_log_id: int) -> WorkLog:
    work_log = _load(db, company_id, work_log_id, "approve")
    if work_log.status == "waiting_worker" and not settings.allow_approve_while_waiting_worker:
        raise WorkerConfirmationPending()
    return _set_status(db, work_log, "approved", "approve")


def reject_work_log(db: Session, company_id: int, work_log_id: int) -> WorkLog:
    work_log = _load(db, company_id, work_log_id, "reject")
    return _set_status(db, work_log, "rejected", "reject")


def complete_work_log(db: Session, company_id: int, work_log_id: int) -> WorkLog:
    work_log = _load(db, company_id, work_log_id, "complete")
    if work_log.status != "approved":
        raise InvalidTransition("Only approved jobs can be completed.")
    return _set_status(db, work_log, "completed", "complete")


def _load_own(db: Session, company_id: int, user_id: int, work_log_id: int, operation: str) -> WorkLog:
    work_log = _load(db, company_id, work_log_id, operation)
    if work_log.submitted_by_user_id != user_id:
        raise NotFound()
    if work_log.status != "waiting_worker":
        raise InvalidTransition("There is no edit waiting for your confirmation.")
    return work_log


def confirm_work_log_edit(db: Session, company_id: int, user_id: int, work_log_id: int) -> WorkLog:
    """The submitting operative accepts the manager's edited values."""
    work_log = _load_own(db, company_id, user_id, work_log_id, "confirm")
    return _set_status(db, work_log, "edited", "confirm")


def contest_work_log_edit(db: Session, company_id: int, user_id: int, work_log_id: int) -> WorkLog:
    """The submitting operative disputes the edit; the job goes back for manager review."""
    work_log = _load_own(db, company_id, user_id, work_log_id, "contest")
    return _set_status(db, work_log, "pending", "contest")


def archive_work_log(db: Session, company_id: int, work_log_id: int) -> WorkLog:
    work_log = _load(db, company_id, work_log_id, "archive")
    if work_log.archived:
        return work_log
    work_log.archived = True
    work_log.updated_at = utcnow()
    with storage_guard(db, "archive", company_id, work_log_id):
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            raise Conflict()
        db.refresh(work_log)
    logger.info("work_log_archived", company_id=company_id, work_log_id=work_log_id)
    return work_log


def clean_job_ids(job_ids: Iterable[Any]) -> List[int]:
    """Positive integer ids, de-duplicated; anything else is dropped."""
    cleaned = set()
    for raw in job_ids or []:
        if isinstance(raw, bool):
            continue
        try:
            value = int(str(raw).strip())
        except (TypeError, ValueError):
            continue
        if value > 0:
            cleaned.add(value)
    return sorted(cleaned)


def mark_archived(query) -> int:
    """Bulk-archive the rows a WorkLog query selects; bumps version like an ORM update. Caller commits."""
    return query.update(
        {
            WorkLog.archived: True,
            WorkLog.updated_at: utcnow(),
            WorkLog.version: WorkLog.version + 1,
        },
        synchronize_session=False,
    )


def archive_work_logs(db: Session, company_id: int, job_ids: Iterable[Any]) -> int:
    """
    Archive every listed entry owned by the company in one transaction.

    Ids of other companies or of missing entries are skipped silently.
    Entries that were already archived count as archived and keep their state.

    Returns:
        Number of the company's entries among job_ids that are now archived
    """
    ids = clean_job_ids(job_ids)
    if not ids:
        raise ValidationFailed("No valid job ids.")
    with storage_guard(db, "archive_bulk", company_id):
        owned = [
            row[0]
            for row in db.query(WorkLog.id).filter(WorkLog.company_id == company_id, WorkLog.id.in_(ids)).all()
        ]
        if owned:
            mark_archived(
                db.query(WorkLog).filter(
                    WorkLog.company_id == company_id,
                    WorkLog.id.in_(owned),
                    WorkLog.archived.is_(False),
                )
            )
        db.commit()
    logger.info("work_logs_archived", company_id=company_id, requested=len(ids), archived=len(owned))
    return len(owned)
