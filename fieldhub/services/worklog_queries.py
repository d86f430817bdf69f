"""
Read side of work logs: filtered lists, the worker roster and cost figures.

Reads never fail the caller because the store is unreachable or not set up
yet; they log the problem and return an empty result instead.
"""
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import List, Optional

import pytz
import structlog
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import WorkLog, utcnow
from .errors import StorageUnavailable, storage_guard


logger = structlog.get_logger(__name__)

ZERO = Decimal("0.00")


def _as_utc(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.UTC)


def local_day_start(day: date, timezone_str: Optional[str] = None) -> datetime:
    """Midnight of `day` in the company time zone, expressed in UTC."""
    tz = pytz.timezone(timezone_str or settings.tz_default)
    return tz.localize(datetime.combine(day, time.min)).astimezone(pytz.UTC)


def _location_text():
    parts = [func.coalesce(col, "") for col in (WorkLog.project, WorkLog.block, WorkLog.floor, WorkLog.apartment, WorkLog.zone)]
    expr = parts[0]
    for part in parts[1:]:
        expr = expr + " " + part
    return func.lower(expr)


def list_work_logs(
    db: Session,
    company_id: int,
    worker: Optional[str] = None,
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    location: Optional[str] = None,
    search: Optional[str] = None,
    include_archived: bool = False,
) -> List[WorkLog]:
    """
    Company work logs, newest submission first.

    Args:
        worker: Exact worker name
        status: Exact status
        date_from / date_to: Inclusive submission dates (company time zone)
        location: Case-insensitive text matched against project, block, floor,
            apartment and zone joined together
        search: Case-insensitive text matched against job id or description
        include_archived: Also return archived entries
    """
    query = db.query(WorkLog).filter(WorkLog.company_id == company_id)
    if not include_archived:
        query = query.filter(WorkLog.archived.is_(False))
    if worker and worker.strip():
        query = query.filter(WorkLog.worker_name == worker.strip())
    if status and status.strip():
        query = query.filter(WorkLog.status == status.strip())
    if date_from:
        query = query.filter(WorkLog.submitted_at >= local_day_start(date_from))
    if date_to:
        query = query.filter(WorkLog.submitted_at < local_day_start(date_to + timedelta(days=1)))
    if location and location.strip():
        query = query.filter(_location_text().contains(location.strip().lower(), autoescape=True))
    if search and search.strip():
        needle = search.strip().lower()
        query = query.filter(
            or_(
                func.lower(func.coalesce(WorkLog.job_display_id, "")).contains(needle, autoescape=True),
                func.lower(func.coalesce(WorkLog.description, "")).contains(needle, autoescape=True),
            )
        )
    query = query.order_by(WorkLog.submitted_at.desc(), WorkLog.id.desc())

    try:
        with storage_guard(db, "list", company_id):
            return query.all()
    except StorageUnavailable:
        return []


def list_workers(db: Session, company_id: int) -> List[str]:
    """Distinct names of workers with at least one non-archived entry."""
    query = (
        db.query(WorkLog.worker_name)
        .filter(
            WorkLog.company_id == company_id,
            WorkLog.archived.is_(False),
            WorkLog.worker_name.is_not(None),
        )
        .distinct()
        .order_by(WorkLog.worker_name)
    )
    try:
        with storage_guard(db, "workers", company_id):
            return [row[0] for row in query.all() if row[0]]
    except StorageUnavailable:
        return []


def cost_summary(db: Session, company_id: int, now: Optional[datetime] = None) -> dict:
    """
    Cost figures over non-archived entries.

    Returns:
        total_cost: all entries
        weekly_cost: submitted within the trailing 7 days
        monthly_cost: submitted in the current calendar month (company time zone)
        total_jobs / approved_jobs: progress counters
    """
    now = _as_utc(now or utcnow())
    tz = pytz.timezone(settings.tz_default)
    local_now = now.astimezone(tz)
    month_start = local_day_start(local_now.date().replace(day=1))
    if local_now.month == 12:
        next_month = date(local_now.year + 1, 1, 1)
    else:
        next_month = date(local_now.year, local_now.month + 1, 1)
    month_end = local_day_start(next_month)
    week_start = now - timedelta(days=7)

    summary = {
        "total_cost": ZERO,
        "weekly_cost": ZERO,
        "monthly_cost": ZERO,
        "total_jobs": 0,
        "approved_jobs": 0,
    }
    query = db.query(WorkLog.total, WorkLog.submitted_at, WorkLog.status).filter(
        WorkLog.company_id == company_id,
        WorkLog.archived.is_(False),
    )
    try:
        with storage_guard(db, "stats", company_id):
            rows = query.all()
    except StorageUnavailable:
        return summary

    for total, submitted_at, status in rows:
        amount = Decimal(total) if total is not None else ZERO
        summary["total_jobs"] += 1
        if status == "approved":
            summary["approved_jobs"] += 1
        summary["total_cost"] += amount
        if submitted_at is None:
            continue
        submitted_at = _as_utc(submitted_at)
        if submitted_at >= week_start:
            summary["weekly_cost"] += amount
        if month_start <= submitted_at < month_end:
            summary["monthly_cost"] += amount
    return summary


def list_operative_work_logs(
    db: Session,
    company_id: int,
    user_id: int,
    limit: Optional[int] = None,
) -> List[WorkLog]:
    """An operative's own submissions, newest first (archived ones included)."""
    query = (
        db.query(WorkLog)
        .filter(WorkLog.company_id == company_id, WorkLog.submitted_by_user_id == user_id)
        .order_by(WorkLog.submitted_at.desc(), WorkLog.id.desc())
        .limit(limit or settings.operative_history_limit)
    )
    try:
        with storage_guard(db, "my_work_logs", company_id):
            return query.all()
    except StorageUnavailable:
        return []
