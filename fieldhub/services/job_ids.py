"""
Per-company job display ids (WL-001, WL-002, ...).

Numbers come from a one-row-per-company counter that is incremented inside
the caller's transaction, so the row lock serializes concurrent submissions
for the same company and a rolled back submission never burns a number
someone else could observe.
"""
import re
from typing import Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import CompanyJobSequence, WorkLog


def format_job_display_id(number: int, prefix: Optional[str] = None) -> str:
    prefix = settings.job_id_prefix if prefix is None else prefix
    return f"{prefix}{number:03d}"


def parse_job_display_id(value: Optional[str], prefix: Optional[str] = None) -> Optional[int]:
    if not value:
        return None
    prefix = settings.job_id_prefix if prefix is None else prefix
    match = re.fullmatch(re.escape(prefix) + r"([0-9]+)", value.strip())
    if not match:
        return None
    return int(match.group(1))


def max_issued_number(db: Session, company_id: int) -> int:
    """Highest number already used by any of the company's entries, archived ones included."""
    rows = db.query(WorkLog.job_display_id).filter(WorkLog.company_id == company_id).all()
    return max((parse_job_display_id(row[0]) or 0 for row in rows), default=0)


def allocate_job_number(db: Session, company_id: int, resync: bool = False) -> int:
    """
    Reserve the next number for a company within the current transaction.

    Args:
        db: Database session; the caller commits or rolls back
        company_id: Tenant the number belongs to
        resync: Re-read the highest issued number from work_logs first
            (used after a unique-index collision)

    Returns:
        The reserved number
    """
    sequence = db.query(CompanyJobSequence).filter(CompanyJobSequence.company_id == company_id)
    updated = sequence.update(
        {CompanyJobSequence.last_value: CompanyJobSequence.last_value + 1},
        synchronize_session=False,
    )
    if updated == 0:
        # First submission for this company: seed from whatever already exists
        number = max_issued_number(db, company_id) + 1
        db.add(CompanyJobSequence(company_id=company_id, last_value=number))
        db.flush()
        return number

    number = (
        db.query(CompanyJobSequence.last_value)
        .filter(CompanyJobSequence.company_id == company_id)
        .scalar()
    )
    if resync:
        issued = max_issued_number(db, company_id)
        if issued >= number:
            number = issued + 1
            sequence.update({CompanyJobSequence.last_value: number}, synchronize_session=False)
    return number


def next_job_display_id(db: Session, company_id: int, resync: bool = False) -> str:
    return format_job_display_id(allocate_job_number(db, company_id, resync=resync))
