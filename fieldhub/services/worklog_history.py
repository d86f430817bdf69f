"""
Edit history ledger for work logs.
Append-only: records are inserted alongside the edit they describe and never updated.
"""
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.models import WorkLog, WorkLogEdit
from .errors import ValidationFailed


# Manager-editable fields and their column (precision, scale)
EDITABLE_FIELDS: Dict[str, Tuple[int, int]] = {
    "quantity": (12, 3),
    "unit_price": (12, 2),
    "total": (14, 2),
}


def check_column_width(number: Decimal, precision: int, scale: int, field: str = "value") -> Decimal:
    """Reject numbers whose integer part does not fit a Numeric(precision, scale) column."""
    if abs(number) >= Decimal(10) ** (precision - scale):
        raise ValidationFailed(f"{field} is too large.")
    return number


def round_money(value: Decimal, field: str = "total") -> Decimal:
    """Quantize to 2 places with the same rounding user input gets."""
    try:
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationFailed(f"{field} is too large.")


def to_decimal(
    value: Any,
    places: Optional[int] = None,
    field: str = "value",
    precision: Optional[int] = None,
) -> Optional[Decimal]:
    """
    Parse a user supplied number into a Decimal.

    Args:
        value: int, float, str or Decimal; None/"" mean "not supplied"
        places: Quantize to this many decimal places (storage scale)
        field: Field name used in the error message
        precision: Total digits the column holds; wider values are rejected

    Returns:
        Decimal or None
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise ValidationFailed(f"{field} must be a number.")
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationFailed(f"{field} must be a number.")
    if not number.is_finite():
        raise ValidationFailed(f"{field} must be a number.")
    if places is not None:
        if precision is not None:
            check_column_width(number, precision, places, field)
        try:
            number = number.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        except InvalidOperation:
            raise ValidationFailed(f"{field} is too large.")
        if precision is not None:
            # Rounding can carry into a new integer digit (999.9995 -> 1000.000)
            check_column_width(number, precision, places, field)
    return number


def parse_field(field: str, value: Any) -> Optional[Decimal]:
    """Parse one of EDITABLE_FIELDS at its column's scale and width."""
    precision, scale = EDITABLE_FIELDS[field]
    return to_decimal(value, scale, field, precision)


def format_decimal(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def compute_numeric_diff(current: Dict[str, Optional[Decimal]], updates: Dict[str, Any]) -> Dict[str, Dict]:
    """
    Compare requested values with stored ones by numeric value.

    "25", "25.0" and 25 are the same number, so none of them counts as a change
    against a stored 25.00. Fields missing from `updates` or set to None are
    left alone.

    Returns:
        {field: {"before": Decimal|None, "after": Decimal}} for changed fields,
        in EDITABLE_FIELDS order
    """
    diff = {}
    for field in EDITABLE_FIELDS:
        new_value = parse_field(field, updates.get(field))
        if new_value is None:
            continue
        old_value = current.get(field)
        if old_value is not None and Decimal(old_value) == new_value:
            continue
        diff[field] = {"before": old_value, "after": new_value}
    return diff


def append_edit_records(
    db: Session,
    work_log: WorkLog,
    diff: Dict[str, Dict],
    editor_name: str,
    timestamp: datetime,
) -> List[WorkLogEdit]:
    """Stage one WorkLogEdit per changed field; committed with the entry update."""
    last_seq = db.query(func.max(WorkLogEdit.seq)).filter(WorkLogEdit.work_log_id == work_log.id).scalar()
    seq = (last_seq or 0) + 1
    records = []
    for field, change in diff.items():
        record = WorkLogEdit(
            work_log_id=work_log.id,
            seq=seq,
            field=field,
            old_value=format_decimal(change["before"]),
            new_value=format_decimal(change["after"]),
            editor_name=editor_name,
            timestamp=timestamp,
        )
        db.add(record)
        records.append(record)
        seq += 1
    return records


def list_edit_records(db: Session, work_log_id: int) -> List[WorkLogEdit]:
    return (
        db.query(WorkLogEdit)
        .filter(WorkLogEdit.work_log_id == work_log_id)
        .order_by(WorkLogEdit.seq)
        .all()
    )


def serialize_edit_record(record: WorkLogEdit) -> dict:
    return {
        "field": record.field,
        "old_value": record.old_value,
        "new_value": record.new_value,
        "editor_name": record.editor_name,
        "timestamp": record.timestamp.isoformat() if record.timestamp else None,
    }
