"""
Work log error taxonomy.

Services raise these; main.py maps them onto HTTP responses. `message` is
safe to show to the caller and never carries schema or SQL details.
"""
from contextlib import contextmanager
from typing import Optional

import structlog
from sqlalchemy.exc import InterfaceError, OperationalError, ProgrammingError
from sqlalchemy.orm import Session


logger = structlog.get_logger(__name__)


class WorkLogError(Exception):
    status_code = 500
    default_message = "Work log operation failed."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationFailed(WorkLogError):
    status_code = 400
    default_message = "Invalid work log data."


class NoProjectAssigned(WorkLogError):
    status_code = 400
    default_message = "You are not assigned to a project. Contact your manager."


class NotFound(WorkLogError):
    # Same message whether the entry is missing or belongs to another company
    status_code = 404
    default_message = "Job not found."


class Conflict(WorkLogError):
    status_code = 409
    default_message = "The work log was changed by someone else. Please retry."


class InvalidTransition(Conflict):
    default_message = "This action is not allowed in the job's current state."


class WorkerConfirmationPending(InvalidTransition):
    default_message = "The worker has not yet confirmed the edited values."


class StorageUnavailable(WorkLogError):
    status_code = 503
    default_message = "Work logs are temporarily unavailable. Please try again."


@contextmanager
def storage_guard(db: Session, operation: str, company_id: Optional[int] = None, work_log_id: Optional[int] = None):
    """
    Translate database driver failures into StorageUnavailable.

    The transaction is rolled back and the failure logged with its context;
    the caller only ever sees the generic message.
    """
    try:
        yield
    except (OperationalError, ProgrammingError, InterfaceError) as e:
        db.rollback()
        logger.error(
            "work_log_storage_error",
            operation=operation,
            company_id=company_id,
            work_log_id=work_log_id,
            error=str(e),
        )
        raise StorageUnavailable()
