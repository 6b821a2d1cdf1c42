from typing import NoReturn

from fastapi import HTTPException

from app.services.errors import (
    InvalidStateTransitionError,
    ProposalExpiredError,
    SchedulingConflictError,
    SchedulingError,
    SchedulingNotFoundError,
    SchedulingPermissionError,
)

_STATUS_BY_ERROR = (
    (SchedulingNotFoundError, 404),
    (SchedulingPermissionError, 403),
    (InvalidStateTransitionError, 422),
    (SchedulingConflictError, 409),
    (ProposalExpiredError, 410),
)


def raise_scheduling_http_error(exc: SchedulingError) -> NoReturn:
    status_code = 400
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            status_code = code
            break
    raise HTTPException(status_code=status_code, detail=str(exc), headers={"X-Error-Code": exc.code}) from exc
