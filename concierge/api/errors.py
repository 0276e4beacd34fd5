"""
Maps workflow errors to HTTP responses.

Routes never catch ``WorkflowError``; this handler renders every rejection
as ``{"detail", "code", "retryable"}`` with a status chosen by error type.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from concierge.domain.errors import (
    ConcurrentModification,
    ExternalDependencyFailure,
    IllegalTransition,
    NotFound,
    PaymentDeclined,
    PreconditionFailed,
    ValidationFailed,
    WorkflowError,
)

logger = logging.getLogger(__name__)

# Most specific first: TerminalStateViolation is an IllegalTransition.
_STATUS_CODES: list[tuple[type[WorkflowError], int]] = [
    (ValidationFailed, 400),
    (NotFound, 404),
    (PaymentDeclined, 402),
    (ConcurrentModification, 409),
    (IllegalTransition, 409),
    (PreconditionFailed, 422),
    (ExternalDependencyFailure, 503),
]


def status_code_for(exc: WorkflowError) -> int:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.detail, "code": exc.code, "retryable": exc.retryable},
    )
