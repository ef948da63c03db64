"""
Maps engine errors to HTTP responses.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from crm_commissions.errors import CommissionError, RuleValidationError

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "NotFound": 404,
    "DuplicateCommission": 409,
    "InvalidState": 409,
    "AmountExceedsPending": 422,
    "InvalidCalculation": 422,
    "ValidationError": 422,
    "InvalidInput": 422,
    "ConcurrentModification": 409,
}


async def commission_error_handler(request: Request, exc: CommissionError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, 400)
    if exc.retryable:
        logger.warning(f"{request.method} {request.url.path}: retryable {exc.code}: {exc.message}")

    content = {
        "error": exc.code,
        "detail": exc.message,
        "retryable": exc.retryable,
    }
    if isinstance(exc, RuleValidationError):
        content["errors"] = exc.errors
        content["warnings"] = exc.warnings

    return JSONResponse(status_code=status_code, content=content)
