"""
Maps domain errors to HTTP responses.

Body shape: {"detail": <message>, "code": <ErrorCode>, "retryable": bool}
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from waitroom.core.errors import (
    CapacityInvariantViolation,
    CartItemNotFoundError,
    EntryNotFoundError,
    InvalidTransitionError,
    NotOfferedError,
    OfferExpiredError,
    PoolNotFoundError,
    PoolShrinkConflictError,
    QuantityExceedsPoolError,
    TransientStoreError,
    WaitroomError,
)
from waitroom.core.logging import get_logger

logger = get_logger(__name__)

RETRY_AFTER_SECONDS = 1

STATUS_BY_ERROR = {
    PoolNotFoundError: status.HTTP_404_NOT_FOUND,
    EntryNotFoundError: status.HTTP_404_NOT_FOUND,
    CartItemNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    QuantityExceedsPoolError: status.HTTP_409_CONFLICT,
    PoolShrinkConflictError: status.HTTP_409_CONFLICT,
    NotOfferedError: status.HTTP_409_CONFLICT,
    OfferExpiredError: status.HTTP_410_GONE,
    TransientStoreError: status.HTTP_503_SERVICE_UNAVAILABLE,
    CapacityInvariantViolation: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: WaitroomError) -> int:
    for cls in type(error).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return status.HTTP_400_BAD_REQUEST


async def waitroom_error_handler(request: Request, exc: WaitroomError) -> JSONResponse:
    status_code = status_for(exc)
    headers = {}
    if exc.retryable:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)

    if status_code >= 500:
        logger.error("request_domain_error", code=exc.code.value, error=exc.message, status_code=status_code)
    else:
        logger.info("request_rejected", code=exc.code.value, error=exc.message, status_code=status_code)

    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code.value, "retryable": exc.retryable},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WaitroomError, waitroom_error_handler)
