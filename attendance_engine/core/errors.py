"""
Central error handling: every error is rendered as
{"error": true, "status_code", "detail", "path"}
"""
import logging
import traceback

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from attendance_engine.core.config import settings
from attendance_engine.core.exceptions import (
    EngineError,
    InvalidJobTransitionError,
    InvalidSyncConfigError,
    NotFoundError,
    PayrollEligibilityError,
    PayrollTransactionError,
    PeriodStateError,
)

logger = logging.getLogger(__name__)


def _error_response(request: Request, status_code: int, detail, **extra) -> JSONResponse:
    content = {
        "error": True,
        "status_code": status_code,
        "detail": detail,
        "path": str(request.url.path),
    }
    content.update(extra)
    return JSONResponse(status_code=status_code, content=content)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = _error_response(request, exc.status_code, exc.detail)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request validation errors; details are hidden in production"""
    if settings.APP_ENV == "prod":
        return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error: Invalid request data")

    errors = []
    for e in exc.errors():
        err = dict(e)
        if "ctx" in err and isinstance(err["ctx"], dict):
            err["ctx"] = {
                k: (v if isinstance(v, (str, int, float, bool, type(None))) else str(v))
                for k, v in err["ctx"].items()
            }
        errors.append(err)
    return _error_response(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", errors=errors)


def _status_for(exc: EngineError) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, InvalidSyncConfigError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, (InvalidJobTransitionError, PeriodStateError, PayrollEligibilityError)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, PayrollTransactionError):
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


async def engine_exception_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Domain errors raised by the services"""
    status_code = _status_for(exc)
    extra = {}
    code = getattr(exc, "code", None)
    if code:
        extra["code"] = code
    if isinstance(exc, InvalidSyncConfigError):
        extra["errors"] = exc.errors
    if status_code >= 500:
        logger.error("Engine error on %s: %s", request.url.path, exc)
        if settings.APP_ENV == "prod":
            return _error_response(request, status_code, "Internal server error", **extra)
    return _error_response(request, status_code, str(exc), **extra)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Unexpected exceptions; internals are hidden in production"""
    logger.error("Unhandled exception: %s", exc, exc_info=True)
    if settings.APP_ENV == "prod":
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        str(exc),
        traceback=traceback.format_exc() if settings.APP_ENV == "local" else None,
    )
