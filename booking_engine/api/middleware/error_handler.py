"""
Error handlers.

Every error leaves the API in one shape:
    {"error": message, "code": machine code, "correlation_id": ..., "details": {...}}
"""
import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from booking_engine.lib.errors import AppException
from booking_engine.lib.logging import get_correlation_id, get_logger

logger = get_logger(__name__)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or get_correlation_id() or "unknown"


def _error_body(message, code: str, correlation_id: str, details=None) -> dict:
    return {
        "error": message,
        "code": code,
        "correlation_id": correlation_id,
        "details": details or {},
    }


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handler for application exceptions.

    Conflicts and validation failures are logged at WARNING, transient
    store failures at ERROR.
    """
    correlation_id = _correlation_id(request)

    log_level = logging.WARNING if exc.status_code < 500 else logging.ERROR
    logger.log(
        log_level,
        f"Application error: {exc.message}",
        extra={
            "extra_fields": {
                "code": exc.code,
                "status_code": exc.status_code,
                "path": request.url.path,
                "method": request.method,
                "details": exc.details,
            }
        },
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, exc.code, correlation_id, exc.details),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handler for Pydantic validation errors.
    """
    correlation_id = _correlation_id(request)

    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]

    logger.warning(
        "Validation error",
        extra={"extra_fields": {"path": request.url.path, "method": request.method, "errors": errors}},
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("Validation error", "validation_error", correlation_id, {"errors": errors}),
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """
    Handler for Starlette HTTP exceptions (unknown routes, wrong methods).
    """
    correlation_id = _correlation_id(request)

    logger.warning(
        f"HTTP exception: {exc.detail}",
        extra={"extra_fields": {"status_code": exc.status_code, "path": request.url.path}},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.detail, "http_error", correlation_id),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handler for unhandled exceptions.

    Logs full stack trace and returns generic error message.
    """
    correlation_id = _correlation_id(request)

    logger.error(
        f"Unhandled exception: {exc}",
        extra={"extra_fields": {"path": request.url.path, "method": request.method}},
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error", "internal_error", correlation_id),
    )
