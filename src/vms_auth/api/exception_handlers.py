"""
Exception handlers for the VMS auth API.

Every error leaves the service as ``{error, message, request_id, details?}``.
"""

import logging
import traceback
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from vms_auth.config import AppSettings, get_settings
from vms_auth.exceptions import JWKSFetchTimeoutError, VMSError

logger = logging.getLogger(__name__)

# Seconds a client should wait before retrying after a provider timeout
JWKS_RETRY_AFTER = 5


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid4())


def _settings(request: Request) -> AppSettings:
    state = getattr(request.app.state, "container", None)
    if state is not None and state.settings is not None:
        return state.settings
    return get_settings()


def create_error_response(
    request_id: str,
    error: str,
    message: str,
    status_code: int,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Create a standardized error response."""
    content = {
        "error": error,
        "message": message,
        "request_id": request_id,
    }
    if details:
        content["details"] = details

    return JSONResponse(status_code=status_code, content=content, headers=headers)


async def vms_exception_handler(request: Request, exc: VMSError) -> JSONResponse:
    request_id = _request_id(request)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Business error: {exc.code}",
        extra={
            "request_id": request_id,
            "error_code": exc.code,
            "error_message": exc.message,
            "path": request.url.path,
        },
    )

    headers = None
    if isinstance(exc, JWKSFetchTimeoutError):
        headers = {"Retry-After": str(JWKS_RETRY_AFTER)}
    elif exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    return create_error_response(
        request_id=request_id,
        error=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details or None,
        headers=headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    request_id = _request_id(request)

    errors = []
    for error in exc.errors():
        errors.append(
            {
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
        )

    logger.info(
        f"Validation error on {request.url.path}",
        extra={"request_id": request_id, "errors": errors},
    )

    return create_error_response(
        request_id=request_id,
        error="VALIDATION_ERROR",
        message="Request validation failed",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"validation_errors": errors},
    )


_HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    429: "TOO_MANY_REQUESTS",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return create_error_response(
        request_id=_request_id(request),
        error=_HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail),
        status_code=exc.status_code,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)

    logger.error(
        f"Unhandled exception: {type(exc).__name__}",
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
        },
        exc_info=True,
    )

    details = None
    if _settings(request).debug:
        details = {
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
            "traceback": traceback.format_exc().split("\n"),
        }

    return create_error_response(
        request_id=request_id,
        error="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        details=details,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(VMSError, vms_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
