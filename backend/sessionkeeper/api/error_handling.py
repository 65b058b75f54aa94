"""Response envelopes and the exception handlers that produce error ones.

Success: ``{"success": true, "data": ..., "meta": {"timestamp": ...}}``
Error:   ``{"success": false, "error": {code, message, statusCode, details,
timestamp}}``
"""

from datetime import datetime, timezone
from typing import Any, Optional

from core.errors import AppError, ErrorCode, RateLimitedError, ValidationError
from core.logging import logger
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

_STATUS_TO_CODE = {
    400: ErrorCode.VALIDATION_ERROR,
    401: ErrorCode.AUTH_REQUIRED,
    403: ErrorCode.AUTH_FORBIDDEN,
    404: ErrorCode.NOT_FOUND,
    408: ErrorCode.REQUEST_TIMEOUT,
    409: ErrorCode.CONFLICT,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_response(data: Any, status_code: int = 200) -> JSONResponse:
    body = {
        "success": True,
        "data": jsonable_encoder(data),
        "meta": {"timestamp": _timestamp()},
    }
    return JSONResponse(status_code=status_code, content=body)


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Optional[list] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body = {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "statusCode": status_code,
            "details": details or [],
            "timestamp": _timestamp(),
        },
    }
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def app_error_response(exc: AppError) -> JSONResponse:
    """Render an :class:`AppError` as the error envelope.

    Middleware runs outside the exception handlers, so it calls this
    directly instead of raising.
    """
    # Never expose internal messages for server faults
    message = (
        "Internal server error"
        if exc.status_code >= 500 and exc.status_code != 503
        else exc.message
    )
    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return error_response(exc.status_code, exc.code.value, message, exc.details, headers)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers mapping errors to the error envelope."""

    @app.exception_handler(AppError)
    async def handle_app_error(request: Request, exc: AppError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "{} {} -> {} {}: {}",
            request.method,
            request.url.path,
            exc.status_code,
            exc.code.value,
            exc.message,
        )
        return app_error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())[1:]),
                "message": err.get("msg", "invalid value"),
            }
            for err in exc.errors()
        ]
        error = ValidationError(details)
        logger.warning(
            "{} {} -> {} {} fields={}",
            request.method,
            request.url.path,
            error.status_code,
            error.code.value,
            [d["field"] for d in details],
        )
        return error_response(
            error.status_code, error.code.value, error.message, error.details
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        code = _STATUS_TO_CODE.get(exc.status_code, ErrorCode.SERVER_ERROR)
        if exc.status_code == 404:
            message = f"Route {request.method} {request.url.path} not found"
        else:
            message = str(exc.detail)
        return error_response(exc.status_code, code.value, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.opt(exception=exc).error(
            "Unhandled error on {} {}", request.method, request.url.path
        )
        return error_response(500, ErrorCode.SERVER_ERROR.value, "Internal server error")
