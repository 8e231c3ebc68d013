from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from userhub.api.schemas import Envelope, ErrorBody
from userhub.logging import get_correlation_id, get_logger
from userhub.service.errors import ServiceError
from userhub.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "BAD_USER_INPUT",
    401: "UNAUTHENTICATED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "BAD_USER_INPUT",
    409: "CONFLICT",
    422: "BAD_USER_INPUT",
    500: "INTERNAL_SERVER_ERROR",
}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "INTERNAL_SERVER_ERROR")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    correlation_id = get_correlation_id()
    if correlation_id:
        envelope.request_id = correlation_id
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def _validation_details(exc: RequestValidationError) -> list[dict]:
    # Only plain fields; pydantic ctx may carry exception objects
    return [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": str(error.get("msg", "")),
            "type": str(error.get("type", "")),
        }
        for error in exc.errors()
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Install envelope-rendering handlers for domain, storage and request errors."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="CONFLICT")

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(exc.status_code, exc.message, exc.detail or None, code=exc.error_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        details = _validation_details(exc)
        logger.warning(
            "request_validation_error",
            path=request.url.path,
            method=request.method,
            errors=len(details),
        )
        return _error_response(422, "invalid request", details, code="BAD_USER_INPUT")

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        # Envelope-shaped detail produced by routes._http_error()
        if isinstance(exc.detail, dict) and isinstance(exc.detail.get("error"), dict):
            error_obj = exc.detail["error"]
            message = error_obj.get("message", "http error")
            code = error_obj.get("code")
            details = error_obj.get("details")
        else:
            message = str(exc.detail) if exc.detail else "http error"
            code = None
            details = None
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "http_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_code=code,
            message=message,
        )
        return _error_response(exc.status_code, message, details, code=code)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )
        return _error_response(500, "internal server error", code="INTERNAL_SERVER_ERROR")
