"""Global exception handlers — map domain errors to HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
import structlog

from coderun.domain.entities import ErrorInfo
from coderun.domain.exceptions import (
    AuthenticationError,
    AuthorisationError,
    DomainError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

# Stable error code → HTTP status.
STATUS_BY_CODE: dict[str, int] = {
    "CODE_TOO_LARGE": 413,
    "UNSUPPORTED_LANGUAGE": 422,
    "MALFORMED_REQUEST": 422,
    "VALIDATION_ERROR": 422,
    "USER_RATE_LIMITED": 429,
    "ALL_PROVIDERS_EXHAUSTED": 503,
    "AUTHENTICATION_ERROR": 401,
    "AUTHORISATION_ERROR": 403,
    "NOT_FOUND": 404,
}


def error_response(error: ErrorInfo) -> ORJSONResponse:
    """Render an ``ErrorInfo`` as ``{code, message}`` with its HTTP status."""
    headers = {}
    if error.retry_after_s:
        headers["Retry-After"] = str(error.retry_after_s)
    return ORJSONResponse(
        status_code=STATUS_BY_CODE.get(error.code, 400),
        content={"code": error.code, "message": error.message},
        headers=headers or None,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all domain→HTTP exception mappings."""

    @app.exception_handler(RequestValidationError)
    async def handle_request_shape(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg', 'invalid')}" if location else "Malformed request"
        return error_response(ErrorInfo("MALFORMED_REQUEST", message))

    @app.exception_handler(ValidationError)
    async def handle_validation(request: Request, exc: ValidationError) -> ORJSONResponse:
        return error_response(ErrorInfo.from_exception(exc))

    @app.exception_handler(AuthenticationError)
    async def handle_authn(request: Request, exc: AuthenticationError) -> ORJSONResponse:
        return error_response(ErrorInfo.from_exception(exc))

    @app.exception_handler(AuthorisationError)
    async def handle_authz(request: Request, exc: AuthorisationError) -> ORJSONResponse:
        logger.warning("authorisation_denied", path=request.url.path, message=exc.message)
        return error_response(ErrorInfo.from_exception(exc))

    @app.exception_handler(DomainError)
    async def handle_domain(request: Request, exc: DomainError) -> ORJSONResponse:
        return error_response(ErrorInfo.from_exception(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> ORJSONResponse:
        logger.exception("unhandled_exception", error=str(exc))
        return ORJSONResponse(
            status_code=500,
            content={
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred",
            },
        )
