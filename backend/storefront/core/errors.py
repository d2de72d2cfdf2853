"""
Application errors.

Every error raised from a route is an ``ApiError``, a FastAPI ``HTTPException``
that also carries a machine-readable ``code``. ``register_exception_handlers``
renders these, framework errors and unexpected failures into the common
error envelope.
"""
import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.api.envelopes import ErrorResponse
from storefront.core.config import settings

logger = logging.getLogger(__name__)

STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
    422: "UNPROCESSABLE_ENTITY",
    429: "RATE_LIMIT_EXCEEDED",
    500: "INTERNAL_SERVER_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


class ApiError(HTTPException):
    status_code_default = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(
            status_code=self.status_code_default, detail=message, headers=headers
        )
        self.details = details


class ValidationError(ApiError):
    status_code_default = 400
    code = "VALIDATION_ERROR"

    def __init__(
        self, message: str = "Validation failed", *, field: str | None = None, details: Any = None
    ) -> None:
        if details is None and field is not None:
            details = [{"field": field, "message": message}]
        super().__init__(message, details=details)


class UnauthorizedError(ApiError):
    status_code_default = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenError(ApiError):
    status_code_default = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(message)


class NotFoundError(ApiError):
    status_code_default = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")


class ConflictError(ApiError):
    status_code_default = 409
    code = "CONFLICT"

    def __init__(self, message: str = "Resource conflict", *, field: str | None = None) -> None:
        details = [{"field": field, "message": message}] if field else None
        super().__init__(message, details=details)


class UnprocessableEntityError(ApiError):
    status_code_default = 422
    code = "UNPROCESSABLE_ENTITY"

    def __init__(self, message: str = "Unable to process request") -> None:
        super().__init__(message)


class RateLimitError(ApiError):
    status_code_default = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "Too many requests", *, retry_after: int) -> None:
        super().__init__(message, headers={"Retry-After": str(retry_after)})
        self.retry_after = retry_after


class ServiceUnavailableError(ApiError):
    status_code_default = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str = "Service unavailable") -> None:
        super().__init__(message)


class InternalServerError(ApiError):
    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)


def error_response(
    message: str,
    status_code: int,
    code: str | None = None,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=message,
        code=code or STATUS_CODES.get(status_code, "ERROR"),
        details=details,
        status_code=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body),
        headers=headers,
    )


def _validation_details(exc: RequestValidationError) -> list[dict[str, str]]:
    details = []
    for err in exc.errors():
        # Drop the "body"/"query"/"path" location prefix
        loc = [str(part) for part in err.get("loc", ())[1:]]
        message = err.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"field": ".".join(loc), "message": message})
    return details


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        str(exc.detail), exc.status_code, exc.code, exc.details, exc.headers
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        str(exc.detail), exc.status_code, headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return error_response(
        "Validation failed", 400, "VALIDATION_ERROR", _validation_details(exc)
    )


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return error_response("A record with these values already exists", 409, "CONFLICT")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    message = str(exc) if settings.ENVIRONMENT == "local" else "Internal server error"
    return error_response(message, 500, "INTERNAL_SERVER_ERROR")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(IntegrityError, integrity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)
