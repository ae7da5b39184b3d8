"""FastAPI exception handlers for converting BookingError to HTTP responses.

Every error leaves the API in the same JSON shape (ErrorResponse):
``success``, ``error_code``, ``message``, ``recovery`` and ``details``.

The ErrorCode-to-HTTP status mapping:
- 400 Bad Request: Validation failures, including malformed bodies
- 401 Unauthorized: Missing identity, bad admin session, wrong admin code
- 402 Payment Required: Processor declined the payment
- 403 Forbidden: Caller does not own the resource
- 404 Not Found: Unknown booking, listing or block
- 409 Conflict: Date conflicts, concurrent writes, illegal transitions
- 429 Too Many Requests: Admin lockout (with Retry-After)
- 503 Service Unavailable: Processor or secret store unreachable

Usage:
    from booking_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_402_PAYMENT_REQUIRED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_429_TOO_MANY_REQUESTS,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from booking_core.models.errors import BookingError, ErrorCode, RateLimitedError, ValidationError

logger = logging.getLogger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION: HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: HTTP_401_UNAUTHORIZED,
    ErrorCode.INVALID_CODE: HTTP_401_UNAUTHORIZED,
    ErrorCode.PAYMENT_FAILED: HTTP_402_PAYMENT_REQUIRED,
    ErrorCode.FORBIDDEN: HTTP_403_FORBIDDEN,
    ErrorCode.NOT_FOUND: HTTP_404_NOT_FOUND,
    ErrorCode.CONFLICT: HTTP_409_CONFLICT,
    ErrorCode.INVALID_TRANSITION: HTTP_409_CONFLICT,
    ErrorCode.RATE_LIMITED: HTTP_429_TOO_MANY_REQUESTS,
    ErrorCode.EXTERNAL_SERVICE: HTTP_503_SERVICE_UNAVAILABLE,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode (400 if not mapped)."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    """Convert a BookingError to its status code and ErrorResponse body."""
    status_code = get_http_status_for_error(exc.code)
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitedError):
        headers["Retry-After"] = str(exc.retry_after_seconds)

    if status_code >= HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning(
            "%s on %s %s: %s", exc.code.value, request.method, request.url.path, exc.message
        )

    return JSONResponse(
        status_code=status_code,
        content=exc.to_response().model_dump(mode="json"),
        headers=headers or None,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed requests as 400 in the standard error shape."""
    details = {
        ".".join(str(part) for part in error.get("loc", [])): error.get("msg", "")
        for error in exc.errors()
    }
    body = ValidationError("Request validation failed", details)
    return JSONResponse(
        status_code=HTTP_400_BAD_REQUEST,
        content=body.to_response().model_dump(mode="json"),
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions with a generic error response.

    Internal details are logged, never returned to the client.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "error_code": "ERR_INTERNAL",
            "message": "An unexpected error occurred",
            "recovery": "Please try again later or contact support",
            "details": None,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(BookingError, booking_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_error_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, generic_exception_handler)
