"""Error codes and exception hierarchy for the booking engine.

Every failure that crosses a component boundary is a BookingError subclass
carrying a stable ErrorCode, a human-readable message, a recovery hint and
optional string details. The HTTP layer maps codes to status codes; nothing
below it knows about HTTP.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Stable error codes returned to API clients."""

    VALIDATION = "ERR_VALIDATION"
    NOT_FOUND = "ERR_NOT_FOUND"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"
    CONFLICT = "ERR_CONFLICT"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    PAYMENT_FAILED = "ERR_PAYMENT_FAILED"
    EXTERNAL_SERVICE = "ERR_EXTERNAL_SERVICE"
    INVALID_CODE = "ERR_INVALID_CODE"
    RATE_LIMITED = "ERR_RATE_LIMITED"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION: "The request is invalid",
    ErrorCode.NOT_FOUND: "The requested resource was not found",
    ErrorCode.UNAUTHORIZED: "Authentication required",
    ErrorCode.FORBIDDEN: "Not allowed to perform this action",
    ErrorCode.CONFLICT: "The request conflicts with the current state",
    ErrorCode.INVALID_TRANSITION: "The booking cannot move to the requested state",
    ErrorCode.PAYMENT_FAILED: "Payment processing failed",
    ErrorCode.EXTERNAL_SERVICE: "A downstream service is unavailable",
    ErrorCode.INVALID_CODE: "The verification code is incorrect",
    ErrorCode.RATE_LIMITED: "Too many attempts",
}

ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION: "Correct the request and try again",
    ErrorCode.NOT_FOUND: "Verify the identifier",
    ErrorCode.UNAUTHORIZED: "Sign in and try again",
    ErrorCode.FORBIDDEN: "Use an account that owns this resource",
    ErrorCode.CONFLICT: "Refresh and retry, or choose different dates",
    ErrorCode.INVALID_TRANSITION: "Fetch the booking to see its current status",
    ErrorCode.PAYMENT_FAILED: "Try a different payment method",
    ErrorCode.EXTERNAL_SERVICE: "Retry later; the booking status will be reconciled",
    ErrorCode.INVALID_CODE: "Re-enter the code",
    ErrorCode.RATE_LIMITED: "Wait before trying again",
}


class ErrorResponse(BaseModel):
    """Standard error body returned by the API."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, str]] = None


class BookingError(Exception):
    """Base exception for all booking engine failures."""

    code: ErrorCode = ErrorCode.VALIDATION

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[dict[str, str]] = None,
        *,
        code: Optional[ErrorCode] = None,
    ):
        if code is not None:
            self.code = code
        self.message = message or ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    def to_response(self) -> ErrorResponse:
        """Convert this exception to the API error body."""
        return ErrorResponse(
            error_code=self.code,
            message=self.message,
            recovery=self.recovery,
            details=self.details,
        )


class ValidationError(BookingError):
    """Malformed or semantically invalid input."""

    code = ErrorCode.VALIDATION


class NotFoundError(BookingError):
    code = ErrorCode.NOT_FOUND


class UnauthorizedError(BookingError):
    code = ErrorCode.UNAUTHORIZED


class ForbiddenError(BookingError):
    code = ErrorCode.FORBIDDEN


class ConflictError(BookingError):
    """Lost a race: overlapping dates, concurrent write, or in-flight retry."""

    code = ErrorCode.CONFLICT


class InvalidTransitionError(BookingError):
    """The (status, event) pair is not allowed or a guard rejected it."""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(
        self,
        status: str,
        event: str,
        reason: Optional[str] = None,
    ):
        self.status = status
        self.event = event
        details = {"status": status, "event": event}
        if reason:
            details["reason"] = reason
        message = f"Cannot apply {event} to a booking in status {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, details)


class PaymentFailedError(BookingError):
    """The processor definitively refused the payment."""

    code = ErrorCode.PAYMENT_FAILED


class ExternalServiceError(BookingError):
    """A downstream dependency failed or timed out; the outcome is unknown."""

    code = ErrorCode.EXTERNAL_SERVICE


class InvalidCodeError(BookingError):
    """Admin verification code mismatch."""

    code = ErrorCode.INVALID_CODE

    def __init__(self, attempts_remaining: int):
        self.attempts_remaining = attempts_remaining
        super().__init__(
            f"Invalid code. {attempts_remaining} attempts remaining.",
            {"attempts_remaining": str(attempts_remaining)},
        )


class RateLimitedError(BookingError):
    code = ErrorCode.RATE_LIMITED

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = max(retry_after_seconds, 1)
        minutes = -(-self.retry_after_seconds // 60)
        super().__init__(
            f"Too many attempts. Try again in {minutes} minutes.",
            {"retry_after_seconds": str(self.retry_after_seconds)},
        )


# Stripe error code to user-facing message mapping
STRIPE_ERROR_MESSAGES: dict[str, str] = {
    "card_declined": "Your card was declined. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "incorrect_cvc": "The security code (CVC) is incorrect. Please check and try again.",
    "incorrect_number": "The card number is incorrect. Please check and try again.",
    "authentication_required": "Your bank requires additional authentication.",
    "amount_too_small": "The amount is below the minimum charge for this currency.",
    "amount_too_large": "The amount exceeds the maximum charge for this currency.",
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "generic_decline": "Your card was declined. Please try a different card.",
}

# Stripe error codes that indicate a transient failure
STRIPE_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
}


def get_user_friendly_stripe_message(
    stripe_error_code: Optional[str],
    default_message: str = "Payment could not be processed. Please try again.",
) -> str:
    """Get a user-facing message for a Stripe error code.

    Args:
        stripe_error_code: The Stripe error code (e.g., 'card_declined').
        default_message: Message to use if the code is unknown.

    Returns:
        User-facing error message.
    """
    if stripe_error_code and stripe_error_code in STRIPE_ERROR_MESSAGES:
        return STRIPE_ERROR_MESSAGES[stripe_error_code]
    return default_message


def is_stripe_error_retryable(stripe_error_code: Optional[str]) -> bool:
    return stripe_error_code in STRIPE_RETRYABLE_ERRORS if stripe_error_code else False
