"""Pydantic models for booking engine data entities."""

from .admin import AdminSession, AttemptCounter
from .booking import Booking, BookingRequest, BookingSummary, Listing, PriceBreakdown
from .calendar import AvailabilityResult, CalendarBlock, DateConflict
from .enums import (
    ActorRole,
    BlockState,
    BlockType,
    BookingEvent,
    BookingStatus,
    CancellationPolicy,
    ListingStatus,
    PaymentStatus,
    ProcessorStatus,
    WebhookProcessingResult,
)
from .errors import (
    BookingError,
    ConflictError,
    ErrorCode,
    ErrorResponse,
    ExternalServiceError,
    ForbiddenError,
    InvalidCodeError,
    InvalidTransitionError,
    NotFoundError,
    PaymentFailedError,
    RateLimitedError,
    UnauthorizedError,
    ValidationError,
)
from .payment import FeeSplit, PaymentIntentRecord, PaymentIntentRef, PaymentSession
from .reconciliation import PassReport, ReconciliationReport
from .webhook import WebhookEventRecord, WebhookOutcome

__all__ = [
    # Admin
    "AdminSession",
    "AttemptCounter",
    # Booking
    "Booking",
    "BookingRequest",
    "BookingSummary",
    "Listing",
    "PriceBreakdown",
    # Calendar
    "AvailabilityResult",
    "CalendarBlock",
    "DateConflict",
    # Enums
    "ActorRole",
    "BlockState",
    "BlockType",
    "BookingEvent",
    "BookingStatus",
    "CancellationPolicy",
    "ListingStatus",
    "PaymentStatus",
    "ProcessorStatus",
    "WebhookProcessingResult",
    # Errors
    "BookingError",
    "ConflictError",
    "ErrorCode",
    "ErrorResponse",
    "ExternalServiceError",
    "ForbiddenError",
    "InvalidCodeError",
    "InvalidTransitionError",
    "NotFoundError",
    "PaymentFailedError",
    "RateLimitedError",
    "UnauthorizedError",
    "ValidationError",
    # Payment
    "FeeSplit",
    "PaymentIntentRecord",
    "PaymentIntentRef",
    "PaymentSession",
    # Reconciliation
    "PassReport",
    "ReconciliationReport",
    # Webhooks
    "WebhookEventRecord",
    "WebhookOutcome",
]
