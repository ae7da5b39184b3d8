"""Enumeration types for booking engine data models."""

from enum import Enum


class BookingStatus(str, Enum):
    """Lifecycle status of a booking."""

    PENDING_PAYMENT = "pending_payment"
    PAYMENT_PROCESSING = "payment_processing"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED_BY_GUEST = "cancelled_by_guest"
    CANCELLED_BY_HOST = "cancelled_by_host"
    CANCELLED_BY_SYSTEM = "cancelled_by_system"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_live(self) -> bool:
        """Live bookings occupy the calendar."""
        return self in LIVE_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED_BY_GUEST,
        BookingStatus.CANCELLED_BY_HOST,
        BookingStatus.CANCELLED_BY_SYSTEM,
    }
)

LIVE_STATUSES = frozenset(
    {
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.PAYMENT_PROCESSING,
        BookingStatus.CONFIRMED,
    }
)


class PaymentStatus(str, Enum):
    """Payment status recorded on a booking."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class ProcessorStatus(str, Enum):
    """Normalized payment processor status for a booking's intent."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"
    CANCELED = "canceled"
    PENDING = "pending"


class BookingEvent(str, Enum):
    """Events that drive the booking state machine."""

    PAYMENT_SUBMITTED = "payment_submitted"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    HOLD_EXPIRED = "hold_expired"
    PROCESSING_TIMED_OUT = "processing_timed_out"
    STAY_COMPLETED = "stay_completed"
    CANCEL_REQUESTED = "cancel_requested"


class ActorRole(str, Enum):
    """Who initiated a transition."""

    GUEST = "guest"
    HOST = "host"
    SYSTEM = "system"
    ADMIN = "admin"


class BlockType(str, Enum):
    """Kind of calendar block."""

    BOOKING = "booking"
    MANUAL = "manual"


class BlockState(str, Enum):
    """Whether a block is provisional or firm."""

    HOLD = "hold"
    CONFIRMED = "confirmed"


class CancellationPolicy(str, Enum):
    """Listing cancellation policy used for refunds."""

    FLEXIBLE = "flexible"
    MODERATE = "moderate"
    STRICT = "strict"


class ListingStatus(str, Enum):
    """Listing status as owned by the listing catalogue."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING_REVIEW = "pending_review"
    SUSPENDED = "suspended"


class WebhookProcessingResult(str, Enum):
    """Outcome recorded for a processor webhook delivery."""

    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    LATE_PAYMENT_REFUNDED = "late_payment_refunded"
    ERROR = "error"
