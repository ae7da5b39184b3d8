"""Booking state machine.

The only code path that changes a booking's status. Each event is planned
against a fresh read of the booking, then committed with a write conditioned
on the version and status that were read. Calendar confirm/release items
share the transaction with the status change so the two never diverge.

Transitions:

    pending_payment    --payment_submitted-->    payment_processing
    pending_payment    --hold_expired-->         cancelled_by_system   (release)
    payment_processing --payment_succeeded-->    confirmed             (confirm)
    payment_processing --payment_failed-->       pending_payment       (retry allowed)
                                                 cancelled_by_system   (release)
    payment_processing --processing_timed_out--> cancelled_by_system   (release)
    confirmed          --stay_completed-->       completed
    any non-terminal   --cancel_requested-->     cancelled_by_<actor>  (release)

Re-delivering an event whose result is already in place is a no-op.
Anything else raises InvalidTransitionError without mutating state.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from booking_core.config import get_settings
from booking_core.models import (
    ActorRole,
    Booking,
    BookingEvent,
    BookingStatus,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PaymentStatus,
)
from booking_core.utils.logging import log_transition
from booking_core.utils.timestamps import start_of_day, utc_now

from . import events as domain_events

if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .calendar_index import CalendarIndex
    from .dynamodb import DynamoDBService
    from .events import EventPublisher

logger = logging.getLogger(__name__)

# Re-read and re-plan this many times after losing a write race
MAX_WRITE_ATTEMPTS = 3

CANCELLED_STATUS_BY_ACTOR: dict[ActorRole, BookingStatus] = {
    ActorRole.GUEST: BookingStatus.CANCELLED_BY_GUEST,
    ActorRole.HOST: BookingStatus.CANCELLED_BY_HOST,
    ActorRole.SYSTEM: BookingStatus.CANCELLED_BY_SYSTEM,
    ActorRole.ADMIN: BookingStatus.CANCELLED_BY_SYSTEM,
}

# Statuses in which an event counts as already applied
_ALREADY_APPLIED: dict[BookingEvent, frozenset[BookingStatus]] = {
    BookingEvent.PAYMENT_SUBMITTED: frozenset({BookingStatus.PAYMENT_PROCESSING}),
    BookingEvent.PAYMENT_SUCCEEDED: frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED}),
    BookingEvent.PAYMENT_FAILED: frozenset({BookingStatus.CANCELLED_BY_SYSTEM}),
    BookingEvent.HOLD_EXPIRED: frozenset({BookingStatus.CANCELLED_BY_SYSTEM}),
    BookingEvent.PROCESSING_TIMED_OUT: frozenset({BookingStatus.CANCELLED_BY_SYSTEM}),
    BookingEvent.STAY_COMPLETED: frozenset({BookingStatus.COMPLETED}),
}

CALENDAR_CONFIRM = "confirm"
CALENDAR_RELEASE = "release"


class TransitionResult(BaseModel):
    """Outcome of applying an event."""

    booking: Booking
    event: BookingEvent
    previous_status: BookingStatus
    changed: bool


class _Plan(BaseModel):
    booking: Booking
    calendar_action: str | None = None
    domain_event: str | None = None


class BookingStateMachine:
    """Apply lifecycle events to bookings with optimistic concurrency."""

    def __init__(
        self,
        db: "DynamoDBService",
        repository: "BookingRepository",
        calendar: "CalendarIndex",
        publisher: "EventPublisher | None" = None,
        payment_retry_limit: int | None = None,
        payment_retry_window: dt.timedelta | None = None,
        processing_timeout: dt.timedelta | None = None,
    ) -> None:
        """Initialize the state machine.

        Args:
            db: DynamoDB service (for multi-item transactions)
            repository: Booking persistence
            calendar: Calendar index whose blocks follow the booking status
            publisher: Domain event publisher (optional)
            payment_retry_limit: Failed payments tolerated before the booking
                is cancelled. Defaults to settings.
            payment_retry_window: Hold granted after a failed payment.
            processing_timeout: Age at which payment_processing counts as stuck.
        """
        settings = get_settings()
        self.db = db
        self.repository = repository
        self.calendar = calendar
        self.publisher = publisher
        self.payment_retry_limit = (
            payment_retry_limit if payment_retry_limit is not None else settings.payment_retry_limit
        )
        self.payment_retry_window = payment_retry_window or settings.payment_retry_window
        self.processing_timeout = processing_timeout or settings.processing_timeout

    def apply(
        self,
        booking_id: str,
        event: BookingEvent,
        *,
        actor: ActorRole = ActorRole.SYSTEM,
        reason: str | None = None,
        now: dt.datetime | None = None,
        enforce_hold: bool = True,
    ) -> TransitionResult:
        """Apply an event to a booking.

        Args:
            booking_id: Booking to transition
            event: Event to apply
            actor: Who triggered the event (used for cancellations)
            reason: Cancellation reason
            now: Current time (defaults to UTC now)
            enforce_hold: Reject payment_submitted on an expired hold. Disabled
                when the processor has already reported success.

        Returns:
            TransitionResult with the resulting booking

        Raises:
            NotFoundError: Unknown booking
            InvalidTransitionError: Event not allowed in the current status
            ConflictError: Lost the write race repeatedly
        """
        now = now or utc_now()

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            booking = self.repository.get(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found", {"booking_id": booking_id})

            plan = self._plan(booking, event, actor, reason, now, enforce_hold)
            if plan is None:
                log_transition(
                    logger,
                    booking_id,
                    event.value,
                    booking.status.value,
                    booking.status.value,
                    actor=actor.value,
                    changed=False,
                )
                return TransitionResult(
                    booking=booking,
                    event=event,
                    previous_status=booking.status,
                    changed=False,
                )

            if self._commit(booking, plan):
                log_transition(
                    logger,
                    booking_id,
                    event.value,
                    booking.status.value,
                    plan.booking.status.value,
                    actor=actor.value,
                )
                self._publish(plan)
                return TransitionResult(
                    booking=plan.booking,
                    event=event,
                    previous_status=booking.status,
                    changed=True,
                )

            logger.info(
                "Concurrent write on booking %s while applying %s (attempt %d)",
                booking_id,
                event.value,
                attempt,
            )

        raise ConflictError(
            "Booking was modified concurrently, please retry",
            {"booking_id": booking_id, "event": event.value},
        )

    def record_payment_intent(
        self,
        booking_id: str,
        intent_id: str,
        now: dt.datetime | None = None,
    ) -> Booking | None:
        """Attach a PaymentIntent id to a booking still awaiting payment."""
        return self.repository.update_fields(
            booking_id,
            {"payment_intent_id": intent_id},
            allowed_statuses={BookingStatus.PENDING_PAYMENT, BookingStatus.PAYMENT_PROCESSING},
            updated_at=now or utc_now(),
        )

    def record_refund(
        self,
        booking_id: str,
        amount: int,
        now: dt.datetime | None = None,
    ) -> Booking | None:
        """Mark a booking's payment as refunded."""
        return self.repository.update_fields(
            booking_id,
            {"payment_status": PaymentStatus.REFUNDED.value, "refund_amount": amount},
            updated_at=now or utc_now(),
        )

    # =========================================================================
    # Planning
    # =========================================================================

    def _plan(
        self,
        booking: Booking,
        event: BookingEvent,
        actor: ActorRole,
        reason: str | None,
        now: dt.datetime,
        enforce_hold: bool,
    ) -> _Plan | None:
        status = booking.status

        if event == BookingEvent.CANCEL_REQUESTED:
            return self._plan_cancel(booking, actor, reason, now)

        if status in _ALREADY_APPLIED[event]:
            return None
        if (
            event == BookingEvent.PAYMENT_FAILED
            and status == BookingStatus.PENDING_PAYMENT
            and booking.payment_failures > 0
        ):
            return None

        base: dict[str, Any] = {"version": booking.version + 1, "updated_at": now}

        if event == BookingEvent.PAYMENT_SUBMITTED and status == BookingStatus.PENDING_PAYMENT:
            if enforce_hold and booking.expires_at is not None and booking.expires_at <= now:
                raise InvalidTransitionError(status.value, event.value, "hold has expired")
            return _Plan(
                booking=booking.model_copy(
                    update={
                        **base,
                        "status": BookingStatus.PAYMENT_PROCESSING,
                        "processing_started_at": now,
                        "expires_at": None,
                    }
                )
            )

        if event == BookingEvent.PAYMENT_SUCCEEDED and status == BookingStatus.PAYMENT_PROCESSING:
            return _Plan(
                booking=booking.model_copy(
                    update={
                        **base,
                        "status": BookingStatus.CONFIRMED,
                        "payment_status": PaymentStatus.SUCCEEDED,
                        "confirmed_at": now,
                    }
                ),
                calendar_action=CALENDAR_CONFIRM,
                domain_event=domain_events.BOOKING_CONFIRMED,
            )

        if event == BookingEvent.PAYMENT_FAILED and status == BookingStatus.PAYMENT_PROCESSING:
            failures = booking.payment_failures + 1
            if failures <= self.payment_retry_limit:
                return _Plan(
                    booking=booking.model_copy(
                        update={
                            **base,
                            "status": BookingStatus.PENDING_PAYMENT,
                            "payment_status": PaymentStatus.FAILED,
                            "payment_failures": failures,
                            "processing_started_at": None,
                            "expires_at": now + self.payment_retry_window,
                        }
                    ),
                    domain_event=domain_events.BOOKING_PAYMENT_FAILED,
                )
            return _Plan(
                booking=self._cancelled(
                    booking,
                    base,
                    ActorRole.SYSTEM,
                    "Payment failed",
                    now,
                    payment_status=PaymentStatus.FAILED,
                    payment_failures=failures,
                ),
                calendar_action=CALENDAR_RELEASE,
                domain_event=domain_events.BOOKING_PAYMENT_FAILED,
            )

        if event == BookingEvent.HOLD_EXPIRED and status == BookingStatus.PENDING_PAYMENT:
            if booking.expires_at is None or booking.expires_at > now:
                raise InvalidTransitionError(status.value, event.value, "hold has not expired")
            return _Plan(
                booking=self._cancelled(booking, base, ActorRole.SYSTEM, "Payment timeout", now),
                calendar_action=CALENDAR_RELEASE,
                domain_event=domain_events.BOOKING_CANCELLED,
            )

        if (
            event == BookingEvent.PROCESSING_TIMED_OUT
            and status == BookingStatus.PAYMENT_PROCESSING
        ):
            started = booking.processing_started_at or booking.updated_at
            if started + self.processing_timeout > now:
                raise InvalidTransitionError(
                    status.value, event.value, "processing timeout not reached"
                )
            return _Plan(
                booking=self._cancelled(
                    booking, base, ActorRole.SYSTEM, "Payment processing timeout", now
                ),
                calendar_action=CALENDAR_RELEASE,
                domain_event=domain_events.BOOKING_CANCELLED,
            )

        if event == BookingEvent.STAY_COMPLETED and status == BookingStatus.CONFIRMED:
            if booking.check_out >= now.date():
                raise InvalidTransitionError(status.value, event.value, "stay has not ended")
            return _Plan(
                booking=booking.model_copy(
                    update={**base, "status": BookingStatus.COMPLETED, "completed_at": now}
                ),
                domain_event=domain_events.BOOKING_COMPLETED,
            )

        raise InvalidTransitionError(status.value, event.value)

    def _plan_cancel(
        self,
        booking: Booking,
        actor: ActorRole,
        reason: str | None,
        now: dt.datetime,
    ) -> _Plan | None:
        target = CANCELLED_STATUS_BY_ACTOR[actor]
        status = booking.status
        event = BookingEvent.CANCEL_REQUESTED.value

        if status == target:
            return None
        if status.is_terminal:
            raise InvalidTransitionError(status.value, event)
        if (
            status == BookingStatus.CONFIRMED
            and actor in (ActorRole.GUEST, ActorRole.HOST)
            and now >= start_of_day(booking.check_in)
        ):
            raise InvalidTransitionError(status.value, event, "cancellation window has closed")

        base: dict[str, Any] = {"version": booking.version + 1, "updated_at": now}
        return _Plan(
            booking=self._cancelled(booking, base, actor, reason, now, status=target),
            calendar_action=CALENDAR_RELEASE,
            domain_event=domain_events.BOOKING_CANCELLED,
        )

    @staticmethod
    def _cancelled(
        booking: Booking,
        base: dict[str, Any],
        actor: ActorRole,
        reason: str | None,
        now: dt.datetime,
        status: BookingStatus = BookingStatus.CANCELLED_BY_SYSTEM,
        **extra: Any,
    ) -> Booking:
        return booking.model_copy(
            update={
                **base,
                **extra,
                "status": status,
                "cancelled_at": now,
                "cancelled_by": actor,
                "cancellation_reason": reason,
                "expires_at": None,
            }
        )

    # =========================================================================
    # Commit
    # =========================================================================

    def _commit(self, current: Booking, plan: _Plan) -> bool:
        save = self.repository.save_operation(plan.booking, current.version, current.status)

        calendar_ops: list[dict[str, Any]] = []
        if plan.calendar_action and current.block_id:
            block = self.calendar.get_block(current.block_id)
            if block is None:
                if plan.calendar_action == CALENDAR_CONFIRM:
                    logger.error(
                        "Booking %s confirmed but its block %s is missing",
                        current.booking_id,
                        current.block_id,
                    )
            elif plan.calendar_action == CALENDAR_CONFIRM:
                calendar_ops = self.calendar.confirm_operations(block)
            else:
                calendar_ops = self.calendar.release_operations(block)

        if not calendar_ops:
            return self.repository.save(plan.booking, current.version, current.status)
        return self.db.transact_write([save, *calendar_ops])

    def _publish(self, plan: _Plan) -> None:
        if self.publisher is None or plan.domain_event is None:
            return
        booking = plan.booking
        self.publisher.publish_booking(
            plan.domain_event,
            booking,
            payment_status=booking.payment_status.value,
            cancellation_reason=booking.cancellation_reason,
        )
