"""Booking service: the request-facing booking flows.

Orchestrates the components for each guest/host action:

- create: validate, price, then reserve the dates and insert the booking in
  one transaction, under the idempotency guard
- start payment: payment_submitted, then authorize with the processor
- cancel: cancel_requested, then refund per the cancellation policy
- payment status: map processor outcomes onto state machine events
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from booking_core.config import get_settings
from booking_core.models import (
    ActorRole,
    Booking,
    BookingEvent,
    BookingRequest,
    BookingStatus,
    ExternalServiceError,
    ForbiddenError,
    NotFoundError,
    PaymentFailedError,
    PaymentSession,
    PaymentStatus,
    ProcessorStatus,
    ValidationError,
)
from booking_core.utils.ids import generate_confirmation_code, generate_id
from booking_core.utils.timestamps import utc_now

from .idempotency import derive_key
from .refund_policy_service import RefundPolicyService
from .state_machine import TransitionResult

if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .calendar_index import CalendarIndex
    from .idempotency import IdempotencyGuard
    from .listings import ListingService
    from .payment_coordinator import PaymentCoordinator
    from .pricing import PricingService
    from .state_machine import BookingStateMachine

logger = logging.getLogger(__name__)

CREATE_SCOPE = "create_booking"


class CancellationResult(TransitionResult):
    """State machine result plus the refund decision."""

    refund: dict[str, Any] | None = None
    refund_requested: bool = False


class BookingService:
    """Service for booking creation, payment and cancellation."""

    def __init__(
        self,
        repository: "BookingRepository",
        calendar: "CalendarIndex",
        state_machine: "BookingStateMachine",
        payments: "PaymentCoordinator",
        guard: "IdempotencyGuard",
        listings: "ListingService",
        pricing: "PricingService",
        refund_policy: RefundPolicyService | None = None,
        hold_duration: dt.timedelta | None = None,
    ) -> None:
        self.repository = repository
        self.calendar = calendar
        self.state_machine = state_machine
        self.payments = payments
        self.guard = guard
        self.listings = listings
        self.pricing = pricing
        self.refund_policy = refund_policy or RefundPolicyService()
        self.hold_duration = hold_duration or get_settings().hold_duration

    # =========================================================================
    # Queries
    # =========================================================================

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.repository.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", {"booking_id": booking_id})
        return booking

    def get_booking_for(self, booking_id: str, principal_id: str) -> Booking:
        """Get a booking visible to the principal (its guest or host).

        Raises:
            NotFoundError: Unknown booking
            ForbiddenError: Principal is neither guest nor host
        """
        booking = self.get_booking(booking_id)
        if not booking.is_party(principal_id):
            raise ForbiddenError(
                "Not allowed to access this booking", {"booking_id": booking_id}
            )
        return booking

    def list_guest_bookings(self, guest_id: str) -> list[Booking]:
        return self.repository.list_for_guest(guest_id)

    def list_host_bookings(self, host_id: str) -> list[Booking]:
        return self.repository.list_for_host(host_id)

    # =========================================================================
    # Create
    # =========================================================================

    def create_booking(
        self,
        request: BookingRequest,
        guest_id: str,
        idempotency_token: str,
        now: dt.datetime | None = None,
    ) -> Booking:
        """Create a booking in pending_payment with its dates held.

        Args:
            request: Validated booking request
            guest_id: Authenticated guest
            idempotency_token: Caller-supplied token; a retry returns the same booking
            now: Current time (defaults to UTC now)

        Returns:
            The booking (current state on replay)

        Raises:
            ValidationError: Past dates, too many guests, minimum stay, currency
            NotFoundError: Listing missing or not bookable
            ConflictError: Dates overlap a live block, or the same request is in flight
        """
        now = now or utc_now()
        key = derive_key(CREATE_SCOPE, guest_id, idempotency_token)

        created = self.guard.with_idempotency_key(
            key,
            lambda: self._create(request, guest_id, now),
            Booking,
            scope=CREATE_SCOPE,
            fingerprint=request.fingerprint(),
            now=now,
        )
        # A replay reports where the booking stands now, not the snapshot
        return self.repository.get(created.booking_id) or created

    def _create(self, request: BookingRequest, guest_id: str, now: dt.datetime) -> Booking:
        if request.check_in < now.date():
            raise ValidationError(
                "check_in cannot be in the past", {"check_in": request.check_in.isoformat()}
            )

        listing = self.listings.require_bookable(request.listing_id)
        if listing.host_id == guest_id:
            raise ValidationError("Hosts cannot book their own listing")
        if request.guest_count > listing.max_guests:
            raise ValidationError(
                f"Number of guests exceeds maximum capacity ({listing.max_guests})",
                {"requested": str(request.guest_count), "maximum": str(listing.max_guests)},
            )

        price = self.pricing.quote(listing, request.check_in, request.check_out)
        booking_id = generate_id("BK")
        # The booking row references its block and is written in the same
        # transaction, so the block id is generated up front
        block_id = generate_id("BLK")

        booking = Booking(
            booking_id=booking_id,
            confirmation_code=generate_confirmation_code(),
            listing_id=listing.listing_id,
            guest_id=guest_id,
            host_id=listing.host_id,
            check_in=request.check_in,
            check_out=request.check_out,
            guest_count=request.guest_count,
            special_requests=request.special_requests,
            price=price,
            cancellation_policy=listing.cancellation_policy,
            status=BookingStatus.PENDING_PAYMENT,
            block_id=block_id,
            created_at=now,
            updated_at=now,
            expires_at=now + self.hold_duration,
        )

        self.calendar.reserve(
            listing.listing_id,
            request.check_in,
            request.check_out,
            booking_id,
            block_id=block_id,
            extra_operations=[self.repository.create_operation(booking)],
            now=now,
        )

        logger.info(
            "Created booking %s on listing %s for %s..%s, total %d %s, hold until %s",
            booking.booking_id,
            booking.listing_id,
            booking.check_in,
            booking.check_out,
            price.total,
            price.currency,
            booking.expires_at,
        )
        return booking

    # =========================================================================
    # Payment
    # =========================================================================

    def start_payment(
        self,
        booking_id: str,
        guest_id: str,
        idempotency_token: str,
        customer_ref: str | None = None,
        now: dt.datetime | None = None,
    ) -> PaymentSession:
        """Move a booking to payment_processing and authorize the charge.

        A processor timeout, outage or rejected credential leaves the booking
        in payment_processing with ``outcome_pending`` set; webhooks or the
        reconciler settle it. Only a card decline applies payment_failed.

        Raises:
            ForbiddenError: Caller is not the booking's guest
            InvalidTransitionError: Booking not awaiting payment or hold expired
            PaymentFailedError: Processor declined the payment
        """
        now = now or utc_now()
        booking = self.get_booking(booking_id)
        if booking.guest_id != guest_id:
            raise ForbiddenError("Only the guest can pay for a booking", {"booking_id": booking_id})

        result = self.state_machine.apply(
            booking_id, BookingEvent.PAYMENT_SUBMITTED, actor=ActorRole.GUEST, now=now
        )
        booking = result.booking

        try:
            intent = self.payments.create_authorization(
                booking, customer_ref, idempotency_token, now
            )
        except ExternalServiceError:
            logger.warning(
                "Payment outcome unknown for booking %s; leaving it in payment_processing",
                booking_id,
            )
            return PaymentSession(
                booking_id=booking_id,
                booking_status=booking.status,
                outcome_pending=True,
                message="Payment is being processed; the booking status will update shortly",
            )
        except PaymentFailedError:
            self.state_machine.apply(booking_id, BookingEvent.PAYMENT_FAILED, now=now)
            raise

        self.state_machine.record_payment_intent(booking_id, intent.intent_id, now)

        if intent.status in (ProcessorStatus.SUCCEEDED, ProcessorStatus.FAILED):
            booking = self.apply_payment_status(booking_id, intent.status, now=now).booking

        return PaymentSession(
            booking_id=booking_id,
            booking_status=booking.status,
            intent=intent,
        )

    def apply_payment_status(
        self,
        booking_id: str,
        status: ProcessorStatus,
        now: dt.datetime | None = None,
    ) -> TransitionResult:
        """Translate a processor outcome into a state machine event.

        pending and requires_action change nothing.
        """
        now = now or utc_now()
        booking = self.get_booking(booking_id)

        if status == ProcessorStatus.SUCCEEDED:
            if booking.status == BookingStatus.PENDING_PAYMENT:
                # Success for an intent retried after a decline
                self.state_machine.apply(
                    booking_id, BookingEvent.PAYMENT_SUBMITTED, now=now, enforce_hold=False
                )
            return self.state_machine.apply(booking_id, BookingEvent.PAYMENT_SUCCEEDED, now=now)

        if status in (ProcessorStatus.FAILED, ProcessorStatus.CANCELED):
            return self.state_machine.apply(booking_id, BookingEvent.PAYMENT_FAILED, now=now)

        return TransitionResult(
            booking=booking,
            event=BookingEvent.PAYMENT_SUBMITTED,
            previous_status=booking.status,
            changed=False,
        )

    # =========================================================================
    # Cancel
    # =========================================================================

    def cancel_booking(
        self,
        booking_id: str,
        principal_id: str,
        reason: str | None = None,
        *,
        as_admin: bool = False,
        now: dt.datetime | None = None,
    ) -> CancellationResult:
        """Cancel a booking and refund per its cancellation policy.

        Args:
            booking_id: Booking to cancel
            principal_id: Authenticated caller (guest or host of the booking)
            reason: Free-text reason
            as_admin: Cancel as an administrator (any booking, full refund)
            now: Current time (defaults to UTC now)

        Raises:
            NotFoundError: Unknown booking
            ForbiddenError: Caller is neither guest nor host
            InvalidTransitionError: Already terminal or past the cancellation window
        """
        now = now or utc_now()
        booking = self.get_booking(booking_id)

        if as_admin:
            actor = ActorRole.ADMIN
        elif principal_id == booking.guest_id:
            actor = ActorRole.GUEST
        elif principal_id == booking.host_id:
            actor = ActorRole.HOST
        else:
            raise ForbiddenError("Not allowed to cancel this booking", {"booking_id": booking_id})

        result = self.state_machine.apply(
            booking_id, BookingEvent.CANCEL_REQUESTED, actor=actor, reason=reason, now=now
        )
        cancellation = CancellationResult(
            booking=result.booking,
            event=result.event,
            previous_status=result.previous_status,
            changed=result.changed,
        )
        cancelled = result.booking

        if not result.changed or cancelled.payment_status != PaymentStatus.SUCCEEDED:
            return cancellation

        refund = self.refund_policy.calculate_refund(booking, actor, now)
        cancellation.refund = dict(refund)
        if refund["refund_amount"] > 0:
            outcome = self.payments.request_refund(
                cancelled, refund["refund_amount"], reason or f"cancelled_by_{actor.value}"
            )
            cancellation.refund_requested = outcome is not None
            if outcome is not None:
                updated = self.state_machine.record_refund(
                    booking_id, refund["refund_amount"], now
                )
                if updated is not None:
                    cancellation.booking = updated
        return cancellation

