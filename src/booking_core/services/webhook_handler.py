"""Webhook handler for processing Stripe events.

Keeps business logic for processor events out of HTTP routing. Events are
deduplicated by event id with a conditional put on the event log, so a
redelivered event is acknowledged without being applied twice. Bookings are
resolved from the PaymentIntent id through the correlation table; event
metadata is never trusted for that.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from booking_core.models import (
    BookingStatus,
    InvalidTransitionError,
    PaymentStatus,
    ProcessorStatus,
    WebhookOutcome,
    WebhookProcessingResult,
)
from booking_core.utils.logging import log_webhook_event
from booking_core.utils.timestamps import to_iso, utc_now

if TYPE_CHECKING:
    from .booking import BookingService
    from .dynamodb import DynamoDBService
    from .payment_coordinator import PaymentCoordinator
    from .state_machine import BookingStateMachine

logger = logging.getLogger(__name__)

# PaymentIntent event type -> processor status it reports
INTENT_EVENT_STATUS: dict[str, ProcessorStatus] = {
    "payment_intent.succeeded": ProcessorStatus.SUCCEEDED,
    "payment_intent.payment_failed": ProcessorStatus.FAILED,
    "payment_intent.canceled": ProcessorStatus.CANCELED,
    "payment_intent.processing": ProcessorStatus.PENDING,
    "payment_intent.requires_action": ProcessorStatus.REQUIRES_ACTION,
}
CHARGE_REFUNDED = "charge.refunded"

HANDLED_EVENT_TYPES = frozenset({*INTENT_EVENT_STATUS, CHARGE_REFUNDED})

_CANCELLED_STATUSES = frozenset(
    {
        BookingStatus.CANCELLED_BY_GUEST,
        BookingStatus.CANCELLED_BY_HOST,
        BookingStatus.CANCELLED_BY_SYSTEM,
    }
)


class WebhookHandler:
    """Handler for processing Stripe webhook events.

    Usage:
        event = stripe_service.verify_webhook_signature(payload, signature)
        outcome = handler.handle(event, StripeService.compute_payload_hash(payload))
    """

    WEBHOOK_EVENTS_TABLE = "payment-webhook-events"

    def __init__(
        self,
        db: "DynamoDBService",
        bookings: "BookingService",
        payments: "PaymentCoordinator",
        state_machine: "BookingStateMachine",
    ) -> None:
        self._db = db
        self.bookings = bookings
        self.payments = payments
        self.state_machine = state_machine

    def handle(
        self,
        event: dict[str, Any],
        payload_hash: str,
        now: dt.datetime | None = None,
    ) -> WebhookOutcome:
        """Process a verified processor event exactly once.

        Args:
            event: Parsed, signature-verified event
            payload_hash: SHA-256 of the raw payload, for the audit log
            now: Current time (defaults to UTC now)

        Returns:
            WebhookOutcome describing what happened

        Raises:
            Exception: Anything unexpected. The event log entry is removed
                first so the processor's redelivery is processed again.
        """
        now = now or utc_now()
        event_id = event.get("id", "")
        event_type = event.get("type", "")

        if not self._claim(event_id, event_type, payload_hash, now):
            log_webhook_event(
                logger, event_type, event_id, result=WebhookProcessingResult.DUPLICATE.value
            )
            return WebhookOutcome(
                event_id=event_id,
                event_type=event_type,
                processing_result=WebhookProcessingResult.DUPLICATE,
                message="Event already processed",
            )

        try:
            obj = event.get("data", {}).get("object", {})
            outcome = self._dispatch(event_id, event_type, obj, now)
        except Exception as e:
            log_webhook_event(
                logger,
                event_type,
                event_id,
                result=WebhookProcessingResult.ERROR.value,
                error=str(e),
            )
            self._db.delete_item(self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id})
            raise

        self._finish(outcome, now)
        log_webhook_event(
            logger,
            event_type,
            event_id,
            booking_id=outcome.booking_id,
            result=outcome.processing_result.value,
            error=outcome.message
            if outcome.processing_result == WebhookProcessingResult.ERROR
            else None,
        )
        return outcome

    # =========================================================================
    # Event log
    # =========================================================================

    def _claim(self, event_id: str, event_type: str, payload_hash: str, now: dt.datetime) -> bool:
        """First writer of an event id wins."""
        return self._db.put_item(
            self.WEBHOOK_EVENTS_TABLE,
            {
                "event_id": event_id,
                "event_type": event_type,
                "payload_hash": payload_hash,
                "received_at": to_iso(now),
            },
            condition_expression="attribute_not_exists(event_id)",
        )

    def _finish(self, outcome: WebhookOutcome, now: dt.datetime) -> None:
        values: dict[str, Any] = {
            ":result": outcome.processing_result.value,
            ":now": to_iso(now),
        }
        assignments = ["processing_result = :result", "processed_at = :now"]
        if outcome.booking_id:
            values[":booking_id"] = outcome.booking_id
            assignments.append("booking_id = :booking_id")
        if outcome.intent_id:
            values[":intent_id"] = outcome.intent_id
            assignments.append("intent_id = :intent_id")
        if outcome.message:
            values[":message"] = outcome.message
            assignments.append("error_message = :message")

        self._db.update_item(
            self.WEBHOOK_EVENTS_TABLE,
            {"event_id": outcome.event_id},
            "SET " + ", ".join(assignments),
            expression_attribute_values=values,
        )

    def get_event(self, event_id: str) -> dict[str, Any] | None:
        return self._db.get_item(self.WEBHOOK_EVENTS_TABLE, {"event_id": event_id})

    # =========================================================================
    # Dispatch
    # =========================================================================

    def _dispatch(
        self,
        event_id: str,
        event_type: str,
        obj: dict[str, Any],
        now: dt.datetime,
    ) -> WebhookOutcome:
        outcome = WebhookOutcome(
            event_id=event_id,
            event_type=event_type,
            processing_result=WebhookProcessingResult.SKIPPED,
        )

        if event_type not in HANDLED_EVENT_TYPES:
            logger.info("Unhandled event type %s, skipping", event_type)
            outcome.message = f"Event type '{event_type}' not handled"
            return outcome

        intent_id = obj.get("payment_intent") if event_type == CHARGE_REFUNDED else obj.get("id")
        outcome.intent_id = intent_id
        booking_id = self.payments.find_booking_id(intent_id) if intent_id else None
        if booking_id is None:
            logger.warning("No booking recorded for PaymentIntent %s", intent_id)
            outcome.message = "Unknown payment intent"
            return outcome
        outcome.booking_id = booking_id

        if event_type == CHARGE_REFUNDED:
            return self._handle_refunded(outcome, obj, now)
        return self._handle_intent(outcome, INTENT_EVENT_STATUS[event_type], obj, now)

    def _handle_intent(
        self,
        outcome: WebhookOutcome,
        status: ProcessorStatus,
        obj: dict[str, Any],
        now: dt.datetime,
    ) -> WebhookOutcome:
        booking_id = outcome.booking_id or ""
        self.payments.record_status(outcome.intent_id or "", status)

        try:
            self.bookings.apply_payment_status(booking_id, status, now=now)
        except InvalidTransitionError as e:
            if status == ProcessorStatus.SUCCEEDED:
                return self._handle_late_success(outcome, obj, now)
            logger.info("Ignoring %s for booking %s: %s", outcome.event_type, booking_id, e.message)
            outcome.processing_result = WebhookProcessingResult.IGNORED
            outcome.message = e.message
            return outcome

        outcome.processing_result = WebhookProcessingResult.SUCCESS
        return outcome

    def _handle_late_success(
        self,
        outcome: WebhookOutcome,
        obj: dict[str, Any],
        now: dt.datetime,
    ) -> WebhookOutcome:
        """Money arrived for a booking that is no longer payable.

        Only a payment the booking never recorded is refunded here. A booking
        that was confirmed before it was cancelled already had its refund
        settled by the cancellation policy.
        """
        booking = self.bookings.get_booking(outcome.booking_id or "")
        payment_recorded = booking.confirmed_at is not None or booking.payment_status in (
            PaymentStatus.SUCCEEDED,
            PaymentStatus.REFUNDED,
        )
        if booking.status not in _CANCELLED_STATUSES or payment_recorded:
            outcome.processing_result = WebhookProcessingResult.IGNORED
            outcome.message = f"Booking is {booking.status.value}"
            if payment_recorded:
                outcome.message += "; payment already recorded"
            return outcome

        amount = int(obj.get("amount_received") or obj.get("amount") or booking.price.total)
        refund = self.payments.request_refund(booking, amount, "payment_after_cancellation")
        if refund is None:
            outcome.processing_result = WebhookProcessingResult.ERROR
            outcome.message = "Late payment could not be refunded automatically"
            return outcome

        self.state_machine.record_refund(booking.booking_id, amount, now)
        logger.warning(
            "Payment succeeded for %s booking %s; refunded %d",
            booking.status.value,
            booking.booking_id,
            amount,
        )
        outcome.processing_result = WebhookProcessingResult.LATE_PAYMENT_REFUNDED
        return outcome

    def _handle_refunded(
        self,
        outcome: WebhookOutcome,
        obj: dict[str, Any],
        now: dt.datetime,
    ) -> WebhookOutcome:
        amount_refunded = int(obj.get("amount_refunded", 0))
        updated = self.state_machine.record_refund(outcome.booking_id or "", amount_refunded, now)
        if updated is None:
            outcome.processing_result = WebhookProcessingResult.ERROR
            outcome.message = "Booking not found for refund"
            return outcome
        outcome.processing_result = WebhookProcessingResult.SUCCESS
        return outcome
