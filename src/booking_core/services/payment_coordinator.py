"""Payment coordinator: authorizations, status reconciliation and refunds.

Bridges bookings and the payment processor. It creates PaymentIntents with
the platform fee and host payout destination, keeps the intent -> booking
correlation table, and normalizes processor status for the reconciler.
It never changes a booking's status; that is the state machine's job.
"""

import datetime as dt
import logging
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from booking_core.models import (
    Booking,
    ExternalServiceError,
    PaymentFailedError,
    PaymentIntentRecord,
    PaymentIntentRef,
    ProcessorStatus,
)
from booking_core.models.errors import get_user_friendly_stripe_message
from booking_core.utils.logging import log_payment_operation
from booking_core.utils.timestamps import parse_iso, to_iso, utc_now

from .idempotency import derive_key
from .stripe_service import StripeServiceError

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService
    from .idempotency import IdempotencyGuard
    from .listings import ListingService
    from .pricing import PricingService
    from .stripe_service import StripeService

logger = logging.getLogger(__name__)

AUTHORIZATION_SCOPE = "payment_authorization"

# Processor PaymentIntent status -> normalized status
_STATUS_MAP: dict[str, ProcessorStatus] = {
    "succeeded": ProcessorStatus.SUCCEEDED,
    "requires_capture": ProcessorStatus.SUCCEEDED,
    "requires_action": ProcessorStatus.REQUIRES_ACTION,
    "canceled": ProcessorStatus.CANCELED,
    "processing": ProcessorStatus.PENDING,
    "requires_confirmation": ProcessorStatus.PENDING,
}


def status_from_processor(intent: dict[str, Any]) -> ProcessorStatus:
    """Normalize a PaymentIntent's status.

    ``requires_payment_method`` means failed only once an attempt has been
    declined; before the first attempt it is still pending.
    """
    raw = intent.get("status")
    if raw == "requires_payment_method":
        if intent.get("has_payment_error"):
            return ProcessorStatus.FAILED
        return ProcessorStatus.PENDING
    return _STATUS_MAP.get(raw or "", ProcessorStatus.PENDING)


class PaymentCoordinator:
    """Coordinate payment authorization for bookings."""

    TABLE = "payment-intents"
    BOOKING_INDEX = "booking-index"

    def __init__(
        self,
        db: "DynamoDBService",
        stripe: "StripeService",
        guard: "IdempotencyGuard",
        listings: "ListingService",
        pricing: "PricingService",
    ) -> None:
        self.db = db
        self.stripe = stripe
        self.guard = guard
        self.listings = listings
        self.pricing = pricing

    def create_authorization(
        self,
        booking: Booking,
        customer_ref: str | None,
        idempotency_token: str,
        now: dt.datetime | None = None,
    ) -> PaymentIntentRef:
        """Create (or replay) the PaymentIntent for a booking.

        Args:
            booking: Booking being paid; its server-computed total is charged
            customer_ref: Optional processor customer id
            idempotency_token: Caller-supplied token; retries with the same
                token never create a second intent
            now: Current time (defaults to UTC now)

        Returns:
            PaymentIntentRef with the client secret

        Raises:
            ExternalServiceError: Processor unreachable, timed out, or rejected our
                credentials or request (the booking is left for reconciliation)
            PaymentFailedError: Processor declined the payer
        """
        now = now or utc_now()
        key = derive_key(AUTHORIZATION_SCOPE, booking.guest_id, idempotency_token)

        def authorize() -> PaymentIntentRef:
            return self._authorize(booking, customer_ref, key, now)

        return self.guard.with_idempotency_key(
            key,
            authorize,
            PaymentIntentRef,
            scope=AUTHORIZATION_SCOPE,
            fingerprint=booking.booking_id,
            now=now,
        )

    def _authorize(
        self,
        booking: Booking,
        customer_ref: str | None,
        key: str,
        now: dt.datetime,
    ) -> PaymentIntentRef:
        listing = self.listings.get_listing(booking.listing_id)
        destination = listing.payout_account_id if listing else None
        split = self.pricing.compute_fee_split(booking.price.total)
        processor_key = f"payment-{key[:32]}"

        try:
            intent = self.stripe.create_payment_intent(
                amount=booking.price.total,
                currency=booking.price.currency,
                idempotency_key=processor_key,
                metadata={
                    "booking_id": booking.booking_id,
                    "listing_id": booking.listing_id,
                    "guest_id": booking.guest_id,
                    "host_id": booking.host_id,
                },
                customer=customer_ref,
                destination=destination,
                application_fee_amount=split.application_fee_amount,
            )
        except StripeServiceError as e:
            log_payment_operation(
                logger,
                "create_authorization",
                booking_id=booking.booking_id,
                amount=booking.price.total,
                currency=booking.price.currency,
                error=str(e),
                transient=e.transient,
                declined=e.declined,
            )
            if not e.declined:
                raise ExternalServiceError(
                    "Payment processor unavailable",
                    {"booking_id": booking.booking_id},
                ) from e
            raise PaymentFailedError(
                get_user_friendly_stripe_message(e.stripe_error_code),
                {"booking_id": booking.booking_id, "code": e.stripe_error_code or "unknown"},
            ) from e

        status = status_from_processor(intent)
        record = PaymentIntentRecord(
            intent_id=intent["id"],
            booking_id=booking.booking_id,
            amount=booking.price.total,
            currency=booking.price.currency,
            application_fee_amount=split.application_fee_amount,
            destination=destination,
            customer_ref=customer_ref,
            idempotency_key=processor_key,
            last_known_status=status,
            created_at=now,
            updated_at=now,
        )
        self.db.put_item(self.TABLE, self._record_to_item(record))

        log_payment_operation(
            logger,
            "create_authorization",
            booking_id=booking.booking_id,
            intent_id=record.intent_id,
            amount=record.amount,
            currency=record.currency,
            status=status.value,
            application_fee_amount=record.application_fee_amount,
            destination=destination or "platform",
        )

        return PaymentIntentRef(
            intent_id=record.intent_id,
            client_secret=intent.get("client_secret"),
            status=status,
            amount=record.amount,
            currency=record.currency,
            application_fee_amount=record.application_fee_amount,
        )

    def reconcile_status(self, booking_id: str) -> ProcessorStatus:
        """Ask the processor where a booking's payment stands.

        Never raises for processor problems: a missing intent, a timeout or
        an outage all report PENDING so the caller decides what to do with
        the uncertainty.
        """
        record = self.latest_intent(booking_id)
        if record is None:
            logger.info("No payment intent recorded for booking %s", booking_id)
            return ProcessorStatus.PENDING

        try:
            intent = self.stripe.retrieve_payment_intent(record.intent_id)
        except StripeServiceError as e:
            log_payment_operation(
                logger,
                "reconcile_status",
                booking_id=booking_id,
                intent_id=record.intent_id,
                error=str(e),
            )
            return ProcessorStatus.PENDING

        status = status_from_processor(intent)
        self.record_status(record.intent_id, status)
        log_payment_operation(
            logger,
            "reconcile_status",
            booking_id=booking_id,
            intent_id=record.intent_id,
            status=status.value,
            processor_status=intent.get("status"),
        )
        return status

    def request_refund(
        self,
        booking: Booking,
        amount: int,
        reason: str,
    ) -> dict[str, Any] | None:
        """Ask the processor to refund part or all of a booking's payment.

        Returns:
            Refund details, or None when there is nothing to refund or the
            processor could not be reached (logged for follow-up)
        """
        if amount <= 0:
            return None
        record = self.latest_intent(booking.booking_id)
        intent_id = booking.payment_intent_id or (record.intent_id if record else None)
        if intent_id is None:
            logger.warning("Refund requested for booking %s without a payment", booking.booking_id)
            return None

        try:
            refund = self.stripe.create_refund(
                payment_intent_id=intent_id,
                amount=amount,
                reason=reason,
                idempotency_key=f"refund-{booking.booking_id}-{amount}",
            )
        except StripeServiceError as e:
            log_payment_operation(
                logger,
                "request_refund",
                booking_id=booking.booking_id,
                intent_id=intent_id,
                amount=amount,
                error=str(e),
                follow_up="manual",
            )
            return None

        log_payment_operation(
            logger,
            "request_refund",
            booking_id=booking.booking_id,
            intent_id=intent_id,
            amount=amount,
            status=refund.get("status"),
            refund_id=refund.get("refund_id"),
        )
        return refund

    def find_booking_id(self, intent_id: str) -> str | None:
        """Resolve the booking for a PaymentIntent via the correlation table."""
        item = self.db.get_item(self.TABLE, {"intent_id": intent_id})
        return item["booking_id"] if item else None

    def latest_intent(self, booking_id: str) -> PaymentIntentRecord | None:
        items = self.db.query(
            self.TABLE,
            Key("booking_id").eq(booking_id),
            index_name=self.BOOKING_INDEX,
            scan_index_forward=False,
            limit=1,
        )
        return self._item_to_record(items[0]) if items else None

    def record_status(self, intent_id: str, status: ProcessorStatus) -> None:
        self.db.update_item(
            self.TABLE,
            {"intent_id": intent_id},
            "SET last_known_status = :status, updated_at = :now",
            expression_attribute_values={":status": status.value, ":now": to_iso(utc_now())},
            condition_expression="attribute_exists(intent_id)",
        )

    @staticmethod
    def _record_to_item(record: PaymentIntentRecord) -> dict[str, Any]:
        item: dict[str, Any] = {
            "intent_id": record.intent_id,
            "booking_id": record.booking_id,
            "amount": record.amount,
            "currency": record.currency,
            "application_fee_amount": record.application_fee_amount,
            "idempotency_key": record.idempotency_key,
            "last_known_status": record.last_known_status.value,
            "created_at": to_iso(record.created_at),
            "updated_at": to_iso(record.updated_at),
        }
        if record.destination:
            item["destination"] = record.destination
        if record.customer_ref:
            item["customer_ref"] = record.customer_ref
        return item

    @staticmethod
    def _item_to_record(item: dict[str, Any]) -> PaymentIntentRecord:
        return PaymentIntentRecord(
            intent_id=item["intent_id"],
            booking_id=item["booking_id"],
            amount=int(item["amount"]),
            currency=item["currency"],
            application_fee_amount=int(item["application_fee_amount"]),
            destination=item.get("destination"),
            customer_ref=item.get("customer_ref"),
            idempotency_key=item["idempotency_key"],
            last_known_status=ProcessorStatus(item["last_known_status"]),
            created_at=parse_iso(item["created_at"]),
            updated_at=parse_iso(item["updated_at"]),
        )
