"""End-to-end booking lifecycle tests against mocked DynamoDB.

These wire the real services together (only the processor and the event bus
are doubles) and walk bookings through their whole life: create, pay,
webhook, sweep, cancel.

moto is not thread-safe, so races are reproduced by interleaving the second
actor inside a hook on the first one's code path instead of with threads.
"""

import datetime as dt
from unittest.mock import patch

import pytest

from booking_core.models import (
    BlockState,
    BookingRequest,
    BookingStatus,
    ConflictError,
    InvalidCodeError,
    PaymentStatus,
    ProcessorStatus,
    RateLimitedError,
    WebhookProcessingResult,
)
from booking_core.services.events import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
)
from tests.factories import (
    ADMIN_CODE,
    CHECK_OUT,
    EXPECTED_TOTAL,
    GUEST_ID,
    HOST_ID,
    LISTING_ID,
    NOW,
    OTHER_GUEST_ID,
    make_event,
    make_intent,
)

pytestmark = pytest.mark.integration

PAYLOAD_HASH = "b" * 64
AFTER_HOLD = NOW + dt.timedelta(minutes=31)
AFTER_PROCESSING_TIMEOUT = NOW + dt.timedelta(hours=2, minutes=1)
AFTER_CHECK_OUT = dt.datetime.combine(
    CHECK_OUT + dt.timedelta(days=1), dt.time(0, 5), tzinfo=dt.UTC
)


def _succeeded(event_id: str) -> dict:
    intent = make_intent(status="succeeded")
    intent["amount_received"] = EXPECTED_TOTAL
    return make_event("payment_intent.succeeded", intent, event_id)


def _published(publisher) -> list[str]:
    return [call.args[0] for call in publisher.publish_booking.call_args_list]


# === Happy Path ===


class TestHappyPath:
    """Create, pay, confirm by webhook, complete by sweep."""

    def test_full_lifecycle(
        self,
        booking_service,
        booking_request,
        webhook_handler,
        scheduler,
        calendar,
        publisher,
        listing,
    ):
        booking = booking_service.create_booking(booking_request, GUEST_ID, "create-1", now=NOW)
        assert booking.status == BookingStatus.PENDING_PAYMENT
        assert calendar.get_block(booking.block_id).state == BlockState.HOLD

        session = booking_service.start_payment(booking.booking_id, GUEST_ID, "pay-1", now=NOW)
        assert session.booking_status == BookingStatus.PAYMENT_PROCESSING
        assert session.intent.amount == EXPECTED_TOTAL

        outcome = webhook_handler.handle(_succeeded("evt_1"), PAYLOAD_HASH, now=NOW)
        assert outcome.processing_result == WebhookProcessingResult.SUCCESS

        confirmed = booking_service.get_booking(booking.booking_id)
        assert confirmed.status == BookingStatus.CONFIRMED
        assert confirmed.payment_status == PaymentStatus.SUCCEEDED
        assert calendar.get_block(booking.block_id).state == BlockState.CONFIRMED

        report = scheduler.run(now=AFTER_CHECK_OUT)

        assert report.completed_stays.transitioned == 1
        assert booking_service.get_booking(booking.booking_id).status == BookingStatus.COMPLETED
        assert calendar.get_block(booking.block_id) is None
        assert _published(publisher) == [BOOKING_CONFIRMED, BOOKING_COMPLETED]

    def test_host_sees_booking(self, booking_service, pending_booking):
        hosted = booking_service.list_host_bookings(HOST_ID)

        assert [b.booking_id for b in hosted] == [pending_booking.booking_id]


# === Concurrency ===


class TestOverlapRace:
    """Two guests racing for the same nights: exactly one booking survives."""

    def test_second_writer_loses(self, booking_service, booking_request, repository, listing):
        winner = []
        raced = []
        original_quote = booking_service.pricing.quote

        def quote_then_lose_race(*args, **kwargs):
            # The rival reserves between our validation and our reservation
            if not raced:
                raced.append(True)
                winner.append(
                    booking_service.create_booking(
                        booking_request, OTHER_GUEST_ID, "rival", now=NOW
                    )
                )
            return original_quote(*args, **kwargs)

        with patch.object(booking_service.pricing, "quote", side_effect=quote_then_lose_race):
            with pytest.raises(ConflictError) as exc_info:
                booking_service.create_booking(booking_request, GUEST_ID, "mine", now=NOW)

        assert exc_info.value.details["conflicting_block_id"] == winner[0].block_id
        assert repository.list_for_guest(GUEST_ID) == []
        assert [b.booking_id for b in repository.list_for_guest(OTHER_GUEST_ID)] == [
            winner[0].booking_id
        ]

    def test_partial_overlap_conflicts(self, booking_service, pending_booking, listing):
        request = BookingRequest(
            listing_id=LISTING_ID,
            check_in=CHECK_OUT - dt.timedelta(days=1),
            check_out=CHECK_OUT + dt.timedelta(days=2),
            guest_count=1,
        )

        with pytest.raises(ConflictError):
            booking_service.create_booking(request, OTHER_GUEST_ID, "overlap", now=NOW)

    def test_back_to_back_stays_both_succeed(self, booking_service, pending_booking, listing):
        request = BookingRequest(
            listing_id=LISTING_ID,
            check_in=CHECK_OUT,
            check_out=CHECK_OUT + dt.timedelta(days=2),
            guest_count=1,
        )

        booking = booking_service.create_booking(request, OTHER_GUEST_ID, "next", now=NOW)

        assert booking.status == BookingStatus.PENDING_PAYMENT

    def test_sweep_loses_to_payment(
        self, scheduler, booking_service, pending_booking, state_machine, repository
    ):
        """The guest starts paying after the sweep read the hold but before it wrote."""
        original_apply = state_machine.apply
        raced = []

        def pay_first(booking_id, event, **kwargs):
            if not raced:
                raced.append(True)
                booking_service.start_payment(booking_id, GUEST_ID, "pay-race", now=NOW)
            return original_apply(booking_id, event, **kwargs)

        with patch.object(scheduler.state_machine, "apply", side_effect=pay_first):
            report = scheduler.run(now=AFTER_HOLD)

        assert report.expired_holds.skipped == 1
        assert report.expired_holds.transitioned == 0
        booking = repository.get(pending_booking.booking_id)
        assert booking.status == BookingStatus.PAYMENT_PROCESSING


# === Retries ===


class TestRetrySafety:
    """Client and processor retries never duplicate work."""

    def test_create_retry(self, booking_service, booking_request, repository, listing):
        first = booking_service.create_booking(booking_request, GUEST_ID, "retry", now=NOW)
        second = booking_service.create_booking(booking_request, GUEST_ID, "retry", now=NOW)

        assert first.booking_id == second.booking_id
        assert len(repository.list_for_guest(GUEST_ID)) == 1

    def test_payment_retry(self, booking_service, pending_booking, stripe_mock):
        booking_service.start_payment(pending_booking.booking_id, GUEST_ID, "pay-x", now=NOW)
        session = booking_service.start_payment(
            pending_booking.booking_id, GUEST_ID, "pay-x", now=NOW
        )

        assert session.intent.intent_id == "pi_test_1"
        stripe_mock.create_payment_intent.assert_called_once()

    def test_webhook_redelivery(self, webhook_handler, processing_booking, publisher):
        first = webhook_handler.handle(_succeeded("evt_dup"), PAYLOAD_HASH, now=NOW)
        second = webhook_handler.handle(_succeeded("evt_dup"), PAYLOAD_HASH, now=NOW)
        third = webhook_handler.handle(_succeeded("evt_other"), PAYLOAD_HASH, now=NOW)

        assert first.processing_result == WebhookProcessingResult.SUCCESS
        assert second.processing_result == WebhookProcessingResult.DUPLICATE
        assert third.processing_result == WebhookProcessingResult.SUCCESS
        assert _published(publisher) == [BOOKING_CONFIRMED]

    def test_overlapping_sweeps(self, scheduler, pending_booking):
        first = scheduler.run(now=AFTER_HOLD)
        second = scheduler.run(now=AFTER_HOLD)

        assert first.expired_holds.transitioned == 1
        assert second.cleaned_count == 0


# === Cancellation and Expiry ===


class TestDatesAreReleased:
    """Every way out of a booking frees its nights for the next guest."""

    def _rebook(self, booking_service, booking_request):
        return booking_service.create_booking(booking_request, OTHER_GUEST_ID, "rebook", now=NOW)

    def test_after_guest_cancel(
        self, booking_service, booking_request, pending_booking, publisher
    ):
        booking_service.cancel_booking(pending_booking.booking_id, GUEST_ID, now=NOW)

        rebooked = self._rebook(booking_service, booking_request)

        assert rebooked.status == BookingStatus.PENDING_PAYMENT
        assert BOOKING_CANCELLED in _published(publisher)

    def test_after_hold_expiry(
        self, booking_service, booking_request, pending_booking, scheduler
    ):
        scheduler.run(now=AFTER_HOLD)

        rebooked = self._rebook(booking_service, booking_request)

        assert rebooked.booking_id != pending_booking.booking_id

    def test_after_repeated_payment_failure(
        self, booking_service, booking_request, processing_booking, stripe_mock
    ):
        booking_id = processing_booking.booking_id

        booking_service.apply_payment_status(booking_id, ProcessorStatus.FAILED, now=NOW)
        assert booking_service.get_booking(booking_id).status == BookingStatus.PENDING_PAYMENT

        stripe_mock.create_payment_intent.return_value = make_intent("pi_test_2")
        booking_service.start_payment(booking_id, GUEST_ID, "pay-2", now=NOW)
        booking_service.apply_payment_status(booking_id, ProcessorStatus.FAILED, now=NOW)

        booking = booking_service.get_booking(booking_id)
        assert booking.status == BookingStatus.CANCELLED_BY_SYSTEM
        assert booking.payment_failures == 2
        assert self._rebook(booking_service, booking_request).status == (
            BookingStatus.PENDING_PAYMENT
        )


class TestLatePayment:
    """A processing timeout followed by the processor finally succeeding."""

    def test_timed_out_booking_is_refunded(
        self, scheduler, webhook_handler, processing_booking, stripe_mock, repository
    ):
        scheduler.run(now=AFTER_PROCESSING_TIMEOUT)
        assert repository.get(processing_booking.booking_id).status == (
            BookingStatus.CANCELLED_BY_SYSTEM
        )

        outcome = webhook_handler.handle(
            _succeeded("evt_late"), PAYLOAD_HASH, now=AFTER_PROCESSING_TIMEOUT
        )

        assert outcome.processing_result == WebhookProcessingResult.LATE_PAYMENT_REFUNDED
        assert stripe_mock.create_refund.call_args.kwargs["amount"] == EXPECTED_TOTAL
        booking = repository.get(processing_booking.booking_id)
        assert booking.status == BookingStatus.CANCELLED_BY_SYSTEM
        assert booking.payment_status == PaymentStatus.REFUNDED


# === Admin ===


class TestAdminAccess:
    """Lockout, then a session that can cancel any booking."""

    def test_lockout_then_session(self, admin_gate, booking_service, confirmed_booking):
        client = "192.0.2.50"
        for _ in range(5):
            with pytest.raises(InvalidCodeError):
                admin_gate.verify(client, "guess", now=NOW)
        with pytest.raises(RateLimitedError):
            admin_gate.verify(client, ADMIN_CODE, now=NOW + dt.timedelta(minutes=14))

        session = admin_gate.verify(client, ADMIN_CODE, now=NOW + dt.timedelta(minutes=16))
        assert admin_gate.validate_session(session.token, now=NOW + dt.timedelta(minutes=17))

        result = booking_service.cancel_booking(
            confirmed_booking.booking_id,
            session.client_id,
            reason="Chargeback",
            as_admin=True,
            now=NOW,
        )

        assert result.booking.status == BookingStatus.CANCELLED_BY_SYSTEM
        assert result.refund["refund_amount"] == EXPECTED_TOTAL
