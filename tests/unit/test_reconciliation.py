"""Unit tests for ReconciliationScheduler.

The scheduler fixture pages two records at a time so multi-page sweeps are
exercised with a handful of bookings.
"""

import datetime as dt
from unittest.mock import patch

from booking_core.models import BookingRequest, BookingStatus
from tests.factories import CHECK_IN, CHECK_OUT, GUEST_ID, LISTING_ID, NOW, make_intent

AFTER_HOLD = NOW + dt.timedelta(minutes=31)
AFTER_PROCESSING_TIMEOUT = NOW + dt.timedelta(hours=2, minutes=1)
AFTER_CHECK_OUT = dt.datetime.combine(
    CHECK_OUT + dt.timedelta(days=1), dt.time(0, 5), tzinfo=dt.UTC
)


def _create_bookings(booking_service, count: int) -> list:
    """Create ``count`` pending bookings on consecutive, non-overlapping stays."""
    bookings = []
    for i in range(count):
        start = CHECK_IN + dt.timedelta(days=3 * i)
        request = BookingRequest(
            listing_id=LISTING_ID,
            check_in=start,
            check_out=start + dt.timedelta(days=3),
            guest_count=2,
        )
        bookings.append(booking_service.create_booking(request, GUEST_ID, f"create-{i}", now=NOW))
    return bookings


# === Expired Holds ===


class TestExpiredHolds:
    """pending_payment past expires_at -> cancelled_by_system."""

    def test_expired_hold_is_cancelled(self, scheduler, pending_booking, repository, calendar):
        report = scheduler.run(now=AFTER_HOLD)

        assert report.expired_holds.examined == 1
        assert report.expired_holds.transitioned == 1
        booking = repository.get(pending_booking.booking_id)
        assert booking.status == BookingStatus.CANCELLED_BY_SYSTEM
        assert calendar.check_availability(LISTING_ID, CHECK_IN, CHECK_OUT) is True

    def test_live_hold_is_left_alone(self, scheduler, pending_booking, repository):
        report = scheduler.run(now=NOW + dt.timedelta(minutes=10))

        assert report.expired_holds.examined == 0
        assert repository.get(pending_booking.booking_id).status == BookingStatus.PENDING_PAYMENT

    def test_sweeps_every_page(self, scheduler, booking_service, listing, repository):
        bookings = _create_bookings(booking_service, 5)

        report = scheduler.run(now=AFTER_HOLD)

        assert report.expired_holds.transitioned == 5
        for booking in bookings:
            assert repository.get(booking.booking_id).status == BookingStatus.CANCELLED_BY_SYSTEM

    def test_stops_at_batch_limit(
        self, repository, calendar, state_machine, booking_service, payments, listing
    ):
        from booking_core.services.reconciliation import ReconciliationScheduler

        _create_bookings(booking_service, 5)
        limited = ReconciliationScheduler(
            repository,
            calendar,
            state_machine,
            booking_service,
            payments,
            batch_size=2,
            max_batches=1,
        )

        report = limited.run(now=AFTER_HOLD)

        assert report.expired_holds.transitioned == 2

    def test_second_run_is_a_no_op(self, scheduler, pending_booking):
        scheduler.run(now=AFTER_HOLD)

        report = scheduler.run(now=AFTER_HOLD)

        assert report.cleaned_count == 0
        assert report.failure_count == 0


# === Stuck Payments ===


class TestStuckProcessing:
    """payment_processing past the timeout is resolved against the processor."""

    def test_not_due_before_timeout(self, scheduler, processing_booking, stripe_mock):
        report = scheduler.run(now=NOW + dt.timedelta(hours=1))

        assert report.stuck_processing.examined == 0
        stripe_mock.retrieve_payment_intent.assert_not_called()

    def test_processor_success_confirms(
        self, scheduler, processing_booking, stripe_mock, repository
    ):
        stripe_mock.retrieve_payment_intent.return_value = make_intent(status="succeeded")

        report = scheduler.run(now=AFTER_PROCESSING_TIMEOUT)

        assert report.stuck_processing.transitioned == 1
        assert report.resolved_by_processor == {"succeeded": 1}
        booking = repository.get(processing_booking.booking_id)
        assert booking.status == BookingStatus.CONFIRMED

    def test_processor_decline_reopens_hold(
        self, scheduler, processing_booking, stripe_mock, repository
    ):
        stripe_mock.retrieve_payment_intent.return_value = make_intent(has_payment_error=True)

        scheduler.run(now=AFTER_PROCESSING_TIMEOUT)

        booking = repository.get(processing_booking.booking_id)
        assert booking.status == BookingStatus.PENDING_PAYMENT
        assert booking.payment_failures == 1

    def test_still_pending_times_out(
        self, scheduler, processing_booking, stripe_mock, repository, calendar
    ):
        report = scheduler.run(now=AFTER_PROCESSING_TIMEOUT)

        assert report.resolved_by_processor == {"pending": 1}
        booking = repository.get(processing_booking.booking_id)
        assert booking.status == BookingStatus.CANCELLED_BY_SYSTEM
        assert booking.cancellation_reason == "Payment processing timeout"
        assert calendar.check_availability(LISTING_ID, CHECK_IN, CHECK_OUT) is True


# === Completed Stays ===


class TestCompletedStays:
    """confirmed past check-out -> completed, then its block is released."""

    def test_stay_completed_and_block_released(
        self, scheduler, confirmed_booking, repository, calendar
    ):
        report = scheduler.run(now=AFTER_CHECK_OUT)

        assert report.completed_stays.transitioned == 1
        assert report.stale_blocks.transitioned == 1
        assert repository.get(confirmed_booking.booking_id).status == BookingStatus.COMPLETED
        assert calendar.get_block(confirmed_booking.block_id) is None

    def test_upcoming_stay_untouched(self, scheduler, confirmed_booking, repository):
        report = scheduler.run(now=NOW + dt.timedelta(days=1))

        assert report.completed_stays.examined == 0
        assert repository.get(confirmed_booking.booking_id).status == BookingStatus.CONFIRMED


# === Stale Blocks ===


class TestStaleBlocks:
    """Past blocks not backed by a live booking are released."""

    def test_past_manual_block_released(self, scheduler, calendar):
        block = calendar.block_dates(
            LISTING_ID, dt.date(2026, 2, 1), dt.date(2026, 2, 5), "Maintenance"
        )

        report = scheduler.run(now=NOW)

        assert report.stale_blocks.transitioned == 1
        assert calendar.get_block(block.block_id) is None

    def test_future_manual_block_kept(self, scheduler, calendar):
        block = calendar.block_dates(LISTING_ID, CHECK_IN, CHECK_OUT, "Owner stay")

        scheduler.run(now=NOW)

        assert calendar.get_block(block.block_id) is not None

    def test_orphaned_booking_block_released(self, scheduler, calendar):
        block = calendar.reserve(
            LISTING_ID, dt.date(2026, 2, 1), dt.date(2026, 2, 5), "BK-GONE"
        )

        report = scheduler.run(now=NOW)

        assert report.stale_blocks.transitioned == 1
        assert calendar.get_block(block.block_id) is None


# === Failure Handling ===


class TestFailureHandling:
    """One bad record never stops the run."""

    def test_failure_is_counted_and_run_continues(
        self, scheduler, booking_service, listing, repository
    ):
        bookings = _create_bookings(booking_service, 3)
        broken_id = bookings[1].booking_id
        original_apply = scheduler.state_machine.apply

        def flaky_apply(booking_id, event, **kwargs):
            if booking_id == broken_id:
                raise RuntimeError("throttled")
            return original_apply(booking_id, event, **kwargs)

        with patch.object(scheduler.state_machine, "apply", side_effect=flaky_apply):
            report = scheduler.run(now=AFTER_HOLD)

        assert report.expired_holds.transitioned == 2
        assert report.expired_holds.failed == 1
        assert report.expired_holds.failed_ids == [broken_id]
        assert report.failure_count == 1
        assert repository.get(broken_id).status == BookingStatus.PENDING_PAYMENT

    def test_report_timestamps(self, scheduler):
        report = scheduler.run(now=NOW)

        assert report.started_at == NOW
        assert report.finished_at is not None
