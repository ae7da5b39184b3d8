"""Reconciliation scheduler.

Periodic sweep that settles bookings nobody else will move:

1. Holds past their expiry are cancelled and their dates released.
2. Bookings stuck in payment_processing are resolved against the processor,
   or cancelled once the processor still cannot say.
3. Confirmed stays whose check-out has passed are completed.
4. Past calendar blocks not backed by a live booking are released.

Each record is committed on its own. A failure is logged and counted, and
the run moves on. Every step is an idempotent transition or an idempotent
release, so overlapping runs are harmless.
"""

import datetime as dt
import logging
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from booking_core.config import get_settings
from booking_core.models import (
    Booking,
    BookingEvent,
    BookingStatus,
    BlockType,
    CalendarBlock,
    InvalidTransitionError,
    PassReport,
    ProcessorStatus,
    ReconciliationReport,
)
from booking_core.utils.timestamps import utc_now

if TYPE_CHECKING:
    from .booking import BookingService
    from .booking_repository import BookingRepository
    from .calendar_index import CalendarIndex
    from .payment_coordinator import PaymentCoordinator
    from .state_machine import BookingStateMachine, TransitionResult

logger = logging.getLogger(__name__)


class ReconciliationScheduler:
    """Run the reconciliation passes."""

    def __init__(
        self,
        repository: "BookingRepository",
        calendar: "CalendarIndex",
        state_machine: "BookingStateMachine",
        bookings: "BookingService",
        payments: "PaymentCoordinator",
        batch_size: int | None = None,
        max_batches: int | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            repository: Booking persistence (due-time index)
            calendar: Calendar index for stale block cleanup
            state_machine: Applies the expiry/timeout/completion events
            bookings: Maps processor outcomes onto events
            payments: Processor status lookups for stuck payments
            batch_size: Records per page. Defaults to settings.
            max_batches: Pages per pass. Defaults to settings.
        """
        settings = get_settings()
        self.repository = repository
        self.calendar = calendar
        self.state_machine = state_machine
        self.bookings = bookings
        self.payments = payments
        self.batch_size = batch_size or settings.reconciliation_batch_size
        self.max_batches = max_batches or settings.reconciliation_max_batches

    def run(self, now: dt.datetime | None = None) -> ReconciliationReport:
        """Run all passes once.

        Args:
            now: Reference time (defaults to UTC now)

        Returns:
            ReconciliationReport with per-pass counters
        """
        now = now or utc_now()
        report = ReconciliationReport(started_at=now)
        logger.info("Reconciliation run started at %s", now.isoformat())

        report.expired_holds = self._sweep_bookings(
            BookingStatus.PENDING_PAYMENT,
            now,
            lambda booking: self.state_machine.apply(
                booking.booking_id, BookingEvent.HOLD_EXPIRED, now=now
            ),
        )
        report.stuck_processing = self._sweep_bookings(
            BookingStatus.PAYMENT_PROCESSING,
            now,
            lambda booking: self._resolve_stuck(booking, now, report),
        )
        report.completed_stays = self._sweep_bookings(
            BookingStatus.CONFIRMED,
            now,
            lambda booking: self.state_machine.apply(
                booking.booking_id, BookingEvent.STAY_COMPLETED, now=now
            ),
        )
        report.stale_blocks = self._release_stale_blocks(now)

        report.finished_at = utc_now()
        logger.info(
            "Reconciliation run finished: %d transitioned, %d failed "
            "(holds %d, stuck %d, completed %d, blocks %d)",
            report.cleaned_count,
            report.failure_count,
            report.expired_holds.transitioned,
            report.stuck_processing.transitioned,
            report.completed_stays.transitioned,
            report.stale_blocks.transitioned,
        )
        return report

    # =========================================================================
    # Booking passes
    # =========================================================================

    def _due_bookings(self, status: BookingStatus, now: dt.datetime) -> Iterator[Booking]:
        start_key = None
        for _ in range(self.max_batches):
            page, start_key = self.repository.due_page(
                status, now, self.batch_size, exclusive_start_key=start_key
            )
            yield from page
            if start_key is None:
                return
        logger.warning(
            "Reconciliation pass for %s stopped after %d batches", status.value, self.max_batches
        )

    def _sweep_bookings(
        self,
        status: BookingStatus,
        now: dt.datetime,
        action: Callable[[Booking], "TransitionResult"],
    ) -> PassReport:
        report = PassReport()
        for booking in self._due_bookings(status, now):
            report.examined += 1
            try:
                result = action(booking)
            except InvalidTransitionError as e:
                # Moved on since the index was read, or not due yet
                logger.info("Skipping booking %s: %s", booking.booking_id, e.message)
                report.skipped += 1
                continue
            except Exception:
                logger.exception(
                    "Reconciliation failed for booking %s (%s)", booking.booking_id, status.value
                )
                report.failed += 1
                report.failed_ids.append(booking.booking_id)
                continue

            if result.changed:
                report.transitioned += 1
            else:
                report.skipped += 1
        return report

    def _resolve_stuck(
        self,
        booking: Booking,
        now: dt.datetime,
        report: ReconciliationReport,
    ) -> "TransitionResult":
        """Settle a stuck payment with the processor's answer if it has one."""
        status = self.payments.reconcile_status(booking.booking_id)
        report.resolved_by_processor[status.value] = (
            report.resolved_by_processor.get(status.value, 0) + 1
        )
        logger.info(
            "Stuck booking %s: processor reports %s", booking.booking_id, status.value
        )

        if status in (ProcessorStatus.SUCCEEDED, ProcessorStatus.FAILED, ProcessorStatus.CANCELED):
            return self.bookings.apply_payment_status(booking.booking_id, status, now=now)
        return self.state_machine.apply(
            booking.booking_id, BookingEvent.PROCESSING_TIMED_OUT, now=now
        )

    # =========================================================================
    # Calendar pass
    # =========================================================================

    def _release_stale_blocks(self, now: dt.datetime) -> PassReport:
        report = PassReport()
        yesterday = now.date() - dt.timedelta(days=1)

        for page in self.calendar.iter_past_blocks(
            yesterday, batch_size=self.batch_size, max_batches=self.max_batches
        ):
            for block in page:
                report.examined += 1
                try:
                    if not self._is_stale(block):
                        report.skipped += 1
                        continue
                    if self.calendar.release(block.block_id):
                        report.transitioned += 1
                    else:
                        report.skipped += 1
                except Exception:
                    logger.exception("Failed to release stale block %s", block.block_id)
                    report.failed += 1
                    report.failed_ids.append(block.block_id)
        return report

    def _is_stale(self, block: CalendarBlock) -> bool:
        if block.block_type == BlockType.MANUAL or not block.booking_id:
            return True
        booking = self.repository.get(block.booking_id)
        return booking is None or not booking.status.is_live
