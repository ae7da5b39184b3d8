"""Refund policy service for calculating cancellation refunds.

Each listing carries one of three cancellation policies. The time left
before check-in (check-in day at 00:00 UTC) selects a tier:

- flexible: full refund 24h+ before, 50% of accommodation within 24h
- moderate: full refund 5+ days before, 50% of accommodation 2-5 days before
- strict:   full refund 14+ days before, 50% of accommodation 7-14 days before

Anything later gets nothing. A partial refund never includes cleaning,
service fee or tax. Host and system cancellations refund the full total.
All amounts are integer minor units.
"""

import datetime as dt
from typing import TypedDict

from booking_core.models import ActorRole, Booking, CancellationPolicy
from booking_core.utils.timestamps import start_of_day


class RefundCalculation(TypedDict):
    """Result of refund policy calculation."""

    refund_amount: int  # Minor units
    refund_percentage: int  # Share of the paid total, rounded down
    policy_tier: str  # "full", "partial", or "none"
    hours_until_check_in: int
    description: str


class RefundPolicyService:
    """Service for calculating refund amounts based on policy and timing."""

    # (full refund threshold, partial refund threshold) in hours before check-in
    THRESHOLDS: dict[CancellationPolicy, tuple[int, int]] = {
        CancellationPolicy.FLEXIBLE: (24, 0),
        CancellationPolicy.MODERATE: (5 * 24, 2 * 24),
        CancellationPolicy.STRICT: (14 * 24, 7 * 24),
    }

    PARTIAL_REFUND_PERCENT = 50

    def calculate_refund(
        self,
        booking: Booking,
        cancelled_by: ActorRole,
        cancelled_at: dt.datetime,
    ) -> RefundCalculation:
        """Calculate the refund for cancelling a paid booking.

        Args:
            booking: Booking being cancelled
            cancelled_by: Who cancelled
            cancelled_at: When the cancellation was requested

        Returns:
            RefundCalculation with refund amount and policy details
        """
        total = booking.price.total
        check_in_at = start_of_day(booking.check_in)
        hours_until = int((check_in_at - cancelled_at).total_seconds() // 3600)

        if cancelled_by != ActorRole.GUEST:
            return RefundCalculation(
                refund_amount=total,
                refund_percentage=100,
                policy_tier="full",
                hours_until_check_in=hours_until,
                description=f"Full refund: cancelled by {cancelled_by.value}",
            )

        full_hours, partial_hours = self.THRESHOLDS[booking.cancellation_policy]
        policy = booking.cancellation_policy.value

        if hours_until >= full_hours:
            refund = total
            tier = "full"
            description = (
                f"Full refund: cancelled {hours_until}h before check-in "
                f"({policy} policy: {full_hours}h+ = full refund)"
            )
        elif hours_until >= partial_hours and check_in_at > cancelled_at:
            refund = (booking.price.accommodation * self.PARTIAL_REFUND_PERCENT) // 100
            tier = "partial"
            description = (
                f"Partial refund (50% of accommodation): cancelled {hours_until}h before "
                f"check-in ({policy} policy)"
            )
        else:
            refund = 0
            tier = "none"
            description = (
                f"No refund: cancelled {hours_until}h before check-in ({policy} policy)"
            )

        percentage = (refund * 100) // total if total else 0
        return RefundCalculation(
            refund_amount=refund,
            refund_percentage=percentage,
            policy_tier=tier,
            hours_until_check_in=hours_until,
            description=description,
        )
