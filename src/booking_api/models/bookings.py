"""API models for booking endpoints.

The create body is booking_core's BookingRequest; prices are always computed
server-side and never accepted from clients.
"""

from pydantic import BaseModel, ConfigDict, Field

from booking_core.models import Booking, BookingRequest, BookingSummary

__all__ = [
    "BookingListResponse",
    "BookingRequest",
    "CancelBookingRequest",
    "CancellationResponse",
    "StartPaymentRequest",
]


class StartPaymentRequest(BaseModel):
    """Request to start paying for a booking.

    The amount is taken from the booking, not from the request.
    """

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"examples": [{"customer_ref": "cus_Q2x9a8Lk1"}, {}]},
    )

    customer_ref: str | None = Field(
        default=None,
        max_length=255,
        description="Processor customer id to attach the payment to",
    )


class CancelBookingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = Field(default=None, max_length=500, examples=["Change of plans"])


class BookingListResponse(BaseModel):
    bookings: list[BookingSummary]
    count: int


class CancellationResponse(BaseModel):
    """Cancelled booking plus the refund decision."""

    booking: Booking
    refund_amount: int = Field(default=0, description="Refund in minor units")
    refund_policy_tier: str | None = Field(default=None, examples=["full", "partial", "none"])
    refund_description: str | None = None
    refund_requested: bool = Field(
        default=False, description="Refund submitted to the processor"
    )
