"""Payment intent correlation and payment session models."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from .enums import BookingStatus, ProcessorStatus


class PaymentIntentRecord(BaseModel):
    """Correlation between a processor PaymentIntent and a booking.

    Stored in the ``payment-intents`` table so webhooks and the reconciler
    can resolve a booking from an intent id without trusting metadata.
    """

    model_config = ConfigDict(strict=True)

    intent_id: str = Field(..., examples=["pi_3ABC123DEF456"])
    booking_id: str
    amount: int = Field(..., ge=0, description="Charged total in minor units")
    currency: str
    application_fee_amount: int = Field(..., ge=0)
    destination: str | None = Field(default=None, description="Host payout account")
    customer_ref: str | None = None
    idempotency_key: str
    last_known_status: ProcessorStatus = ProcessorStatus.PENDING
    created_at: dt.datetime
    updated_at: dt.datetime


class PaymentIntentRef(BaseModel):
    """What the client needs to complete payment with the processor."""

    intent_id: str
    client_secret: str | None = None
    status: ProcessorStatus
    amount: int
    currency: str
    application_fee_amount: int


class PaymentSession(BaseModel):
    """Result of starting payment for a booking."""

    booking_id: str
    booking_status: BookingStatus
    intent: PaymentIntentRef | None = None
    outcome_pending: bool = Field(
        default=False,
        description="True when the processor outcome is unknown and will be reconciled",
    )
    message: str | None = None


class FeeSplit(BaseModel):
    """Platform/host split of a charged total."""

    model_config = ConfigDict(strict=True, frozen=True)

    total: int
    application_fee_amount: int
    host_amount: int
