"""Booking, booking request and price breakdown models."""

import datetime as dt
import hashlib
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .enums import ActorRole, BookingStatus, CancellationPolicy, PaymentStatus


class PriceBreakdown(BaseModel):
    """Server-computed price of a stay.

    All amounts are integer minor units of ``currency`` (cents for EUR/USD).
    """

    model_config = ConfigDict(frozen=True)

    currency: str = Field(..., min_length=3, max_length=3, examples=["USD"])
    nightly_rate: int = Field(..., ge=0, description="Rate per night")
    nights: int = Field(..., gt=0)
    accommodation: int = Field(..., ge=0, description="nightly_rate x nights")
    cleaning_fee: int = Field(default=0, ge=0)
    platform_fee: int = Field(default=0, ge=0, description="Guest service fee")
    tax: int = Field(default=0, ge=0)
    total: int = Field(..., ge=0)

    @model_validator(mode="after")
    def _check_sums(self) -> "PriceBreakdown":
        if self.accommodation != self.nightly_rate * self.nights:
            raise ValueError("accommodation must equal nightly_rate x nights")
        expected = self.accommodation + self.cleaning_fee + self.platform_fee + self.tax
        if self.total != expected:
            raise ValueError("total must equal the sum of its components")
        return self


class BookingRequest(BaseModel):
    """Guest-supplied booking request. Prices are never accepted from clients."""

    model_config = ConfigDict(extra="forbid")

    listing_id: str = Field(..., min_length=1, max_length=128)
    check_in: dt.date
    check_out: dt.date
    guest_count: int = Field(..., ge=1, le=50)
    special_requests: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _check_dates(self) -> "BookingRequest":
        if self.check_out <= self.check_in:
            raise ValueError("check_out must be after check_in")
        return self

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def fingerprint(self) -> str:
        """Stable hash of the request body, used to detect idempotency key reuse."""
        canonical = json.dumps(self.model_dump(mode="json"), sort_keys=True)
        return hashlib.sha256(canonical.encode()).hexdigest()


class Booking(BaseModel):
    """A guest's booking of a listing for a half-open date range."""

    booking_id: str = Field(..., description="Unique booking ID", examples=["BK-4F2A9C01D3E7"])
    confirmation_code: str = Field(..., description="Short code shown to guests")
    listing_id: str
    guest_id: str
    host_id: str
    check_in: dt.date
    check_out: dt.date
    guest_count: int = Field(..., ge=1)
    special_requests: str | None = None
    price: PriceBreakdown
    cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE

    status: BookingStatus
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_intent_id: str | None = None
    payment_failures: int = Field(default=0, ge=0)
    block_id: str | None = Field(default=None, description="Backing CalendarBlock")
    version: int = Field(default=1, ge=1, description="Optimistic concurrency counter")

    created_at: dt.datetime
    updated_at: dt.datetime
    expires_at: dt.datetime | None = Field(
        default=None, description="Hold expiry, only while pending_payment"
    )
    processing_started_at: dt.datetime | None = None
    confirmed_at: dt.datetime | None = None
    completed_at: dt.datetime | None = None
    cancelled_at: dt.datetime | None = None
    cancelled_by: ActorRole | None = None
    cancellation_reason: str | None = None
    refund_amount: int | None = Field(default=None, ge=0)

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def overlaps(self, check_in: dt.date, check_out: dt.date) -> bool:
        """Half-open interval overlap test."""
        return self.check_in < check_out and check_in < self.check_out

    def is_party(self, principal_id: str) -> bool:
        """True if the principal is the booking's guest or host."""
        return principal_id in (self.guest_id, self.host_id)


class BookingSummary(BaseModel):
    """Condensed booking for list views."""

    booking_id: str
    confirmation_code: str
    listing_id: str
    check_in: dt.date
    check_out: dt.date
    status: BookingStatus
    total: int
    currency: str

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingSummary":
        return cls(
            booking_id=booking.booking_id,
            confirmation_code=booking.confirmation_code,
            listing_id=booking.listing_id,
            check_in=booking.check_in,
            check_out=booking.check_out,
            status=booking.status,
            total=booking.price.total,
            currency=booking.price.currency,
        )


class Listing(BaseModel):
    """Read-only view of a listing owned by the catalogue."""

    model_config = ConfigDict(strict=True)

    listing_id: str
    host_id: str
    status: str
    nightly_rate: int = Field(..., ge=0)
    cleaning_fee: int = Field(default=0, ge=0)
    currency: str = "USD"
    max_guests: int = Field(default=1, ge=1)
    min_nights: int = Field(default=1, ge=1)
    cancellation_policy: CancellationPolicy = CancellationPolicy.MODERATE
    payout_account_id: str | None = Field(
        default=None, description="Host's connected payout account (acct_xxx)"
    )

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()
