"""Booking endpoints.

Provides REST endpoints for:
- Creating bookings (dates held for the payment window)
- Retrieving a booking (guest or host of the booking)
- Listing the caller's bookings as guest or host
- Starting payment
- Cancelling

All endpoints require JWT authentication; API Gateway validates the token
and passes the user identity via the x-user-sub header. Create and payment
require an Idempotency-Key header so client retries are safe.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Header, Query, Response
from starlette.status import HTTP_200_OK, HTTP_201_CREATED, HTTP_202_ACCEPTED

from booking_api.dependencies import get_booking_service
from booking_api.models.bookings import (
    BookingListResponse,
    BookingRequest,
    CancelBookingRequest,
    CancellationResponse,
    StartPaymentRequest,
)
from booking_api.security import require_principal
from booking_core.models import Booking, BookingSummary, PaymentSession
from booking_core.services.booking import BookingService, CancellationResult

router = APIRouter(tags=["bookings"])

IDEMPOTENCY_HEADER = "Idempotency-Key"


def to_cancellation_response(result: CancellationResult) -> CancellationResponse:
    refund = result.refund or {}
    return CancellationResponse(
        booking=result.booking,
        refund_amount=refund.get("refund_amount", 0),
        refund_policy_tier=refund.get("policy_tier"),
        refund_description=refund.get("description"),
        refund_requested=result.refund_requested,
    )


@router.post(
    "/bookings",
    summary="Create booking",
    description="""
Create a booking in `pending_payment` and hold its dates.

**Requires JWT authentication and an Idempotency-Key header.**

The price is computed server-side. Retrying with the same Idempotency-Key and
body returns the same booking; reusing the key with a different body is
rejected.
""",
    response_model=Booking,
    status_code=HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid request (dates, guest count, minimum stay)"},
        401: {"description": "JWT token required"},
        404: {"description": "Listing not found or not bookable"},
        409: {"description": "Dates unavailable, or the same request is in flight"},
    },
)
def create_booking(
    body: BookingRequest,
    idempotency_key: str = Header(..., alias=IDEMPOTENCY_HEADER, min_length=1, max_length=255),
    guest_id: str = Depends(require_principal),
    service: BookingService = Depends(get_booking_service),
) -> Booking:
    return service.create_booking(body, guest_id, idempotency_key)


@router.get(
    "/bookings",
    summary="List my bookings",
    response_model=BookingListResponse,
)
def list_bookings(
    role: Literal["guest", "host"] = Query(default="guest"),
    principal_id: str = Depends(require_principal),
    service: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    """List bookings where the caller is the guest (default) or the host."""
    if role == "host":
        bookings = service.list_host_bookings(principal_id)
    else:
        bookings = service.list_guest_bookings(principal_id)
    return BookingListResponse(
        bookings=[BookingSummary.from_booking(b) for b in bookings],
        count=len(bookings),
    )


@router.get(
    "/bookings/{booking_id}",
    summary="Get booking",
    response_model=Booking,
    responses={
        403: {"description": "Caller is neither guest nor host"},
        404: {"description": "Booking not found"},
    },
)
def get_booking(
    booking_id: str,
    principal_id: str = Depends(require_principal),
    service: BookingService = Depends(get_booking_service),
) -> Booking:
    return service.get_booking_for(booking_id, principal_id)


@router.post(
    "/bookings/{booking_id}/payment",
    summary="Start payment",
    description="""
Move the booking to `payment_processing` and create the PaymentIntent.

Returns the client secret needed to confirm the payment. If the processor
cannot be reached the booking stays in `payment_processing`, the response is
**202** with `outcome_pending: true`, and the status is settled by webhook or
by the reconciliation sweep.
""",
    response_model=PaymentSession,
    status_code=HTTP_200_OK,
    responses={
        202: {"description": "Processor outcome unknown; will be reconciled"},
        402: {"description": "Payment declined"},
        409: {"description": "Booking is not awaiting payment or its hold expired"},
    },
)
def start_payment(
    booking_id: str,
    response: Response,
    body: StartPaymentRequest | None = None,
    idempotency_key: str = Header(..., alias=IDEMPOTENCY_HEADER, min_length=1, max_length=255),
    guest_id: str = Depends(require_principal),
    service: BookingService = Depends(get_booking_service),
) -> PaymentSession:
    session = service.start_payment(
        booking_id,
        guest_id,
        idempotency_key,
        customer_ref=body.customer_ref if body else None,
    )
    if session.outcome_pending:
        response.status_code = HTTP_202_ACCEPTED
    return session


@router.post(
    "/bookings/{booking_id}/cancel",
    summary="Cancel booking",
    description="""
Cancel a booking as its guest or host. The dates are released immediately.

Paid bookings are refunded per the listing's cancellation policy; host
cancellations are refunded in full. Confirmed bookings cannot be cancelled
once the check-in day has started.
""",
    response_model=CancellationResponse,
    responses={
        403: {"description": "Caller is neither guest nor host"},
        404: {"description": "Booking not found"},
        409: {"description": "Already terminal or past the cancellation window"},
    },
)
def cancel_booking(
    booking_id: str,
    body: CancelBookingRequest | None = None,
    principal_id: str = Depends(require_principal),
    service: BookingService = Depends(get_booking_service),
) -> CancellationResponse:
    result = service.cancel_booking(
        booking_id, principal_id, reason=body.reason if body else None
    )
    return to_cancellation_response(result)
