"""Admin endpoints.

Provides REST endpoints for:
- Verifying the admin code (issues a session cookie)
- Checking and ending the current admin session
- Cancelling any booking as an administrator

Verification is rate limited per client: after repeated wrong codes the
client is locked out (429 with Retry-After) until the lockout elapses.
"""

from fastapi import APIRouter, Depends, Request, Response

from booking_api.dependencies import get_admin_gate, get_booking_service
from booking_api.models.admin import AdminCancelRequest, AdminSessionResponse, AdminVerifyRequest
from booking_api.models.bookings import CancellationResponse
from booking_api.models.common import SuccessMessage
from booking_api.routes.bookings import to_cancellation_response
from booking_api.security import (
    ADMIN_SESSION_COOKIE,
    admin_session_token,
    client_identity,
    require_admin,
)
from booking_core.config import get_settings
from booking_core.models import AdminSession
from booking_core.services.admin_gate import AdminVerificationGate
from booking_core.services.booking import BookingService
from booking_core.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["admin"])


@router.post(
    "/admin/verify",
    summary="Verify admin code",
    response_model=AdminSessionResponse,
    responses={
        400: {"description": "Code missing"},
        401: {"description": "Invalid code (attempts remaining in details)"},
        429: {"description": "Too many attempts; see Retry-After"},
    },
)
def verify_admin(
    body: AdminVerifyRequest,
    request: Request,
    response: Response,
    gate: AdminVerificationGate = Depends(get_admin_gate),
) -> AdminSessionResponse:
    session = gate.verify(client_identity(request), body.code)
    response.set_cookie(
        ADMIN_SESSION_COOKIE,
        session.token or "",
        max_age=int(gate.session_ttl.total_seconds()),
        httponly=True,
        secure=get_settings().environment != "local",
        samesite="strict",
        path="/",
    )
    return AdminSessionResponse(
        client_id=session.client_id,
        expires_at=session.expires_at,
        session_token=session.token,
    )


@router.get(
    "/admin/session",
    summary="Check admin session",
    response_model=AdminSessionResponse,
    responses={401: {"description": "No valid admin session"}},
)
def get_admin_session(session: AdminSession = Depends(require_admin)) -> AdminSessionResponse:
    return AdminSessionResponse(client_id=session.client_id, expires_at=session.expires_at)


@router.delete(
    "/admin/session",
    summary="End admin session",
    response_model=SuccessMessage,
    responses={401: {"description": "No valid admin session"}},
)
def end_admin_session(
    request: Request,
    response: Response,
    session: AdminSession = Depends(require_admin),
    gate: AdminVerificationGate = Depends(get_admin_gate),
) -> SuccessMessage:
    token = admin_session_token(request)
    if token:
        gate.revoke_session(token)
    response.delete_cookie(ADMIN_SESSION_COOKIE, path="/")
    return SuccessMessage(message="Admin session ended")


@router.post(
    "/admin/bookings/{booking_id}/cancel",
    summary="Cancel a booking as administrator",
    description="Cancels any non-terminal booking. Paid bookings are refunded in full.",
    response_model=CancellationResponse,
    responses={
        401: {"description": "No valid admin session"},
        404: {"description": "Booking not found"},
        409: {"description": "Booking already terminal"},
    },
)
def admin_cancel_booking(
    booking_id: str,
    body: AdminCancelRequest,
    session: AdminSession = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
) -> CancellationResponse:
    logger.info(
        "Admin cancellation of booking %s by session client %s", booking_id, session.client_id
    )
    result = service.cancel_booking(
        booking_id, session.client_id, reason=body.reason, as_admin=True
    )
    return to_cancellation_response(result)
