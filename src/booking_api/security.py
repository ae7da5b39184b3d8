"""Request identity and access checks.

Three kinds of caller reach the API:

- Users, authenticated by API Gateway. The JWT authorizer validates the token
  and forwards the subject in the ``x-user-sub`` header.
- Administrators, holding a session issued by the admin verification gate
  (``admin_session`` cookie or ``X-Admin-Session`` header).
- The scheduler, presenting the cron secret as a Bearer token. The cron
  secret is distinct from the admin code.
"""

import hmac

from fastapi import Depends, Request

from booking_api.dependencies import get_admin_gate
from booking_core.config import get_settings
from booking_core.models import AdminSession, ExternalServiceError, UnauthorizedError
from booking_core.services.admin_gate import AdminVerificationGate
from booking_core.services.ssm_service import SSMServiceError, get_ssm_service

USER_SUB_HEADER = "x-user-sub"
ADMIN_SESSION_COOKIE = "admin_session"
ADMIN_SESSION_HEADER = "X-Admin-Session"
CRON_SECRET_NAME = "cron/secret"


def require_principal(request: Request) -> str:
    """Authenticated user id from the gateway header.

    Raises:
        UnauthorizedError: Header missing (request did not pass the authorizer)
    """
    user_sub = request.headers.get(USER_SUB_HEADER)
    if not user_sub:
        raise UnauthorizedError("JWT token required")
    return user_sub


def client_identity(request: Request) -> str:
    """Network origin of the caller, used to key admin attempt counters.

    X-Forwarded-For is written by the client until it reaches our own
    proxies, so only the entries those proxies appended are trusted. With
    ``trusted_proxy_hops`` proxies in front, the caller is that many entries
    from the right. With none, the socket peer is used and the header is
    ignored.
    """
    hops = get_settings().trusted_proxy_hops
    if hops:
        forwarded = [
            address.strip()
            for address in request.headers.get("x-forwarded-for", "").split(",")
            if address.strip()
        ]
        if len(forwarded) >= hops:
            return forwarded[-hops]
    if request.client is not None:
        return request.client.host
    return "unknown"


def admin_session_token(request: Request) -> str | None:
    return request.headers.get(ADMIN_SESSION_HEADER) or request.cookies.get(ADMIN_SESSION_COOKIE)


def require_admin(
    request: Request,
    gate: AdminVerificationGate = Depends(get_admin_gate),
) -> AdminSession:
    """Valid admin session for this request.

    Raises:
        UnauthorizedError: No session, or it expired or was revoked
    """
    session = gate.validate_session(admin_session_token(request))
    if session is None:
        raise UnauthorizedError("Admin session required")
    return session


def _cron_secret_matches(request: Request) -> bool:
    authorization = request.headers.get("Authorization", "")
    scheme, _, presented = authorization.partition(" ")
    if scheme.lower() != "bearer" or not presented:
        return False
    try:
        expected = get_ssm_service().get_secret(CRON_SECRET_NAME)
    except SSMServiceError as e:
        raise ExternalServiceError("Scheduler secret unavailable") from e
    return hmac.compare_digest(presented.encode(), expected.encode())


def require_scheduler(
    request: Request,
    gate: AdminVerificationGate = Depends(get_admin_gate),
) -> str:
    """Caller allowed to trigger reconciliation: cron secret or admin session.

    Returns:
        "cron" or "admin", for logging

    Raises:
        UnauthorizedError: Neither credential is valid
    """
    if _cron_secret_matches(request):
        return "cron"
    if gate.validate_session(admin_session_token(request)) is not None:
        return "admin"
    raise UnauthorizedError("Scheduler credentials required")
