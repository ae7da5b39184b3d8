"""Admin verification gate.

Brute-force resistant check of the shared admin code. Failed attempts are
counted per client identifier in DynamoDB with conditional updates, so the
lockout holds across instances. Once ``max_attempts`` failures land inside
the rolling window the client is locked out until ``locked_until``; attempts
while locked never touch the counter, so a lockout always ends.

Secrets:
    admin/code_hash  hex PBKDF2-HMAC-SHA256 digest of the admin code
    admin/code_salt  salt used to derive it

Codes, digests and session tokens are never logged.
"""

import datetime as dt
import hashlib
import hmac
import logging
import math
import secrets
from typing import TYPE_CHECKING, Any

from booking_core.config import get_settings
from booking_core.models import (
    AdminSession,
    AttemptCounter,
    ExternalServiceError,
    InvalidCodeError,
    RateLimitedError,
    ValidationError,
)
from booking_core.utils.timestamps import epoch_seconds, parse_iso, parse_optional, to_iso, utc_now

from .ssm_service import SSMServiceError

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService
    from .ssm_service import SSMService

logger = logging.getLogger(__name__)

CODE_HASH_NAME = "admin/code_hash"
CODE_SALT_NAME = "admin/code_salt"

# Retries of the counter update when another attempt for the same client
# lands between read and write
MAX_COUNTER_ATTEMPTS = 3


def hash_admin_code(code: str, salt: str, iterations: int) -> str:
    """Derive the stored form of an admin code.

    Args:
        code: Plain admin code
        salt: Salt stored next to the hash
        iterations: PBKDF2 iteration count

    Returns:
        Hex PBKDF2-HMAC-SHA256 digest
    """
    return hashlib.pbkdf2_hmac("sha256", code.encode(), salt.encode(), iterations).hex()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class AdminVerificationGate:
    """Verify the admin code and manage admin sessions."""

    ATTEMPTS_TABLE = "admin-attempts"
    SESSIONS_TABLE = "admin-sessions"

    def __init__(
        self,
        db: "DynamoDBService",
        secrets_store: "SSMService",
        max_attempts: int | None = None,
        lockout: dt.timedelta | None = None,
        session_ttl: dt.timedelta | None = None,
        iterations: int | None = None,
    ) -> None:
        """Initialize the gate.

        Args:
            db: DynamoDB service
            secrets_store: Source of the admin code hash and salt
            max_attempts: Failures allowed inside the window. Defaults to settings.
            lockout: Rolling window and lockout duration. Defaults to settings.
            session_ttl: Session validity. Defaults to settings.
            iterations: PBKDF2 iterations. Defaults to settings.
        """
        settings = get_settings()
        self.db = db
        self.secrets = secrets_store
        self.max_attempts = max_attempts or settings.admin_max_attempts
        self.lockout = lockout or settings.admin_lockout
        self.session_ttl = session_ttl or settings.admin_session_ttl
        self.iterations = iterations or settings.admin_code_iterations

    # =========================================================================
    # Verification
    # =========================================================================

    def verify(self, client_id: str, code: str, now: dt.datetime | None = None) -> AdminSession:
        """Check an admin code and issue a session on success.

        Args:
            client_id: Caller identity (network origin)
            code: Code to check
            now: Current time (defaults to UTC now)

        Returns:
            AdminSession carrying the raw token (only time it is available)

        Raises:
            ValidationError: Empty code
            RateLimitedError: Client is locked out, whatever the code
            InvalidCodeError: Wrong code, with the attempts left
            ExternalServiceError: Admin code secret unavailable
        """
        now = now or utc_now()
        if not code:
            raise ValidationError("Code required")

        counter = self.get_counter(client_id)
        if counter is not None and counter.locked_until is not None and counter.locked_until > now:
            raise self._rate_limited(client_id, counter.locked_until, now)

        if not self._code_matches(code):
            counter = self._record_failure(client_id, now)
            if counter.locked_until is not None and counter.locked_until > now:
                logger.warning(
                    "Admin verification locked for client %s until %s",
                    client_id,
                    to_iso(counter.locked_until),
                )
            remaining = max(self.max_attempts - counter.failure_count, 0)
            logger.info(
                "Invalid admin code from client %s (%d attempts remaining)", client_id, remaining
            )
            raise InvalidCodeError(remaining)

        self.db.delete_item(self.ATTEMPTS_TABLE, {"client_id": client_id})
        session = self._issue_session(client_id, now)
        logger.info(
            "Admin session issued for client %s until %s", client_id, to_iso(session.expires_at)
        )
        return session

    def get_counter(self, client_id: str) -> AttemptCounter | None:
        item = self.db.get_item(self.ATTEMPTS_TABLE, {"client_id": client_id})
        return self._item_to_counter(item) if item else None

    def _code_matches(self, code: str) -> bool:
        try:
            expected = self.secrets.get_secret(CODE_HASH_NAME)
            salt = self.secrets.get_secret(CODE_SALT_NAME)
        except SSMServiceError as e:
            logger.error("Admin code secret unavailable: %s", e)
            raise ExternalServiceError("Admin verification is unavailable") from e

        candidate = hash_admin_code(code, salt, self.iterations)
        return hmac.compare_digest(candidate.encode(), expected.strip().lower().encode())

    def _record_failure(self, client_id: str, now: dt.datetime) -> AttemptCounter:
        """Count a failed attempt and lock the client at the threshold."""
        window_floor = to_iso(now - self.lockout)
        values: dict[str, Any] = {
            ":one": 1,
            ":now": to_iso(now),
            ":floor": window_floor,
            ":ttl": epoch_seconds(now + 2 * self.lockout),
        }

        for _ in range(MAX_COUNTER_ATTEMPTS):
            # Inside the current window: increment
            attrs = self.db.update_item(
                self.ATTEMPTS_TABLE,
                {"client_id": client_id},
                "SET failure_count = failure_count + :one, last_attempt_at = :now, #ttl = :ttl",
                expression_attribute_values=values,
                expression_attribute_names={"#ttl": "ttl"},
                condition_expression=(
                    "window_started_at > :floor "
                    "AND (attribute_not_exists(locked_until) OR locked_until <= :now)"
                ),
            )
            if attrs is None:
                # No counter yet, or its window has elapsed: start a new one
                attrs = self.db.update_item(
                    self.ATTEMPTS_TABLE,
                    {"client_id": client_id},
                    "SET failure_count = :one, window_started_at = :now, "
                    "last_attempt_at = :now, #ttl = :ttl REMOVE locked_until",
                    expression_attribute_values=values,
                    expression_attribute_names={"#ttl": "ttl"},
                    condition_expression=(
                        "attribute_not_exists(window_started_at) OR window_started_at <= :floor"
                    ),
                )
            if attrs is not None:
                counter = self._item_to_counter(attrs)
                if counter.failure_count >= self.max_attempts:
                    counter = self._lock(client_id, now) or counter
                return counter

        # Another attempt locked the client between our read and write
        counter = self.get_counter(client_id)
        if counter is not None and counter.locked_until is not None and counter.locked_until > now:
            raise self._rate_limited(client_id, counter.locked_until, now)
        return counter or AttemptCounter(client_id=client_id, failure_count=1)

    def _lock(self, client_id: str, now: dt.datetime) -> AttemptCounter | None:
        """Set locked_until unless a lock is already running."""
        attrs = self.db.update_item(
            self.ATTEMPTS_TABLE,
            {"client_id": client_id},
            "SET locked_until = :until",
            expression_attribute_values={":until": to_iso(now + self.lockout), ":now": to_iso(now)},
            condition_expression="attribute_not_exists(locked_until) OR locked_until <= :now",
        )
        return self._item_to_counter(attrs) if attrs else None

    @staticmethod
    def _rate_limited(
        client_id: str, locked_until: dt.datetime, now: dt.datetime
    ) -> RateLimitedError:
        retry_after = max(math.ceil((locked_until - now).total_seconds()), 1)
        logger.info(
            "Admin verification rejected for locked client %s (%ds left)", client_id, retry_after
        )
        return RateLimitedError(retry_after)

    # =========================================================================
    # Sessions
    # =========================================================================

    def _issue_session(self, client_id: str, now: dt.datetime) -> AdminSession:
        token = secrets.token_urlsafe(32)
        session = AdminSession(
            session_id=hash_token(token),
            client_id=client_id,
            issued_at=now,
            expires_at=now + self.session_ttl,
            token=token,
        )
        self.db.put_item(
            self.SESSIONS_TABLE,
            {
                "session_id": session.session_id,
                "client_id": client_id,
                "issued_at": to_iso(session.issued_at),
                "expires_at": to_iso(session.expires_at),
                "ttl": epoch_seconds(session.expires_at),
            },
        )
        return session

    def validate_session(
        self, token: str | None, now: dt.datetime | None = None
    ) -> AdminSession | None:
        """Return the session for a token if it exists and has not expired."""
        if not token:
            return None
        now = now or utc_now()
        item = self.db.get_item(self.SESSIONS_TABLE, {"session_id": hash_token(token)})
        if not item:
            return None
        session = AdminSession(
            session_id=item["session_id"],
            client_id=item["client_id"],
            issued_at=parse_iso(item["issued_at"]),
            expires_at=parse_iso(item["expires_at"]),
        )
        return session if session.is_valid(now) else None

    def revoke_session(self, token: str) -> None:
        self.db.delete_item(self.SESSIONS_TABLE, {"session_id": hash_token(token)})
        logger.info("Admin session revoked")

    @staticmethod
    def _item_to_counter(item: dict[str, Any]) -> AttemptCounter:
        return AttemptCounter(
            client_id=item["client_id"],
            failure_count=int(item.get("failure_count", 0)),
            window_started_at=parse_optional(item.get("window_started_at")),
            last_attempt_at=parse_optional(item.get("last_attempt_at")),
            locked_until=parse_optional(item.get("locked_until")),
        )
