"""Idempotency guard for side-effecting operations.

The first caller with a key claims it with a conditional put and runs the
operation; its JSON result is stored so later callers with the same key get
the same answer. Records live in DynamoDB so every instance shares them.

An ``in_progress`` claim has no TTL. Only a claim whose holder crashed
(``locked_until`` in the past) can be taken over, so a slow operation is
never run twice.
"""

import datetime as dt
import hashlib
import logging
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel

from booking_core.config import get_settings
from booking_core.models import ConflictError, ValidationError
from booking_core.utils.timestamps import epoch_seconds, to_iso, utc_now

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

STATE_IN_PROGRESS = "in_progress"
STATE_COMPLETED = "completed"

# Claim attempts before giving up on a key that keeps changing underneath us
_MAX_CLAIM_ATTEMPTS = 3


def derive_key(scope: str, principal: str, token: str) -> str:
    """Derive a storage key from a caller-supplied token.

    The key is scoped to the operation and the authenticated principal so two
    users can never collide, and it never depends on booking content.
    """
    raw = f"{scope}:{principal}:{token}"
    return hashlib.sha256(raw.encode()).hexdigest()


class IdempotencyGuard:
    """Run an operation at most once per idempotency key."""

    TABLE = "idempotency-keys"

    def __init__(
        self,
        db: "DynamoDBService",
        ttl: dt.timedelta | None = None,
        lock_timeout: dt.timedelta | None = None,
    ) -> None:
        """Initialize idempotency guard.

        Args:
            db: DynamoDB service instance
            ttl: How long completed results are kept (default 24h)
            lock_timeout: How long an in-progress claim is honored before it
                may be taken over (default 5 minutes)
        """
        settings = get_settings()
        self.db = db
        self.ttl = ttl or settings.idempotency_ttl
        self.lock_timeout = lock_timeout or settings.idempotency_lock

    def with_idempotency_key(
        self,
        key: str,
        operation: Callable[[], T],
        result_model: type[T],
        *,
        scope: str,
        fingerprint: str | None = None,
        now: dt.datetime | None = None,
    ) -> T:
        """Run ``operation`` once for ``key``; replay its stored result afterwards.

        Args:
            key: Idempotency key (see derive_key)
            operation: Zero-argument callable producing a pydantic model
            result_model: Model class used to decode a stored result
            scope: Operation name, stored for auditing
            fingerprint: Hash of the request; reuse with a different request fails
            now: Current time (defaults to UTC now)

        Returns:
            The operation's result, fresh or replayed

        Raises:
            ConflictError: The first call with this key is still in flight
            ValidationError: The key was used for a different request
        """
        now = now or utc_now()
        owner = uuid.uuid4().hex

        for _ in range(_MAX_CLAIM_ATTEMPTS):
            if self._claim(key, scope, fingerprint, owner, now):
                break

            existing = self.db.get_item(self.TABLE, {"idempotency_key": key})
            if existing is None:
                # Released between our put and get; try to claim again
                continue

            stored_fingerprint = existing.get("fingerprint")
            if fingerprint and stored_fingerprint and stored_fingerprint != fingerprint:
                raise ValidationError(
                    "Idempotency key was already used for a different request",
                    {"scope": scope},
                )

            if existing.get("state") == STATE_COMPLETED and existing.get("result"):
                logger.info("Idempotent replay for %s key %s", scope, key[:12])
                return result_model.model_validate_json(existing["result"])

            raise ConflictError(
                "A request with this idempotency key is still in progress",
                {"scope": scope, "retryable": "true"},
            )
        else:
            raise ConflictError(
                "Could not acquire idempotency key",
                {"scope": scope, "retryable": "true"},
            )

        try:
            result = operation()
        except Exception:
            self._release(key, owner)
            raise

        self._complete(key, owner, result, now)
        return result

    def get_result(self, key: str, result_model: type[T]) -> T | None:
        """Return the stored result for a completed key, if any."""
        existing = self.db.get_item(self.TABLE, {"idempotency_key": key})
        if not existing or existing.get("state") != STATE_COMPLETED:
            return None
        return result_model.model_validate_json(existing["result"])

    def _claim(
        self,
        key: str,
        scope: str,
        fingerprint: str | None,
        owner: str,
        now: dt.datetime,
    ) -> bool:
        item: dict[str, Any] = {
            "idempotency_key": key,
            "scope": scope,
            "state": STATE_IN_PROGRESS,
            "owner": owner,
            "locked_until": to_iso(now + self.lock_timeout),
            "created_at": to_iso(now),
        }
        if fingerprint:
            item["fingerprint"] = fingerprint

        # Free key, crashed holder, or a completed record past expiry whose
        # TTL deletion has not happened yet
        return self.db.put_item(
            self.TABLE,
            item,
            condition_expression=(
                "attribute_not_exists(idempotency_key)"
                " OR (#state = :in_progress AND locked_until < :now)"
                " OR (#state = :completed AND expires_at < :now)"
            ),
            expression_attribute_names={"#state": "state"},
            expression_attribute_values={
                ":in_progress": STATE_IN_PROGRESS,
                ":completed": STATE_COMPLETED,
                ":now": to_iso(now),
            },
        )

    def _complete(self, key: str, owner: str, result: BaseModel, now: dt.datetime) -> None:
        expires_at = now + self.ttl
        updated = self.db.update_item(
            self.TABLE,
            {"idempotency_key": key},
            "SET #state = :completed, #result = :result, expires_at = :expires_at,"
            " #ttl = :ttl REMOVE locked_until",
            expression_attribute_values={
                ":completed": STATE_COMPLETED,
                ":result": result.model_dump_json(),
                ":expires_at": to_iso(expires_at),
                ":ttl": epoch_seconds(expires_at),
                ":owner": owner,
            },
            expression_attribute_names={
                "#state": "state",
                "#result": "result",
                "#ttl": "ttl",
                "#owner": "owner",
            },
            condition_expression="#owner = :owner",
        )
        if updated is None:
            logger.warning(
                "Idempotency claim for key %s was taken over before completion", key[:12]
            )

    def _release(self, key: str, owner: str) -> None:
        released = self.db.delete_item(
            self.TABLE,
            {"idempotency_key": key},
            condition_expression="#owner = :owner AND #state = :in_progress",
            expression_attribute_names={"#owner": "owner", "#state": "state"},
            expression_attribute_values={":owner": owner, ":in_progress": STATE_IN_PROGRESS},
        )
        if released:
            logger.info("Released idempotency key %s after failure", key[:12])
