"""Stripe payment service for PaymentIntents, refunds and webhook verification.

Provides integration with Stripe using the v8+ StripeClient pattern.
Retrieves API keys from SSM Parameter Store. Every outbound call carries a
bounded network timeout; a timeout is reported as a transient failure, never
as a decline.
"""

import hashlib
import json
import logging
from functools import lru_cache
from typing import Any

import stripe
from stripe import StripeClient

from booking_core.config import get_settings

from .ssm_service import SSMServiceError, get_ssm_service

logger = logging.getLogger(__name__)

SECRET_KEY_NAME = "stripe/secret_key"
WEBHOOK_SECRET_NAME = "stripe/webhook_secret"

# Errors where the processor may or may not have acted
_TRANSIENT_ERRORS = (
    stripe.APIConnectionError,
    stripe.RateLimitError,
    stripe.APIError,
)

# Errors where the processor refused the payer
_DECLINE_ERRORS = (stripe.CardError,)


class StripeServiceError(Exception):
    """Raised when a Stripe operation fails."""

    def __init__(
        self,
        message: str,
        stripe_error_code: str | None = None,
        *,
        transient: bool = False,
        declined: bool = False,
    ) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
            transient: True when the outcome is unknown (timeout, outage,
                rate limit) and the call may be retried.
            declined: True when the processor refused the payer (card decline).
        """
        super().__init__(message)
        self.stripe_error_code = stripe_error_code
        self.transient = transient
        self.declined = declined


def _intent_to_dict(intent: Any) -> dict[str, Any]:
    last_error = getattr(intent, "last_payment_error", None)
    return {
        "id": intent.id,
        "status": intent.status,
        "client_secret": getattr(intent, "client_secret", None),
        "amount": getattr(intent, "amount", None),
        "currency": getattr(intent, "currency", None),
        "last_payment_error_code": getattr(last_error, "code", None) if last_error else None,
        "has_payment_error": last_error is not None,
    }


class StripeService:
    """Service for Stripe payment operations.

    Handles:
    - PaymentIntent creation with platform fee and host destination
    - PaymentIntent status lookups for reconciliation
    - Webhook signature validation
    - Refund processing

    Usage:
        stripe_svc = get_stripe_service()
        intent = stripe_svc.create_payment_intent(
            amount=52800,
            currency="usd",
            idempotency_key="payment-3f1c...",
            metadata={"booking_id": "BK-4F2A9C01D3E7"},
        )
    """

    def __init__(self, timeout_seconds: int | None = None) -> None:
        """Initialize Stripe service with credentials from SSM.

        Args:
            timeout_seconds: Network timeout per call. Defaults to settings.
        """
        self._timeout = timeout_seconds or get_settings().stripe_timeout_seconds
        self._ssm = get_ssm_service()
        self._client: StripeClient | None = None
        self._webhook_secret: str | None = None

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            StripeServiceError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._ssm.get_secret(SECRET_KEY_NAME)
            except SSMServiceError as e:
                raise StripeServiceError(
                    f"Failed to initialize Stripe client: {e}", transient=True
                ) from e
            self._client = StripeClient(
                secret_key,
                http_client=stripe.RequestsClient(timeout=self._timeout),
            )
            logger.info("Stripe client initialized (timeout %ss)", self._timeout)
        return self._client

    def _get_webhook_secret(self) -> str:
        if self._webhook_secret is None:
            try:
                self._webhook_secret = self._ssm.get_secret(WEBHOOK_SECRET_NAME)
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to get webhook secret: {e}") from e
        return self._webhook_secret

    @staticmethod
    def _wrap_error(action: str, e: stripe.StripeError) -> StripeServiceError:
        error_code = getattr(e, "code", None)
        transient = isinstance(e, _TRANSIENT_ERRORS)
        declined = isinstance(e, _DECLINE_ERRORS)
        logger.error(
            "Stripe %s failed: %s (code: %s, transient: %s)",
            action,
            str(e),
            error_code,
            transient,
        )
        return StripeServiceError(
            f"Failed to {action}: {e}",
            stripe_error_code=error_code,
            transient=transient,
            declined=declined,
        )

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        idempotency_key: str,
        metadata: dict[str, str],
        customer: str | None = None,
        destination: str | None = None,
        application_fee_amount: int | None = None,
    ) -> dict[str, Any]:
        """Create a PaymentIntent.

        Args:
            amount: Amount in minor units of ``currency``.
            currency: ISO currency code.
            idempotency_key: Key forwarded to Stripe so retries never double-charge.
            metadata: Correlation metadata (booking id, listing id, ...).
            customer: Optional Stripe customer id.
            destination: Host's connected account; enables a destination charge.
            application_fee_amount: Platform fee kept from a destination charge.

        Returns:
            Dict with id, status, client_secret and last error details.

        Raises:
            StripeServiceError: If creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "metadata": metadata,
            "automatic_payment_methods": {"enabled": True},
        }
        if customer:
            params["customer"] = customer
        if destination:
            params["transfer_data"] = {"destination": destination}
            if application_fee_amount is not None:
                params["application_fee_amount"] = application_fee_amount

        try:
            intent = client.payment_intents.create(
                params=params,  # type: ignore[arg-type]
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as e:
            raise self._wrap_error("create payment intent", e) from e

        logger.info("PaymentIntent created: %s", intent.id)
        return _intent_to_dict(intent)

    def retrieve_payment_intent(self, intent_id: str) -> dict[str, Any]:
        """Fetch the current state of a PaymentIntent.

        Raises:
            StripeServiceError: If the lookup fails.
        """
        client = self._get_client()
        try:
            intent = client.payment_intents.retrieve(intent_id)
        except stripe.StripeError as e:
            raise self._wrap_error("retrieve payment intent", e) from e
        return _intent_to_dict(intent)

    def verify_webhook_signature(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and parse the event.

        Args:
            payload: Raw request body bytes.
            signature: Stripe-Signature header value.

        Returns:
            Parsed Stripe event dictionary.

        Raises:
            StripeServiceError: If the signature or payload is invalid.
        """
        webhook_secret = self._get_webhook_secret()

        try:
            event = stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise StripeServiceError("Invalid webhook signature") from e
        except ValueError as e:
            logger.warning("Invalid webhook payload: %s", str(e))
            raise StripeServiceError("Invalid webhook payload") from e

        logger.info("Webhook signature verified for event: %s", event.id)
        # Event objects are not mappings on current stripe releases
        return json.loads(payload)

    def create_refund(
        self,
        *,
        payment_intent_id: str,
        amount: int | None = None,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Create a refund for a payment.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx).
            amount: Refund amount in minor units. If None, full refund.
            reason: Reason for refund (for records).
            idempotency_key: Optional key so a retried refund is not duplicated.

        Returns:
            Dict with refund_id, amount and status.

        Raises:
            StripeServiceError: If refund creation fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = amount
        if reason:
            params["metadata"] = {"reason": reason}

        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            logger.info(
                "Creating refund for PaymentIntent %s, amount %s",
                payment_intent_id,
                amount if amount is not None else "full",
            )
            refund = client.refunds.create(params=params, options=options)  # type: ignore[arg-type]
        except stripe.StripeError as e:
            raise self._wrap_error("create refund", e) from e

        logger.info("Refund created: %s for PaymentIntent %s", refund.id, payment_intent_id)
        return {"refund_id": refund.id, "amount": refund.amount, "status": refund.status}

    @staticmethod
    def compute_payload_hash(payload: bytes) -> str:
        """Compute SHA-256 hash of a webhook payload for the audit log."""
        return hashlib.sha256(payload).hexdigest()


@lru_cache(maxsize=1)
def get_stripe_service() -> StripeService:
    """Get the shared StripeService instance."""
    return StripeService()
