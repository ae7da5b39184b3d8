"""Webhook endpoints for the payment processor.

These endpoints do NOT require JWT authentication; the payload signature is
verified with the Stripe webhook secret before anything else happens.
"""

from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from booking_api.dependencies import get_webhook_handler
from booking_core.models import ValidationError, WebhookOutcome
from booking_core.services.stripe_service import (
    StripeService,
    StripeServiceError,
    get_stripe_service,
)
from booking_core.services.webhook_handler import WebhookHandler
from booking_core.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/stripe",
    summary="Receive Stripe webhook events",
    description="""
Endpoint for Stripe webhook events. Handles:
- payment_intent.succeeded: confirms the booking
- payment_intent.payment_failed / canceled: records the failure
- payment_intent.processing / requires_action: status only
- charge.refunded: records the refund

**No authentication required** - signature is verified using Stripe webhook secret.

**Idempotent**: Duplicate events (same event id) return 200 with 'duplicate' result.
""",
    response_model=WebhookOutcome,
    responses={
        200: {"description": "Event received and processed (or acknowledged)"},
        400: {"description": "Invalid signature or missing header"},
    },
)
async def handle_stripe_webhook(
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> WebhookOutcome:
    signature = request.headers.get("Stripe-Signature")
    if not signature:
        logger.warning("Webhook request missing Stripe-Signature header")
        raise ValidationError("Missing Stripe-Signature header")

    payload = await request.body()

    try:
        event = await run_in_threadpool(
            get_stripe_service().verify_webhook_signature, payload, signature
        )
    except StripeServiceError as e:
        raise ValidationError("Invalid webhook signature") from e

    log_webhook_event(logger, event.get("type", ""), event.get("id", ""), result="received")
    return await run_in_threadpool(
        handler.handle, event, StripeService.compute_payload_hash(payload)
    )
