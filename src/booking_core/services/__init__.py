"""Booking engine services."""

from .admin_gate import AdminVerificationGate, hash_admin_code
from .booking import BookingService, CancellationResult
from .booking_repository import BookingRepository
from .calendar_index import CalendarIndex
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .events import EventPublisher, get_event_publisher
from .idempotency import IdempotencyGuard, derive_key
from .listings import ListingService
from .payment_coordinator import PaymentCoordinator
from .pricing import PricingService
from .reconciliation import ReconciliationScheduler
from .refund_policy_service import RefundPolicyService
from .ssm_service import SSMService, SSMServiceError, get_ssm_service
from .state_machine import BookingStateMachine, TransitionResult
from .stripe_service import StripeService, StripeServiceError, get_stripe_service
from .webhook_handler import WebhookHandler

__all__ = [
    "AdminVerificationGate",
    "BookingRepository",
    "BookingService",
    "BookingStateMachine",
    "CalendarIndex",
    "CancellationResult",
    "DynamoDBService",
    "EventPublisher",
    "IdempotencyGuard",
    "ListingService",
    "PaymentCoordinator",
    "PricingService",
    "ReconciliationScheduler",
    "RefundPolicyService",
    "SSMService",
    "SSMServiceError",
    "StripeService",
    "StripeServiceError",
    "TransitionResult",
    "WebhookHandler",
    "derive_key",
    "get_dynamodb_service",
    "get_event_publisher",
    "get_ssm_service",
    "get_stripe_service",
    "hash_admin_code",
    "reset_dynamodb_service",
]
