"""FastAPI dependency injection providers for booking engine services.

Factories are cached with @lru_cache so each process builds one instance of
each service. Services are lazily instantiated on first use.

Service Dependency Graph:
    DynamoDBService (singleton via get_dynamodb_service)
        ├── CalendarIndex
        ├── BookingRepository
        ├── IdempotencyGuard
        ├── ListingService
        ├── BookingStateMachine (repository, calendar, EventPublisher)
        ├── PaymentCoordinator (StripeService, guard, listings, PricingService)
        │       └── BookingService
        │               ├── WebhookHandler
        │               └── ReconciliationScheduler
        └── AdminVerificationGate (SSMService)

Testing:
    Use reset_services() to clear cached instances between tests.
"""

from functools import lru_cache

from booking_core.config import get_settings
from booking_core.services.admin_gate import AdminVerificationGate
from booking_core.services.booking import BookingService
from booking_core.services.booking_repository import BookingRepository
from booking_core.services.calendar_index import CalendarIndex
from booking_core.services.dynamodb import get_dynamodb_service, reset_dynamodb_service
from booking_core.services.events import get_event_publisher
from booking_core.services.idempotency import IdempotencyGuard
from booking_core.services.listings import ListingService
from booking_core.services.payment_coordinator import PaymentCoordinator
from booking_core.services.pricing import PricingService
from booking_core.services.reconciliation import ReconciliationScheduler
from booking_core.services.ssm_service import get_ssm_service
from booking_core.services.state_machine import BookingStateMachine
from booking_core.services.stripe_service import get_stripe_service
from booking_core.services.webhook_handler import WebhookHandler


@lru_cache
def get_calendar_index() -> CalendarIndex:
    return CalendarIndex(db=get_dynamodb_service())


@lru_cache
def get_booking_repository() -> BookingRepository:
    return BookingRepository(db=get_dynamodb_service())


@lru_cache
def get_idempotency_guard() -> IdempotencyGuard:
    settings = get_settings()
    return IdempotencyGuard(
        db=get_dynamodb_service(),
        ttl=settings.idempotency_ttl,
        lock_timeout=settings.idempotency_lock,
    )


@lru_cache
def get_listing_service() -> ListingService:
    return ListingService(db=get_dynamodb_service())


@lru_cache
def get_pricing_service() -> PricingService:
    return PricingService()


@lru_cache
def get_state_machine() -> BookingStateMachine:
    """Get cached BookingStateMachine instance.

    Returns:
        BookingStateMachine publishing domain events to the configured bus.
    """
    return BookingStateMachine(
        db=get_dynamodb_service(),
        repository=get_booking_repository(),
        calendar=get_calendar_index(),
        publisher=get_event_publisher(),
    )


@lru_cache
def get_payment_coordinator() -> PaymentCoordinator:
    return PaymentCoordinator(
        db=get_dynamodb_service(),
        stripe=get_stripe_service(),
        guard=get_idempotency_guard(),
        listings=get_listing_service(),
        pricing=get_pricing_service(),
    )


@lru_cache
def get_booking_service() -> BookingService:
    """Get cached BookingService instance.

    Returns:
        BookingService configured with all required dependencies.
    """
    return BookingService(
        repository=get_booking_repository(),
        calendar=get_calendar_index(),
        state_machine=get_state_machine(),
        payments=get_payment_coordinator(),
        guard=get_idempotency_guard(),
        listings=get_listing_service(),
        pricing=get_pricing_service(),
    )


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(
        db=get_dynamodb_service(),
        bookings=get_booking_service(),
        payments=get_payment_coordinator(),
        state_machine=get_state_machine(),
    )


@lru_cache
def get_reconciliation_scheduler() -> ReconciliationScheduler:
    return ReconciliationScheduler(
        repository=get_booking_repository(),
        calendar=get_calendar_index(),
        state_machine=get_state_machine(),
        bookings=get_booking_service(),
        payments=get_payment_coordinator(),
    )


@lru_cache
def get_admin_gate() -> AdminVerificationGate:
    return AdminVerificationGate(db=get_dynamodb_service(), secrets_store=get_ssm_service())


def reset_services() -> None:
    """Clear all cached service instances.

    Call this in test fixtures to ensure clean state between tests.
    Also resets the underlying DynamoDB singleton, the processor and
    secret clients, and the settings.

    Example:
        @pytest.fixture(autouse=True)
        def reset_state():
            yield
            reset_services()
    """
    for factory in (
        get_calendar_index,
        get_booking_repository,
        get_idempotency_guard,
        get_listing_service,
        get_pricing_service,
        get_state_machine,
        get_payment_coordinator,
        get_booking_service,
        get_webhook_handler,
        get_reconciliation_scheduler,
        get_admin_gate,
        get_stripe_service,
        get_ssm_service,
        get_event_publisher,
        get_settings,
    ):
        factory.cache_clear()

    reset_dynamodb_service()
