"""Pytest configuration and fixtures for booking engine tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto (every engine table, with its indexes)
- Service instances wired against the mocked tables
- A mocked Stripe service
- Sample listing, booking request and bookings in each lifecycle stage
"""

import hashlib
import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock

import boto3
import pytest
from moto import mock_aws

from tests.factories import (
    ADMIN_CODE,
    ADMIN_CODE_ITERATIONS,
    ADMIN_CODE_SALT,
    CHECK_IN,
    CHECK_OUT,
    CRON_SECRET,
    EXPECTED_TOTAL,
    GUEST_ID,
    HOST_ID,
    LISTING_ID,
    NOW,
    make_intent,
)

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ.setdefault("DYNAMODB_TABLE_PREFIX", "test-booking")
os.environ.setdefault("ENVIRONMENT", "test")

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

# Secret names map to variables: admin/code_hash -> ADMIN_CODE_HASH
os.environ["ADMIN_CODE_ITERATIONS"] = str(ADMIN_CODE_ITERATIONS)
os.environ["ADMIN_CODE_SALT"] = ADMIN_CODE_SALT
os.environ["ADMIN_CODE_HASH"] = hashlib.pbkdf2_hmac(
    "sha256", ADMIN_CODE.encode(), ADMIN_CODE_SALT.encode(), ADMIN_CODE_ITERATIONS
).hex()
os.environ["CRON_SECRET"] = CRON_SECRET
os.environ["STRIPE_SECRET_KEY"] = "sk_test_fake"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_fake"

# === Reset Fixtures ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached services and settings before and after each test.

    Tests using mock_aws need fresh service instances created inside the
    mock context rather than ones left over from a previous test.
    """
    from booking_api.dependencies import reset_services
    from booking_core.services.ssm_service import SSMService

    reset_services()
    SSMService._cache.clear()
    yield
    reset_services()
    SSMService._cache.clear()


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS Credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "eu-west-1"


@pytest.fixture
def dynamodb_client(aws_credentials: None) -> Generator[Any, None, None]:
    """Create a mocked DynamoDB client."""
    with mock_aws():
        client = boto3.client("dynamodb", region_name="eu-west-1")
        yield client


def _string_attrs(*names: str) -> list[dict[str, str]]:
    return [{"AttributeName": name, "AttributeType": "S"} for name in names]


def _index(name: str, hash_key: str, range_key: str | None = None) -> dict[str, Any]:
    key_schema = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key:
        key_schema.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return {
        "IndexName": name,
        "KeySchema": key_schema,
        "Projection": {"ProjectionType": "ALL"},
    }


@pytest.fixture
def create_tables(dynamodb_client: Any) -> Any:
    """Create all required DynamoDB tables for testing."""
    tables = [
        {
            "TableName": "test-booking-bookings",
            "KeySchema": [{"AttributeName": "booking_id", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs(
                "booking_id", "status", "sweep_due_at", "guest_id", "host_id", "created_at"
            ),
            "GlobalSecondaryIndexes": [
                _index("status-due-index", "status", "sweep_due_at"),
                _index("guest-index", "guest_id", "created_at"),
                _index("host-index", "host_id", "created_at"),
            ],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": "test-booking-calendar-nights",
            "KeySchema": [
                {"AttributeName": "listing_id", "KeyType": "HASH"},
                {"AttributeName": "night", "KeyType": "RANGE"},
            ],
            "AttributeDefinitions": _string_attrs("listing_id", "night"),
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": "test-booking-calendar-blocks",
            "KeySchema": [{"AttributeName": "block_id", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs("block_id", "listing_id", "start_date"),
            "GlobalSecondaryIndexes": [_index("listing-index", "listing_id", "start_date")],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": "test-booking-idempotency-keys",
            "KeySchema": [{"AttributeName": "idempotency_key", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs("idempotency_key"),
            "BillingMode": "PAY_PER_REQUEST",
            "TimeToLiveSpecification": {"AttributeName": "ttl", "Enabled": True},
        },
        {
            "TableName": "test-booking-payment-intents",
            "KeySchema": [{"AttributeName": "intent_id", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs("intent_id", "booking_id", "created_at"),
            "GlobalSecondaryIndexes": [_index("booking-index", "booking_id", "created_at")],
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": "test-booking-payment-webhook-events",
            "KeySchema": [{"AttributeName": "event_id", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs("event_id"),
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": "test-booking-listings",
            "KeySchema": [{"AttributeName": "listing_id", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs("listing_id"),
            "BillingMode": "PAY_PER_REQUEST",
        },
        {
            "TableName": "test-booking-admin-attempts",
            "KeySchema": [{"AttributeName": "client_id", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs("client_id"),
            "BillingMode": "PAY_PER_REQUEST",
            "TimeToLiveSpecification": {"AttributeName": "ttl", "Enabled": True},
        },
        {
            "TableName": "test-booking-admin-sessions",
            "KeySchema": [{"AttributeName": "session_id", "KeyType": "HASH"}],
            "AttributeDefinitions": _string_attrs("session_id"),
            "BillingMode": "PAY_PER_REQUEST",
            "TimeToLiveSpecification": {"AttributeName": "ttl", "Enabled": True},
        },
    ]

    for table_config in tables:
        # TimeToLiveSpecification needs to be set after table creation
        ttl_spec = table_config.pop("TimeToLiveSpecification", None)
        dynamodb_client.create_table(**table_config)

        if ttl_spec:
            dynamodb_client.update_time_to_live(
                TableName=table_config["TableName"],
                TimeToLiveSpecification=ttl_spec,
            )
    return dynamodb_client


@pytest.fixture
def db(create_tables: Any) -> Any:
    """DynamoDBService bound to the mocked tables."""
    from booking_core.services.dynamodb import DynamoDBService

    return DynamoDBService("test-booking")


# === Sample Data Fixtures ===


@pytest.fixture
def sample_listing() -> dict[str, Any]:
    """Sample listing item as stored by the listing catalogue."""
    return {
        "listing_id": LISTING_ID,
        "host_id": HOST_ID,
        "status": "active",
        "nightly_rate": 10000,
        "cleaning_fee": 5000,
        "currency": "USD",
        "max_guests": 4,
        "min_nights": 2,
        "cancellation_policy": "moderate",
        "payout_account_id": "acct_host1",
    }


@pytest.fixture
def listing(db: Any, sample_listing: dict[str, Any]) -> dict[str, Any]:
    """Store the sample listing."""
    db.put_item("listings", sample_listing)
    return sample_listing


@pytest.fixture
def booking_request() -> Any:
    from booking_core.models import BookingRequest

    return BookingRequest(
        listing_id=LISTING_ID,
        check_in=CHECK_IN,
        check_out=CHECK_OUT,
        guest_count=2,
    )


# === Stripe Fixtures ===


@pytest.fixture
def stripe_mock() -> MagicMock:
    """StripeService double: intents start pending, refunds succeed."""
    from booking_core.services.stripe_service import StripeService

    mock = MagicMock(spec=StripeService)
    mock.create_payment_intent.return_value = make_intent()
    mock.retrieve_payment_intent.return_value = make_intent(status="processing")
    mock.create_refund.return_value = {
        "refund_id": "re_test_1",
        "amount": EXPECTED_TOTAL,
        "status": "succeeded",
    }
    return mock


# === Service Fixtures ===


@pytest.fixture
def calendar(db: Any) -> Any:
    from booking_core.services.calendar_index import CalendarIndex

    return CalendarIndex(db)


@pytest.fixture
def repository(db: Any) -> Any:
    from booking_core.services.booking_repository import BookingRepository

    return BookingRepository(db)


@pytest.fixture
def guard(db: Any) -> Any:
    from booking_core.services.idempotency import IdempotencyGuard

    return IdempotencyGuard(db)


@pytest.fixture
def listings(db: Any) -> Any:
    from booking_core.services.listings import ListingService

    return ListingService(db)


@pytest.fixture
def pricing() -> Any:
    from booking_core.services.pricing import PricingService

    return PricingService()


@pytest.fixture
def publisher() -> MagicMock:
    from booking_core.services.events import EventPublisher

    return MagicMock(spec=EventPublisher)


@pytest.fixture
def state_machine(db: Any, repository: Any, calendar: Any, publisher: MagicMock) -> Any:
    from booking_core.services.state_machine import BookingStateMachine

    return BookingStateMachine(db, repository, calendar, publisher=publisher)


@pytest.fixture
def payments(db: Any, stripe_mock: MagicMock, guard: Any, listings: Any, pricing: Any) -> Any:
    from booking_core.services.payment_coordinator import PaymentCoordinator

    return PaymentCoordinator(db, stripe_mock, guard, listings, pricing)


@pytest.fixture
def booking_service(
    repository: Any,
    calendar: Any,
    state_machine: Any,
    payments: Any,
    guard: Any,
    listings: Any,
    pricing: Any,
) -> Any:
    from booking_core.services.booking import BookingService

    return BookingService(repository, calendar, state_machine, payments, guard, listings, pricing)


@pytest.fixture
def webhook_handler(db: Any, booking_service: Any, payments: Any, state_machine: Any) -> Any:
    from booking_core.services.webhook_handler import WebhookHandler

    return WebhookHandler(db, booking_service, payments, state_machine)


@pytest.fixture
def scheduler(
    repository: Any,
    calendar: Any,
    state_machine: Any,
    booking_service: Any,
    payments: Any,
) -> Any:
    from booking_core.services.reconciliation import ReconciliationScheduler

    return ReconciliationScheduler(
        repository, calendar, state_machine, booking_service, payments, batch_size=2
    )


@pytest.fixture
def admin_gate(db: Any) -> Any:
    from booking_core.services.admin_gate import AdminVerificationGate
    from booking_core.services.ssm_service import SSMService

    return AdminVerificationGate(db, SSMService())


@pytest.fixture
def pending_booking(listing: dict[str, Any], booking_service: Any, booking_request: Any) -> Any:
    """A booking holding CHECK_IN..CHECK_OUT, awaiting payment."""
    return booking_service.create_booking(booking_request, GUEST_ID, "create-1", now=NOW)


@pytest.fixture
def processing_booking(pending_booking: Any, booking_service: Any) -> Any:
    """A booking whose PaymentIntent pi_test_1 was created and is pending."""
    booking_service.start_payment(pending_booking.booking_id, GUEST_ID, "pay-1", now=NOW)
    return booking_service.get_booking(pending_booking.booking_id)


@pytest.fixture
def confirmed_booking(processing_booking: Any, booking_service: Any) -> Any:
    """A paid, confirmed booking."""
    from booking_core.models import ProcessorStatus

    booking_service.apply_payment_status(
        processing_booking.booking_id, ProcessorStatus.SUCCEEDED, now=NOW
    )
    return booking_service.get_booking(processing_booking.booking_id)
