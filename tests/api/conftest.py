"""Fixtures for API route tests.

Routes run against the real wall clock, so stay dates are relative to today.
The processor is the shared stripe_mock, patched in where the dependency
factories and the webhook route look it up.
"""

import datetime as dt
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from tests.factories import ADMIN_CODE, GUEST_ID, HOST_ID, LISTING_ID

API_CHECK_IN = dt.datetime.now(dt.UTC).date() + dt.timedelta(days=30)
API_CHECK_OUT = API_CHECK_IN + dt.timedelta(days=3)

GUEST_HEADERS = {"x-user-sub": GUEST_ID}
HOST_HEADERS = {"x-user-sub": HOST_ID}


def booking_body(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "listing_id": LISTING_ID,
        "check_in": API_CHECK_IN.isoformat(),
        "check_out": API_CHECK_OUT.isoformat(),
        "guest_count": 2,
    }
    body.update(overrides)
    return body


@pytest.fixture
def api_stripe(stripe_mock: MagicMock) -> Generator[MagicMock, None, None]:
    """Route every processor call to stripe_mock."""
    factory = MagicMock(return_value=stripe_mock)
    with (
        patch("booking_api.dependencies.get_stripe_service", factory),
        patch("booking_api.routes.webhooks.get_stripe_service", factory),
    ):
        yield stripe_mock


@pytest.fixture
def client(create_tables: Any, api_stripe: MagicMock) -> TestClient:
    """Test client with mocked tables and processor."""
    from booking_api.main import app

    return TestClient(app)


@pytest.fixture
def created_booking(client: TestClient, listing: dict[str, Any]) -> dict[str, Any]:
    """A pending booking created through the API."""
    response = client.post(
        "/api/bookings",
        json=booking_body(),
        headers={**GUEST_HEADERS, "Idempotency-Key": "api-create-1"},
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    """Headers carrying a freshly issued admin session."""
    response = client.post("/api/admin/verify", json={"code": ADMIN_CODE})
    assert response.status_code == 200
    return {"X-Admin-Session": response.json()["session_token"]}
