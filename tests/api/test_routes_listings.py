"""Tests for listing calendar API routes.

Tests for:
- GET /api/listings/{id}/availability - Public availability check
- GET/POST /api/listings/{id}/blocks - Host block management
- DELETE /api/listings/{id}/blocks/{block_id} - Remove a manual block
"""

import datetime as dt

from fastapi.testclient import TestClient
from starlette.status import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
)

from tests.api.conftest import API_CHECK_IN, API_CHECK_OUT, GUEST_HEADERS, HOST_HEADERS
from tests.factories import LISTING_ID

BLOCKS_PATH = f"/api/listings/{LISTING_ID}/blocks"


def _availability(client: TestClient, check_in: dt.date, check_out: dt.date):
    return client.get(
        f"/api/listings/{LISTING_ID}/availability",
        params={"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
    )


def _block(client: TestClient, start: dt.date, end: dt.date, reason: str = "Maintenance"):
    return client.post(
        BLOCKS_PATH,
        json={"start_date": start.isoformat(), "end_date": end.isoformat(), "reason": reason},
        headers=HOST_HEADERS,
    )


class TestAvailability:
    """Tests for GET /api/listings/{listing_id}/availability."""

    def test_free_range(self, client: TestClient, listing) -> None:
        response = _availability(client, API_CHECK_IN, API_CHECK_OUT)

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["available"] is True
        assert data["conflicts"] == []

    def test_booked_range_lists_conflict(self, client: TestClient, created_booking) -> None:
        response = _availability(
            client, API_CHECK_IN + dt.timedelta(days=1), API_CHECK_OUT + dt.timedelta(days=2)
        )

        data = response.json()
        assert data["available"] is False
        assert data["conflicts"][0]["block_id"] == created_booking["block_id"]
        assert data["conflicts"][0]["block_type"] == "booking"

    def test_adjacent_stay_is_available(self, client: TestClient, created_booking) -> None:
        """Check-out day is free for the next check-in."""
        response = _availability(client, API_CHECK_OUT, API_CHECK_OUT + dt.timedelta(days=2))

        assert response.json()["available"] is True

    def test_inverted_range(self, client: TestClient, listing) -> None:
        response = _availability(client, API_CHECK_OUT, API_CHECK_IN)

        assert response.status_code == HTTP_400_BAD_REQUEST

    def test_dates_required(self, client: TestClient, listing) -> None:
        response = client.get(f"/api/listings/{LISTING_ID}/availability")

        assert response.status_code == HTTP_400_BAD_REQUEST


class TestBlocks:
    """Tests for host block management."""

    def test_host_blocks_dates(self, client: TestClient, listing) -> None:
        response = _block(client, API_CHECK_IN, API_CHECK_OUT)

        assert response.status_code == HTTP_201_CREATED
        data = response.json()
        assert data["block_type"] == "manual"
        assert data["reason"] == "Maintenance"
        assert _availability(client, API_CHECK_IN, API_CHECK_OUT).json()["available"] is False

    def test_block_over_booking_conflicts(self, client: TestClient, created_booking) -> None:
        response = _block(client, API_CHECK_IN, API_CHECK_OUT)

        assert response.status_code == HTTP_409_CONFLICT
        assert response.json()["details"]["conflicting_block_id"] == created_booking["block_id"]

    def test_list_blocks(self, client: TestClient, created_booking) -> None:
        _block(client, API_CHECK_OUT, API_CHECK_OUT + dt.timedelta(days=2))

        response = client.get(BLOCKS_PATH, headers=HOST_HEADERS)

        assert response.status_code == HTTP_200_OK
        data = response.json()
        assert data["count"] == 2
        assert {b["block_type"] for b in data["blocks"]} == {"booking", "manual"}

    def test_guest_cannot_manage_blocks(self, client: TestClient, listing) -> None:
        assert client.get(BLOCKS_PATH, headers=GUEST_HEADERS).status_code == HTTP_403_FORBIDDEN

        response = client.post(
            BLOCKS_PATH,
            json={"start_date": API_CHECK_IN.isoformat(), "end_date": API_CHECK_OUT.isoformat()},
            headers=GUEST_HEADERS,
        )

        assert response.status_code == HTTP_403_FORBIDDEN

    def test_unknown_listing(self, client: TestClient, listing) -> None:
        response = client.get("/api/listings/LST-NOPE/blocks", headers=HOST_HEADERS)

        assert response.status_code == HTTP_404_NOT_FOUND

    def test_remove_manual_block(self, client: TestClient, listing) -> None:
        block_id = _block(client, API_CHECK_IN, API_CHECK_OUT).json()["block_id"]

        response = client.delete(f"{BLOCKS_PATH}/{block_id}", headers=HOST_HEADERS)

        assert response.status_code == HTTP_200_OK
        assert response.json()["success"] is True
        assert _availability(client, API_CHECK_IN, API_CHECK_OUT).json()["available"] is True

    def test_booking_block_cannot_be_removed(self, client: TestClient, created_booking) -> None:
        response = client.delete(
            f"{BLOCKS_PATH}/{created_booking['block_id']}", headers=HOST_HEADERS
        )

        assert response.status_code == HTTP_403_FORBIDDEN
        assert _availability(client, API_CHECK_IN, API_CHECK_OUT).json()["available"] is False

    def test_remove_unknown_block(self, client: TestClient, listing) -> None:
        response = client.delete(f"{BLOCKS_PATH}/BLK-MISSING", headers=HOST_HEADERS)

        assert response.status_code == HTTP_404_NOT_FOUND
