"""Domain event publisher.

Booking lifecycle events (confirmed, cancelled, completed, payment failed)
are published to EventBridge after the state change has committed, for
notification and analytics consumers. Publishing is fire-and-forget: a
failure is logged and never rolls back or blocks the booking flow.
"""

import json
import logging
from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from booking_core.config import get_settings
from booking_core.models import Booking
from booking_core.utils.logging import get_correlation_id
from booking_core.utils.timestamps import to_iso, utc_now

logger = logging.getLogger(__name__)

BOOKING_CONFIRMED = "booking.confirmed"
BOOKING_CANCELLED = "booking.cancelled"
BOOKING_COMPLETED = "booking.completed"
BOOKING_PAYMENT_FAILED = "booking.payment_failed"


class EventPublisher:
    """Publish booking domain events to an EventBridge bus."""

    def __init__(self, bus_name: str | None = None, source: str | None = None) -> None:
        """Initialize the publisher.

        Args:
            bus_name: EventBridge bus. When unset, events are only logged.
            source: Event source name. Defaults to settings.
        """
        settings = get_settings()
        self.bus_name = bus_name if bus_name is not None else settings.event_bus_name
        self.source = source or settings.event_source
        self._client: Any | None = None

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("events")
        return self._client

    def publish(self, detail_type: str, detail: dict[str, Any]) -> bool:
        """Publish one event.

        Returns:
            True if the bus accepted the event, False otherwise
        """
        detail = {
            **detail,
            "correlation_id": get_correlation_id(),
            "published_at": to_iso(utc_now()),
        }
        if not self.bus_name:
            logger.info("Domain event %s (no bus configured): %s", detail_type, detail)
            return False

        try:
            response = self._get_client().put_events(
                Entries=[
                    {
                        "Source": self.source,
                        "DetailType": detail_type,
                        "Detail": json.dumps(detail, default=str),
                        "EventBusName": self.bus_name,
                    }
                ]
            )
        except (ClientError, BotoCoreError):
            logger.exception("Failed to publish %s", detail_type)
            return False

        if response.get("FailedEntryCount", 0):
            logger.error("EventBridge rejected %s: %s", detail_type, response.get("Entries"))
            return False
        return True

    def publish_booking(self, detail_type: str, booking: Booking, **extra: Any) -> bool:
        """Publish an event about a booking with its identifying fields."""
        detail: dict[str, Any] = {
            "booking_id": booking.booking_id,
            "listing_id": booking.listing_id,
            "guest_id": booking.guest_id,
            "host_id": booking.host_id,
            "status": booking.status.value,
            "check_in": booking.check_in.isoformat(),
            "check_out": booking.check_out.isoformat(),
        }
        detail.update(extra)
        return self.publish(detail_type, detail)


@lru_cache(maxsize=1)
def get_event_publisher() -> EventPublisher:
    return EventPublisher()
