"""Booking persistence.

Every write is a full-item put conditioned on the version and status that
were read, so concurrent writers linearize per booking: the loser's
condition fails and it must re-read.

Non-terminal bookings carry ``sweep_due_at``, the time the reconciler must
next look at them. It keys the sparse ``status-due-index`` so each sweep pass
is a range query instead of a table scan.
"""

import datetime as dt
import json
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Key

from booking_core.config import get_settings
from booking_core.models import Booking, BookingStatus
from booking_core.utils.timestamps import start_of_day, to_iso

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Unsupported type {type(value)!r}")


class BookingRepository:
    """Read and conditionally write booking records."""

    TABLE = "bookings"
    STATUS_DUE_INDEX = "status-due-index"
    GUEST_INDEX = "guest-index"
    HOST_INDEX = "host-index"

    def __init__(
        self,
        db: "DynamoDBService",
        processing_timeout: dt.timedelta | None = None,
    ) -> None:
        self.db = db
        self.processing_timeout = processing_timeout or get_settings().processing_timeout

    def get(self, booking_id: str) -> Booking | None:
        item = self.db.get_item(self.TABLE, {"booking_id": booking_id})
        if not item:
            return None
        return self.item_to_booking(item)

    def create_operation(self, booking: Booking) -> dict[str, Any]:
        """Transaction item inserting a new booking."""
        return self.db.put_op(
            self.TABLE,
            self.booking_to_item(booking),
            condition_expression="attribute_not_exists(booking_id)",
        )

    def save_operation(
        self,
        booking: Booking,
        expected_version: int,
        expected_status: BookingStatus,
    ) -> dict[str, Any]:
        """Transaction item replacing a booking read at ``expected_version``."""
        return self.db.put_op(
            self.TABLE,
            self.booking_to_item(booking),
            **self._version_condition(expected_version, expected_status),
        )

    def save(
        self,
        booking: Booking,
        expected_version: int,
        expected_status: BookingStatus,
    ) -> bool:
        """Replace a booking if nobody else wrote it since it was read.

        Returns:
            True if written, False if the version or status changed
        """
        return self.db.put_item(
            self.TABLE,
            self.booking_to_item(booking),
            **self._version_condition(expected_version, expected_status),
        )

    def update_fields(
        self,
        booking_id: str,
        fields: dict[str, Any],
        allowed_statuses: set[BookingStatus] | None = None,
        updated_at: dt.datetime | None = None,
    ) -> Booking | None:
        """Set individual attributes and bump the version.

        Args:
            booking_id: Booking to update
            fields: Attribute name -> value
            allowed_statuses: Only update while the booking is in one of these
            updated_at: Timestamp for updated_at

        Returns:
            The updated booking, or None if missing or not in an allowed status
        """
        names = {"#version": "version"}
        values: dict[str, Any] = {":one": 1}
        assignments = ["#version = #version + :one"]
        for i, (name, value) in enumerate(fields.items()):
            names[f"#f{i}"] = name
            values[f":f{i}"] = value
            assignments.append(f"#f{i} = :f{i}")
        if updated_at is not None:
            names["#updated_at"] = "updated_at"
            values[":updated_at"] = to_iso(updated_at)
            assignments.append("#updated_at = :updated_at")

        condition = "attribute_exists(booking_id)"
        if allowed_statuses:
            names["#status"] = "status"
            placeholders = []
            for i, status in enumerate(sorted(allowed_statuses, key=lambda s: s.value)):
                values[f":s{i}"] = status.value
                placeholders.append(f":s{i}")
            condition = f"{condition} AND #status IN ({', '.join(placeholders)})"

        attrs = self.db.update_item(
            self.TABLE,
            {"booking_id": booking_id},
            "SET " + ", ".join(assignments),
            expression_attribute_values=values,
            expression_attribute_names=names,
            condition_expression=condition,
        )
        return self.item_to_booking(attrs) if attrs else None

    def list_for_guest(self, guest_id: str, limit: int | None = None) -> list[Booking]:
        items = self.db.query(
            self.TABLE,
            Key("guest_id").eq(guest_id),
            index_name=self.GUEST_INDEX,
            limit=limit,
            scan_index_forward=False,
        )
        return [self.item_to_booking(item) for item in items]

    def list_for_host(self, host_id: str, limit: int | None = None) -> list[Booking]:
        items = self.db.query(
            self.TABLE,
            Key("host_id").eq(host_id),
            index_name=self.HOST_INDEX,
            limit=limit,
            scan_index_forward=False,
        )
        return [self.item_to_booking(item) for item in items]

    def due_page(
        self,
        status: BookingStatus,
        due_before: dt.datetime,
        limit: int,
        exclusive_start_key: dict[str, Any] | None = None,
    ) -> tuple[list[Booking], dict[str, Any] | None]:
        """One page of bookings in ``status`` whose sweep time has passed."""
        key_condition = Key("status").eq(status.value) & Key("sweep_due_at").lte(
            to_iso(due_before)
        )
        items, last_key = self.db.query_page(
            self.TABLE,
            key_condition,
            index_name=self.STATUS_DUE_INDEX,
            limit=limit,
            exclusive_start_key=exclusive_start_key,
        )
        return [self.item_to_booking(item) for item in items], last_key

    def sweep_due_at(self, booking: Booking) -> dt.datetime | None:
        """When the reconciler must next act on this booking, if ever."""
        if booking.status == BookingStatus.PENDING_PAYMENT:
            return booking.expires_at
        if booking.status == BookingStatus.PAYMENT_PROCESSING:
            started = booking.processing_started_at or booking.updated_at
            return started + self.processing_timeout
        if booking.status == BookingStatus.CONFIRMED:
            return start_of_day(booking.check_out + dt.timedelta(days=1))
        return None

    def booking_to_item(self, booking: Booking) -> dict[str, Any]:
        """Convert a Booking to a DynamoDB item (None values omitted)."""
        data = booking.model_dump(mode="json", exclude_none=True)
        for field in (
            "created_at",
            "updated_at",
            "expires_at",
            "processing_started_at",
            "confirmed_at",
            "completed_at",
            "cancelled_at",
        ):
            value = getattr(booking, field)
            if value is not None:
                data[field] = to_iso(value)

        due = self.sweep_due_at(booking)
        if due is not None:
            data["sweep_due_at"] = to_iso(due)
        return data

    @staticmethod
    def item_to_booking(item: dict[str, Any]) -> Booking:
        """Convert a DynamoDB item to a Booking."""
        data = {k: v for k, v in item.items() if k != "sweep_due_at"}
        return Booking.model_validate_json(json.dumps(data, default=_json_default))

    @staticmethod
    def _version_condition(version: int, status: BookingStatus) -> dict[str, Any]:
        return {
            "condition_expression": "#version = :expected_version AND #status = :expected_status",
            "expression_attribute_names": {"#version": "version", "#status": "status"},
            "expression_attribute_values": {
                ":expected_version": version,
                ":expected_status": status.value,
            },
        }
