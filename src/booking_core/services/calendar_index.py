"""Calendar index: per-listing date-range reservations.

Each occupied night is a row keyed by (listing_id, night) that points at the
owning block. A reservation writes the block row and all of its night rows in
one DynamoDB transaction with ``attribute_not_exists`` conditions, so two
overlapping reservations can never both commit: half-open ranges overlap
exactly when they share a night.
"""

import datetime as dt
import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING, Any

from boto3.dynamodb.conditions import Attr, Key

from booking_core.config import get_settings
from booking_core.models import (
    AvailabilityResult,
    BlockState,
    BlockType,
    CalendarBlock,
    ConflictError,
    DateConflict,
    ValidationError,
)
from booking_core.utils.ids import generate_id
from booking_core.utils.timestamps import parse_iso, to_iso, utc_now

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService

logger = logging.getLogger(__name__)

# DynamoDB allows 100 operations per transaction
MAX_TRANSACTION_ITEMS = 100


class CalendarIndex:
    """Reserve, confirm and release date ranges on listings."""

    NIGHTS_TABLE = "calendar-nights"
    BLOCKS_TABLE = "calendar-blocks"
    LISTING_INDEX = "listing-index"

    def __init__(self, db: "DynamoDBService", max_nights: int | None = None) -> None:
        """Initialize calendar index.

        Args:
            db: DynamoDB service instance
            max_nights: Longest reservable range. Defaults to settings.
        """
        self.db = db
        self.max_nights = max_nights or get_settings().max_nights

    # =========================================================================
    # Queries
    # =========================================================================

    def check_availability(
        self,
        listing_id: str,
        check_in: dt.date,
        check_out: dt.date,
    ) -> bool:
        """Check whether any night of [check_in, check_out) is occupied.

        Advisory only: the answer can be stale by the time the caller acts.
        """
        self._validate_range(check_in, check_out)
        return not self._occupied_nights(listing_id, check_in, check_out, limit=1)

    def get_availability(
        self,
        listing_id: str,
        check_in: dt.date,
        check_out: dt.date,
    ) -> AvailabilityResult:
        """Availability with the conflicting blocks listed."""
        conflicts = self.find_conflicts(listing_id, check_in, check_out)
        return AvailabilityResult(
            listing_id=listing_id,
            check_in=check_in,
            check_out=check_out,
            available=not conflicts,
            conflicts=conflicts,
        )

    def find_conflicts(
        self,
        listing_id: str,
        check_in: dt.date,
        check_out: dt.date,
    ) -> list[DateConflict]:
        """List the blocks that occupy any night of the range."""
        self._validate_range(check_in, check_out)
        nights = self._occupied_nights(listing_id, check_in, check_out)
        block_ids = sorted({item["block_id"] for item in nights})
        if not block_ids:
            return []

        items = self.db.batch_get(self.BLOCKS_TABLE, [{"block_id": b} for b in block_ids])
        conflicts = [
            DateConflict(
                block_id=item["block_id"],
                start_date=dt.date.fromisoformat(item["start_date"]),
                end_date=dt.date.fromisoformat(item["end_date"]),
                block_type=BlockType(item["block_type"]),
            )
            for item in items
        ]
        conflicts.sort(key=lambda c: c.start_date)
        return conflicts

    def get_block(self, block_id: str) -> CalendarBlock | None:
        item = self.db.get_item(self.BLOCKS_TABLE, {"block_id": block_id})
        if not item:
            return None
        return self._item_to_block(item)

    def list_blocks(
        self,
        listing_id: str,
        start: dt.date | None = None,
        end: dt.date | None = None,
    ) -> list[CalendarBlock]:
        """List blocks on a listing, optionally only those overlapping [start, end).

        Args:
            listing_id: Listing to inspect
            start: Optional window start (inclusive)
            end: Optional window end (exclusive)

        Returns:
            Blocks ordered by start date
        """
        key_condition = Key("listing_id").eq(listing_id)
        if end is not None:
            key_condition = key_condition & Key("start_date").lt(end.isoformat())
        items = self.db.query(self.BLOCKS_TABLE, key_condition, index_name=self.LISTING_INDEX)

        blocks = [self._item_to_block(item) for item in items]
        if start is not None:
            blocks = [b for b in blocks if b.end_date > start]
        return blocks

    def iter_past_blocks(
        self,
        before: dt.date,
        batch_size: int = 100,
        max_batches: int | None = None,
    ) -> Iterator[list[CalendarBlock]]:
        """Yield pages of blocks whose range ended on or before ``before``.

        Args:
            before: Blocks with end_date <= before are yielded
            batch_size: Items evaluated per scan page
            max_batches: Stop after this many pages
        """
        start_key: dict[str, Any] | None = None
        pages = 0
        while True:
            items, start_key = self.db.scan_page(
                self.BLOCKS_TABLE,
                filter_expression=Attr("end_date").lte(before.isoformat()),
                limit=batch_size,
                exclusive_start_key=start_key,
            )
            pages += 1
            if items:
                yield [self._item_to_block(item) for item in items]
            if start_key is None or (max_batches and pages >= max_batches):
                return

    # =========================================================================
    # Mutations
    # =========================================================================

    def reserve(
        self,
        listing_id: str,
        check_in: dt.date,
        check_out: dt.date,
        booking_id: str | None = None,
        *,
        block_type: BlockType = BlockType.BOOKING,
        block_id: str | None = None,
        reason: str | None = None,
        extra_operations: list[dict[str, Any]] | None = None,
        now: dt.datetime | None = None,
    ) -> CalendarBlock:
        """Atomically reserve [check_in, check_out) on a listing.

        Args:
            listing_id: Listing to reserve
            check_in: First night
            check_out: Day after the last night
            booking_id: Booking that owns the block (booking blocks)
            block_type: BOOKING (hold) or MANUAL (host block, confirmed)
            block_id: Id for the new block; generated when omitted
            reason: Reason for manual blocks
            extra_operations: Additional transaction items committed atomically
                with the reservation (e.g. the booking row)
            now: Creation time (defaults to current UTC time)

        Returns:
            The created CalendarBlock

        Raises:
            ValidationError: If the range is empty or too long
            ConflictError: If any night is already occupied
        """
        self._validate_range(check_in, check_out)
        extra_operations = extra_operations or []
        nights = self._date_range(check_in, check_out)
        if len(nights) + 1 + len(extra_operations) > MAX_TRANSACTION_ITEMS:
            raise ValidationError(
                f"Stays are limited to {self.max_nights} nights",
                {"max_nights": str(self.max_nights)},
            )

        block = CalendarBlock(
            block_id=block_id or generate_id("BLK"),
            listing_id=listing_id,
            start_date=check_in,
            end_date=check_out,
            block_type=block_type,
            state=BlockState.HOLD if block_type == BlockType.BOOKING else BlockState.CONFIRMED,
            booking_id=booking_id,
            reason=reason,
            created_at=now or utc_now(),
        )

        operations = [
            self.db.put_op(
                self.BLOCKS_TABLE,
                self._block_to_item(block),
                condition_expression="attribute_not_exists(block_id)",
            )
        ]
        for night in nights:
            night_item: dict[str, Any] = {
                "listing_id": listing_id,
                "night": night.isoformat(),
                "block_id": block.block_id,
                "block_type": block.block_type.value,
            }
            if booking_id:
                night_item["booking_id"] = booking_id
            operations.append(
                self.db.put_op(
                    self.NIGHTS_TABLE,
                    night_item,
                    condition_expression="attribute_not_exists(#night)",
                    expression_attribute_names={"#night": "night"},
                )
            )
        operations.extend(extra_operations)

        if not self.db.transact_write(operations):
            conflicts = self.find_conflicts(listing_id, check_in, check_out)
            details = conflicts[0].as_details() if conflicts else {}
            details.update(
                {
                    "listing_id": listing_id,
                    "requested_start": check_in.isoformat(),
                    "requested_end": check_out.isoformat(),
                }
            )
            logger.info(
                "Reservation conflict on listing %s for %s..%s (%d conflicting blocks)",
                listing_id,
                check_in,
                check_out,
                len(conflicts),
            )
            raise ConflictError("The requested dates are not available", details)

        logger.info(
            "Reserved %s..%s on listing %s as %s (%s)",
            check_in,
            check_out,
            listing_id,
            block.block_id,
            block.block_type.value,
        )
        return block

    def block_dates(
        self,
        listing_id: str,
        start: dt.date,
        end: dt.date,
        reason: str,
        now: dt.datetime | None = None,
    ) -> CalendarBlock:
        """Manually block dates (host maintenance, personal use, etc)."""
        return self.reserve(
            listing_id,
            start,
            end,
            block_type=BlockType.MANUAL,
            reason=reason,
            now=now,
        )

    def confirm(self, block_id: str) -> CalendarBlock:
        """Mark a held block as confirmed.

        Raises:
            ConflictError: If the block no longer exists
        """
        block = self.get_block(block_id)
        if block is None or not self.db.transact_write(self.confirm_operations(block)):
            raise ConflictError(
                "Calendar block no longer exists",
                {"block_id": block_id},
            )
        return block.model_copy(update={"state": BlockState.CONFIRMED})

    def release(self, block_id: str) -> bool:
        """Delete a block and its night rows. Idempotent.

        Returns:
            True if the block was released, False if it was already gone

        Raises:
            ConflictError: If the block changed concurrently
        """
        block = self.get_block(block_id)
        if block is None:
            logger.debug("Block %s already released", block_id)
            return False

        if not self.db.transact_write(self.release_operations(block)):
            if self.get_block(block_id) is None:
                return False
            raise ConflictError("Calendar block changed concurrently", {"block_id": block_id})

        logger.info(
            "Released block %s on listing %s (%s..%s)",
            block.block_id,
            block.listing_id,
            block.start_date,
            block.end_date,
        )
        return True

    # =========================================================================
    # Transaction building blocks
    # =========================================================================

    def release_operations(self, block: CalendarBlock) -> list[dict[str, Any]]:
        """Transaction items that delete a block and its nights.

        A night row is only deleted while it still points at this block.
        """
        operations = [
            self.db.delete_op(
                self.BLOCKS_TABLE,
                {"block_id": block.block_id},
                condition_expression="attribute_exists(block_id)",
            )
        ]
        for night in block.nights:
            operations.append(
                self.db.delete_op(
                    self.NIGHTS_TABLE,
                    {"listing_id": block.listing_id, "night": night.isoformat()},
                    condition_expression="attribute_not_exists(#night) OR block_id = :bid",
                    expression_attribute_names={"#night": "night"},
                    expression_attribute_values={":bid": block.block_id},
                )
            )
        return operations

    def confirm_operations(self, block: CalendarBlock) -> list[dict[str, Any]]:
        return [
            self.db.update_op(
                self.BLOCKS_TABLE,
                {"block_id": block.block_id},
                "SET #state = :confirmed",
                expression_attribute_values={":confirmed": BlockState.CONFIRMED.value},
                expression_attribute_names={"#state": "state"},
                condition_expression="attribute_exists(block_id)",
            )
        ]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate_range(self, check_in: dt.date, check_out: dt.date) -> None:
        if check_out <= check_in:
            raise ValidationError(
                "check_out must be after check_in",
                {"check_in": check_in.isoformat(), "check_out": check_out.isoformat()},
            )
        nights = (check_out - check_in).days
        if nights > self.max_nights:
            raise ValidationError(
                f"Stays are limited to {self.max_nights} nights",
                {"nights": str(nights), "max_nights": str(self.max_nights)},
            )

    def _occupied_nights(
        self,
        listing_id: str,
        check_in: dt.date,
        check_out: dt.date,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        last_night = check_out - dt.timedelta(days=1)
        key_condition = Key("listing_id").eq(listing_id) & Key("night").between(
            check_in.isoformat(), last_night.isoformat()
        )
        return self.db.query(self.NIGHTS_TABLE, key_condition, limit=limit)

    @staticmethod
    def _date_range(start: dt.date, end: dt.date) -> list[dt.date]:
        """Generate list of dates in range (end exclusive)."""
        return [start + dt.timedelta(days=i) for i in range((end - start).days)]

    @staticmethod
    def _block_to_item(block: CalendarBlock) -> dict[str, Any]:
        item: dict[str, Any] = {
            "block_id": block.block_id,
            "listing_id": block.listing_id,
            "start_date": block.start_date.isoformat(),
            "end_date": block.end_date.isoformat(),
            "block_type": block.block_type.value,
            "state": block.state.value,
            "created_at": to_iso(block.created_at),
        }
        if block.booking_id:
            item["booking_id"] = block.booking_id
        if block.reason:
            item["reason"] = block.reason
        return item

    @staticmethod
    def _item_to_block(item: dict[str, Any]) -> CalendarBlock:
        return CalendarBlock(
            block_id=item["block_id"],
            listing_id=item["listing_id"],
            start_date=dt.date.fromisoformat(item["start_date"]),
            end_date=dt.date.fromisoformat(item["end_date"]),
            block_type=BlockType(item["block_type"]),
            state=BlockState(item["state"]),
            booking_id=item.get("booking_id"),
            reason=item.get("reason"),
            created_at=parse_iso(item["created_at"]),
        )
