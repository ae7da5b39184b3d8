"""Read access to the listing catalogue.

Listings are owned by another part of the platform. The engine only reads
the fields it needs to price and authorize a booking; it never writes them.
"""

from typing import TYPE_CHECKING, Any

from booking_core.models import CancellationPolicy, Listing, ListingStatus, NotFoundError

if TYPE_CHECKING:
    from .dynamodb import DynamoDBService


class ListingService:
    """Service for listing lookups."""

    TABLE = "listings"

    def __init__(self, db: "DynamoDBService") -> None:
        self.db = db

    def get_listing(self, listing_id: str) -> Listing | None:
        item = self.db.get_item(self.TABLE, {"listing_id": listing_id})
        if not item:
            return None
        return self._item_to_listing(item)

    def require_listing(self, listing_id: str) -> Listing:
        """Get a listing or raise NotFoundError."""
        listing = self.get_listing(listing_id)
        if listing is None:
            raise NotFoundError("Listing not found", {"listing_id": listing_id})
        return listing

    def require_bookable(self, listing_id: str) -> Listing:
        """Get a listing that is open for bookings.

        Inactive, suspended or unreviewed listings are reported as not found
        so their existence is not disclosed.
        """
        listing = self.require_listing(listing_id)
        if listing.status != ListingStatus.ACTIVE.value:
            raise NotFoundError("Listing not found", {"listing_id": listing_id})
        return listing

    def _item_to_listing(self, item: dict[str, Any]) -> Listing:
        """Convert DynamoDB item to Listing model."""
        return Listing(
            listing_id=item["listing_id"],
            host_id=item["host_id"],
            status=item.get("status", ListingStatus.ACTIVE.value),
            nightly_rate=int(item["nightly_rate"]),
            cleaning_fee=int(item.get("cleaning_fee", 0)),
            currency=item.get("currency", "USD"),
            max_guests=int(item.get("max_guests", 1)),
            min_nights=int(item.get("min_nights", 1)),
            cancellation_policy=CancellationPolicy(
                item.get("cancellation_policy", CancellationPolicy.MODERATE.value)
            ),
            payout_account_id=item.get("payout_account_id"),
        )
