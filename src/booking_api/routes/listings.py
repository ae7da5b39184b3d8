"""Listing calendar endpoints.

Provides REST endpoints for:
- Availability of a date range (public)
- The host's view of a listing's blocks
- Manual host blocks (create, remove)

Host endpoints require the caller to own the listing.
"""

import datetime as dt

from fastapi import APIRouter, Depends, Query
from starlette.status import HTTP_201_CREATED

from booking_api.dependencies import get_calendar_index, get_listing_service
from booking_api.models.common import SuccessMessage
from booking_api.models.listings import BlockCreateRequest, BlockListResponse
from booking_api.security import require_principal
from booking_core.models import (
    AvailabilityResult,
    BlockType,
    CalendarBlock,
    ForbiddenError,
    Listing,
    NotFoundError,
)
from booking_core.services.calendar_index import CalendarIndex
from booking_core.services.listings import ListingService

router = APIRouter(tags=["listings"])


def _require_host(listing_id: str, principal_id: str, listings: ListingService) -> Listing:
    listing = listings.require_listing(listing_id)
    if listing.host_id != principal_id:
        raise ForbiddenError("Only the listing's host can manage its calendar")
    return listing


@router.get(
    "/listings/{listing_id}/availability",
    summary="Check availability",
    description="Whether [check_in, check_out) is free, with any conflicting blocks.",
    response_model=AvailabilityResult,
)
def get_availability(
    listing_id: str,
    check_in: dt.date = Query(..., description="First night (YYYY-MM-DD)"),
    check_out: dt.date = Query(..., description="Departure day, exclusive (YYYY-MM-DD)"),
    calendar: CalendarIndex = Depends(get_calendar_index),
) -> AvailabilityResult:
    return calendar.get_availability(listing_id, check_in, check_out)


@router.get(
    "/listings/{listing_id}/blocks",
    summary="List calendar blocks",
    response_model=BlockListResponse,
    responses={403: {"description": "Caller is not the listing's host"}},
)
def list_blocks(
    listing_id: str,
    start: dt.date | None = Query(default=None),
    end: dt.date | None = Query(default=None),
    principal_id: str = Depends(require_principal),
    listings: ListingService = Depends(get_listing_service),
    calendar: CalendarIndex = Depends(get_calendar_index),
) -> BlockListResponse:
    _require_host(listing_id, principal_id, listings)
    blocks = calendar.list_blocks(listing_id, start, end)
    return BlockListResponse(listing_id=listing_id, blocks=blocks, count=len(blocks))


@router.post(
    "/listings/{listing_id}/blocks",
    summary="Block dates",
    response_model=CalendarBlock,
    status_code=HTTP_201_CREATED,
    responses={
        403: {"description": "Caller is not the listing's host"},
        409: {"description": "Dates overlap an existing block"},
    },
)
def create_block(
    listing_id: str,
    body: BlockCreateRequest,
    principal_id: str = Depends(require_principal),
    listings: ListingService = Depends(get_listing_service),
    calendar: CalendarIndex = Depends(get_calendar_index),
) -> CalendarBlock:
    _require_host(listing_id, principal_id, listings)
    return calendar.block_dates(listing_id, body.start_date, body.end_date, body.reason)


@router.delete(
    "/listings/{listing_id}/blocks/{block_id}",
    summary="Remove a manual block",
    response_model=SuccessMessage,
    responses={
        403: {"description": "Not the host, or the block belongs to a booking"},
        404: {"description": "Block not found"},
    },
)
def delete_block(
    listing_id: str,
    block_id: str,
    principal_id: str = Depends(require_principal),
    listings: ListingService = Depends(get_listing_service),
    calendar: CalendarIndex = Depends(get_calendar_index),
) -> SuccessMessage:
    """Remove a host block. Booking blocks follow their booking and cannot be removed here."""
    _require_host(listing_id, principal_id, listings)
    block = calendar.get_block(block_id)
    if block is None or block.listing_id != listing_id:
        raise NotFoundError("Block not found", {"block_id": block_id})
    if block.block_type != BlockType.MANUAL:
        raise ForbiddenError(
            "Booking blocks are released by cancelling the booking", {"block_id": block_id}
        )
    calendar.release(block_id)
    return SuccessMessage(message=f"Block {block_id} removed")
