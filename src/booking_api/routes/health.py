"""Health check endpoint."""

from fastapi import APIRouter

from booking_api.models.common import HealthResponse
from booking_core import __version__
from booking_core.utils.timestamps import to_iso, utc_now

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    summary="Health check",
    response_model=HealthResponse,
)
def health_check() -> HealthResponse:
    """Liveness probe. Does not touch DynamoDB or the processor."""
    return HealthResponse(timestamp=to_iso(utc_now()), version=__version__)
