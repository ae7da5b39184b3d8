"""Shared API response models."""

from pydantic import BaseModel, Field

from booking_core.models.errors import ErrorCode, ErrorResponse

__all__ = [
    "ErrorCode",
    "ErrorResponse",
    "HealthResponse",
    "SuccessMessage",
]


class SuccessMessage(BaseModel):
    """Generic success response for operations without data payload."""

    success: bool = True
    message: str = Field(
        default="Operation completed successfully",
        description="Human-readable success message",
    )


class HealthResponse(BaseModel):
    status: str = "healthy"
    timestamp: str
    service: str = "booking-api"
    version: str
