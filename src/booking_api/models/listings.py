"""API models for listing calendar endpoints."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, model_validator

from booking_core.models import CalendarBlock


class BlockCreateRequest(BaseModel):
    """Host request to block dates manually."""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "examples": [
                {"start_date": "2026-03-01", "end_date": "2026-03-05", "reason": "Maintenance"}
            ]
        },
    )

    start_date: dt.date
    end_date: dt.date = Field(..., description="Exclusive")
    reason: str = Field(default="Blocked by host", min_length=1, max_length=200)

    @model_validator(mode="after")
    def _check_range(self) -> "BlockCreateRequest":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class BlockListResponse(BaseModel):
    listing_id: str
    blocks: list[CalendarBlock]
    count: int
