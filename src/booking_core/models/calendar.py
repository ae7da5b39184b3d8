"""Calendar block models."""

import datetime as dt

from pydantic import BaseModel, Field, model_validator

from .enums import BlockState, BlockType


class CalendarBlock(BaseModel):
    """A half-open date range [start_date, end_date) occupied on a listing."""

    block_id: str = Field(..., examples=["BLK-9A1C44E0B2F3"])
    listing_id: str
    start_date: dt.date
    end_date: dt.date
    block_type: BlockType
    state: BlockState = BlockState.HOLD
    booking_id: str | None = Field(default=None, description="Set for booking blocks")
    reason: str | None = Field(default=None, description="Set for manual blocks")
    created_at: dt.datetime

    @model_validator(mode="after")
    def _check_range(self) -> "CalendarBlock":
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    @property
    def nights(self) -> list[dt.date]:
        return [
            self.start_date + dt.timedelta(days=i)
            for i in range((self.end_date - self.start_date).days)
        ]


class DateConflict(BaseModel):
    """An existing block that overlaps a requested range."""

    block_id: str
    start_date: dt.date
    end_date: dt.date
    block_type: BlockType

    def as_details(self) -> dict[str, str]:
        return {
            "conflicting_block_id": self.block_id,
            "conflict_start": self.start_date.isoformat(),
            "conflict_end": self.end_date.isoformat(),
        }


class AvailabilityResult(BaseModel):
    """Availability of a listing for a requested range."""

    listing_id: str
    check_in: dt.date
    check_out: dt.date
    available: bool
    conflicts: list[DateConflict] = Field(default_factory=list)
