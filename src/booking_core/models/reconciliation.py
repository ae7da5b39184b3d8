"""Reconciliation run report model."""

import datetime as dt

from pydantic import BaseModel, Field


class PassReport(BaseModel):
    """Counters for one reconciliation pass."""

    examined: int = 0
    transitioned: int = 0
    skipped: int = 0
    failed: int = 0
    failed_ids: list[str] = Field(default_factory=list)


class ReconciliationReport(BaseModel):
    """Summary of a reconciliation run."""

    started_at: dt.datetime
    finished_at: dt.datetime | None = None
    expired_holds: PassReport = Field(default_factory=PassReport)
    stuck_processing: PassReport = Field(default_factory=PassReport)
    completed_stays: PassReport = Field(default_factory=PassReport)
    stale_blocks: PassReport = Field(default_factory=PassReport)
    resolved_by_processor: dict[str, int] = Field(
        default_factory=dict,
        description="Stuck bookings resolved by processor status (succeeded/failed/...)",
    )

    @property
    def cleaned_count(self) -> int:
        return (
            self.expired_holds.transitioned
            + self.stuck_processing.transitioned
            + self.completed_stays.transitioned
            + self.stale_blocks.transitioned
        )

    @property
    def failure_count(self) -> int:
        return (
            self.expired_holds.failed
            + self.stuck_processing.failed
            + self.completed_stays.failed
            + self.stale_blocks.failed
        )
