"""Processor webhook event log model."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field

from .enums import WebhookProcessingResult


class WebhookEventRecord(BaseModel):
    """Audit and deduplication record for one processor event."""

    model_config = ConfigDict(strict=True)

    event_id: str = Field(..., examples=["evt_1NXWPL2eZvKYlo2C"])
    event_type: str
    payload_hash: str
    booking_id: str | None = None
    intent_id: str | None = None
    processing_result: WebhookProcessingResult
    error_message: str | None = None
    received_at: dt.datetime
    processed_at: dt.datetime | None = None


class WebhookOutcome(BaseModel):
    """What the webhook endpoint reports back to the processor."""

    received: bool = True
    event_id: str | None = None
    event_type: str | None = None
    processing_result: WebhookProcessingResult
    booking_id: str | None = None
    intent_id: str | None = None
    message: str | None = None
