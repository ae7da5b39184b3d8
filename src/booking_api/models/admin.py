"""API models for admin verification."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class AdminVerifyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str = Field(..., min_length=1, max_length=256)


class AdminSessionResponse(BaseModel):
    """An admin session.

    ``session_token`` is only returned by verification, for clients that send
    it in the X-Admin-Session header instead of the cookie.
    """

    success: bool = True
    client_id: str
    expires_at: dt.datetime
    session_token: str | None = None


class AdminCancelRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1, max_length=500)
