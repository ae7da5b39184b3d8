"""Admin verification models."""

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field


class AdminSession(BaseModel):
    """A time-boxed admin session.

    ``token`` is only populated when the session is first issued; stored
    sessions are keyed by the token's hash.
    """

    model_config = ConfigDict(strict=True)

    session_id: str = Field(..., description="SHA-256 of the session token")
    client_id: str
    issued_at: dt.datetime
    expires_at: dt.datetime
    token: str | None = Field(default=None, repr=False)

    def is_valid(self, now: dt.datetime) -> bool:
        return now < self.expires_at


class AttemptCounter(BaseModel):
    """Failed verification attempts for one client identifier."""

    model_config = ConfigDict(strict=True)

    client_id: str
    failure_count: int = 0
    window_started_at: dt.datetime | None = None
    last_attempt_at: dt.datetime | None = None
    locked_until: dt.datetime | None = None
