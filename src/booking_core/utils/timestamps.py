"""UTC timestamp helpers for DynamoDB string attributes."""

import datetime as dt


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def to_iso(value: dt.datetime) -> str:
    """Serialize an aware datetime as an ISO string in UTC.

    UTC normalization keeps lexicographic order equal to time order, which the
    sweep indexes rely on.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC).isoformat()


def parse_iso(value: str) -> dt.datetime:
    """Parse an ISO timestamp, accepting a trailing Z."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = dt.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed


def parse_optional(value: str | None) -> dt.datetime | None:
    return parse_iso(value) if value else None


def epoch_seconds(value: dt.datetime) -> int:
    """DynamoDB TTL attribute value."""
    return int(value.timestamp())


def start_of_day(day: dt.date) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.min, tzinfo=dt.UTC)
