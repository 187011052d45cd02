"""Timestamp helpers shared by the store and the auth service."""

from __future__ import annotations

from datetime import UTC, datetime

# Epoch used for expired cookies.
UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_iso(dt: datetime) -> str:
    """Format datetime as UTC ISO 8601 with fixed microsecond precision.

    Output is normalized to UTC so stored values sort lexicographically in
    chronological order.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime | None:
    """Parse an ISO 8601 timestamp, assuming UTC when no offset is present."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
