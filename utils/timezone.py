"""Aware-UTC datetimes for token expiry and session bookkeeping."""

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """Aware current time. Token and session code never uses naive now()."""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """
    Normalize to aware UTC.

    A naive value is taken to be UTC already: columns are timestamptz, but
    a driver or a test fixture may hand back a naive datetime.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """Parse a stored ISO 8601 timestamp. Naive strings raise ValueError."""
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(f"Refusing to parse naive datetime string '{iso_string}'")
    return to_utc(dt)


def is_expired(expires_at: datetime | None, now: datetime | None = None) -> bool:
    """
    True once ``expires_at`` has passed.

    No expiry means expired: a token whose expiry was cleared has been
    consumed, and one that never had an expiry was never issued.
    """
    if expires_at is None:
        return True
    return to_utc(expires_at) < (now or now_utc())


def expires_in(*, hours: float = 0, minutes: float = 0) -> datetime:
    return now_utc() + timedelta(hours=hours, minutes=minutes)
