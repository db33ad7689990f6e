"""Time sources and timestamp helpers.

Every component that computes or compares ``updated``, ``last_verified`` or
``expires_at`` takes a :class:`Clock`, so tests can pin "now".
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol

from .errors import UserError


class Clock(Protocol):
    """Anything that can tell the current UTC time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, at: datetime) -> None:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        self._now = at

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> None:
        """Move the clock forward, e.g. ``advance(hours=5)``."""
        self._now = self._now + timedelta(**kwargs)


def to_iso(dt: datetime) -> str:
    """Format a datetime as a UTC ISO string with millisecond precision.

    All stored timestamps use this exact shape so they compare correctly
    as plain strings inside SQLite.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC.

    Raises:
        ValueError: If the value is not an ISO timestamp.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_date(value: str) -> str:
    """Validate a user-supplied date and normalize it to the stored format."""
    try:
        return to_iso(parse_iso(str(value)))
    except ValueError:
        raise UserError(
            "Invalid date. Use ISO format like 2025-01-01T00:00:00Z"
        ) from None
