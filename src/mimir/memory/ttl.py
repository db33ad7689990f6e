"""TTL parsing and expiry labels for working-memory facts."""

import re
from datetime import datetime, timedelta

from ..clock import parse_iso, to_iso
from ..errors import UserError

_DURATION_RE = re.compile(r"^(\d+)([smhdw])$")

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}

# Ten years; anything longer is not working memory.
MAX_TTL_SECONDS = 10 * 365 * 24 * 60 * 60


def parse_duration(value: str) -> timedelta:
    """Parse a compact duration like ``30m``, ``24h`` or ``7d``.

    Raises:
        UserError: If the syntax is wrong, the amount is not positive or
            the duration is longer than MAX_TTL_SECONDS.
    """
    match = _DURATION_RE.match(str(value).strip().lower())
    if not match:
        raise UserError("TTL must be a compact duration like 30m, 24h, 7d")

    amount = int(match.group(1))
    if amount <= 0:
        raise UserError("TTL duration amount must be a positive integer")

    seconds = amount * _UNIT_SECONDS[match.group(2)]
    if seconds > MAX_TTL_SECONDS:
        raise UserError("TTL duration is too long (max 3650d)")
    return timedelta(seconds=seconds)


def is_valid_duration(value: str) -> bool:
    """Check a duration string without raising."""
    try:
        parse_duration(value)
    except UserError:
        return False
    return True


def ttl_to_expires_at(ttl: str | None, now: datetime) -> str | None:
    """Turn a TTL into an absolute ``expires_at`` timestamp (None if no TTL)."""
    if not ttl:
        return None
    duration = parse_duration(ttl)
    try:
        return to_iso(now + duration)
    except OverflowError:
        raise UserError("TTL expiry is out of range") from None


def format_duration(seconds: float) -> str:
    """Render the largest whole unit of a duration: ``3h``, ``2d``, ``0s``."""
    total = max(0, int(seconds))
    for size, label in ((86400, "d"), (3600, "h"), (60, "m"), (1, "s")):
        if total >= size:
            return f"{total // size}{label}"
    return "0s"


def expires_label(expires_at: str | None, now: datetime) -> str:
    """Describe how far a fact is from (or past) its expiry."""
    if not expires_at:
        return "no ttl"

    try:
        delta = (parse_iso(expires_at) - now).total_seconds()
    except ValueError:
        return "invalid ttl"

    if delta <= 0:
        return f"expired {format_duration(-delta)} ago"
    return f"expires in {format_duration(delta)}"
