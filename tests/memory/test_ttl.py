"""Tests for TTL helpers."""

from datetime import datetime, timedelta, timezone

import pytest

from mimir.errors import UserError
from mimir.memory.ttl import (
    expires_label,
    format_duration,
    is_valid_duration,
    parse_duration,
    ttl_to_expires_at,
)

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("30s", timedelta(seconds=30)),
        ("30m", timedelta(minutes=30)),
        ("24h", timedelta(hours=24)),
        ("7d", timedelta(days=7)),
        ("2w", timedelta(weeks=2)),
        (" 1H ", timedelta(hours=1)),
        ("3650d", timedelta(days=3650)),
    ],
)
def test_parse_duration(text, expected):
    """Compact durations map onto timedeltas."""
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "h", "1.5h", "10y", "-1h", "1 h", "24"])
def test_parse_duration_rejects_syntax(text):
    """Anything but <int><unit> is rejected."""
    with pytest.raises(UserError, match="compact duration"):
        parse_duration(text)


def test_parse_duration_rejects_zero():
    """A zero amount is not a duration."""
    with pytest.raises(UserError, match="positive integer"):
        parse_duration("0h")


@pytest.mark.parametrize("text", ["3651d", "9999999d", "99999999999999999999w"])
def test_parse_duration_rejects_too_long(text):
    """Durations past ten years are rejected instead of overflowing."""
    with pytest.raises(UserError, match="too long"):
        parse_duration(text)


def test_is_valid_duration():
    """is_valid_duration mirrors parse_duration without raising."""
    assert is_valid_duration("3d") is True
    assert is_valid_duration("0d") is False
    assert is_valid_duration("forever") is False
    assert is_valid_duration("9999999d") is False


def test_ttl_to_expires_at():
    """TTLs become absolute expiry timestamps."""
    assert ttl_to_expires_at("1h", NOW) == "2025-01-01T13:00:00.000Z"
    assert ttl_to_expires_at(None, NOW) is None


def test_ttl_to_expires_at_huge_ttl_is_user_error():
    """An oversized TTL surfaces as UserError, never OverflowError."""
    with pytest.raises(UserError):
        ttl_to_expires_at("9999999d", NOW)


def test_ttl_to_expires_at_near_max_date():
    """Overflow near the end of the calendar is reported as UserError."""
    late = datetime(9999, 12, 1, tzinfo=timezone.utc)
    with pytest.raises(UserError, match="out of range"):
        ttl_to_expires_at("52w", late)


@pytest.mark.parametrize(
    "seconds,expected",
    [(0, "0s"), (59, "59s"), (60, "1m"), (3599, "59m"), (7200, "2h"), (90000, "1d")],
)
def test_format_duration(seconds, expected):
    """Only the largest whole unit is shown."""
    assert format_duration(seconds) == expected


class TestExpiresLabel:
    """Tests for the human-readable expiry label."""

    def test_no_ttl(self):
        """Facts without expiry say so."""
        assert expires_label(None, NOW) == "no ttl"

    def test_future(self):
        """A future expiry counts down."""
        assert expires_label("2025-01-01T15:00:00.000Z", NOW) == "expires in 3h"

    def test_past(self):
        """A past expiry reports how long ago."""
        assert expires_label("2025-01-01T11:30:00.000Z", NOW) == "expired 30m ago"

    def test_invalid(self):
        """An unparseable timestamp is labelled, not raised."""
        assert expires_label("garbage", NOW) == "invalid ttl"
