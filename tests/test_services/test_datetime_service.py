"""Tests for timestamp helpers."""

from datetime import UTC, datetime, timedelta, timezone

from runebook.services.datetime_service import UNIX_EPOCH, format_iso, now_utc, parse_iso


class TestFormatIso:
    def test_always_has_microseconds(self) -> None:
        dt = datetime(2026, 2, 2, 22, 21, 29, tzinfo=UTC)
        assert format_iso(dt) == "2026-02-02T22:21:29.000000+00:00"

    def test_normalizes_to_utc(self) -> None:
        dt = datetime(2026, 2, 2, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_iso(dt) == "2026-02-02T10:00:00.000000+00:00"

    def test_naive_is_treated_as_utc(self) -> None:
        assert format_iso(datetime(2026, 1, 1)) == "2026-01-01T00:00:00.000000+00:00"

    def test_lexicographic_order_matches_chronological(self) -> None:
        base = datetime(2026, 1, 1, tzinfo=UTC)
        moments = [base + timedelta(microseconds=n * 250_000) for n in range(10)]
        formatted = [format_iso(m) for m in moments]
        assert formatted == sorted(formatted)


class TestParseIso:
    def test_round_trip(self) -> None:
        dt = datetime(2026, 2, 2, 22, 21, 29, 975359, tzinfo=UTC)
        assert parse_iso(format_iso(dt)) == dt

    def test_missing_offset_defaults_to_utc(self) -> None:
        parsed = parse_iso("2026-02-02T10:30:00")
        assert parsed is not None
        assert parsed.tzinfo is not None
        assert parsed.utcoffset() == timedelta(0)

    def test_invalid_returns_none(self) -> None:
        assert parse_iso("not a date") is None


def test_now_utc_is_aware() -> None:
    assert now_utc().tzinfo is not None


def test_unix_epoch() -> None:
    assert UNIX_EPOCH.timestamp() == 0
