"""Tests for timestamp and rate-window decoding."""

from datetime import datetime, timezone

from quotabar.timestamps import (
    decode_rate_window, normalize_epoch_seconds, parse_flexible_date, resolve_reset_time,
)

EPOCH = 1_767_225_600    # 2026-01-01T00:00:00Z
NEW_YEAR = datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_epoch_units():
    assert normalize_epoch_seconds(EPOCH) == EPOCH
    assert normalize_epoch_seconds(EPOCH * 1000) == EPOCH
    assert normalize_epoch_seconds(EPOCH * 1_000_000) == EPOCH


def test_parse_numbers_and_numeric_strings():
    assert parse_flexible_date(EPOCH) == NEW_YEAR
    assert parse_flexible_date(EPOCH * 1000) == NEW_YEAR
    assert parse_flexible_date(str(EPOCH)) == NEW_YEAR
    assert parse_flexible_date(f"{EPOCH}.0") == NEW_YEAR


def test_parse_iso_variants():
    assert parse_flexible_date("2026-01-01T00:00:00Z") == NEW_YEAR
    assert parse_flexible_date("2026-01-01T00:00:00.123456Z").replace(microsecond=0) == NEW_YEAR
    assert parse_flexible_date("2026-01-01T00:00:00") == NEW_YEAR
    assert parse_flexible_date("2026-01-01T01:00:00+01:00") == NEW_YEAR


def test_parse_rejects_junk():
    assert parse_flexible_date(None) is None
    assert parse_flexible_date(True) is None
    assert parse_flexible_date("") is None
    assert parse_flexible_date("next tuesday") is None
    assert parse_flexible_date({"a": 1}) is None


def test_reset_keys_in_order():
    assert resolve_reset_time({"reset_at": "bogus", "resetsAt": EPOCH}) == NEW_YEAR
    assert resolve_reset_time({"resets_at_ms": str(EPOCH * 1000)}) == NEW_YEAR
    assert resolve_reset_time({"other": EPOCH}) is None


def test_decode_rate_window_snake_case():
    w = decode_rate_window({"used_percent": 42.5, "window_minutes": 300, "resets_at": EPOCH})
    assert w.used_percent == 42.5
    assert w.window_minutes == 300
    assert w.resets_at == NEW_YEAR


def test_decode_rate_window_camel_case_and_seconds():
    w = decode_rate_window({"usedPercent": 10, "limit_window_seconds": 18000})
    assert w.used_percent == 10
    assert w.window_minutes == 300


def test_decode_rate_window_reset_fallbacks():
    created = datetime(2025, 12, 31, tzinfo=timezone.utc)
    assert decode_rate_window({}, created_at=created).resets_at == created
    assert decode_rate_window({}, created, NEW_YEAR).resets_at == NEW_YEAR
    assert decode_rate_window({}).used_percent == 0.0
