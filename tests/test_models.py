"""Tests for the usage data model."""

from datetime import datetime, timedelta, timezone

import pytest

from quotabar.models import (
    FetchContext, OAuthCredentials, RateWindow, SourceMode, UsageSnapshot, cleaned,
)


def test_remaining_percent_clamped():
    assert RateWindow(used_percent=30).remaining_percent == 70
    assert RateWindow(used_percent=130).remaining_percent == 0


def test_snapshot_windows_skip_missing():
    snap = UsageSnapshot(primary=RateWindow(10), tertiary=RateWindow(20))
    assert [w.used_percent for w in snap.windows] == [10, 20]


def test_credentials_without_expiry_are_expired():
    assert OAuthCredentials("tok").is_expired()
    assert OAuthCredentials("tok").expires_in() is None


def test_credentials_expiry():
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)
    creds = OAuthCredentials("tok", expires_at=now + timedelta(minutes=5))
    assert not creds.is_expired(now)
    assert creds.expires_in(now) == 300
    assert creds.is_expired(now + timedelta(minutes=5))


def test_context_env_is_read_only(tmp_path):
    env = {"A": "1"}
    ctx = FetchContext(provider="codex", env=env, home=str(tmp_path), source_mode="web")
    env["A"] = "2"
    assert ctx.env["A"] == "1"
    assert ctx.source_mode is SourceMode.WEB
    assert ctx.home == tmp_path
    with pytest.raises(TypeError):
        ctx.env["B"] = "x"


def test_context_env_value_strips_quotes():
    ctx = FetchContext(provider="zai", env={"K": '  "secret"  ', "E": "  ", "Q": "''"})
    assert ctx.env_value("K") == "secret"
    assert ctx.env_value("E") is None
    assert ctx.env_value("Q") is None
    assert ctx.env_value("MISSING") is None


def test_cleaned_keeps_unbalanced_quotes():
    assert cleaned("'abc") == "'abc"
