"""Tests for the Codex provider."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from conftest import FakeHTTP, FakeResponse, make_jwt

from quotabar.errors import NotInstalled, NotLoggedIn, ParseFailed
from quotabar.models import CookieSource
from quotabar.providers.codex import (
    DEFAULT_BASE_URL, REFRESH_ENDPOINT, CodexOAuthStrategy, CodexSessionLogStrategy,
    CodexWebStrategy, _base_url, codex_home, load_account_info, parse_wham_usage,
    scan_session_logs, snapshot_from_lines,
)

EPOCH = 1_767_225_600
NEW_YEAR = datetime(2026, 1, 1, tzinfo=timezone.utc)
USAGE_URL = f"{DEFAULT_BASE_URL}/wham/usage"

WHAM = {
    "plan_type": "plus",
    "rate_limit": {
        "primary_window": {"used_percent": 20, "limit_window_seconds": 18000, "reset_at": EPOCH},
        "secondary_window": {"used_percent": 5, "limit_window_seconds": 604800,
                             "reset_after_seconds": 3600},
    },
    "code_review_rate_limit": {"primary_window": {"used_percent": 1,
                                                  "limit_window_seconds": 604800}},
    "credits": {"balance": "12.5"},
}


def _event(used, ts="2026-03-01T10:00:00Z"):
    return json.dumps({
        "timestamp": ts,
        "type": "event_msg",
        "payload": {"type": "token_count", "rate_limits": {
            "primary": {"used_percent": used, "window_minutes": 300, "resets_at": EPOCH},
            "secondary": {"used_percent": 40, "window_minutes": 10080},
        }},
    })


def _write_auth(home, access, id_claims=None, **extra):
    home.mkdir(parents=True, exist_ok=True)
    tokens = {"access_token": access, "refresh_token": "refresh-1", "account_id": "acct-1",
              "id_token": make_jwt(id_claims or {"email": "me@example.com"})}
    (home / "auth.json").write_text(json.dumps({"tokens": tokens, **extra}))


# ── wham/usage ──

def test_parse_wham_usage():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    snap = parse_wham_usage(WHAM, now=now)
    assert snap.primary.used_percent == 20
    assert snap.primary.window_minutes == 300
    assert snap.primary.resets_at == NEW_YEAR
    assert snap.secondary.window_minutes == 10080
    assert snap.secondary.resets_at == now + timedelta(hours=1)
    assert snap.tertiary.used_percent == 1
    assert snap.provider_cost.used == 12.5
    assert snap.identity.login_method == "Plus"


def test_parse_wham_usage_requires_primary():
    with pytest.raises(ParseFailed):
        parse_wham_usage({"rate_limit": {}})


def test_account_info_from_id_token(tmp_path):
    _write_auth(tmp_path, "tok", {"email": "me@example.com",
                                  "https://api.openai.com/auth": {"chatgpt_plan_type": "pro"}})
    info = load_account_info(tmp_path)
    assert info.account_email == "me@example.com"
    assert info.login_method == "Pro"


def test_base_url_from_config(tmp_path):
    assert _base_url(tmp_path) == DEFAULT_BASE_URL
    (tmp_path / "config.toml").write_text('model = "o3"\nchatgpt_base_url = "https://chatgpt.com/"\n')
    assert _base_url(tmp_path) == "https://chatgpt.com/backend-api"
    (tmp_path / "config.toml").write_text("chatgpt_base_url = 'https://proxy.example/api'\n")
    assert _base_url(tmp_path) == "https://proxy.example/api"


def test_codex_home_override(make_context, tmp_path):
    ctx = make_context(env={"CODEX_HOME": str(tmp_path / "custom")})
    assert codex_home(ctx) == tmp_path / "custom"
    assert codex_home(make_context()) == tmp_path / ".codex"


# ── session logs ──

def test_newest_event_wins():
    lines = [_event(10), "not json", _event(30, "2026-03-01T11:00:00Z"), ""]
    snap = snapshot_from_lines(lines)
    assert snap.primary.used_percent == 30
    assert snap.primary.resets_at == NEW_YEAR
    # no reset key on the secondary window: falls back to the event time
    assert snap.secondary.resets_at == datetime(2026, 3, 1, 11, tzinfo=timezone.utc)


def test_top_level_event_type():
    line = json.dumps({"type": "token_count", "payload": {"rate_limits": {
        "primary": {"used_percent": 25, "resets_at": 1_763_320_800}}}})
    snap = snapshot_from_lines([line])
    assert snap.primary.used_percent == 25
    assert snap.primary.remaining_percent == 75
    assert snap.secondary is None


def test_newer_unrelated_event_is_ignored():
    unrelated = json.dumps({"timestamp": "2026-03-01T12:00:00Z", "type": "turn_context",
                            "payload": {"type": "turn_context", "rate_limits": {
                                "primary": {"used_percent": 99}}}})
    snap = snapshot_from_lines([_event(12), unrelated])
    assert snap.primary.used_percent == 12


def test_lines_without_events():
    assert snapshot_from_lines([json.dumps({"type": "message"})]) is None


def test_scan_session_logs(tmp_path):
    with pytest.raises(NotInstalled):
        scan_session_logs(tmp_path / "missing")
    with pytest.raises(ParseFailed, match="No Codex sessions"):
        scan_session_logs(tmp_path)

    day = tmp_path / "sessions" / "2026" / "03" / "01"
    day.mkdir(parents=True)
    (day / "rollout-a.jsonl").write_text(json.dumps({"type": "message"}) + "\n")
    with pytest.raises(ParseFailed, match="no rate limit events"):
        scan_session_logs(tmp_path)

    (day / "rollout-b.jsonl").write_text(_event(55) + "\n")
    assert scan_session_logs(tmp_path).primary.used_percent == 55


def test_scan_reads_whole_file_when_tail_has_no_event(tmp_path):
    day = tmp_path / "sessions" / "2026" / "03" / "01"
    day.mkdir(parents=True)
    filler = json.dumps({"type": "response_item", "text": "x" * 1000})
    lines = [_event(61)] + [filler] * 700
    (day / "rollout-long.jsonl").write_text("\n".join(lines) + "\n")
    assert scan_session_logs(tmp_path).primary.used_percent == 61


def test_session_log_strategy(make_context, tmp_path):
    home = tmp_path / ".codex"
    day = home / "sessions" / "2026" / "03" / "01"
    day.mkdir(parents=True)
    (day / "rollout-a.jsonl").write_text(_event(42) + "\n")
    _write_auth(home, "tok")
    ctx = make_context()
    strategy = CodexSessionLogStrategy()
    assert strategy.is_available(ctx)
    snap = asyncio.run(strategy.fetch(ctx))
    assert snap.primary.used_percent == 42
    assert snap.identity.account_email == "me@example.com"


# ── oauth ──

def test_oauth_fetch(make_context, tmp_path):
    _write_auth(tmp_path / ".codex", make_jwt({"exp": 1_900_000_000}))
    http = FakeHTTP({USAGE_URL: FakeResponse(200, WHAM)})
    snap = asyncio.run(CodexOAuthStrategy().fetch(make_context(http=http)))
    assert snap.primary.used_percent == 20
    assert snap.identity.account_email == "me@example.com"
    assert snap.identity.login_method == "Plus"
    _, _, kwargs = http.calls[0]
    assert kwargs["headers"]["ChatGPT-Account-Id"] == "acct-1"


def test_oauth_refreshes_expired_token(make_context, tmp_path):
    home = tmp_path / ".codex"
    _write_auth(home, make_jwt({"exp": 1_600_000_000}))
    fresh = make_jwt({"exp": 1_900_000_000, "n": 2})
    http = FakeHTTP({
        REFRESH_ENDPOINT: FakeResponse(200, {"access_token": fresh}),
        USAGE_URL: FakeResponse(200, WHAM),
    })
    asyncio.run(CodexOAuthStrategy().fetch(make_context(http=http)))
    assert http.urls() == [REFRESH_ENDPOINT, USAGE_URL]
    assert http.calls[1][2]["headers"]["Authorization"] == f"Bearer {fresh}"
    saved = json.loads((home / "auth.json").read_text())
    assert saved["tokens"]["access_token"] == fresh
    assert saved["tokens"]["refresh_token"] == "refresh-1"
    assert "last_refresh" in saved


def test_oauth_rejected_token(make_context, tmp_path):
    _write_auth(tmp_path / ".codex", make_jwt({"exp": 1_900_000_000}))
    http = FakeHTTP({USAGE_URL: FakeResponse(401, text="unauthorized")})
    with pytest.raises(NotLoggedIn):
        asyncio.run(CodexOAuthStrategy().fetch(make_context(http=http)))


def test_oauth_unavailable_without_auth(make_context):
    assert not CodexOAuthStrategy().is_available(make_context())


# ── web ──

def test_web_fetch_with_manual_cookie(make_context):
    http = FakeHTTP({
        "https://chatgpt.com/api/auth/session": FakeResponse(
            200, {"accessToken": "web-token", "user": {"email": "web@example.com"}}),
        USAGE_URL: FakeResponse(200, WHAM),
    })
    ctx = make_context(http=http, cookie_source=CookieSource.MANUAL,
                       manual_cookie_header="__Secure-next-auth.session-token=abc")
    snap = asyncio.run(CodexWebStrategy().fetch(ctx))
    assert snap.identity.account_email == "web@example.com"
    assert http.calls[0][2]["cookies"] == {"__Secure-next-auth.session-token": "abc"}
    assert http.calls[1][2]["headers"]["Authorization"] == "Bearer web-token"


def test_web_session_without_token(make_context):
    http = FakeHTTP({"https://chatgpt.com/api/auth/session": FakeResponse(200, {})})
    ctx = make_context(http=http, cookie_source=CookieSource.MANUAL,
                       manual_cookie_header="a=b")
    with pytest.raises(NotLoggedIn):
        asyncio.run(CodexWebStrategy().fetch(ctx))


def test_web_unavailable_when_cookies_off(make_context):
    assert not CodexWebStrategy().is_available(make_context(cookie_source=CookieSource.OFF))
