"""Tests for cookie header parsing."""

from quotabar.cookieheader import (
    cookie_header, normalize_cookie_header, parse_cookie_string, strip_cf_cookies,
)


def test_parse_pairs():
    assert parse_cookie_string("a=1; b = 2 ;c=x=y") == {"a": "1", "b": "2", "c": "x=y"}


def test_parse_bare_value():
    assert parse_cookie_string("sk-ant-123", bare_name="sessionKey") == {"sessionKey": "sk-ant-123"}
    assert parse_cookie_string("sk-ant-123") == {}


def test_strip_cloudflare_cookies():
    cookies = {"cf_clearance": "x", "__cf_bm": "y", "sessionKey": "z"}
    assert strip_cf_cookies(cookies) == {"sessionKey": "z"}


def test_cookie_header_joins():
    assert cookie_header({"a": "1", "b": "2"}) == "a=1; b=2"


def test_normalize_plain_and_prefixed():
    assert normalize_cookie_header("a=1;b=2") == "a=1; b=2"
    assert normalize_cookie_header("Cookie: a=1") == "a=1"
    assert normalize_cookie_header("COOKIE:a=1") == "a=1"


def test_normalize_curl_header_flag():
    raw = "curl 'https://claude.ai/api/x' -H 'accept: */*' -H 'cookie: sessionKey=abc; lastActiveOrg=o1'"
    assert normalize_cookie_header(raw) == "sessionKey=abc; lastActiveOrg=o1"


def test_normalize_curl_cookie_flag():
    raw = "curl https://cursor.com/api/usage-summary \\\n  -b 'WorkosCursorSessionToken=t'"
    assert normalize_cookie_header(raw) == "WorkosCursorSessionToken=t"


def test_normalize_nothing_usable():
    assert normalize_cookie_header(None) is None
    assert normalize_cookie_header("   ") is None
    assert normalize_cookie_header("curl https://example.com") is None
    assert normalize_cookie_header("Cookie:") is None
