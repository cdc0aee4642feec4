"""Tests for the Cursor provider."""

import asyncio

import pytest
from conftest import FakeHTTP, FakeResponse

from quotabar.browser.cookies import CookieSession
from quotabar.errors import NoCookies, NotLoggedIn, ParseFailed
from quotabar.models import BrowserCookieRecord
from quotabar.providers.cursor import USAGE_URL, CursorWebStrategy, parse_usage_summary

SUMMARY = {
    "billingCycleEnd": "2026-03-15T00:00:00.000Z",
    "membershipType": "pro_plus",
    "individualUsage": {"plan": {"totalPercentUsed": 41.2, "autoPercentUsed": 30,
                                 "apiPercentUsed": 11.2}},
}


class FakeImporter:
    def __init__(self, sessions):
        self.sessions = sessions
        self.requests = []

    async def import_sessions(self, domains, order, context=None):
        self.requests.append(domains)
        if not self.sessions:
            raise NoCookies()
        return self.sessions


def _session(label, token):
    record = BrowserCookieRecord("WorkosCursorSessionToken", "cursor.com", "/", token)
    return CookieSession((record,), label)


def test_parse_usage_summary():
    snap = parse_usage_summary(SUMMARY)
    assert snap.primary.used_percent == 41.2
    assert snap.secondary.used_percent == 30
    assert snap.tertiary.used_percent == 11.2
    assert snap.primary.resets_at.day == 15
    assert snap.identity.login_method == "Pro Plus"


def test_parse_usage_summary_without_total():
    snap = parse_usage_summary({"individualUsage": {"plan": {"autoPercentUsed": 5,
                                                             "apiPercentUsed": 9}}})
    assert snap.primary.used_percent == 9


def test_parse_usage_summary_empty():
    with pytest.raises(ParseFailed):
        parse_usage_summary({"individualUsage": {}})


def test_fetch_with_browser_cookies(make_context):
    importer = FakeImporter([_session("Chrome Default", "tok-1")])
    http = FakeHTTP({USAGE_URL: FakeResponse(200, SUMMARY)})
    snap = asyncio.run(CursorWebStrategy().fetch(
        make_context("cursor", http=http, cookie_importer=importer)))
    assert snap.primary.used_percent == 41.2
    assert importer.requests == [["cursor.com", "cursor.sh"]]
    assert http.calls[0][2]["cookies"] == {"WorkosCursorSessionToken": "tok-1"}


def test_rejected_session(make_context):
    importer = FakeImporter([_session("Chrome Default", "tok-1")])
    http = FakeHTTP({USAGE_URL: FakeResponse(401, text="")})
    with pytest.raises(NotLoggedIn):
        asyncio.run(CursorWebStrategy().fetch(
            make_context("cursor", http=http, cookie_importer=importer)))


def test_no_browser_cookies(make_context):
    with pytest.raises(NoCookies):
        asyncio.run(CursorWebStrategy().fetch(
            make_context("cursor", http=FakeHTTP(), cookie_importer=FakeImporter([]))))
