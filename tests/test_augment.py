"""Tests for the Augment provider and its keepalive wiring."""

import asyncio

import pytest
from conftest import FakeHTTP, FakeResponse

from quotabar.browser.cookies import CookieSession
from quotabar.errors import NoCookies, ParseFailed
from quotabar.models import BrowserCookieRecord, CookieSource
from quotabar.providers.augment import (
    ORIGIN, AugmentWebStrategy, augment_keepalive, parse_credits,
)


def test_parse_credits():
    snap = parse_credits({"usageUnitsRemaining": 600, "usageUnitsConsumedThisBillingCycle": 400},
                         {"planName": "Developer", "email": "me@example.com",
                          "billingPeriodEnd": "2026-04-01T00:00:00Z"})
    assert snap.primary.used_percent == 40
    assert snap.provider_cost.limit == 1000
    assert snap.provider_cost.currency_code == "credits"
    assert snap.identity.login_method == "Developer"
    assert snap.identity.account_email == "me@example.com"
    assert snap.primary.resets_at.month == 4


def test_parse_credits_from_total():
    snap = parse_credits({"creditsRemaining": 25, "creditsTotal": 100})
    assert snap.primary.used_percent == 75
    assert snap.identity.login_method is None


def test_parse_credits_without_counts():
    with pytest.raises(ParseFailed):
        parse_credits({"creditsRemaining": 10})


def _ctx(make_context, http):
    return make_context("augment", http=http, cookie_source=CookieSource.MANUAL,
                        manual_cookie_header="_session=s1")


def test_fetch_tolerates_missing_subscription(make_context):
    http = FakeHTTP({f"{ORIGIN}/api/credits": FakeResponse(
        200, {"usageUnitsRemaining": 10, "usageUnitsUsed": 90})})
    snap = asyncio.run(AugmentWebStrategy().fetch(_ctx(make_context, http)))
    assert snap.primary.used_percent == 90
    assert http.urls() == [f"{ORIGIN}/api/credits", f"{ORIGIN}/api/subscription"]


def test_never_falls_back(make_context):
    assert not AugmentWebStrategy().should_fallback(ParseFailed(), make_context("augment"))


class FakeImporter:
    def __init__(self, sessions):
        self.sessions = sessions

    async def import_sessions(self, domains, order, context=None):
        if not self.sessions:
            raise NoCookies()
        return self.sessions


def test_keepalive_uses_best_session(make_context):
    older = CookieSession((BrowserCookieRecord("other", "augmentcode.com", "/", "x"),), "Arc Default")
    good = CookieSession((BrowserCookieRecord("_session", "app.augmentcode.com", "/", "s1"),),
                         "Chrome Default")
    http = FakeHTTP({f"{ORIGIN}/api/auth/session": FakeResponse(200, {"user": {"id": "u"}})})
    ctx = make_context("augment", http=http, cookie_importer=FakeImporter([older, good]))
    keepalive = augment_keepalive(ctx, settle_delay=0)
    assert asyncio.run(keepalive.check_and_refresh()) is True
    assert keepalive.session is good
    assert http.calls[0][2]["headers"]["Cookie"] == "_session=s1"


def test_keepalive_without_cookies(make_context):
    ctx = make_context("augment", http=FakeHTTP(), cookie_importer=FakeImporter([]))
    assert asyncio.run(augment_keepalive(ctx).check_and_refresh()) is False
