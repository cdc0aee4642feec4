"""Augment Code credits via app.augmentcode.com browser cookies."""

import logging

from ..browser.cookies import BrowserCookieImporter, best_session
from ..errors import NoCookies, ParseFailed, UsageError
from ..http import get_json
from ..keepalive import SessionKeepalive
from ..models import FetchKind, ProviderCost, ProviderIdentity, RateWindow, UsageSnapshot
from ..strategy import FetchStrategy, ProviderDescriptor, resolve_cookie_header, web_cookies_available
from ..timestamps import parse_flexible_date

log = logging.getLogger(__name__)

ORIGIN = "https://app.augmentcode.com"
COOKIE_DOMAINS = ("augmentcode.com", "app.augmentcode.com")
SESSION_COOKIE = "_session"
KEEPALIVE_ENDPOINTS = ("/api/auth/session", "/api/session", "/api/user")

_REMAINING_KEYS = ("usageUnitsRemaining", "creditsRemaining", "remaining")
_USED_KEYS = ("usageUnitsConsumedThisBillingCycle", "usageUnitsUsed", "creditsUsed", "used")
_TOTAL_KEYS = ("usageUnitsTotal", "creditsTotal", "includedCredits", "total")
_PLAN_KEYS = ("planName", "plan", "subscriptionType")
_PERIOD_END_KEYS = ("billingPeriodEnd", "currentPeriodEnd", "periodEnd")


def _first_number(data: dict, keys) -> float | None:
    for key in keys:
        value = data.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
    return None


def _first(data: dict, keys):
    return next((data[k] for k in keys if data.get(k)), None)


def parse_credits(credits: dict, subscription: dict | None = None) -> UsageSnapshot:
    if not isinstance(credits, dict):
        raise ParseFailed(detail="credits response is not an object")
    subscription = subscription if isinstance(subscription, dict) else {}
    remaining = _first_number(credits, _REMAINING_KEYS)
    used = _first_number(credits, _USED_KEYS)
    total = _first_number(credits, _TOTAL_KEYS)
    if total is None and remaining is not None and used is not None:
        total = remaining + used
    if used is None and total is not None and remaining is not None:
        used = max(0.0, total - remaining)
    if used is None or not total:
        raise ParseFailed("Augment credits response has no usage counts.")

    resets_at = parse_flexible_date(_first(subscription, _PERIOD_END_KEYS))
    plan = _first(subscription, _PLAN_KEYS)
    return UsageSnapshot(
        primary=RateWindow(used_percent=min(100.0, used / total * 100), resets_at=resets_at),
        provider_cost=ProviderCost(used=used, limit=total, currency_code="credits",
                                   period="this billing cycle", resets_at=resets_at),
        identity=ProviderIdentity(account_email=subscription.get("email"),
                                  login_method=plan if isinstance(plan, str) else None),
    )


class AugmentWebStrategy(FetchStrategy):
    id = "augment.web"
    kind = FetchKind.WEB

    def is_available(self, context):
        return web_cookies_available(context)

    def should_fallback(self, error, context):
        return False

    async def fetch(self, context):
        header, _ = await resolve_cookie_header(
            context, COOKIE_DOMAINS, DESCRIPTOR.browser_order, SESSION_COOKIE)
        headers = {"Accept": "application/json", "Referer": f"{ORIGIN}/account/subscription"}
        credits = await get_json(context.http, f"{ORIGIN}/api/credits", headers=headers,
                                 cookie_header=header, timeout=context.web_timeout)
        try:
            subscription = await get_json(context.http, f"{ORIGIN}/api/subscription",
                                          headers=headers, cookie_header=header,
                                          timeout=context.web_timeout)
        except UsageError as e:
            log.debug("augment subscription lookup failed: %s", e)
            subscription = None
        return parse_credits(credits, subscription)


def augment_keepalive(context, **kwargs) -> SessionKeepalive:
    """Keepalive that re-imports Augment cookies from the browsers."""
    importer = context.cookie_importer or BrowserCookieImporter(home=context.home)

    async def import_session():
        sessions = await importer.import_sessions(list(COOKIE_DOMAINS), DESCRIPTOR.browser_order,
                                                  context)
        session = best_session(sessions, SESSION_COOKIE)
        if session is None:
            raise NoCookies("No Augment session cookie found in browsers.")
        return session

    return SessionKeepalive(import_session, KEEPALIVE_ENDPOINTS, ORIGIN, context.http, **kwargs)


DESCRIPTOR = ProviderDescriptor(
    id="augment",
    display_name="Augment",
    strategies=(AugmentWebStrategy(),),
    cookie_domains=COOKIE_DOMAINS,
    browser_order=("safari", "chrome", "chrome_beta", "chrome_canary", "edge", "edge_beta",
                   "brave", "arc", "arc_beta", "firefox"),
    dashboard_url=f"{ORIGIN}/account/subscription",
)
