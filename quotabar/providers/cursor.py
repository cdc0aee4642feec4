"""Cursor usage via cursor.com browser cookies (WorkOS session)."""

import logging

from ..errors import ParseFailed
from ..http import get_json
from ..models import FetchKind, ProviderIdentity, RateWindow, UsageSnapshot
from ..strategy import FetchStrategy, ProviderDescriptor, resolve_cookie_header, web_cookies_available
from ..timestamps import parse_flexible_date

log = logging.getLogger(__name__)

COOKIE_DOMAINS = ("cursor.com", "cursor.sh")
SESSION_COOKIE = "WorkosCursorSessionToken"
USAGE_URL = "https://cursor.com/api/usage-summary"


def _pct(plan: dict, key: str) -> float | None:
    value = plan.get(key)
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def parse_usage_summary(data: dict) -> UsageSnapshot:
    """
    individualUsage.plan.totalPercentUsed → primary
    individualUsage.plan.autoPercentUsed  → secondary
    individualUsage.plan.apiPercentUsed   → tertiary
    """
    if not isinstance(data, dict):
        raise ParseFailed(detail="usage-summary is not an object")
    plan = (data.get("individualUsage") or {}).get("plan") or {}
    total = _pct(plan, "totalPercentUsed")
    auto = _pct(plan, "autoPercentUsed")
    api = _pct(plan, "apiPercentUsed")
    if total is None and auto is None and api is None:
        raise ParseFailed("Cursor usage summary has no plan usage.")
    resets_at = parse_flexible_date(data.get("billingCycleEnd"))

    def window(pct):
        return None if pct is None else RateWindow(used_percent=pct, resets_at=resets_at)

    membership = data.get("membershipType")
    return UsageSnapshot(
        primary=window(total if total is not None else max(auto or 0.0, api or 0.0)),
        secondary=window(auto),
        tertiary=window(api),
        identity=ProviderIdentity(
            login_method=membership.replace("_", " ").title()
            if isinstance(membership, str) and membership else None),
    )


class CursorWebStrategy(FetchStrategy):
    id = "cursor.web"
    kind = FetchKind.WEB

    def is_available(self, context):
        return web_cookies_available(context)

    async def fetch(self, context):
        header, _ = await resolve_cookie_header(
            context, COOKIE_DOMAINS, DESCRIPTOR.browser_order, SESSION_COOKIE)
        data = await get_json(context.http, USAGE_URL, cookie_header=header,
                              timeout=context.web_timeout,
                              headers={"Accept": "application/json",
                                       "Referer": "https://cursor.com/dashboard?tab=usage"})
        return parse_usage_summary(data)


DESCRIPTOR = ProviderDescriptor(
    id="cursor",
    display_name="Cursor",
    strategies=(CursorWebStrategy(),),
    cookie_domains=COOKIE_DOMAINS,
    browser_order=("safari", "chrome", "edge", "brave", "arc", "firefox"),
    dashboard_url="https://cursor.com/dashboard?tab=usage",
)
