"""
MiniMax coding-plan usage.

The platform console authenticates with both session cookies and a bearer
token the web app keeps in local storage; the remains endpoint wants the
account's group id as well. All three are harvested from the browser.
"""

import logging
from urllib.parse import urlencode

from ..browser.storage import LocalStorageImporter
from ..browser.tokens import jwt_has_signal
from ..errors import APIError, NotLoggedIn, ParseFailed
from ..http import get_json
from ..models import CookieSource, FetchKind, ProviderIdentity, RateWindow, UsageSnapshot
from ..strategy import FetchStrategy, ProviderDescriptor, resolve_cookie_header, web_cookies_available
from ..timestamps import parse_flexible_date

log = logging.getLogger(__name__)

HOSTS = {
    "global": "platform.minimax.io",
    "china": "platform.minimaxi.com",
}
REMAINS_PATH = "/v1/api/openplatform/coding_plan/remains"
CODING_PLAN_PATH = "/user-center/payment/coding-plan"

COOKIE_ENV_KEYS = ("MINIMAX_COOKIE", "MINIMAX_COOKIE_HEADER")
HOST_ENV = "MINIMAX_HOST"
REMAINS_URL_ENV = "MINIMAX_REMAINS_URL"
CODING_PLAN_URL_ENV = "MINIMAX_CODING_PLAN_URL"

COOKIE_DOMAINS = (
    "platform.minimax.io",
    "openplatform.minimax.io",
    "minimax.io",
    "platform.minimaxi.com",
    "openplatform.minimaxi.com",
    "minimaxi.com",
)
SESSION_COOKIE = "HERTZ-SESSION"
STORAGE_ORIGINS = (
    "https://platform.minimax.io",
    "https://platform.minimaxi.com",
)
TOKEN_SIGNAL_KEYS = ("GroupID", "GroupName", "group_id")

STATUS_NOT_LOGGED_IN = 1004


def _as_url(raw: str | None) -> str | None:
    if not raw:
        return None
    return raw if "://" in raw else f"https://{raw}"


def resolve_urls(context) -> tuple[str, str]:
    """(remains url, coding plan page url) after region and env overrides."""
    region = (context.settings.region or "global").lower()
    host = context.env_value(HOST_ENV) or HOSTS.get(region, HOSTS["global"])
    base = _as_url(host).rstrip("/")
    remains = _as_url(context.env_value(REMAINS_URL_ENV)) or base + REMAINS_PATH
    page = _as_url(context.env_value(CODING_PLAN_URL_ENV)) or base + CODING_PLAN_PATH
    return remains, page


def _accept_token(token: str) -> bool:
    return jwt_has_signal(token, "minimax", TOKEN_SIGNAL_KEYS)


def _model_window(entry: dict) -> RateWindow | None:
    total = entry.get("current_interval_total_count")
    used = entry.get("current_interval_usage_count")
    if not isinstance(total, (int, float)) or not isinstance(used, (int, float)) or total <= 0:
        return None
    start = parse_flexible_date(entry.get("start_time"))
    end = parse_flexible_date(entry.get("end_time"))
    minutes = int((end - start).total_seconds() // 60) if start and end and end > start else None
    return RateWindow(
        used_percent=min(100.0, max(0.0, used / total * 100)),
        window_minutes=minutes,
        resets_at=end,
        reset_description=f"{used:g} / {total:g} prompts",
    )


def parse_remains(data: dict, group_id: str | None = None) -> UsageSnapshot:
    if not isinstance(data, dict):
        raise ParseFailed(detail="coding_plan/remains is not an object")
    status = (data.get("base_resp") or {}).get("status_code") or 0
    if status == STATUS_NOT_LOGGED_IN:
        raise NotLoggedIn("MiniMax session expired. Sign in to the MiniMax platform again.")
    if status:
        raise APIError(detail=(data.get("base_resp") or {}).get("status_msg") or f"status {status}")

    windows = [w for w in (_model_window(e) for e in data.get("model_remains") or ()
                           if isinstance(e, dict)) if w is not None]
    if not windows:
        raise ParseFailed("MiniMax response has no coding plan usage.")
    windows.sort(key=lambda w: w.used_percent, reverse=True)
    return UsageSnapshot(
        primary=windows[0],
        secondary=windows[1] if len(windows) > 1 else None,
        identity=ProviderIdentity(account_organization=group_id),
    )


class MiniMaxWebStrategy(FetchStrategy):
    id = "minimax.web"
    kind = FetchKind.WEB

    def is_available(self, context):
        return web_cookies_available(context)

    async def fetch(self, context):
        header, source = await resolve_cookie_header(
            context, COOKIE_DOMAINS, DESCRIPTOR.browser_order, SESSION_COOKIE,
            env_keys=COOKIE_ENV_KEYS)
        token, group_id = await self._storage_token(context)
        remains_url, page_url = resolve_urls(context)
        if group_id:
            remains_url += ("&" if "?" in remains_url else "?") + urlencode({"GroupId": group_id})

        headers = {"Accept": "application/json, text/plain, */*", "Referer": page_url}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        log.debug("minimax: cookies from %s, token=%s, group=%s", source, bool(token), group_id)
        data = await get_json(context.http, remains_url, headers=headers, cookie_header=header,
                              timeout=context.web_timeout)
        return parse_remains(data, group_id)

    async def _storage_token(self, context) -> tuple[str | None, str | None]:
        if context.settings.cookie_source != CookieSource.AUTO:
            return None, None
        importer = context.storage_importer or LocalStorageImporter(context.home)
        tokens = await importer.import_tokens(list(STORAGE_ORIGINS), "minimax",
                                              DESCRIPTOR.browser_order, _accept_token)
        if not tokens:
            return None, None
        best = next((t for t in tokens if t.group_id), tokens[0])
        log.debug("minimax token from %s", best.source_label)
        return best.access_token, best.group_id


DESCRIPTOR = ProviderDescriptor(
    id="minimax",
    display_name="MiniMax",
    strategies=(MiniMaxWebStrategy(),),
    cookie_domains=COOKIE_DOMAINS,
    browser_order=("chrome", "edge", "brave", "arc", "safari", "firefox"),
    dashboard_url="https://platform.minimax.io/user-center/payment/coding-plan",
)
