"""
Claude usage via the Claude Code OAuth token or claude.ai browser cookies.

Both endpoints return the same shape:
  five_hour          → current session
  seven_day          → weekly, all models
  seven_day_sonnet   → weekly, Sonnet only (seven_day_opus on some plans)
  extra_usage        → pay-as-you-go credits (null = off)
"""

import asyncio
import json
import logging
import os
from pathlib import Path

from ..cookieheader import cookie_header, parse_cookie_string
from ..errors import InvalidStoredData, NoCredentialsFound, NotLoggedIn, ParseFailed, UsageError
from ..http import get_json, post_json
from ..models import (
    FetchKind, OAuthCredentials, ProviderCost, ProviderIdentity, RateWindow, UsageSnapshot,
)
from ..stores import KeychainPromptContext, announce_keychain_read
from ..strategy import FetchStrategy, ProviderDescriptor, resolve_cookie_header, web_cookies_available
from ..timestamps import parse_flexible_date

log = logging.getLogger(__name__)

KEYCHAIN_SERVICE = "Claude Code-credentials"
USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
REFRESH_URL = "https://console.anthropic.com/v1/oauth/token"
OAUTH_CLIENT_ID = "9d1c250a-e61b-44d9-88ed-5944d1962f5e"
OAUTH_BETA = "oauth-2025-04-20"

COOKIE_DOMAINS = ("claude.ai",)
SESSION_COOKIE = "sessionKey"

WEB_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://claude.ai/settings/usage",
    "Origin": "https://claude.ai",
}

PLAN_NAMES = {
    "default_claude_pro": "Pro",
    "default_claude_max_5x": "Max 5x",
    "default_claude_max_20x": "Max 20x",
}

_TERTIARY_KEYS = ("seven_day_sonnet", "seven_day_opus")


def plan_from_tier(tier: str | None) -> str | None:
    if not tier:
        return None
    return PLAN_NAMES.get(tier, tier.replace("default_claude_", "").replace("_", " ").title())


# ── credentials ───────────────────────────────────────────────────────────────

def parse_credentials(raw: str | bytes) -> OAuthCredentials:
    """Parse the ``claudeAiOauth`` blob Claude Code stores (keychain or file)."""
    try:
        data = json.loads(raw)
    except (ValueError, TypeError) as e:
        raise InvalidStoredData("Claude OAuth credentials are not valid JSON.") from e
    oauth = data.get("claudeAiOauth") if isinstance(data, dict) else None
    if not isinstance(oauth, dict):
        raise InvalidStoredData("Claude OAuth credentials are missing claudeAiOauth.")
    token = (oauth.get("accessToken") or "").strip()
    if not token:
        raise InvalidStoredData("Claude OAuth credentials have no access token.")
    return OAuthCredentials(
        access_token=token,
        refresh_token=oauth.get("refreshToken") or None,
        expires_at=parse_flexible_date(oauth.get("expiresAt")),
        scopes=tuple(oauth.get("scopes") or ()),
        rate_limit_tier=oauth.get("rateLimitTier") or None,
    )


def credentials_path(context) -> Path:
    override = context.env_value("CLAUDE_CONFIG_DIR")
    base = Path(os.path.expanduser(override)) if override else context.home / ".claude"
    return base / ".credentials.json"


def _read_file(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except OSError:
        return None


async def load_credentials(context) -> OAuthCredentials:
    """Credentials from ~/.claude/.credentials.json, then the secure store."""
    raw = await asyncio.to_thread(_read_file, credentials_path(context))
    if raw:
        return parse_credentials(raw)
    store = context.token_store
    if store is not None:
        announce_keychain_read(context, KeychainPromptContext(
            "oauth_credentials", KEYCHAIN_SERVICE, label="Claude Code"))
        raw = await asyncio.to_thread(store.load_token)
        if raw:
            return parse_credentials(raw)
    raise NoCredentialsFound("Claude Code OAuth credentials not found. Run `claude` to log in.")


# ── usage parsing ────────────────────────────────────────────────────────────

def _window(bucket, minutes: int | None) -> RateWindow | None:
    if not isinstance(bucket, dict):
        return None
    try:
        used = float(bucket.get("utilization") or 0)
    except (TypeError, ValueError):
        return None
    return RateWindow(used_percent=used, window_minutes=minutes,
                      resets_at=parse_flexible_date(bucket.get("resets_at")))


def parse_usage(usage: dict, identity: ProviderIdentity | None = None) -> UsageSnapshot:
    if not isinstance(usage, dict):
        raise ParseFailed(detail="usage response is not an object")
    primary = _window(usage.get("five_hour"), 5 * 60)
    if primary is None:
        raise ParseFailed("Claude usage response has no five_hour window.")
    secondary = _window(usage.get("seven_day"), 7 * 24 * 60)
    tertiary = None
    for key in _TERTIARY_KEYS:
        tertiary = _window(usage.get(key), 7 * 24 * 60)
        if tertiary is not None:
            break

    cost = None
    extra = usage.get("extra_usage")
    if isinstance(extra, dict) and extra.get("is_enabled"):
        used = extra.get("used_credits")
        limit = extra.get("monthly_limit")
        if isinstance(used, (int, float)):
            # credits are reported in cents
            cost = ProviderCost(used=used / 100,
                                limit=limit / 100 if isinstance(limit, (int, float)) else None,
                                currency_code="USD", period="this month")
    return UsageSnapshot(primary=primary, secondary=secondary, tertiary=tertiary,
                         provider_cost=cost, identity=identity or ProviderIdentity())


# ── strategies ────────────────────────────────────────────────────────────────

class ClaudeOAuthStrategy(FetchStrategy):
    id = "claude.oauth"
    kind = FetchKind.OAUTH

    def is_available(self, context):
        return credentials_path(context).is_file() or context.token_store is not None

    async def fetch(self, context):
        creds = await load_credentials(context)
        token = creds.access_token
        if creds.is_expired():
            if not creds.refresh_token:
                raise NotLoggedIn("Claude OAuth token expired. Run `claude` to refresh.")
            token = await self._refresh(context, creds.refresh_token)
        usage = await get_json(context.http, USAGE_URL, timeout=context.api_timeout, headers={
            "Authorization": f"Bearer {token}",
            "anthropic-beta": OAUTH_BETA,
            "Accept": "application/json",
        })
        return parse_usage(usage, ProviderIdentity(login_method=plan_from_tier(creds.rate_limit_tier)))

    async def _refresh(self, context, refresh_token: str) -> str:
        # the refreshed token stays in memory; Claude Code owns the stored credentials
        data = await post_json(context.http, REFRESH_URL, timeout=context.api_timeout,
                               headers={"Content-Type": "application/json",
                                        "Accept": "application/json"},
                               json_body={"grant_type": "refresh_token",
                                          "refresh_token": refresh_token,
                                          "client_id": OAUTH_CLIENT_ID},
                               auth_statuses=(400, 401, 403))
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise NotLoggedIn("Claude OAuth refresh returned no access token. Run `claude` to log in.")
        log.info("refreshed Claude OAuth token")
        return token


def _org_id_from_cookies(cookies: dict) -> str | None:
    return cookies.get("lastActiveOrg") or cookies.get("routingHint")


def _first_dict(items) -> dict:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return {}


def _org_id_from_payload(data) -> str | None:
    if isinstance(data, list):
        first = _first_dict(data)
        return first.get("uuid") or first.get("id")
    if not isinstance(data, dict):
        return None
    account = data.get("account")
    membership = _first_dict(account.get("memberships") if isinstance(account, dict) else None)
    organization = membership.get("organization")
    for candidate in (
        data.get("organization_id"),
        data.get("org_id"),
        _first_dict(data.get("organizations")).get("id"),
        organization.get("id") if isinstance(organization, dict) else None,
    ):
        if candidate:
            return candidate
    return None


class ClaudeWebStrategy(FetchStrategy):
    id = "claude.web"
    kind = FetchKind.WEB

    def is_available(self, context):
        return web_cookies_available(context)

    async def fetch(self, context):
        header, source = await resolve_cookie_header(
            context, COOKIE_DOMAINS, DESCRIPTOR.browser_order, SESSION_COOKIE)
        cookies = parse_cookie_string(header, bare_name=SESSION_COOKIE)
        log.debug("using cookies keys from %s: %s", source, list(cookies))
        header = cookie_header(cookies)

        org_id = _org_id_from_cookies(cookies) or await self._org_id_from_api(context, header)
        if not org_id:
            raise ParseFailed("Could not find organization id. "
                              "Make sure the cookie header includes lastActiveOrg.")
        usage = await get_json(context.http, f"https://claude.ai/api/organizations/{org_id}/usage",
                               headers=WEB_HEADERS, cookie_header=header,
                               timeout=context.web_timeout)
        return parse_usage(usage, ProviderIdentity(account_organization=org_id))

    async def _org_id_from_api(self, context, header: str) -> str | None:
        for path in ("/api/organizations", "/api/bootstrap", "/api/account"):
            try:
                data = await get_json(context.http, f"https://claude.ai{path}", headers=WEB_HEADERS,
                                      cookie_header=header, timeout=context.web_timeout)
            except NotLoggedIn:
                raise
            except UsageError as e:
                log.debug("endpoint %s failed: %s", path, e)
                continue
            org_id = _org_id_from_payload(data)
            if org_id:
                return org_id
        return None


DESCRIPTOR = ProviderDescriptor(
    id="claude",
    display_name="Claude",
    strategies=(ClaudeOAuthStrategy(), ClaudeWebStrategy()),
    cookie_domains=COOKIE_DOMAINS,
    browser_order=("safari", "chrome", "edge", "brave", "arc", "firefox"),
    dashboard_url="https://claude.ai/settings/usage",
)
