"""
Codex (ChatGPT) usage.

Three sources, in preference order:
  oauth  ~/.codex/auth.json tokens → chatgpt.com/backend-api/wham/usage
  cli    rate-limit events the Codex CLI writes into its session logs
  web    chatgpt.com browser cookies → session access token → wham/usage
"""

import asyncio
import json
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

from ..browser.tokens import decode_jwt_claims
from ..errors import NotInstalled, NotLoggedIn, ParseFailed
from ..http import get_json, post_json
from ..models import (
    FetchContext, FetchKind, OAuthCredentials, ProviderCost, ProviderIdentity, RateWindow,
    UsageSnapshot, utcnow,
)
from ..strategy import FetchStrategy, ProviderDescriptor, resolve_cookie_header, web_cookies_available
from ..timestamps import decode_rate_window, parse_flexible_date

log = logging.getLogger(__name__)

TAIL_BYTES = 512 * 1024

REFRESH_ENDPOINT = "https://auth.openai.com/oauth/token"
CLIENT_ID = "app_EMoamEEZ73f0CkXaXp7hrann"
DEFAULT_BASE_URL = "https://chatgpt.com/backend-api"
REFRESH_AFTER = timedelta(days=8)

COOKIE_DOMAINS = ("chatgpt.com",)
SESSION_COOKIE = "__Secure-next-auth.session-token"

_CHATGPT_HEADERS = {
    "Accept": "application/json",
    "Referer": "https://chatgpt.com/codex/settings/usage",
}

PLAN_NAMES = {
    "free": "Free", "go": "Go", "plus": "Plus", "pro": "Pro", "team": "Team",
    "business": "Business", "enterprise": "Enterprise", "edu": "Edu",
    "education": "Education", "free_workspace": "Free Workspace",
}


def codex_home(context: FetchContext) -> Path:
    override = context.env_value("CODEX_HOME")
    if override:
        return Path(os.path.expanduser(override))
    return context.home / ".codex"


def plan_label(plan: str | None) -> str | None:
    if not plan:
        return None
    return PLAN_NAMES.get(plan, plan.replace("_", " ").title())


# ── auth.json ─────────────────────────────────────────────────────────────────

def _read_auth(home: Path) -> dict | None:
    path = home / "auth.json"
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        log.debug("cannot read %s: %s", path, e)
        return None
    return data if isinstance(data, dict) else None


def load_account_info(home: Path) -> ProviderIdentity:
    """Email and plan from the id_token in auth.json."""
    auth = _read_auth(home) or {}
    id_token = (auth.get("tokens") or {}).get("id_token")
    claims = decode_jwt_claims(id_token) if isinstance(id_token, str) else None
    if not claims:
        return ProviderIdentity()
    openai = claims.get("https://api.openai.com/auth") or {}
    profile = claims.get("https://api.openai.com/profile") or {}
    email = claims.get("email") or profile.get("email")
    return ProviderIdentity(account_email=email,
                            login_method=plan_label(openai.get("chatgpt_plan_type")))


def credentials_from_auth(auth: dict) -> OAuthCredentials | None:
    tokens = auth.get("tokens") or {}
    access = (tokens.get("access_token") or "").strip()
    if not access:
        return None
    refresh = (tokens.get("refresh_token") or "").strip() or None
    claims = decode_jwt_claims(access) or {}
    expires_at = parse_flexible_date(claims.get("exp"))
    if expires_at is None:
        last_refresh = parse_flexible_date(auth.get("last_refresh"))
        expires_at = last_refresh + REFRESH_AFTER if last_refresh else None
    return OAuthCredentials(access_token=access, refresh_token=refresh, expires_at=expires_at)


def _save_auth(home: Path, auth: dict):
    path = home / "auth.json"
    tmp = str(path) + ".tmp"
    with open(tmp, "w") as f:
        json.dump(auth, f, indent=2, sort_keys=True)
    os.replace(tmp, path)


def _base_url(home: Path) -> str:
    """``chatgpt_base_url`` from config.toml, normalized to the backend-api root."""
    base = DEFAULT_BASE_URL
    try:
        with open(home / "config.toml") as f:
            for line in f:
                m = re.match(r'\s*chatgpt_base_url\s*=\s*["\']?([^"\'#\s]+)', line)
                if m:
                    base = m.group(1)
                    break
    except OSError:
        pass
    base = base.rstrip("/")
    if base.startswith(("https://chatgpt.com", "https://chat.openai.com")) and "/backend-api" not in base:
        base += "/backend-api"
    return base


# ── wham/usage ────────────────────────────────────────────────────────────────

def _wham_window(window, now: datetime) -> RateWindow | None:
    if not isinstance(window, dict):
        return None
    decoded = decode_rate_window(window)
    if decoded.resets_at is None and isinstance(window.get("reset_after_seconds"), (int, float)):
        decoded = RateWindow(decoded.used_percent, decoded.window_minutes,
                             now + timedelta(seconds=window["reset_after_seconds"]))
    return decoded


def parse_wham_usage(data: dict, identity: ProviderIdentity | None = None,
                     now: datetime | None = None) -> UsageSnapshot:
    """Parse /backend-api/wham/usage.

    Shape:
      rate_limit.primary_window / secondary_window
          used_percent, limit_window_seconds, reset_at (unix seconds)
      code_review_rate_limit.primary_window   same structure
      credits.balance, plan_type
    """
    now = now or utcnow()
    if not isinstance(data, dict):
        raise ParseFailed(detail="wham/usage is not an object")
    rate = data.get("rate_limit") or {}
    primary = _wham_window(rate.get("primary_window"), now)
    if primary is None:
        raise ParseFailed("No rate limit data in response")
    secondary = _wham_window(rate.get("secondary_window"), now)
    review = (data.get("code_review_rate_limit") or {}).get("primary_window")
    tertiary = _wham_window(review, now)

    cost = None
    credits = data.get("credits") or {}
    if credits.get("balance") not in (None, ""):
        try:
            cost = ProviderCost(used=float(credits["balance"]), currency_code="credits",
                                period="balance")
        except (TypeError, ValueError):
            log.debug("unparseable credit balance %r", credits.get("balance"))

    identity = identity or ProviderIdentity()
    plan = plan_label(data.get("plan_type"))
    if plan:
        identity = ProviderIdentity(identity.account_email or data.get("email"),
                                    identity.account_organization, plan)
    return UsageSnapshot(primary=primary, secondary=secondary, tertiary=tertiary,
                         provider_cost=cost, updated_at=now, identity=identity)


# ── session logs ─────────────────────────────────────────────────────────────

def session_files(home: Path) -> list[Path]:
    root = home / "sessions"
    if not root.is_dir():
        return []
    files = [p for p in root.rglob("rollout-*.jsonl") if p.is_file()]
    return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)


def _tail_lines(path: Path, window: int = TAIL_BYTES) -> tuple[list[str], bool]:
    """Lines from the last ``window`` bytes; the flag says whether that was the whole file."""
    with open(path, "rb") as f:
        f.seek(0, os.SEEK_END)
        size = f.tell()
        start = max(0, size - window)
        f.seek(start)
        chunk = f.read()
    lines = chunk.decode("utf-8", errors="replace").splitlines()
    if start > 0 and lines:
        lines = lines[1:]  # first line is cut
    return lines, start == 0


def _all_lines(path: Path) -> list[str]:
    with open(path, encoding="utf-8", errors="replace") as f:
        return f.read().splitlines()


def _is_rate_event(event_type) -> bool:
    if not isinstance(event_type, str):
        return False
    t = event_type.lower()
    return t == "token_count" or "ratelimits" in t or "rate_limits" in t


def snapshot_from_lines(lines: list[str], now: datetime | None = None) -> UsageSnapshot | None:
    """Newest rate-limit event in ``lines`` (oldest first), or None."""
    now = now or utcnow()
    for line in reversed(lines):
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(entry, dict):
            continue
        payload = entry.get("payload")
        if not isinstance(payload, dict):
            payload = entry
        if not _is_rate_event(payload.get("type") or entry.get("type")):
            continue
        rate = payload.get("rate_limits")
        if not isinstance(rate, dict):
            rate = entry.get("rate_limits")
        if not isinstance(rate, dict) or not isinstance(rate.get("primary"), dict):
            continue

        created_at = (parse_flexible_date(entry.get("timestamp"))
                      or parse_flexible_date(payload.get("timestamp"))
                      or parse_flexible_date(payload.get("created_at"))
                      or now)
        captured_at = parse_flexible_date(rate.get("captured_at")) or created_at
        primary = decode_rate_window(rate["primary"], created_at, captured_at)
        secondary = None
        if isinstance(rate.get("secondary"), dict):
            secondary = decode_rate_window(rate["secondary"], created_at, captured_at)
        return UsageSnapshot(primary=primary, secondary=secondary, updated_at=captured_at)
    return None


def scan_session_logs(home: Path, now: datetime | None = None) -> UsageSnapshot:
    if not home.is_dir():
        raise NotInstalled(f"Codex home {home} not found.")
    files = session_files(home)
    if not files:
        raise ParseFailed("No Codex sessions found yet. Run at least one Codex prompt first.")
    for path in files:
        try:
            lines, complete = _tail_lines(path)
            snapshot = snapshot_from_lines(lines, now)
            if snapshot is None and not complete:
                snapshot = snapshot_from_lines(_all_lines(path), now)
        except OSError as e:
            log.debug("cannot read %s: %s", path, e)
            continue
        if snapshot is not None:
            log.debug("rate limits from %s", path.name)
            return snapshot
    raise ParseFailed("Found sessions, but no rate limit events yet.")


# ── strategies ────────────────────────────────────────────────────────────────

class CodexOAuthStrategy(FetchStrategy):
    id = "codex.oauth"
    kind = FetchKind.OAUTH

    def is_available(self, context):
        return (codex_home(context) / "auth.json").is_file()

    async def fetch(self, context):
        home = codex_home(context)
        auth = await asyncio.to_thread(_read_auth, home)
        if not auth:
            raise NotLoggedIn("Codex auth.json is missing or unreadable. Run `codex login`.")
        creds = credentials_from_auth(auth)
        if creds is None:
            raise NotLoggedIn("Codex is not signed in with ChatGPT. Run `codex login`.")
        if creds.is_expired() and creds.refresh_token:
            auth = await self._refresh(context, home, auth, creds.refresh_token)
        tokens = auth["tokens"]

        headers = {"Authorization": f"Bearer {tokens['access_token']}", "Accept": "application/json"}
        if tokens.get("account_id"):
            headers["ChatGPT-Account-Id"] = tokens["account_id"]
        base = _base_url(home)
        path = "/wham/usage" if "/backend-api" in base else "/api/codex/usage"
        data = await get_json(context.http, base + path, headers=headers,
                              timeout=context.api_timeout)
        return parse_wham_usage(data, await asyncio.to_thread(load_account_info, home))

    async def _refresh(self, context, home: Path, auth: dict, refresh_token: str) -> dict:
        data = await post_json(context.http, REFRESH_ENDPOINT, timeout=context.api_timeout,
                               headers={"Content-Type": "application/json"},
                               json_body={"client_id": CLIENT_ID,
                                          "grant_type": "refresh_token",
                                          "refresh_token": refresh_token,
                                          "scope": "openid profile email"},
                               auth_statuses=(400, 401, 403))
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ParseFailed(detail="token refresh response has no access_token")
        tokens = dict(auth.get("tokens") or {})
        for key in ("access_token", "refresh_token", "id_token"):
            if data.get(key):
                tokens[key] = data[key]
        updated = {**auth, "tokens": tokens, "last_refresh": utcnow().isoformat()}
        try:
            await asyncio.to_thread(_save_auth, home, updated)
        except OSError as e:
            log.warning("could not save refreshed Codex credentials: %s", e)
        log.info("refreshed Codex OAuth token")
        return updated


class CodexSessionLogStrategy(FetchStrategy):
    id = "codex.cli"
    kind = FetchKind.CLI

    def is_available(self, context):
        return codex_home(context).is_dir()

    async def fetch(self, context):
        home = codex_home(context)
        snapshot = await asyncio.to_thread(scan_session_logs, home)
        identity = await asyncio.to_thread(load_account_info, home)
        return UsageSnapshot(primary=snapshot.primary, secondary=snapshot.secondary,
                             updated_at=snapshot.updated_at, identity=identity)


class CodexWebStrategy(FetchStrategy):
    id = "codex.web"
    kind = FetchKind.WEB

    def is_available(self, context):
        return web_cookies_available(context)

    async def fetch(self, context):
        header, source = await resolve_cookie_header(
            context, COOKIE_DOMAINS, DESCRIPTOR.browser_order, SESSION_COOKIE)
        session = await get_json(context.http, "https://chatgpt.com/api/auth/session",
                                 headers=_CHATGPT_HEADERS, cookie_header=header,
                                 timeout=context.web_timeout)
        token = session.get("accessToken") if isinstance(session, dict) else None
        if not token:
            raise NotLoggedIn(f"chatgpt.com session from {source} has no access token.")
        user = session.get("user") or {}
        data = await get_json(context.http, f"{DEFAULT_BASE_URL}/wham/usage",
                              headers={**_CHATGPT_HEADERS, "Authorization": f"Bearer {token}"},
                              cookie_header=header, timeout=context.web_timeout)
        return parse_wham_usage(data, ProviderIdentity(account_email=user.get("email")))


DESCRIPTOR = ProviderDescriptor(
    id="codex",
    display_name="Codex",
    strategies=(CodexOAuthStrategy(), CodexSessionLogStrategy(), CodexWebStrategy()),
    cookie_domains=COOKIE_DOMAINS,
    browser_order=("safari", "chrome", "edge", "brave", "arc", "firefox"),
    dashboard_url="https://chatgpt.com/codex/settings/usage",
)
