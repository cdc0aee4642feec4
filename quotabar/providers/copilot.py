"""
GitHub Copilot usage.

  api  GitHub OAuth token → api.<host>/copilot_internal/user quota snapshots
  web  github.com browser cookies → settings/billing/copilot_usage_card

Tokens come from the device-flow login (`quotabar login copilot`), a token
saved in the config, or COPILOT_API_TOKEN.
"""

import asyncio
import logging
from dataclasses import dataclass

from ..errors import APIError, NoCredentialsFound, NotLoggedIn, ParseFailed, TimedOut
from ..http import get_json, post_json
from ..models import FetchKind, ProviderIdentity, RateWindow, UsageSnapshot
from ..strategy import FetchStrategy, ProviderDescriptor, resolve_cookie_header, web_cookies_available

log = logging.getLogger(__name__)

DEFAULT_HOST = "github.com"
ENTERPRISE_ENV = "GITHUB_ENTERPRISE_URL"
TOKEN_ENV = "COPILOT_API_TOKEN"

CLIENT_ID = "Iv1.b507a08c87ecfe98"    # VS Code
SCOPES = "read:user"
DEVICE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_EXTRA = 5

EDITOR_HEADERS = {
    "Accept": "application/json",
    "Editor-Version": "vscode/1.96.2",
    "Editor-Plugin-Version": "copilot-chat/0.26.7",
    "User-Agent": "GitHubCopilotChat/0.26.7",
    "X-Github-Api-Version": "2025-04-01",
}

COOKIE_DOMAINS = ("github.com",)
SESSION_COOKIE = "user_session"


# ── endpoint ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CopilotEndpoint:
    """GitHub host the Copilot calls go to (github.com or a GHE.com tenant)."""
    host: str = DEFAULT_HOST

    @classmethod
    def from_url(cls, raw: str | None) -> "CopilotEndpoint":
        value = (raw or "").strip()
        lower = value.lower()
        if lower.startswith("https://"):
            value = value[8:]
        elif lower.startswith("http://"):
            value = value[7:]
        value = value.split("/", 1)[0].strip("/")
        return cls(value or DEFAULT_HOST)

    @property
    def is_enterprise(self) -> bool:
        return self.host != DEFAULT_HOST

    @property
    def device_code_url(self) -> str:
        return f"https://{self.host}/login/device/code"

    @property
    def access_token_url(self) -> str:
        return f"https://{self.host}/login/oauth/access_token"

    @property
    def usage_api_url(self) -> str:
        return f"https://api.{self.host}/copilot_internal/user"

    @property
    def dashboard_url(self) -> str:
        return f"https://{self.host}/settings/copilot"


def resolve_endpoint(context) -> CopilotEndpoint:
    """GITHUB_ENTERPRISE_URL wins over the configured enterprise host."""
    return CopilotEndpoint.from_url(
        context.env_value(ENTERPRISE_ENV) or context.settings.enterprise_host)


def resolve_token(context) -> str | None:
    token = (context.settings.api_token or "").strip()
    return token or context.env_value(TOKEN_ENV)


# ── API ───────────────────────────────────────────────────────────────────────

def _quota_window(snapshot) -> RateWindow | None:
    if not isinstance(snapshot, dict):
        return None
    remaining = snapshot.get("percent_remaining")
    if not isinstance(remaining, (int, float)) or isinstance(remaining, bool):
        return None
    return RateWindow(used_percent=max(0.0, 100.0 - float(remaining)))


def parse_copilot_user(data: dict) -> UsageSnapshot:
    if not isinstance(data, dict):
        raise ParseFailed(detail="copilot_internal/user is not an object")
    quotas = data.get("quota_snapshots") or {}
    primary = _quota_window(quotas.get("premium_interactions"))
    secondary = _quota_window(quotas.get("chat"))
    plan = data.get("copilot_plan")
    return UsageSnapshot(
        primary=primary or RateWindow(used_percent=0.0),
        secondary=secondary,
        identity=ProviderIdentity(login_method=plan.replace("_", " ").title()
                                  if isinstance(plan, str) and plan else None),
    )


class CopilotAPIStrategy(FetchStrategy):
    id = "copilot.api"
    kind = FetchKind.API_TOKEN

    def is_available(self, context):
        return resolve_token(context) is not None

    async def fetch(self, context):
        token = resolve_token(context)
        if not token:
            raise NoCredentialsFound("No GitHub token. Run `quotabar login copilot`.")
        endpoint = resolve_endpoint(context)
        data = await get_json(context.http, endpoint.usage_api_url, timeout=context.api_timeout,
                              headers={**EDITOR_HEADERS, "Authorization": f"token {token}"})
        return parse_copilot_user(data)

    def should_fallback(self, error, context):
        # a rejected token will not be fixed by browser cookies
        return not isinstance(error, NotLoggedIn)


# ── web ───────────────────────────────────────────────────────────────────────

def parse_usage_card(data: dict) -> UsageSnapshot:
    if not isinstance(data, dict):
        raise ParseFailed(detail="copilot_usage_card is not an object")
    try:
        used = float(data.get("discountQuantity") or 0)
        limit = float(data.get("userPremiumRequestEntitlement") or 0)
    except (TypeError, ValueError) as e:
        raise ParseFailed(detail="copilot_usage_card has non-numeric counts") from e
    pct = min(100.0, used / limit * 100) if limit > 0 else 0.0
    return UsageSnapshot(primary=RateWindow(
        used_percent=pct,
        reset_description=f"{used:g} / {limit:g} premium requests" if limit else None,
    ))


class CopilotWebStrategy(FetchStrategy):
    id = "copilot.web"
    kind = FetchKind.WEB

    def is_available(self, context):
        return web_cookies_available(context) and not resolve_endpoint(context).is_enterprise

    async def fetch(self, context):
        header, _ = await resolve_cookie_header(
            context, COOKIE_DOMAINS, DESCRIPTOR.browser_order, SESSION_COOKIE)
        data = await get_json(
            context.http, "https://github.com/settings/billing/copilot_usage_card",
            cookie_header=header, timeout=context.web_timeout,
            headers={"Accept": "application/json",
                     "Referer": "https://github.com/settings/billing/premium_requests_usage"},
        )
        return parse_usage_card(data)


# ── device flow login ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class DeviceCode:
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int


class CopilotDeviceFlow:
    """GitHub OAuth device flow: show a user code, poll until approved."""

    def __init__(self, http, endpoint: CopilotEndpoint | None = None, *,
                 timeout: float = 10.0, sleep=asyncio.sleep):
        self.http = http
        self.endpoint = endpoint or CopilotEndpoint()
        self.timeout = timeout
        self.sleep = sleep

    async def request_device_code(self) -> DeviceCode:
        data = await post_json(self.http, self.endpoint.device_code_url, timeout=self.timeout,
                               headers={"Accept": "application/json"},
                               data={"client_id": CLIENT_ID, "scope": SCOPES})
        try:
            return DeviceCode(
                device_code=data["device_code"],
                user_code=data["user_code"],
                verification_uri=data["verification_uri"],
                expires_in=int(data.get("expires_in") or 900),
                interval=int(data.get("interval") or 5),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ParseFailed(detail="device code response is missing fields") from e

    async def poll_for_token(self, code: DeviceCode) -> str:
        """Poll until GitHub hands out an access token. Cancel the task to abort."""
        interval = code.interval
        while True:
            await self.sleep(interval)
            data = await post_json(self.http, self.endpoint.access_token_url,
                                   timeout=self.timeout, auth_statuses=(),
                                   headers={"Accept": "application/json"},
                                   data={"client_id": CLIENT_ID,
                                         "device_code": code.device_code,
                                         "grant_type": DEVICE_GRANT})
            if not isinstance(data, dict):
                continue
            error = data.get("error")
            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval += SLOW_DOWN_EXTRA
                continue
            if error == "expired_token":
                raise TimedOut("The device code expired before it was approved.")
            if error:
                raise NotLoggedIn(detail=data.get("error_description") or error)
            token = data.get("access_token")
            if token:
                log.info("copilot device flow completed (scope=%s)", data.get("scope"))
                return token
            raise APIError(detail="access token response had neither token nor error")


DESCRIPTOR = ProviderDescriptor(
    id="copilot",
    display_name="Copilot",
    strategies=(CopilotAPIStrategy(), CopilotWebStrategy()),
    cookie_domains=COOKIE_DOMAINS,
    browser_order=("safari", "chrome", "edge", "brave", "arc", "firefox"),
    dashboard_url="https://github.com/settings/copilot",
)
