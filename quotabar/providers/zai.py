"""z.ai (Zhipu GLM coding plan) quota via API token."""

import logging

from ..errors import APIError, NoCredentialsFound, NotLoggedIn, ParseFailed
from ..http import get_json
from ..models import FetchKind, ProviderIdentity, RateWindow, UsageSnapshot
from ..strategy import FetchStrategy, ProviderDescriptor
from ..timestamps import parse_flexible_date

log = logging.getLogger(__name__)

HOSTS = {
    "global": "https://api.z.ai",
    "china": "https://open.bigmodel.cn",
}
QUOTA_PATH = "/api/monitor/usage/quota/limit"
TOKEN_ENV = "Z_AI_API_KEY"

# limit "unit" codes → minutes per unit
_UNIT_MINUTES = {1: 24 * 60, 3: 60, 5: 1}


def resolve_token(context) -> str | None:
    token = (context.settings.api_token or "").strip()
    return token or context.env_value(TOKEN_ENV)


def quota_url(context) -> str:
    region = (context.settings.region or "global").lower()
    return HOSTS.get(region, HOSTS["global"]) + QUOTA_PATH


def _limit_window(limit: dict) -> RateWindow | None:
    pct = limit.get("percentage")
    if not isinstance(pct, (int, float)) or isinstance(pct, bool):
        usage, total = limit.get("currentValue"), limit.get("usage")
        if not isinstance(usage, (int, float)) or not isinstance(total, (int, float)) or total <= 0:
            return None
        pct = usage / total * 100
    minutes = None
    per_unit = _UNIT_MINUTES.get(limit.get("unit"))
    if per_unit and isinstance(limit.get("number"), int):
        minutes = per_unit * limit["number"]
    return RateWindow(used_percent=min(100.0, max(0.0, float(pct))), window_minutes=minutes,
                      resets_at=parse_flexible_date(limit.get("nextResetTime")))


def parse_quota(payload: dict) -> UsageSnapshot:
    """
    data.limits[type=TOKENS_LIMIT] → primary (prompt tokens, rolling window)
    data.limits[type=TIME_LIMIT]   → secondary (MCP / tool time)
    """
    if not isinstance(payload, dict):
        raise ParseFailed(detail="quota response is not an object")
    if payload.get("success") is False or payload.get("code") not in (None, 0, 200):
        if payload.get("code") == 401:
            raise NotLoggedIn("z.ai rejected the API token.")
        raise APIError(detail=payload.get("msg") or f"code {payload.get('code')}")
    data = payload.get("data") or {}
    by_type = {item.get("type"): item for item in data.get("limits") or () if isinstance(item, dict)}
    primary = _limit_window(by_type.get("TOKENS_LIMIT") or {})
    secondary = _limit_window(by_type.get("TIME_LIMIT") or {})
    if primary is None and secondary is None:
        raise ParseFailed("z.ai response has no quota limits.")
    plan = data.get("planName") or data.get("level")
    return UsageSnapshot(
        primary=primary or secondary,
        secondary=secondary if primary is not None else None,
        identity=ProviderIdentity(login_method=plan if isinstance(plan, str) else None),
    )


class ZaiAPIStrategy(FetchStrategy):
    id = "zai.api"
    kind = FetchKind.API_TOKEN

    def is_available(self, context):
        return resolve_token(context) is not None

    async def fetch(self, context):
        token = resolve_token(context)
        if not token:
            raise NoCredentialsFound(f"No z.ai API token. Set {TOKEN_ENV} or run "
                                     "`quotabar set-token zai TOKEN`.")
        data = await get_json(context.http, quota_url(context), timeout=context.api_timeout,
                              headers={"Authorization": f"Bearer {token}",
                                       "Accept": "application/json"})
        return parse_quota(data)


DESCRIPTOR = ProviderDescriptor(
    id="zai",
    display_name="z.ai",
    strategies=(ZaiAPIStrategy(),),
    dashboard_url="https://z.ai/manage-apikey/subscription",
)
