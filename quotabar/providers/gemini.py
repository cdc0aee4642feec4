"""
Gemini CLI quota via the Google OAuth credentials the CLI keeps in ~/.gemini.

Refreshing an expired token needs the CLI's own OAuth client, which is read
out of the installed gemini-cli-core package.
"""

import asyncio
import json
import logging
import os
import re
import shutil
from datetime import timedelta
from pathlib import Path

from ..browser.tokens import decode_jwt_claims
from ..errors import APIError, NotInstalled, NotLoggedIn, ParseFailed, UnsupportedConfiguration
from ..http import get_json, post_json
from ..models import FetchKind, OAuthCredentials, ProviderIdentity, RateWindow, UsageSnapshot, utcnow
from ..strategy import FetchStrategy, ProviderDescriptor
from ..timestamps import parse_flexible_date

log = logging.getLogger(__name__)

CODE_ASSIST = "https://cloudcode-pa.googleapis.com/v1internal"
QUOTA_URL = f"{CODE_ASSIST}:retrieveUserQuota"
LOAD_CODE_ASSIST_URL = f"{CODE_ASSIST}:loadCodeAssist"
PROJECTS_URL = "https://cloudresourcemanager.googleapis.com/v1/projects"
TOKEN_URL = "https://oauth2.googleapis.com/token"

DAY_MINUTES = 24 * 60

_UNSUPPORTED_AUTH = {"api-key": "API key", "vertex-ai": "Vertex AI"}

TIER_NAMES = {
    "free-tier": "Free",
    "legacy-tier": "Legacy",
    "standard-tier": "Standard",
}

_CLIENT_ID_RE = re.compile(r"""OAUTH_CLIENT_ID\s*=\s*['"]([\w\-.]+)['"]\s*;""")
_CLIENT_SECRET_RE = re.compile(r"""OAUTH_CLIENT_SECRET\s*=\s*['"]([\w\-]+)['"]\s*;""")

_OAUTH_SUBPATH = ("node_modules/@google/gemini-cli/node_modules/@google/gemini-cli-core/"
                  "dist/src/code_assist/oauth2.js")
_OAUTH_FILE = "dist/src/code_assist/oauth2.js"


def gemini_dir(context) -> Path:
    return context.home / ".gemini"


# ── local files ───────────────────────────────────────────────────────────────

def auth_type(home: Path) -> str | None:
    """``security.auth.selectedType`` from ~/.gemini/settings.json, if set."""
    try:
        data = json.loads((home / "settings.json").read_text())
    except (OSError, ValueError):
        return None
    try:
        return data["security"]["auth"]["selectedType"]
    except (KeyError, TypeError):
        return None


def _read_creds(home: Path) -> dict:
    path = home / "oauth_creds.json"
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError as e:
        raise NotLoggedIn("Not logged in to Gemini. Run `gemini` to authenticate.") from e
    except (OSError, ValueError) as e:
        raise ParseFailed(detail="invalid oauth_creds.json") from e
    if not isinstance(data, dict):
        raise ParseFailed(detail="invalid oauth_creds.json")
    return data


def credentials_from_file(data: dict) -> OAuthCredentials:
    token = data.get("access_token")
    if not token:
        raise NotLoggedIn("Gemini credentials have no access token. Run `gemini` to log in.")
    return OAuthCredentials(
        access_token=token,
        refresh_token=data.get("refresh_token") or None,
        expires_at=parse_flexible_date(data.get("expiry_date")),
    )


def _update_creds(home: Path, refreshed: dict):
    path = home / "oauth_creds.json"
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError):
        return
    data["access_token"] = refreshed["access_token"]
    if isinstance(refreshed.get("expires_in"), (int, float)):
        expiry = utcnow() + timedelta(seconds=refreshed["expires_in"])
        data["expiry_date"] = int(expiry.timestamp() * 1000)
    if refreshed.get("id_token"):
        data["id_token"] = refreshed["id_token"]
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    os.replace(tmp, path)


def parse_oauth_client(source: str) -> tuple[str, str] | None:
    client_id = _CLIENT_ID_RE.search(source)
    secret = _CLIENT_SECRET_RE.search(source)
    if not client_id or not secret:
        return None
    return client_id.group(1), secret.group(1)


def find_oauth_client(gemini_binary: str | None = None) -> tuple[str, str] | None:
    """Client id and secret from the installed gemini-cli-core's oauth2.js."""
    binary = gemini_binary or shutil.which("gemini")
    if not binary:
        return None
    real = Path(os.path.realpath(binary))
    base = real.parent.parent
    candidates = (
        base / "libexec" / "lib" / _OAUTH_SUBPATH,       # Homebrew
        base / "lib" / _OAUTH_SUBPATH,
        base.parent / "gemini-cli-core" / _OAUTH_FILE,    # npm / bun sibling package
        base / "node_modules" / "@google" / "gemini-cli-core" / _OAUTH_FILE,
    )
    for path in candidates:
        try:
            source = path.read_text(encoding="utf-8")
        except OSError:
            continue
        found = parse_oauth_client(source)
        if found:
            return found
    return None


# ── quota parsing ────────────────────────────────────────────────────────────

def lowest_per_model(buckets) -> dict[str, tuple[float, str | None]]:
    """Keep the bucket with the lowest remaining fraction for each model."""
    out: dict[str, tuple[float, str | None]] = {}
    for bucket in buckets or ():
        if not isinstance(bucket, dict):
            continue
        model = bucket.get("modelId")
        fraction = bucket.get("remainingFraction")
        if not model or not isinstance(fraction, (int, float)):
            continue
        if model not in out or fraction < out[model][0]:
            out[model] = (float(fraction), bucket.get("resetTime"))
    return out


def _family_window(quotas: dict, family: str) -> RateWindow | None:
    matches = [(f, reset) for model, (f, reset) in quotas.items() if family in model.lower()]
    if not matches:
        return None
    fraction, reset = min(matches, key=lambda m: m[0])
    return RateWindow(used_percent=100.0 - fraction * 100, window_minutes=DAY_MINUTES,
                      resets_at=parse_flexible_date(reset))


def parse_quota(data: dict, email: str | None = None, plan: str | None = None) -> UsageSnapshot:
    buckets = data.get("buckets") if isinstance(data, dict) else None
    if not buckets:
        raise ParseFailed("No quota buckets in response")
    quotas = lowest_per_model(buckets)
    if not quotas:
        raise ParseFailed("No quota buckets in response")
    primary = _family_window(quotas, "pro")
    secondary = _family_window(quotas, "flash")
    if plan is None and primary is not None:
        plan = "AI Pro"
    return UsageSnapshot(
        primary=primary or RateWindow(used_percent=0.0, window_minutes=DAY_MINUTES),
        secondary=secondary,
        identity=ProviderIdentity(account_email=email, login_method=plan),
    )


def tier_label(load_response) -> str | None:
    tier = (load_response or {}).get("currentTier") if isinstance(load_response, dict) else None
    if not isinstance(tier, dict):
        return None
    return TIER_NAMES.get(tier.get("id")) or tier.get("name") or None


def _pick_project(data) -> str | None:
    for project in (data or {}).get("projects") or ():
        project_id = project.get("projectId") or ""
        if project_id.startswith("gen-lang-client"):
            return project_id
        if "generative-language" in (project.get("labels") or {}):
            return project_id
    return None


# ── strategy ──────────────────────────────────────────────────────────────────

class GeminiOAuthStrategy(FetchStrategy):
    id = "gemini.oauth"
    kind = FetchKind.OAUTH

    def __init__(self, client_finder=find_oauth_client):
        self.client_finder = client_finder

    def is_available(self, context):
        return gemini_dir(context).is_dir()

    def should_fallback(self, error, context):
        return not isinstance(error, UnsupportedConfiguration)

    async def fetch(self, context):
        home = gemini_dir(context)
        selected = auth_type(home)
        if selected in _UNSUPPORTED_AUTH:
            raise UnsupportedConfiguration(
                f"Gemini {_UNSUPPORTED_AUTH[selected]} auth not supported. "
                "Use Google account (OAuth) instead.")

        raw = await asyncio.to_thread(_read_creds, home)
        creds = credentials_from_file(raw)
        token = creds.access_token
        if creds.expires_at is not None and creds.is_expired():
            log.info("gemini token expired at %s; refreshing", creds.expires_at)
            if not creds.refresh_token:
                raise NotLoggedIn("Gemini token expired. Run `gemini` to log in again.")
            token = await self._refresh(context, home, creds.refresh_token)

        auth = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        load = await self._load_code_assist(context, auth)
        project = (load or {}).get("cloudaicompanionProject") or await self._discover_project(
            context, auth)
        if isinstance(project, dict):
            project = project.get("id")

        data = await post_json(context.http, QUOTA_URL, timeout=context.api_timeout,
                               headers=auth, json_body={"project": project} if project else {},
                               auth_statuses=(401,))
        email = (decode_jwt_claims(raw.get("id_token") or "") or {}).get("email")
        return parse_quota(data, email=email, plan=tier_label(load))

    async def _refresh(self, context, home: Path, refresh_token: str) -> str:
        client = await asyncio.to_thread(self.client_finder)
        if client is None:
            raise NotInstalled("Could not find the Gemini CLI OAuth configuration. "
                               "Is the gemini CLI installed?")
        client_id, client_secret = client
        data = await post_json(context.http, TOKEN_URL, timeout=context.api_timeout,
                               auth_statuses=(400, 401, 403),
                               data={"client_id": client_id, "client_secret": client_secret,
                                     "refresh_token": refresh_token,
                                     "grant_type": "refresh_token"})
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ParseFailed("Could not parse refresh response")
        await asyncio.to_thread(_update_creds, home, data)
        log.info("gemini token refreshed")
        return data["access_token"]

    async def _load_code_assist(self, context, auth: dict):
        body = {"metadata": {"ideType": "IDE_UNSPECIFIED", "platform": "PLATFORM_UNSPECIFIED",
                             "pluginType": "GEMINI"}}
        try:
            return await post_json(context.http, LOAD_CODE_ASSIST_URL, headers=auth,
                                   json_body=body, timeout=context.api_timeout)
        except (APIError, ParseFailed) as e:
            log.debug("loadCodeAssist failed: %s", e)
            return None

    async def _discover_project(self, context, auth: dict) -> str | None:
        try:
            data = await get_json(context.http, PROJECTS_URL, headers=auth,
                                  timeout=context.api_timeout)
        except (APIError, ParseFailed, NotLoggedIn) as e:
            log.debug("project discovery failed: %s", e)
            return None
        return _pick_project(data)


DESCRIPTOR = ProviderDescriptor(
    id="gemini",
    display_name="Gemini",
    strategies=(GeminiOAuthStrategy(),),
    dashboard_url="https://gemini.google.com",
)
