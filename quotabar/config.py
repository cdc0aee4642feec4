"""JSON config file and FetchContext construction."""

import json
import logging
import os
from pathlib import Path
from typing import Mapping

from .models import CookieSource, FetchContext, ProviderSettings, SourceMode
from .stores import ConfigCookieHeaderStore, ConfigTokenStore, NoPromptPreflight

log = logging.getLogger(__name__)

CONFIG_FILE = os.path.expanduser("~/.quotabar_config.json")
CONFIG_ENV = "QUOTABAR_CONFIG"

DEFAULT_WEB_TIMEOUT = 60
DEFAULT_API_TIMEOUT = 10


def config_path(env: Mapping[str, str] | None = None) -> str:
    env = os.environ if env is None else env
    override = (env.get(CONFIG_ENV) or "").strip()
    return os.path.expanduser(override) if override else CONFIG_FILE


# ── load / save ───────────────────────────────────────────────────────────────

def load_config(path: str | None = None) -> dict:
    path = path or config_path()
    if os.path.exists(path):
        try:
            with open(path) as f:
                cfg = json.load(f)
            if isinstance(cfg, dict):
                return cfg
            raise ValueError("top level is not an object")
        except (ValueError, OSError) as e:
            corrupt = path + ".bak"
            log.warning("Config file corrupt (%s), resetting. Backup at %s", e, corrupt)
            try:
                os.replace(path, corrupt)
            except OSError:
                pass
    return {}


def save_config(cfg: dict, path: str | None = None):
    path = path or config_path()
    tmp = path + ".tmp"
    with open(tmp, "w") as f:
        json.dump(cfg, f, indent=2)
    os.replace(tmp, path)


# ── accessors ─────────────────────────────────────────────────────────────────

def provider_section(cfg: dict, provider: str) -> dict:
    section = cfg.get("providers", {}).get(provider)
    return section if isinstance(section, dict) else {}


def set_provider_value(cfg: dict, provider: str, key: str, value):
    """Set (or, for None, remove) one provider field."""
    section = cfg.setdefault("providers", {}).setdefault(provider, {})
    if value is None:
        section.pop(key, None)
    else:
        section[key] = value


def is_enabled(cfg: dict, provider: str) -> bool:
    return bool(provider_section(cfg, provider).get("enabled", True))


def keepalive_enabled(cfg: dict, provider: str) -> bool:
    return bool(cfg.get("keepalive", {}).get(provider, False))


def timeouts(cfg: dict) -> tuple[float, float]:
    t = cfg.get("timeouts") or {}
    return float(t.get("web", DEFAULT_WEB_TIMEOUT)), float(t.get("api", DEFAULT_API_TIMEOUT))


def _enum(enum_cls, raw, default, what: str):
    if raw is None:
        return default
    try:
        return enum_cls(str(raw).lower())
    except ValueError:
        log.warning("ignoring unknown %s %r", what, raw)
        return default


def provider_settings(cfg: dict, provider: str) -> ProviderSettings:
    section = provider_section(cfg, provider)
    return ProviderSettings(
        cookie_source=_enum(CookieSource, section.get("cookie_source"), CookieSource.AUTO,
                            "cookie source"),
        manual_cookie_header=ConfigCookieHeaderStore(cfg, provider).load_cookie_header(),
        api_token=ConfigTokenStore(cfg, provider).load_token(),
        enterprise_host=section.get("enterprise_host") or None,
        region=section.get("region") or None,
    )


def build_context(provider: str, cfg: dict, *, http, env: Mapping[str, str] | None = None,
                  home: Path | None = None, source_mode=None, cookie_importer=None,
                  storage_importer=None, token_store=None, preflight=None,
                  prompt_handler=None) -> FetchContext:
    """Immutable fetch context for ``provider`` from the config and environment."""
    section = provider_section(cfg, provider)
    mode = source_mode or _enum(SourceMode, section.get("source"), SourceMode.AUTO, "source mode")
    web_timeout, api_timeout = timeouts(cfg)
    return FetchContext(
        provider=provider,
        source_mode=mode,
        settings=provider_settings(cfg, provider),
        env=dict(os.environ if env is None else env),
        home=home or Path.home(),
        web_timeout=web_timeout,
        api_timeout=api_timeout,
        http=http,
        cookie_importer=cookie_importer,
        storage_importer=storage_importer,
        token_store=token_store,
        preflight=preflight or NoPromptPreflight(),
        prompt_handler=prompt_handler,
    )
