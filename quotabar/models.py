"""Usage data model shared by every provider and strategy."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping


class SourceMode(str, Enum):
    AUTO = "auto"
    CLI = "cli"
    WEB = "web"
    API = "api"
    OAUTH = "oauth"


class FetchKind(str, Enum):
    CLI = "cli"
    WEB = "web"
    API_TOKEN = "api"
    OAUTH = "oauth"


class CookieSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    OFF = "off"


class CookieStoreKind(str, Enum):
    NETWORK = "network"
    PRIMARY = "primary"
    SAFARI = "safari"    # platform keychain-backed store

    @property
    def priority(self) -> int:
        return _STORE_PRIORITY[self]


_STORE_PRIORITY = {
    CookieStoreKind.NETWORK: 0,
    CookieStoreKind.PRIMARY: 1,
    CookieStoreKind.SAFARI: 2,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── usage records ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RateWindow:
    used_percent: float
    window_minutes: int | None = None
    resets_at: datetime | None = None
    reset_description: str | None = None

    @property
    def remaining_percent(self) -> float:
        return max(0.0, 100.0 - self.used_percent)


@dataclass(frozen=True)
class ProviderIdentity:
    account_email: str | None = None
    account_organization: str | None = None
    login_method: str | None = None


@dataclass(frozen=True)
class ProviderCost:
    """Spend or credit balance reported next to the rate windows."""
    used: float
    limit: float | None = None
    currency_code: str = "USD"
    period: str | None = None
    resets_at: datetime | None = None


@dataclass(frozen=True)
class UsageSnapshot:
    primary: RateWindow
    secondary: RateWindow | None = None
    tertiary: RateWindow | None = None
    provider_cost: ProviderCost | None = None
    updated_at: datetime = field(default_factory=utcnow)
    identity: ProviderIdentity = field(default_factory=ProviderIdentity)

    @property
    def windows(self) -> list[RateWindow]:
        return [w for w in (self.primary, self.secondary, self.tertiary) if w is not None]


# ── credentials ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class OAuthCredentials:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scopes: tuple[str, ...] = ()
    rate_limit_tier: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """True when no expiry is known or the expiry has passed."""
        if self.expires_at is None:
            return True
        return (now or utcnow()) >= self.expires_at

    def expires_in(self, now: datetime | None = None) -> float | None:
        if self.expires_at is None:
            return None
        return (self.expires_at - (now or utcnow())).total_seconds()


@dataclass(frozen=True)
class BrowserCookieRecord:
    name: str
    domain: str
    path: str
    value: str
    expires: datetime | None = None
    store_kind: CookieStoreKind = CookieStoreKind.PRIMARY

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.name, self.domain, self.path)


# ── fetch plumbing ────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ProviderSettings:
    """Per-provider user settings resolved before a fetch."""
    cookie_source: CookieSource = CookieSource.AUTO
    manual_cookie_header: str | None = None
    api_token: str | None = None
    enterprise_host: str | None = None
    region: str | None = None


@dataclass(frozen=True)
class FetchContext:
    """Read-only description of one fetch attempt.

    ``http`` is an async session with ``get``/``post`` coroutines
    (``curl_cffi.requests.AsyncSession`` in production). The importer, store
    and preflight references are optional collaborators.
    """
    provider: str
    source_mode: SourceMode = SourceMode.AUTO
    settings: ProviderSettings = field(default_factory=ProviderSettings)
    env: Mapping[str, str] = field(default_factory=dict)
    home: Path = field(default_factory=Path.home)
    web_timeout: float = 60.0
    api_timeout: float = 10.0
    http: Any = None
    cookie_importer: Any = None
    storage_importer: Any = None
    token_store: Any = None
    preflight: Any = None
    prompt_handler: Any = None

    def __post_init__(self):
        object.__setattr__(self, "source_mode", SourceMode(self.source_mode))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        object.__setattr__(self, "home", Path(self.home))

    def env_value(self, key: str) -> str | None:
        """Environment value with whitespace and surrounding quotes removed."""
        return cleaned(self.env.get(key))


def cleaned(raw: str | None) -> str | None:
    if raw is None:
        return None
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].strip()
    return value or None


@dataclass(frozen=True)
class FetchAttempt:
    strategy_id: str
    kind: FetchKind
    was_available: bool
    error: Exception | None = None


@dataclass(frozen=True)
class FetchResult:
    provider: str
    snapshot: UsageSnapshot | None = None
    source_label: str | None = None
    strategy_id: str | None = None
    error: Exception | None = None
    attempts: tuple[FetchAttempt, ...] = ()

    @property
    def ok(self) -> bool:
        return self.snapshot is not None
