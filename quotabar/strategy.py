"""Fetch strategy interface and helpers shared by the web strategies."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .browser.browsers import DEFAULT_ORDER
from .browser.cookies import BrowserCookieImporter, best_session
from .cookieheader import normalize_cookie_header
from .errors import NoCookies, NoCredentialsFound
from .models import CookieSource, FetchContext, FetchKind, UsageSnapshot

log = logging.getLogger(__name__)


class FetchStrategy(ABC):
    """One way of obtaining a UsageSnapshot for a provider."""

    id: str = ""
    kind: FetchKind = FetchKind.WEB

    @property
    def source_label(self) -> str:
        return self.kind.value

    @abstractmethod
    def is_available(self, context: FetchContext) -> bool:
        """Cheap local precondition check. Never touches the network."""

    @abstractmethod
    async def fetch(self, context: FetchContext) -> UsageSnapshot:
        ...

    def should_fallback(self, error: Exception, context: FetchContext) -> bool:
        return True

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}>"


@dataclass(frozen=True)
class ProviderDescriptor:
    id: str
    display_name: str
    strategies: tuple[FetchStrategy, ...]
    cookie_domains: tuple[str, ...] = ()
    browser_order: tuple[str, ...] = DEFAULT_ORDER
    dashboard_url: str | None = None

    @property
    def kinds(self) -> list[FetchKind]:
        seen: list[FetchKind] = []
        for s in self.strategies:
            if s.kind not in seen:
                seen.append(s.kind)
        return seen


# ── cookie-backed web strategies ─────────────────────────────────────────────

def web_cookies_available(context: FetchContext) -> bool:
    settings = context.settings
    if settings.cookie_source == CookieSource.OFF:
        return False
    if settings.cookie_source == CookieSource.MANUAL:
        return bool(normalize_cookie_header(settings.manual_cookie_header))
    return True


async def resolve_cookie_header(context: FetchContext, domains, order=DEFAULT_ORDER,
                                target: str | None = None, env_keys=()) -> tuple[str, str]:
    """Cookie header and a label naming where it came from.

    Manual mode uses the pasted header only. Auto mode prefers an
    environment override, then imports from installed browsers and picks the
    session whose ``target`` cookie lives longest.
    """
    settings = context.settings
    if settings.cookie_source == CookieSource.OFF:
        raise NoCredentialsFound("Cookie import is turned off.")
    if settings.cookie_source == CookieSource.MANUAL:
        header = normalize_cookie_header(settings.manual_cookie_header)
        if not header:
            raise NoCredentialsFound("Manual cookie header is empty.")
        return header, "manual"

    for key in env_keys:
        header = normalize_cookie_header(context.env_value(key))
        if header:
            return header, f"env:{key}"

    importer = context.cookie_importer or BrowserCookieImporter(home=context.home)
    sessions = await importer.import_sessions(list(domains), order, context)
    session = best_session(sessions, target)
    if session is None:
        raise NoCookies(f"No {target or 'session'} cookie for {domains[0]} found in browsers.")
    log.debug("using cookies from %s: %s", session.source_label, session.names)
    return session.cookie_header, session.source_label
