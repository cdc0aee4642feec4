"""
Background keepalive for browser-derived sessions.

Pings a provider's session endpoints with the imported cookies shortly
before they lapse, then re-imports so rotated cookies are picked up and the
next foreground fetch does not stall on a cold import.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable

from .browser.cookies import CookieSession
from .errors import APIError, SessionExpired, TimedOut, UsageError
from .http import new_session, send
from .models import BrowserCookieRecord, utcnow

log = logging.getLogger(__name__)

CHECK_INTERVAL = 300
REFRESH_BUFFER = 300
MIN_REFRESH_INTERVAL = 120
STALE_AFTER = 1800
REQUEST_TIMEOUT = 30
SETTLE_DELAY = 1.0

_IDENTITY_KEYS = ("user", "email", "session")


class SessionKeepalive:
    def __init__(
        self,
        importer: Callable[[], Awaitable[CookieSession]],
        endpoints: Iterable[str],
        origin: str,
        http=None,
        *,
        check_interval: float = CHECK_INTERVAL,
        refresh_buffer: float = REFRESH_BUFFER,
        min_refresh_interval: float = MIN_REFRESH_INTERVAL,
        stale_after: float = STALE_AFTER,
        request_timeout: float = REQUEST_TIMEOUT,
        settle_delay: float = SETTLE_DELAY,
        on_expired: Callable[[SessionExpired], None] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.importer = importer
        self.endpoints = list(endpoints)
        self.origin = origin.rstrip("/")
        self.http = http
        self.check_interval = check_interval
        self.refresh_buffer = refresh_buffer
        self.min_refresh_interval = min_refresh_interval
        self.stale_after = stale_after
        self.request_timeout = request_timeout
        self.settle_delay = settle_delay
        self.on_expired = on_expired
        self.clock = clock

        self.session: CookieSession | None = None
        self.last_attempt: datetime | None = None
        self.last_success: datetime | None = None
        self._refreshing = False
        self._owns_http = False
        self._stop: asyncio.Event | None = None
        self._task: asyncio.Task | None = None

    # ── lifecycle ──

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        if self.http is None:
            self.http = new_session()
            self._owns_http = True
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        log.info("keepalive started for %s", self.origin)

    async def stop(self):
        if self._task is None:
            return
        self._stop.set()
        if self._refreshing:
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        if self._owns_http:
            await self.http.close()
            self.http = None
            self._owns_http = False
        log.info("keepalive stopped for %s", self.origin)

    async def _run(self):
        while True:
            try:
                await asyncio.wait_for(self._stop.wait(), self.check_interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.check_and_refresh()
            except Exception:
                log.exception("keepalive tick for %s failed", self.origin)

    # ── decisions ──

    def needs_refresh(self, cookies: Iterable[BrowserCookieRecord],
                      now: datetime | None = None) -> bool:
        now = now or self.clock()
        cookies = list(cookies)
        expiries = [c.expires for c in cookies if c.expires is not None]
        stale = (self.last_success is None
                 or (now - self.last_success).total_seconds() > self.stale_after)
        if not expiries:
            return stale
        if (min(expiries) - now).total_seconds() < self.refresh_buffer:
            return True
        return stale and any(c.expires is None for c in cookies)

    async def check_and_refresh(self) -> bool:
        """One tick: in-flight guard, rate limit, then refresh if needed."""
        if self._refreshing:
            log.debug("keepalive refresh already in flight")
            return False
        now = self.clock()
        if (self.last_attempt is not None
                and (now - self.last_attempt).total_seconds() < self.min_refresh_interval):
            log.debug("keepalive rate-limited")
            return False
        self._refreshing = True
        try:
            if self.session is None:
                try:
                    self.session = await self.importer()
                except UsageError as e:
                    log.info("keepalive could not import cookies: %s", e)
                    return False
            if not self.needs_refresh(self.session.records, now):
                return False
            return await self._refresh()
        finally:
            self._refreshing = False

    async def force_refresh(self) -> bool:
        """Refresh now, ignoring the rate limit but not an in-flight refresh."""
        if self._refreshing:
            return False
        self._refreshing = True
        try:
            return await self._refresh()
        finally:
            self._refreshing = False

    # ── refresh ──

    async def _refresh(self) -> bool:
        # callers hold the in-flight flag
        self.last_attempt = self.clock()
        try:
            session = self.session or await self.importer()
            if not await self._probe(session.cookie_header):
                log.info("keepalive: no session endpoint answered for %s", self.origin)
                return False
            await asyncio.sleep(self.settle_delay)
            self.session = await self.importer()
            self.last_success = self.clock()
            log.info("keepalive refreshed session for %s (%s)", self.origin,
                     self.session.source_label)
            return True
        except SessionExpired as e:
            log.warning("keepalive: session for %s expired", self.origin)
            if self.on_expired is not None:
                self.on_expired(e)
            return False
        except UsageError as e:
            log.info("keepalive refresh for %s failed: %s", self.origin, e)
            return False

    async def _probe(self, cookie_header: str) -> bool:
        if self.http is None:
            raise RuntimeError("keepalive has no HTTP session; call start() or pass http")
        headers = {
            "Cookie": cookie_header,
            "Accept": "application/json",
            "Origin": self.origin,
            "Referer": self.origin,
        }
        for endpoint in self.endpoints:
            url = self.origin + endpoint
            try:
                r = await send(self.http, "GET", url, timeout=self.request_timeout, headers=headers)
            except (TimedOut, APIError) as e:
                log.debug("keepalive probe %s failed: %s", url, e)
                continue
            if r.status_code == 401:
                raise SessionExpired()
            if r.status_code != 200:
                continue
            try:
                data = r.json()
            except ValueError:
                continue
            if isinstance(data, dict) and any(k in data for k in _IDENTITY_KEYS):
                return True
        return False
