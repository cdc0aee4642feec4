"""
Browser cookie import.

Every cookie database is read through browser_cookie3 in a child process:
the native decryption path (libcrypto / sqlite) has been known to crash,
and a crash there must not take the caller down with it.
"""

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from ..errors import NoCookies
from ..models import BrowserCookieRecord, CookieStoreKind
from ..stores import KeychainPromptContext, announce_keychain_read
from .browsers import DEFAULT_ORDER, Browser, BrowserProfile, installed, profiles

log = logging.getLogger(__name__)

NETWORK_SUFFIX = " (Network)"
READ_TIMEOUT = 60

_READ_SCRIPT = r"""
import json, sys

import browser_cookie3

loader, cookie_file, domains = sys.argv[1], sys.argv[2], json.loads(sys.argv[3])
fn = getattr(browser_cookie3, loader)
found = {}
for domain in domains:
    for c in fn(cookie_file=cookie_file, domain_name=domain):
        found[(c.name, c.domain, c.path)] = {
            "name": c.name, "domain": c.domain, "path": c.path,
            "value": c.value, "expires": c.expires,
        }
print(json.dumps(list(found.values())))
"""

CookieReader = Callable[[Browser, Path, list[str]], Awaitable[list[dict]]]


class CookieReadError(Exception):
    """A single cookie store could not be read."""


async def read_store_in_subprocess(browser: Browser, path: Path, domains: list[str]) -> list[dict]:
    """Run browser_cookie3 in an isolated child process (crash-safe)."""
    proc = await asyncio.create_subprocess_exec(
        sys.executable, "-c", _READ_SCRIPT, browser.loader, str(path), json.dumps(domains),
        stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), READ_TIMEOUT)
    except BaseException:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    log.debug("cookie-read %s rc=%s out=%d bytes err=%r",
              path, proc.returncode, len(out), err[:200])
    if proc.returncode != 0:
        lines = err.decode(errors="replace").strip().splitlines()
        raise CookieReadError(lines[-1] if lines else f"exit status {proc.returncode}")
    return json.loads(out.decode() or "[]")


@dataclass(frozen=True)
class CookieSession:
    records: tuple[BrowserCookieRecord, ...]
    source_label: str

    @property
    def cookie_header(self) -> str:
        return "; ".join(f"{r.name}={r.value}" for r in self.records)

    @property
    def names(self) -> list[str]:
        return sorted({r.name for r in self.records})

    def get(self, name: str) -> BrowserCookieRecord | None:
        for r in self.records:
            if r.name == name:
                return r
        return None


def _should_replace(existing: BrowserCookieRecord, candidate: BrowserCookieRecord) -> bool:
    # session cookie (no expiry) beats any fixed expiry, later expiry beats earlier
    if existing.expires is None:
        return False
    if candidate.expires is None:
        return True
    return candidate.expires > existing.expires


def merge_cookie_records(records: Iterable[BrowserCookieRecord]) -> list[BrowserCookieRecord]:
    """Collapse records sharing (name, domain, path) across a profile's stores.

    Stores are visited in priority order (network, primary, safari) so a
    tie keeps the network store's record.
    """
    ordered = sorted(records, key=lambda r: r.store_kind.priority)
    merged: dict[tuple[str, str, str], BrowserCookieRecord] = {}
    for record in ordered:
        existing = merged.get(record.key)
        if existing is None or _should_replace(existing, record):
            merged[record.key] = record
    return list(merged.values())


def merged_label(labels: Iterable[str]) -> str:
    base = min(labels, default="Unknown")
    if base.endswith(NETWORK_SUFFIX):
        return base[: -len(NETWORK_SUFFIX)]
    return base


def _record(raw: dict, kind: CookieStoreKind) -> BrowserCookieRecord | None:
    expires = raw.get("expires")
    if expires:
        try:
            expires = datetime.fromtimestamp(expires, tz=timezone.utc)
        except (ValueError, OverflowError, OSError, TypeError) as e:
            log.debug("skipping cookie %s with bad expiry %r: %s", raw.get("name"), expires, e)
            return None
    return BrowserCookieRecord(
        name=raw["name"],
        domain=raw.get("domain") or "",
        path=raw.get("path") or "/",
        value=raw.get("value") or "",
        expires=expires or None,
        store_kind=kind,
    )


def _matches(record: BrowserCookieRecord, domains: list[str]) -> bool:
    host = record.domain.lstrip(".").lower()
    return any(host == d or host.endswith("." + d) or d.endswith("." + host)
               for d in domains)


class BrowserCookieImporter:
    def __init__(self, reader: CookieReader | None = None, home: Path | None = None,
                 platform: str | None = None):
        self.reader = reader or read_store_in_subprocess
        self.home = home
        self.platform = platform or sys.platform

    async def import_sessions(self, domains: list[str], order=DEFAULT_ORDER,
                              context=None) -> list[CookieSession]:
        """One session per browser profile holding cookies for ``domains``."""
        domains = [d.lower().lstrip(".") for d in domains]
        sessions: list[CookieSession] = []
        for browser in installed(order, self.home, self.platform):
            try:
                sessions.extend(await self.import_browser(browser, domains, context))
            except (CookieReadError, OSError, ValueError) as e:
                log.info("%s cookie import failed: %s", browser.display_name, e)
        if not sessions:
            raise NoCookies(f"No cookies for {', '.join(domains)} found in browsers.")
        return sessions

    async def import_browser(self, browser: Browser, domains: list[str],
                             context=None) -> list[CookieSession]:
        if browser.safe_storage and self.platform == "darwin" and context is not None:
            announce_keychain_read(context, KeychainPromptContext(
                "browser_cookies", browser.safe_storage, label=browser.display_name))
        sessions = []
        for profile in profiles(browser, self.home, self.platform):
            session = await self._import_profile(profile, domains)
            if session is not None:
                sessions.append(session)
        sessions.sort(key=lambda s: s.source_label)
        return sessions

    async def _import_profile(self, profile: BrowserProfile,
                              domains: list[str]) -> CookieSession | None:
        labels: list[str] = []
        records: list[BrowserCookieRecord] = []
        for path, kind in profile.cookie_stores():
            label = profile.label + (NETWORK_SUFFIX if kind == CookieStoreKind.NETWORK else "")
            try:
                raw = await self.reader(profile.browser, path, domains)
            except (CookieReadError, OSError, ValueError) as e:
                # locked or unreadable store; try the profile's other stores
                log.debug("%s: %s", label, e)
                continue
            records_in_store = (_record(x, kind) for x in raw)
            found = [r for r in records_in_store if r is not None and _matches(r, domains)]
            if found:
                labels.append(label)
                records.extend(found)
        merged = merge_cookie_records(records)
        if not merged:
            return None
        label = merged_label(labels)
        log.debug("Found %d cookies in %s: %s", len(merged), label,
                  ", ".join(sorted({f"{r.name}@{r.domain}" for r in merged})))
        return CookieSession(tuple(merged), label)


def best_session(sessions: list[CookieSession], target: str | None) -> CookieSession | None:
    """Pick the session whose ``target`` cookie expires last.

    Sessions without the target are ignored when a target is named; a
    session-only target cookie ranks above any fixed expiry.
    """
    if not target:
        return sessions[0] if sessions else None
    candidates = [s for s in sessions if s.get(target) is not None]
    if not candidates:
        return None

    def rank(s: CookieSession):
        exp = s.get(target).expires
        return (exp is None, exp.timestamp() if exp else 0, len(s.cookie_header))

    return max(candidates, key=rank)
