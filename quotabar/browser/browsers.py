"""Catalogue of supported browsers and their on-disk profile layout."""

import sys
from dataclasses import dataclass
from pathlib import Path

from ..models import CookieStoreKind

_MAC_SUPPORT = "Library/Application Support"


@dataclass(frozen=True)
class Browser:
    id: str
    display_name: str
    family: str             # "chromium" | "firefox" | "safari"
    loader: str             # browser_cookie3 function name
    mac_roots: tuple[str, ...] = ()
    linux_roots: tuple[str, ...] = ()
    safe_storage: str | None = None

    def roots(self, home: Path, platform: str | None = None) -> list[Path]:
        platform = platform or sys.platform
        rels = self.mac_roots if platform == "darwin" else self.linux_roots
        return [home / rel for rel in rels]


def _chromium(id, name, mac, linux=None, storage=None, loader="chrome") -> Browser:
    return Browser(
        id, name, "chromium", loader,
        mac_roots=(f"{_MAC_SUPPORT}/{mac}",) if mac else (),
        linux_roots=(f".config/{linux}",) if linux else (),
        safe_storage=storage or f"{name} Safe Storage",
    )


BROWSERS: dict[str, Browser] = {b.id: b for b in (
    Browser("safari", "Safari", "safari", "safari",
            mac_roots=("Library/Containers/com.apple.Safari/Data/Library/Cookies",
                       "Library/Cookies")),
    _chromium("chrome", "Chrome", "Google/Chrome", "google-chrome"),
    _chromium("chrome_beta", "Chrome Beta", "Google/Chrome Beta", "google-chrome-beta",
              storage="Chrome Safe Storage"),
    _chromium("chrome_canary", "Chrome Canary", "Google/Chrome Canary",
              storage="Chrome Safe Storage"),
    _chromium("chromium", "Chromium", "Chromium", "chromium", loader="chromium"),
    _chromium("edge", "Microsoft Edge", "Microsoft Edge", "microsoft-edge", loader="edge"),
    _chromium("edge_beta", "Microsoft Edge Beta", "Microsoft Edge Beta",
              "microsoft-edge-beta", storage="Microsoft Edge Safe Storage", loader="edge"),
    _chromium("brave", "Brave", "BraveSoftware/Brave-Browser",
              "BraveSoftware/Brave-Browser", loader="brave"),
    _chromium("arc", "Arc", "Arc/User Data", loader="arc"),
    _chromium("arc_beta", "Arc Beta", "Arc Beta/User Data",
              storage="Arc Safe Storage", loader="arc"),
    _chromium("vivaldi", "Vivaldi", "Vivaldi", "vivaldi", loader="vivaldi"),
    _chromium("opera", "Opera", "com.operasoftware.Opera", "opera", loader="opera"),
    Browser("firefox", "Firefox", "firefox", "firefox",
            mac_roots=(f"{_MAC_SUPPORT}/Firefox/Profiles",),
            linux_roots=(".mozilla/firefox",)),
    Browser("librewolf", "LibreWolf", "firefox", "librewolf",
            mac_roots=(f"{_MAC_SUPPORT}/librewolf/Profiles",),
            linux_roots=(".librewolf",)),
)}

DEFAULT_ORDER = (
    "safari", "chrome", "chrome_beta", "chrome_canary", "edge", "edge_beta",
    "brave", "arc", "arc_beta", "vivaldi", "opera", "chromium",
    "firefox", "librewolf",
)


@dataclass(frozen=True)
class BrowserProfile:
    browser: Browser
    name: str
    path: Path

    @property
    def id(self) -> str:
        return f"{self.browser.id}:{self.path}"

    @property
    def label(self) -> str:
        if self.browser.family == "safari":
            return self.browser.display_name
        return f"{self.browser.display_name} {self.name}"

    def cookie_stores(self) -> list[tuple[Path, CookieStoreKind]]:
        """Existing cookie database files for this profile, network store first."""
        if self.browser.family == "chromium":
            candidates = [
                (self.path / "Network" / "Cookies", CookieStoreKind.NETWORK),
                (self.path / "Cookies", CookieStoreKind.PRIMARY),
            ]
        elif self.browser.family == "firefox":
            candidates = [(self.path / "cookies.sqlite", CookieStoreKind.PRIMARY)]
        else:
            candidates = [(self.path / "Cookies.binarycookies", CookieStoreKind.SAFARI)]
        return [(p, kind) for p, kind in candidates if p.is_file()]


def _is_chromium_profile(name: str) -> bool:
    return name == "Default" or name.startswith("Profile ") or name.startswith("user-")


def profiles(browser: Browser, home: Path | None = None,
             platform: str | None = None) -> list[BrowserProfile]:
    home = home or Path.home()
    found: list[BrowserProfile] = []
    for root in browser.roots(home, platform):
        if not root.is_dir():
            continue
        if browser.family == "safari":
            if (root / "Cookies.binarycookies").is_file():
                found.append(BrowserProfile(browser, "Default", root))
                break
            continue
        if browser.family == "firefox":
            for child in sorted(root.iterdir()):
                if child.is_dir() and ((child / "cookies.sqlite").is_file()
                                       or (child / "storage").is_dir()):
                    found.append(BrowserProfile(browser, child.name.split(".", 1)[-1], child))
            continue
        children = sorted(c for c in root.iterdir() if c.is_dir() and _is_chromium_profile(c.name))
        if not children and ((root / "Cookies").is_file() or (root / "Network").is_dir()):
            children = [root]
        for child in children:
            name = "Default" if child == root else child.name
            found.append(BrowserProfile(browser, name, child))
    return found


def installed(order=DEFAULT_ORDER, home: Path | None = None,
              platform: str | None = None) -> list[Browser]:
    """Browsers from ``order`` that have profile data on disk, order preserved.

    Skipping absent browsers avoids needless credential-store prompts.
    """
    result = []
    for browser_id in order:
        browser = BROWSERS.get(browser_id)
        if browser is not None and profiles(browser, home, platform):
            result.append(browser)
    return result
