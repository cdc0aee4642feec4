"""Browser session harvesting: cookies and local/session-storage tokens."""

from .browsers import BROWSERS, DEFAULT_ORDER, Browser, BrowserProfile, installed, profiles
from .cookies import BrowserCookieImporter, CookieSession, best_session, merge_cookie_records
from .storage import LocalStorageImporter, StorageToken

__all__ = [
    "BROWSERS",
    "DEFAULT_ORDER",
    "Browser",
    "BrowserProfile",
    "BrowserCookieImporter",
    "CookieSession",
    "LocalStorageImporter",
    "StorageToken",
    "best_session",
    "installed",
    "merge_cookie_records",
    "profiles",
]
