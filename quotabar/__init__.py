"""Fetch AI coding assistant usage limits from local CLIs, OAuth tokens and browser sessions."""

__version__ = "0.3.0"

from .errors import UsageError
from .models import FetchContext, FetchResult, RateWindow, SourceMode, UsageSnapshot
from .orchestrator import fetch, fetch_all

__all__ = [
    "FetchContext",
    "FetchResult",
    "RateWindow",
    "SourceMode",
    "UsageError",
    "UsageSnapshot",
    "fetch",
    "fetch_all",
]
