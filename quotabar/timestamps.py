"""
Flexible timestamp and rate-window decoding.

Upstream sources disagree on units and key names: epoch seconds,
milliseconds or microseconds, ISO-8601 with or without fractional seconds,
and half a dozen spellings of "reset time".
"""

import re
from datetime import datetime, timezone

from .models import RateWindow

RESET_KEYS = (
    "resets_at",
    "reset_at",
    "resetsAt",
    "resetAt",
    "resets_at_ms",
    "reset_at_ms",
)

_FRACTION = re.compile(r"\.\d+")
_NUMERIC = re.compile(r"^\d+(\.\d+)?$")


def normalize_epoch_seconds(value: float) -> float:
    """1.7e9 → seconds, 1.7e12 → milliseconds, 1.7e15 → microseconds."""
    if value > 1e14:
        return value / 1_000_000
    if value > 1e11:
        return value / 1_000
    return float(value)


def _from_epoch(value: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(normalize_epoch_seconds(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_iso(text: str) -> datetime | None:
    s = text.strip()
    if s[-1:] in ("Z", "z"):
        s = s[:-1] + "+00:00"
    for candidate in (s, _FRACTION.sub("", s, count=1)):
        try:
            dt = datetime.fromisoformat(candidate)
        except ValueError:
            continue
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    return None


def parse_flexible_date(value) -> datetime | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        if _NUMERIC.match(s):
            return _from_epoch(float(s))
        return _parse_iso(s)
    return None


def _parse_millis_key(value) -> datetime | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(value)
    if isinstance(value, str):
        try:
            return _from_epoch(float(value.strip()))
        except ValueError:
            return None
    return None


def resolve_reset_time(window: dict) -> datetime | None:
    """Return the reset time from the first present and parseable reset key."""
    for key in RESET_KEYS:
        if key not in window:
            continue
        raw = window[key]
        parsed = _parse_millis_key(raw) if key.endswith("_ms") else parse_flexible_date(raw)
        if parsed is not None:
            return parsed
    return None


def _number(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def decode_rate_window(
    raw: dict,
    created_at: datetime | None = None,
    captured_at: datetime | None = None,
) -> RateWindow:
    """Decode one rate-limit window object into a RateWindow.

    The reset time falls back to ``captured_at`` and then ``created_at``
    when none of RESET_KEYS resolves.
    """
    used = _number(raw.get("used_percent"))
    if used is None:
        used = _number(raw.get("usedPercent")) or 0.0
    minutes = _number(raw.get("window_minutes"))
    if minutes is None:
        minutes = _number(raw.get("windowMinutes"))
    if minutes is None:
        seconds = _number(raw.get("limit_window_seconds"))
        minutes = seconds / 60 if seconds is not None else None
    resets_at = resolve_reset_time(raw) or captured_at or created_at
    return RateWindow(
        used_percent=used,
        window_minutes=int(minutes) if minutes is not None else None,
        resets_at=resets_at,
    )
