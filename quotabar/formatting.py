"""Human-readable rendering of windows and fetch results."""

import math
from datetime import datetime

from .models import FetchResult, RateWindow, utcnow


def describe_reset(resets_at: datetime | None, now: datetime | None = None) -> str:
    """Countdown text: 'now', 'in 11m', 'in 3h 31m', 'in 1d 2h'."""
    if resets_at is None:
        return ""
    secs = (resets_at - (now or utcnow())).total_seconds()
    if secs <= 0:
        return "now"
    days, rem = divmod(math.ceil(secs / 60), 24 * 60)
    hours, minutes = divmod(rem, 60)
    if days:
        return f"in {days}d {hours}h" if hours else f"in {days}d"
    if hours:
        return f"in {hours}h {minutes}m" if minutes else f"in {hours}h"
    return f"in {minutes}m"


def bar(pct: float, width: int = 14) -> str:
    filled = round(max(0.0, min(100.0, pct)) / 100 * width)
    return "█" * filled + "░" * (width - filled)


def window_line(label: str, window: RateWindow, now: datetime | None = None) -> str:
    reset = window.reset_description or describe_reset(window.resets_at, now)
    line = f"{label:<10} {bar(window.used_percent)} {window.used_percent:5.1f}% used"
    return f"{line}  resets {reset}" if reset else line


def result_lines(name: str, result: FetchResult, now: datetime | None = None) -> list[str]:
    if result.snapshot is None:
        return [f"{name}: {result.error}"]
    snap = result.snapshot
    header = f"{name} ({result.source_label})"
    who = snap.identity.account_email or snap.identity.account_organization
    if who:
        header += f"  {who}"
    if snap.identity.login_method:
        header += f"  [{snap.identity.login_method}]"
    lines = [header]
    for label, window in (("primary", snap.primary), ("secondary", snap.secondary),
                          ("tertiary", snap.tertiary)):
        if window is not None:
            lines.append("  " + window_line(label, window, now))
    cost = snap.provider_cost
    if cost is not None:
        limit = f" / {cost.limit:.2f}" if cost.limit is not None else ""
        period = f" {cost.period}" if cost.period else ""
        lines.append(f"  cost       {cost.used:.2f}{limit} {cost.currency_code}{period}")
    return lines


def snapshot_dict(result: FetchResult) -> dict:
    """JSON-ready view of a result."""
    def window(w: RateWindow | None):
        if w is None:
            return None
        return {
            "used_percent": w.used_percent,
            "remaining_percent": w.remaining_percent,
            "window_minutes": w.window_minutes,
            "resets_at": w.resets_at.isoformat() if w.resets_at else None,
            "reset_description": w.reset_description,
        }

    if result.snapshot is None:
        err = result.error
        return {
            "provider": result.provider,
            "error": {"kind": getattr(getattr(err, "kind", None), "value", "api_error"),
                      "description": str(err), "strategy": result.strategy_id},
        }
    snap = result.snapshot
    cost = snap.provider_cost
    return {
        "provider": result.provider,
        "source": result.source_label,
        "primary": window(snap.primary),
        "secondary": window(snap.secondary),
        "tertiary": window(snap.tertiary),
        "cost": None if cost is None else {
            "used": cost.used, "limit": cost.limit, "currency": cost.currency_code,
            "period": cost.period,
        },
        "updated_at": snap.updated_at.isoformat(),
        "account_email": snap.identity.account_email,
        "account_organization": snap.identity.account_organization,
        "login_method": snap.identity.login_method,
    }
