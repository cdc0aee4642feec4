"""Tests for text and JSON rendering of results."""

from datetime import datetime, timedelta, timezone

from quotabar.errors import NotLoggedIn
from quotabar.formatting import bar, describe_reset, result_lines, snapshot_dict, window_line
from quotabar.models import FetchResult, ProviderCost, ProviderIdentity, RateWindow, UsageSnapshot

NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_describe_reset():
    assert describe_reset(None, NOW) == ""
    assert describe_reset(NOW - timedelta(seconds=1), NOW) == "now"
    assert describe_reset(NOW + timedelta(minutes=10, seconds=30), NOW) == "in 11m"
    assert describe_reset(NOW + timedelta(hours=3, minutes=31), NOW) == "in 3h 31m"
    assert describe_reset(NOW + timedelta(hours=2), NOW) == "in 2h"
    assert describe_reset(NOW + timedelta(days=1, hours=2), NOW) == "in 1d 2h"
    assert describe_reset(NOW + timedelta(days=3), NOW) == "in 3d"


def test_bar_clamps():
    assert bar(0, 4) == "░░░░"
    assert bar(50, 4) == "██░░"
    assert bar(250, 4) == "████"


def test_window_line_prefers_description():
    w = RateWindow(25.0, resets_at=NOW + timedelta(hours=1), reset_description="3 / 12 prompts")
    assert window_line("primary", w, NOW).endswith("resets 3 / 12 prompts")
    assert "resets" not in window_line("primary", RateWindow(25.0), NOW)


def _ok_result():
    snap = UsageSnapshot(
        primary=RateWindow(40.0, 300, NOW + timedelta(hours=2)),
        secondary=RateWindow(10.0, 10080),
        provider_cost=ProviderCost(used=4.5, limit=20.0, period="this month"),
        updated_at=NOW,
        identity=ProviderIdentity(account_email="me@example.com", login_method="Max 5x"),
    )
    return FetchResult("claude", snapshot=snap, source_label="oauth", strategy_id="claude.oauth")


def test_result_lines():
    lines = result_lines("Claude", _ok_result(), NOW)
    assert lines[0] == "Claude (oauth)  me@example.com  [Max 5x]"
    assert lines[1].strip().startswith("primary")
    assert "in 2h" in lines[1]
    assert lines[2].strip().startswith("secondary")
    assert lines[3] == "  cost       4.50 / 20.00 USD this month"


def test_result_lines_error():
    result = FetchResult("claude", error=NotLoggedIn("Not logged in."), strategy_id="claude.web")
    assert result_lines("Claude", result) == ["Claude: Not logged in."]


def test_snapshot_dict():
    data = snapshot_dict(_ok_result())
    assert data["primary"]["remaining_percent"] == 60.0
    assert data["secondary"]["resets_at"] is None
    assert data["tertiary"] is None
    assert data["cost"]["limit"] == 20.0
    assert data["login_method"] == "Max 5x"

    err = snapshot_dict(FetchResult("zai", error=NotLoggedIn(), strategy_id="zai.api"))
    assert err["error"] == {"kind": "not_logged_in", "description": "Not logged in.",
                            "strategy": "zai.api"}
