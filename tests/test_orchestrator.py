"""Tests for strategy resolution and fallback."""

import asyncio

import pytest

from quotabar.errors import (
    APIError, NotLoggedIn, NoStrategyAvailable, ParseFailed, UnsupportedConfiguration,
)
from quotabar.models import FetchContext, FetchKind, RateWindow, SourceMode, UsageSnapshot
from quotabar.orchestrator import fetch, fetch_all, resolve_strategies
from quotabar.strategy import FetchStrategy, ProviderDescriptor


class Stub(FetchStrategy):
    def __init__(self, id, kind, available=True, result=None, error=None, fallback=True):
        self.id = id
        self.kind = kind
        self.available = available
        self.result = result
        self.error = error
        self.fallback = fallback
        self.calls = 0

    def is_available(self, context):
        if isinstance(self.available, Exception):
            raise self.available
        return self.available

    async def fetch(self, context):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result

    def should_fallback(self, error, context):
        return self.fallback


SNAP = UsageSnapshot(primary=RateWindow(12.0))


def _descriptor(*strategies):
    return ProviderDescriptor(id="stub", display_name="Stub", strategies=strategies)


def _run(descriptor, mode=SourceMode.AUTO):
    return asyncio.run(fetch(descriptor, FetchContext(provider="stub", source_mode=mode)))


def test_resolve_filters_by_mode():
    oauth = Stub("s.oauth", FetchKind.OAUTH)
    web = Stub("s.web", FetchKind.WEB)
    desc = _descriptor(oauth, web)
    assert resolve_strategies(desc, SourceMode.AUTO) == [oauth, web]
    assert resolve_strategies(desc, SourceMode.WEB) == [web]
    assert resolve_strategies(desc, "cli") == []


def test_first_success_wins():
    first = Stub("s.oauth", FetchKind.OAUTH, result=SNAP)
    second = Stub("s.web", FetchKind.WEB, result=SNAP)
    result = _run(_descriptor(first, second))
    assert result.ok
    assert result.strategy_id == "s.oauth"
    assert result.source_label == "oauth"
    assert second.calls == 0
    assert result.error is None


def test_falls_back_after_error():
    first = Stub("s.oauth", FetchKind.OAUTH, error=NotLoggedIn())
    second = Stub("s.web", FetchKind.WEB, result=SNAP)
    result = _run(_descriptor(first, second))
    assert result.snapshot is SNAP
    assert [(a.strategy_id, a.was_available, type(a.error)) for a in result.attempts] == [
        ("s.oauth", True, NotLoggedIn),
        ("s.web", True, type(None)),
    ]


def test_stops_when_strategy_refuses_fallback():
    first = Stub("s.oauth", FetchKind.OAUTH, error=UnsupportedConfiguration(), fallback=False)
    second = Stub("s.web", FetchKind.WEB, result=SNAP)
    result = _run(_descriptor(first, second))
    assert not result.ok
    assert isinstance(result.error, UnsupportedConfiguration)
    assert second.calls == 0


def test_last_error_reported():
    first = Stub("s.oauth", FetchKind.OAUTH, error=NotLoggedIn())
    second = Stub("s.web", FetchKind.WEB, error=ParseFailed())
    result = _run(_descriptor(first, second))
    assert isinstance(result.error, ParseFailed)
    assert result.strategy_id == "s.web"
    assert result.snapshot is None


def test_unavailable_strategies_are_skipped():
    first = Stub("s.oauth", FetchKind.OAUTH, available=False)
    broken = Stub("s.cli", FetchKind.CLI, available=RuntimeError("boom"))
    second = Stub("s.web", FetchKind.WEB, result=SNAP)
    result = _run(_descriptor(first, broken, second))
    assert result.ok
    assert first.calls == 0 and broken.calls == 0
    assert [a.was_available for a in result.attempts] == [False, False, True]


def test_nothing_available():
    result = _run(_descriptor(Stub("s.oauth", FetchKind.OAUTH, available=False)))
    assert isinstance(result.error, NoStrategyAvailable)
    assert result.strategy_id is None


def test_mode_without_strategies():
    result = _run(_descriptor(Stub("s.oauth", FetchKind.OAUTH, result=SNAP)), SourceMode.WEB)
    assert isinstance(result.error, NoStrategyAvailable)
    assert "web" in str(result.error)


def test_unexpected_exception_becomes_api_error():
    first = Stub("s.oauth", FetchKind.OAUTH, error=KeyError("tokens"))
    result = _run(_descriptor(first))
    assert isinstance(result.error, APIError)
    assert "KeyError" in str(result.error)


def test_cancellation_propagates():
    first = Stub("s.oauth", FetchKind.OAUTH, error=asyncio.CancelledError())
    with pytest.raises(asyncio.CancelledError):
        _run(_descriptor(first))


def test_fetch_all_keeps_order(monkeypatch):
    import quotabar.providers as providers

    fast = _descriptor(Stub("s.web", FetchKind.WEB, result=SNAP))
    failing = ProviderDescriptor("other", "Other", (Stub("o.web", FetchKind.WEB,
                                                         error=ParseFailed()),))
    monkeypatch.setitem(providers.PROVIDERS, "stub", fast)
    monkeypatch.setitem(providers.PROVIDERS, "other", failing)
    results = asyncio.run(fetch_all([FetchContext(provider="other"),
                                     FetchContext(provider="stub")]))
    assert [r.provider for r in results] == ["other", "stub"]
    assert [r.ok for r in results] == [False, True]
