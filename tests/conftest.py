"""Shared fakes for the quotabar tests."""

import base64
import json

import pytest

from quotabar.models import FetchContext, ProviderSettings

SETTINGS_FIELDS = ("cookie_source", "manual_cookie_header", "api_token", "enterprise_host",
                   "region")


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is None:
            text = json.dumps(payload) if payload is not None else ""
        self.text = text

    def json(self):
        if self._payload is None:
            return json.loads(self.text)
        return self._payload


class FakeHTTP:
    """Async stand-in for curl_cffi's AsyncSession.

    ``routes`` maps a URL to a FakeResponse, an exception instance, or a
    list of either consumed in order. Unknown URLs answer 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def _answer(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        route = self.routes.get(url)
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        if route is None:
            return FakeResponse(404, text="not found")
        if isinstance(route, BaseException):
            raise route
        return route

    async def get(self, url, **kwargs):
        return self._answer("GET", url, kwargs)

    async def post(self, url, **kwargs):
        return self._answer("POST", url, kwargs)

    async def close(self):
        pass

    def urls(self, method=None):
        return [u for m, u, _ in self.calls if method is None or m == method]


def make_jwt(claims: dict) -> str:
    def seg(obj):
        raw = json.dumps(obj).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()
    return f"{seg({'alg': 'HS256', 'typ': 'JWT'})}.{seg(claims)}.c2lnbmF0dXJlLXNpZ25hdHVyZQ"


@pytest.fixture
def http():
    return FakeHTTP()


@pytest.fixture
def make_context(tmp_path):
    def _make(provider="codex", http=None, env=None, home=None, settings=None, **kwargs):
        if settings is None:
            fields = {k: kwargs.pop(k) for k in list(kwargs) if k in SETTINGS_FIELDS}
            settings = ProviderSettings(**fields)
        return FetchContext(provider=provider, settings=settings, env=env or {},
                            home=home or tmp_path, http=http, **kwargs)
    return _make
