"""Shared HTTP plumbing on top of curl_cffi's async session."""

import logging

from curl_cffi.requests import AsyncSession
from curl_cffi.requests.exceptions import RequestException, Timeout

from .cookieheader import parse_cookie_string, strip_cf_cookies
from .errors import APIError, NotLoggedIn, ParseFailed, TimedOut

log = logging.getLogger(__name__)

# Cloudflare fingerprint-checks Chrome aggressively; Safari passes cleanly.
IMPERSONATE = "safari184"

JSON_HEADERS = {
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
}


def new_session() -> AsyncSession:
    return AsyncSession(impersonate=IMPERSONATE)


async def send(http, method: str, url: str, *, timeout: float, headers: dict | None = None,
               cookie_header: str | None = None, json_body=None, data=None):
    """Issue one request and return the raw response.

    Transport failures become TimedOut / APIError; the status code is left
    for the caller.
    """
    kwargs: dict = {"headers": headers or {}, "timeout": timeout}
    if cookie_header:
        kwargs["cookies"] = strip_cf_cookies(parse_cookie_string(cookie_header))
    if json_body is not None:
        kwargs["json"] = json_body
    if data is not None:
        kwargs["data"] = data
    call = http.post if method == "POST" else http.get
    try:
        r = await call(url, **kwargs)
    except Timeout as e:
        log.debug("%s %s timed out: %s", method, url, e)
        raise TimedOut() from e
    except RequestException as e:
        log.debug("%s %s failed: %s", method, url, e)
        raise APIError(detail=str(e)[:200]) from e
    log.debug("%s %s  status=%s  body=%s", method, url, r.status_code, (r.text or "")[:800])
    return r


def decode_json(r, url: str = ""):
    try:
        return r.json()
    except ValueError as e:
        raise ParseFailed(detail=f"non-JSON response from {url or 'server'}") from e


async def request_json(http, method: str, url: str, *, timeout: float,
                       headers: dict | None = None, cookie_header: str | None = None,
                       json_body=None, data=None,
                       auth_statuses: tuple[int, ...] = (401, 403)):
    """Send a request and decode the JSON body of a 200 response.

    Statuses in ``auth_statuses`` raise NotLoggedIn, any other non-200
    status raises APIError.
    """
    r = await send(http, method, url, timeout=timeout, headers=headers,
                   cookie_header=cookie_header, json_body=json_body, data=data)
    if r.status_code in auth_statuses:
        raise NotLoggedIn(detail=f"HTTP {r.status_code}")
    if r.status_code != 200:
        raise APIError(f"HTTP {r.status_code}", status=r.status_code)
    return decode_json(r, url)


async def get_json(http, url: str, **kwargs):
    return await request_json(http, "GET", url, **kwargs)


async def post_json(http, url: str, **kwargs):
    return await request_json(http, "POST", url, **kwargs)
