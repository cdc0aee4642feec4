"""Cookie header parsing and normalization."""

import re
import shlex

# Cloudflare-bound cookies are tied to the real browser fingerprint;
# sending them from a different TLS stack causes a mismatch → 403.
CF_COOKIE_KEYS = frozenset({"cf_clearance", "__cf_bm", "_cfuvid"})

_CURL_HEADER_FLAGS = ("-H", "--header")
_CURL_COOKIE_FLAGS = ("-b", "--cookie")


def parse_cookie_string(raw: str, bare_name: str | None = None) -> dict:
    """Parse 'key=val; key2=val2'. A bare value maps to ``bare_name`` if given."""
    raw = raw.strip()
    if "=" not in raw:
        return {bare_name: raw} if bare_name and raw else {}
    cookies = {}
    for part in raw.split(";"):
        part = part.strip()
        if "=" in part:
            k, _, v = part.partition("=")
            if k.strip():
                cookies[k.strip()] = v.strip()
    return cookies


def strip_cf_cookies(cookies: dict) -> dict:
    return {k: v for k, v in cookies.items() if k not in CF_COOKIE_KEYS}


def cookie_header(cookies: dict) -> str:
    return "; ".join(f"{k}={v}" for k, v in cookies.items())


def _from_curl(raw: str) -> str | None:
    try:
        args = shlex.split(raw.replace("\\\n", " "))
    except ValueError:
        return None
    for i, arg in enumerate(args[:-1]):
        nxt = args[i + 1]
        if arg in _CURL_HEADER_FLAGS and nxt.lower().startswith("cookie:"):
            return nxt.split(":", 1)[1].strip()
        if arg in _CURL_COOKIE_FLAGS:
            return nxt.strip()
    return None


def normalize_cookie_header(raw: str | None) -> str | None:
    """Accept a header, a ``Cookie:`` line, or a pasted cURL command.

    Returns ``name=value; name2=value2`` or None when nothing usable remains.
    """
    if not raw:
        return None
    text = raw.strip()
    if text.lower().startswith("curl "):
        text = _from_curl(text) or ""
    text = re.sub(r"^cookie:\s*", "", text, flags=re.IGNORECASE).strip()
    cookies = parse_cookie_string(text)
    if not cookies:
        return None
    return cookie_header(cookies)
