"""
Best-effort bearer token and claim extraction from opaque storage values.

Everything here is heuristic pattern matching: callers get zero or more
plausible candidates, best guesses first, and must be prepared for none of
them to work.
"""

import base64
import binascii
import json
import re

_TOKEN_CHARS = r"A-Za-z0-9._\-+=/"

_KEY_HINT_PATTERNS = [
    re.compile(rf"{key}[^{_TOKEN_CHARS}]+([{_TOKEN_CHARS}]{{20,}})")
    for key in ("access_token", "accessToken", "id_token", "idToken")
]
_JWT_PATTERN = re.compile(r"[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}")
_TOKEN_CHARSET = re.compile(rf"^[{_TOKEN_CHARS}]+$")
_DIGIT_RUN = re.compile(r"[0-9]{4,}")

TOKEN_KEYS = frozenset({
    "access_token", "accessToken", "id_token", "idToken",
    "token", "authToken", "authorization", "bearer",
})

GROUP_CLAIM_KEYS = (
    "group_id", "groupId", "groupID", "gid",
    "tenant_id", "tenantId", "org_id", "orgId",
)

_GROUP_MARKERS = ('groups":[', 'groupId":"', 'group_id":"')

PREFERRED_LENGTH = 60


def looks_like_token(value: str) -> bool:
    trimmed = value.strip()
    if len(trimmed) < PREFERRED_LENGTH:
        return False
    if "." in trimmed and len([p for p in trimmed.split(".") if p]) >= 3:
        return True
    return bool(_TOKEN_CHARSET.match(trimmed))


def _json_or_none(value: str):
    try:
        return json.loads(value)
    except (ValueError, TypeError):
        return None


def _collect_json_tokens(node) -> list[str]:
    tokens: list[str] = []
    if isinstance(node, dict):
        for key, child in node.items():
            if key in TOKEN_KEYS and isinstance(child, str) and looks_like_token(child):
                tokens.append(child.strip())
            else:
                tokens.extend(_collect_json_tokens(child))
    elif isinstance(node, list):
        for child in node:
            tokens.extend(_collect_json_tokens(child))
    elif isinstance(node, str):
        if looks_like_token(node):
            tokens.append(node.strip())
        else:
            nested = _json_or_none(node)
            if isinstance(nested, (dict, list)):
                tokens.extend(_collect_json_tokens(nested))
    return tokens


def _key_hint_tokens(value: str) -> list[str]:
    return [m.group(1) for pattern in _KEY_HINT_PATTERNS for m in pattern.finditer(value)]


def _json_tokens(value: str) -> list[str]:
    parsed = _json_or_none(value)
    if parsed is None:
        return []
    return _collect_json_tokens(parsed)


def _jwt_tokens(value: str) -> list[str]:
    return _JWT_PATTERN.findall(value)


def _unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    return [x for x in items if not (x in seen or seen.add(x))]


def extract_access_tokens(value: str) -> list[str]:
    """Candidate tokens in ``value``.

    Tries key-name hints, then a recursive JSON scan, then the bare
    three-segment token pattern, and stops at the first tier that finds
    anything. When any candidate is 60+ characters the shorter ones are
    dropped.
    """
    if not value:
        return []
    for tier in (_key_hint_tokens, _json_tokens, _jwt_tokens):
        tokens = _unique(tier(value))
        if tokens:
            preferred = [t for t in tokens if len(t) >= PREFERRED_LENGTH]
            return preferred or tokens
    return []


# ── signed-token claims ──────────────────────────────────────────────────────

def _b64url_decode(segment: str) -> bytes | None:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        return None


def decode_jwt_claims(token: str) -> dict | None:
    """Decode the JSON middle segment of a signed token. The signature is not checked."""
    parts = token.split(".")
    if len(parts) < 2:
        return None
    raw = _b64url_decode(parts[1])
    if raw is None:
        return None
    try:
        claims = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


def longest_digit_run(text: str) -> str | None:
    runs = _DIGIT_RUN.findall(text)
    return max(runs, key=len) if runs else None


def string_id(value) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value))
    if isinstance(value, str):
        trimmed = value.strip()
        return longest_digit_run(trimmed) or trimmed or None
    return None


def _group_id_in(node) -> str | None:
    if isinstance(node, dict):
        for key, child in node.items():
            if "group" in key.lower():
                match = string_id(child)
                if match:
                    return match
            nested = _group_id_in(child)
            if nested:
                return nested
    elif isinstance(node, list):
        for child in node:
            nested = _group_id_in(child)
            if nested:
                return nested
    return None


def group_id_from_claims(claims: dict) -> str | None:
    for key in GROUP_CLAIM_KEYS:
        match = string_id(claims.get(key))
        if match:
            return match
    return _group_id_in(claims)


def group_id_from_jwt(token: str) -> str | None:
    if "." not in token:
        return None
    claims = decode_jwt_claims(token)
    return group_id_from_claims(claims) if claims else None


def extract_group_id(value: str) -> str | None:
    """Group identifier from a JSON value, or from digits after a known marker."""
    parsed = _json_or_none(value)
    if parsed is not None:
        match = _group_id_in(parsed)
        if match:
            return match
    for marker in _GROUP_MARKERS:
        idx = value.find(marker)
        if idx >= 0:
            match = longest_digit_run(value[idx + len(marker): idx + len(marker) + 200])
            if match:
                return match
    return None


def jwt_has_signal(token: str, issuer_hint: str, signal_keys=()) -> bool:
    """True when the token's claims name ``issuer_hint`` or carry a signal key."""
    claims = decode_jwt_claims(token)
    if not claims:
        return False
    iss = claims.get("iss")
    if isinstance(iss, str) and issuer_hint.lower() in iss.lower():
        return True
    return any(key in claims for key in signal_keys)
