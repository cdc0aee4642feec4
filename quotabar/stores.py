"""
Credential store and keychain preflight interfaces.

The physical secure store lives outside this package; fetch code only
calls load/store on these objects. The config-backed stores keep secrets in
the JSON config file the same way manual cookie headers have always been
kept there.
"""

import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from .errors import SecureStoreFailure

log = logging.getLogger(__name__)


class TokenStore(Protocol):
    def load_token(self) -> str | None: ...
    def store_token(self, token: str | None) -> None: ...


class CookieHeaderStore(Protocol):
    def load_cookie_header(self) -> str | None: ...
    def store_cookie_header(self, header: str | None) -> None: ...


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class MemoryTokenStore:
    def __init__(self, token: str | None = None):
        self.token = token

    def load_token(self) -> str | None:
        return self.token

    def store_token(self, token: str | None) -> None:
        self.token = None if _blank(token) else token.strip()


class MemoryCookieHeaderStore:
    def __init__(self, header: str | None = None):
        self.header = header

    def load_cookie_header(self) -> str | None:
        return self.header

    def store_cookie_header(self, header: str | None) -> None:
        self.header = None if _blank(header) else header.strip()


class _ConfigEntry:
    """One secret under ``providers.<provider>.<field>`` in the config dict."""

    def __init__(self, config: dict, provider: str, key: str,
                 save: Callable[[dict], None] | None = None):
        self.config = config
        self.provider = provider
        self.key = key
        self.save = save

    def _load(self) -> str | None:
        value = self.config.get("providers", {}).get(self.provider, {}).get(self.key)
        return value if isinstance(value, str) and value.strip() else None

    def _store(self, value: str | None):
        section = self.config.setdefault("providers", {}).setdefault(self.provider, {})
        if _blank(value):
            section.pop(self.key, None)
        else:
            section[self.key] = value.strip()
        if self.save is not None:
            self.save(self.config)
        log.debug("stored %s for %s (present=%s)", self.key, self.provider, not _blank(value))


class ConfigTokenStore(_ConfigEntry):
    def __init__(self, config: dict, provider: str, save=None, key: str = "api_token"):
        super().__init__(config, provider, key, save)

    def load_token(self) -> str | None:
        return self._load()

    def store_token(self, token: str | None) -> None:
        self._store(token)


class ConfigCookieHeaderStore(_ConfigEntry):
    def __init__(self, config: dict, provider: str, save=None):
        super().__init__(config, provider, "cookie_header", save)

    def load_cookie_header(self) -> str | None:
        return self._load()

    def store_cookie_header(self, header: str | None) -> None:
        self._store(header)


# ── macOS keychain ───────────────────────────────────────────────────────────

SECURITY = "/usr/bin/security"
ITEM_NOT_FOUND = 44


class KeychainTokenStore:
    """Generic-password item read and written through the `security` CLI."""

    def __init__(self, service: str, account: str | None = None, runner=subprocess.run,
                 timeout: float = 10):
        self.service = service
        self.account = account
        self.runner = runner
        self.timeout = timeout

    def _item_args(self) -> list[str]:
        args = ["-s", self.service]
        if self.account:
            args += ["-a", self.account]
        return args

    def _run(self, *args: str):
        try:
            return self.runner([SECURITY, *args], capture_output=True, text=True,
                               timeout=self.timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SecureStoreFailure(message=f"Keychain access failed: {e}") from e

    def load_token(self) -> str | None:
        result = self._run("find-generic-password", *self._item_args(), "-w")
        if result.returncode == ITEM_NOT_FOUND:
            return None
        if result.returncode != 0:
            raise SecureStoreFailure(result.returncode)
        return result.stdout.strip() or None

    def store_token(self, token: str | None) -> None:
        if _blank(token):
            result = self._run("delete-generic-password", *self._item_args())
            if result.returncode not in (0, ITEM_NOT_FOUND):
                raise SecureStoreFailure(result.returncode)
            return
        result = self._run("add-generic-password", "-U", "-s", self.service,
                           "-a", self.account or self.service, "-w", token.strip())
        if result.returncode != 0:
            raise SecureStoreFailure(result.returncode)


# ── keychain preflight ────────────────────────────────────────────────────────

class PreflightOutcome(str, Enum):
    ALLOWED = "allowed"
    INTERACTION_REQUIRED = "interaction_required"
    NOT_FOUND = "not_found"
    FAILURE = "failure"


@dataclass(frozen=True)
class KeychainPromptContext:
    kind: str                 # "browser_cookies" | "oauth_credentials"
    service: str
    account: str | None = None
    label: str | None = None


class KeychainPreflight(Protocol):
    def check(self, service: str, account: str | None = None) -> PreflightOutcome: ...


class NoPromptPreflight:
    """Preflight that never expects an interactive prompt."""

    def check(self, service: str, account: str | None = None) -> PreflightOutcome:
        return PreflightOutcome.ALLOWED


def announce_keychain_read(context, prompt: KeychainPromptContext) -> PreflightOutcome:
    """Consult the preflight and tell the prompt handler before a read that will prompt."""
    preflight = getattr(context, "preflight", None)
    if preflight is None:
        return PreflightOutcome.ALLOWED
    try:
        outcome = preflight.check(prompt.service, prompt.account)
    except Exception as e:
        log.debug("keychain preflight for %s failed: %s", prompt.service, e)
        return PreflightOutcome.FAILURE
    if outcome == PreflightOutcome.INTERACTION_REQUIRED and context.prompt_handler is not None:
        context.prompt_handler(prompt)
    return outcome
