"""quotabar command line."""

import argparse
import asyncio
import json
import logging
import os
import sys

from . import __version__
from .browser.cookies import BrowserCookieImporter
from .config import (
    build_context, config_path, is_enabled, keepalive_enabled, load_config, save_config,
    set_provider_value,
)
from .cookieheader import normalize_cookie_header
from .errors import UsageError
from .formatting import result_lines, snapshot_dict
from .http import new_session
from .models import CookieSource, SourceMode
from .orchestrator import fetch_all
from .providers import PROVIDERS, get_provider
from .providers.augment import augment_keepalive
from .providers.claude import KEYCHAIN_SERVICE
from .providers.copilot import CopilotDeviceFlow, CopilotEndpoint
from .stores import ConfigCookieHeaderStore, ConfigTokenStore, KeychainTokenStore

log = logging.getLogger(__name__)

LOG_FILE = os.path.expanduser("~/.quotabar.log")
DEFAULT_WATCH_INTERVAL = 300


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        filename=LOG_FILE,
        level=logging.DEBUG,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    if verbose:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)


def _token_store(provider: str):
    if provider == "claude" and sys.platform == "darwin":
        return KeychainTokenStore(KEYCHAIN_SERVICE)
    return None


def _contexts(cfg: dict, providers: list[str], http, source: str | None):
    return [build_context(p, cfg, http=http, source_mode=source, token_store=_token_store(p))
            for p in providers]


def _selected(cfg: dict, names: list[str]) -> list[str]:
    if names:
        for name in names:
            get_provider(name)
        return names
    return [p for p in PROVIDERS if is_enabled(cfg, p)]


def _print_results(results, as_json: bool):
    if as_json:
        print(json.dumps([snapshot_dict(r) for r in results], indent=2))
        return
    for r in results:
        print("\n".join(result_lines(PROVIDERS[r.provider].display_name, r)))


# ── commands ──────────────────────────────────────────────────────────────────

async def _usage(cfg, providers, source, as_json) -> int:
    async with new_session() as http:
        results = await fetch_all(_contexts(cfg, providers, http, source))
    _print_results(results, as_json)
    return 0 if all(r.ok for r in results) else 1


def cmd_usage(args, cfg) -> int:
    providers = _selected(cfg, args.providers)
    return asyncio.run(_usage(cfg, providers, args.source, args.json))


def cmd_providers(args, cfg) -> int:
    for pid, desc in PROVIDERS.items():
        kinds = ", ".join(k.value for k in desc.kinds)
        state = "" if is_enabled(cfg, pid) else "  (disabled)"
        print(f"{pid:<10} {desc.display_name:<14} {kinds}{state}")
    return 0


async def _cookies(cfg, provider: str) -> int:
    desc = get_provider(provider)
    if not desc.cookie_domains:
        print(f"{desc.display_name} does not use browser cookies.")
        return 1
    context = build_context(provider, cfg, http=None)
    importer = BrowserCookieImporter(home=context.home)
    try:
        sessions = await importer.import_sessions(list(desc.cookie_domains), desc.browser_order,
                                                  context)
    except UsageError as e:
        print(e.description)
        return 1
    for s in sessions:
        print(f"{s.source_label}: {', '.join(s.names)}")
    return 0


def cmd_cookies(args, cfg) -> int:
    return asyncio.run(_cookies(cfg, args.provider))


def cmd_set_cookie(args, cfg) -> int:
    get_provider(args.provider)
    header = normalize_cookie_header(args.header)
    ConfigCookieHeaderStore(cfg, args.provider).store_cookie_header(header)
    set_provider_value(cfg, args.provider, "cookie_source",
                       CookieSource.MANUAL.value if header else CookieSource.AUTO.value)
    save_config(cfg)
    print(f"{args.provider}: manual cookie header {'saved' if header else 'removed'}")
    return 0


def cmd_set_token(args, cfg) -> int:
    get_provider(args.provider)
    ConfigTokenStore(cfg, args.provider).store_token(args.token)
    save_config(cfg)
    print(f"{args.provider}: token {'saved' if (args.token or '').strip() else 'removed'}")
    return 0


async def _login_copilot(cfg) -> int:
    host = os.environ.get("GITHUB_ENTERPRISE_URL") or \
        cfg.get("providers", {}).get("copilot", {}).get("enterprise_host")
    async with new_session() as http:
        flow = CopilotDeviceFlow(http, CopilotEndpoint.from_url(host))
        code = await flow.request_device_code()
        print(f"Open {code.verification_uri} and enter the code {code.user_code}")
        try:
            token = await asyncio.wait_for(flow.poll_for_token(code), code.expires_in)
        except asyncio.TimeoutError:
            print("The device code expired before it was approved.")
            return 1
    ConfigTokenStore(cfg, "copilot").store_token(token)
    save_config(cfg)
    print("Copilot login saved.")
    return 0


def cmd_login(args, cfg) -> int:
    try:
        return asyncio.run(_login_copilot(cfg))
    except UsageError as e:
        print(e.description)
        return 1


async def _watch(cfg, providers, source, interval: float, as_json: bool):
    async with new_session() as http:
        keepalive = None
        if "augment" in providers and keepalive_enabled(cfg, "augment"):
            keepalive = augment_keepalive(build_context("augment", cfg, http=http))
            keepalive.start()
        try:
            while True:
                results = await fetch_all(_contexts(cfg, providers, http, source))
                _print_results(results, as_json)
                print(flush=True)
                await asyncio.sleep(interval)
        finally:
            if keepalive is not None:
                await keepalive.stop()


def cmd_watch(args, cfg) -> int:
    providers = _selected(cfg, args.providers)
    try:
        asyncio.run(_watch(cfg, providers, args.source, args.interval, args.json))
    except KeyboardInterrupt:
        pass
    return 0


# ── argument parsing ──────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quotabar",
                                     description="Show AI coding assistant usage limits.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="also log to stderr")
    sub = parser.add_subparsers(dest="command")

    modes = [m.value for m in SourceMode]

    p = sub.add_parser("usage", help="fetch and print usage (default)")
    p.add_argument("providers", nargs="*", metavar="PROVIDER")
    p.add_argument("--source", choices=modes, default=None)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_usage)

    p = sub.add_parser("providers", help="list providers and their fetch kinds")
    p.set_defaults(func=cmd_providers)

    p = sub.add_parser("cookies", help="list browser sessions found for a provider")
    p.add_argument("provider")
    p.set_defaults(func=cmd_cookies)

    p = sub.add_parser("set-cookie", help="store a manual Cookie header (empty removes it)")
    p.add_argument("provider")
    p.add_argument("header")
    p.set_defaults(func=cmd_set_cookie)

    p = sub.add_parser("set-token", help="store an API token (empty removes it)")
    p.add_argument("provider")
    p.add_argument("token")
    p.set_defaults(func=cmd_set_token)

    p = sub.add_parser("login", help="log in through a device flow")
    p.add_argument("provider", choices=["copilot"])
    p.set_defaults(func=cmd_login)

    p = sub.add_parser("watch", help="refresh periodically until interrupted")
    p.add_argument("providers", nargs="*", metavar="PROVIDER")
    p.add_argument("--source", choices=modes, default=None)
    p.add_argument("--interval", type=float, default=DEFAULT_WATCH_INTERVAL)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_watch)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    if args.command is None:
        args.func, args.providers, args.source, args.json = cmd_usage, [], None, False
    cfg = load_config()
    log.debug("config %s loaded (%d providers)", config_path(), len(cfg.get("providers", {})))
    try:
        return args.func(args, cfg)
    except KeyError as e:
        print(e.args[0] if e.args else e, file=sys.stderr)
        return 2
