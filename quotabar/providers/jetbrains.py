"""
JetBrains AI Assistant quota from the IDE's own option file.

The IDE writes ``options/AIAssistantQuotaManager2.xml`` into its config
directory; both option values are JSON documents stored as XML attribute
text.
"""

import asyncio
import json
import logging
import os
import re
import sys
import xml.etree.ElementTree as ET
from pathlib import Path
from urllib.parse import unquote

from ..errors import NotInstalled, ParseFailed
from ..models import FetchKind, ProviderIdentity, RateWindow, UsageSnapshot
from ..strategy import FetchStrategy, ProviderDescriptor
from ..timestamps import parse_flexible_date

log = logging.getLogger(__name__)

QUOTA_FILE = "AIAssistantQuotaManager2.xml"
COMPONENT = "AIAssistantQuotaManager2"
CONFIG_ENV = "JETBRAINS_CONFIG_DIR"

_DURATION = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?)?$")


def config_roots(home: Path, platform: str | None = None) -> list[Path]:
    platform = platform or sys.platform
    if platform == "darwin":
        return [home / "Library" / "Application Support" / "JetBrains"]
    return [home / ".config" / "JetBrains"]


def find_quota_files(context, platform: str | None = None) -> list[Path]:
    """Quota files across installed IDEs, most recently written first."""
    override = context.env_value(CONFIG_ENV)
    roots = [Path(os.path.expanduser(override))] if override else config_roots(context.home, platform)
    found: list[Path] = []
    for root in roots:
        direct = root / "options" / QUOTA_FILE
        if direct.is_file():
            found.append(direct)
            continue
        if root.is_dir():
            found.extend(p for p in root.glob(f"*/options/{QUOTA_FILE}") if p.is_file())
    return sorted(found, key=lambda p: p.stat().st_mtime, reverse=True)


def _decode_option(raw: str | None) -> dict | None:
    if not raw or not raw.strip():
        return None
    text = raw.strip()
    if text.startswith("%7B") or text.startswith("%7b"):
        text = unquote(text)
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _number(value) -> float | None:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


def duration_minutes(value) -> int | None:
    """ISO-8601 duration like ``PT720H`` or ``P30D`` in minutes."""
    m = _DURATION.match(value) if isinstance(value, str) else None
    if not m or not any(m.groups()):
        return None
    days, hours, minutes = (int(g or 0) for g in m.groups())
    return days * 24 * 60 + hours * 60 + minutes


def parse_quota_xml(data: bytes | str) -> UsageSnapshot:
    try:
        root = ET.fromstring(data)
    except ET.ParseError as e:
        raise ParseFailed(detail=f"invalid quota XML: {e}") from e
    options: dict[str, str] = {}
    for component in root.iter("component"):
        if component.get("name") != COMPONENT:
            continue
        for option in component.iter("option"):
            if option.get("name"):
                options[option.get("name")] = option.get("value")

    quota = _decode_option(options.get("quotaInfo"))
    if quota is None:
        raise ParseFailed("No quota info")
    refill = _decode_option(options.get("nextRefill")) or {}

    tariff = quota.get("tariffQuota") or {}
    used = _number(quota.get("current"))
    if used is None:
        used = _number(tariff.get("current"))
    maximum = _number(quota.get("maximum")) or _number(tariff.get("maximum"))
    if used is None or not maximum:
        raise ParseFailed("No quota info")

    resets_at = parse_flexible_date(refill.get("next")) or parse_flexible_date(quota.get("until"))
    window = duration_minutes((refill.get("tariff") or {}).get("duration"))
    kind = quota.get("type")
    return UsageSnapshot(
        primary=RateWindow(used_percent=min(100.0, used / maximum * 100), window_minutes=window,
                           resets_at=resets_at),
        identity=ProviderIdentity(login_method=kind if isinstance(kind, str) else None),
    )


def _read(path: Path) -> bytes:
    return path.read_bytes()


class JetBrainsLocalStrategy(FetchStrategy):
    id = "jetbrains.cli"
    kind = FetchKind.CLI

    def is_available(self, context):
        return bool(find_quota_files(context))

    async def fetch(self, context):
        files = await asyncio.to_thread(find_quota_files, context)
        if not files:
            raise NotInstalled("No JetBrains IDE with AI Assistant found.")
        log.debug("jetbrains quota file: %s", files[0])
        return parse_quota_xml(await asyncio.to_thread(_read, files[0]))


DESCRIPTOR = ProviderDescriptor(
    id="jetbrains",
    display_name="JetBrains AI",
    strategies=(JetBrainsLocalStrategy(),),
    dashboard_url="https://account.jetbrains.com/licenses",
)
