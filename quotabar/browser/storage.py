"""
Bearer tokens from browser local/session storage.

Single-page apps often keep their auth token in local storage rather than
a cookie. Chromium keeps local storage in LevelDB; we do not parse LevelDB
properly, we walk the raw bytes of the ``.log`` and uncompressed ``.ldb``
files looking for records whose key starts with a known prefix. Firefox
keeps one SQLite file per origin. All of it is best effort.
"""

import asyncio
import logging
import re
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from .browsers import DEFAULT_ORDER, BrowserProfile, installed, profiles
from .tokens import extract_access_tokens, extract_group_id, group_id_from_jwt, looks_like_token

log = logging.getLogger(__name__)

_PRINTABLE_RUN = re.compile(rb"[\x20-\x7e]{20,}")
_UTF16_RUN = re.compile(rb"(?:[\x20-\x7e]\x00){20,}")
_RAW_TOKEN = re.compile(rb"[A-Za-z0-9._\-+=/]{60,}")
_MAX_FILE_BYTES = 64 * 1024 * 1024


@dataclass(frozen=True)
class StorageEntry:
    key: str
    value: str
    origin: str | None = None


@dataclass(frozen=True)
class StorageToken:
    access_token: str
    group_id: str | None
    source_label: str


# ── raw LevelDB walking ──────────────────────────────────────────────────────

def _varint_at(data: bytes, pos: int) -> tuple[int, int] | None:
    """Decode a little-endian base-128 varint; returns (value, next_pos)."""
    result = shift = 0
    for i in range(pos, min(pos + 5, len(data))):
        byte = data[i]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, i + 1
        shift += 7
    return None


def _varint_ending_at(data: bytes, end: int) -> list[tuple[int, int]]:
    """Candidate varints (value, start) of 1-3 bytes that finish right before ``end``."""
    found = []
    for width in (1, 2, 3):
        start = end - width
        if start < 0:
            break
        decoded = _varint_at(data, start)
        if decoded and decoded[1] == end:
            found.append((decoded[0], start))
    return found


def _record_at(data: bytes, pos: int) -> tuple[bytes, bytes] | None:
    """Key/value of the record whose key begins at ``pos``.

    Log files store ``tag varint(klen) key varint(vlen) value``; table
    blocks store ``varint(shared)=0 varint(non_shared) varint(vlen) key+8
    value``. Both layouts are tried.
    """
    for klen, start in _varint_ending_at(data, pos):
        if start >= 1 and data[start - 1] == 0x01 and 0 < klen <= len(data) - pos:
            decoded = _varint_at(data, pos + klen)
            if decoded:
                vlen, vpos = decoded
                if vpos + vlen <= len(data):
                    return data[pos:pos + klen], data[vpos:vpos + vlen]
    for vlen, vstart in _varint_ending_at(data, pos):
        for non_shared, kstart in _varint_ending_at(data, vstart):
            if kstart >= 1 and data[kstart - 1] == 0 and non_shared > 8:
                vpos = pos + non_shared
                if vpos + vlen <= len(data):
                    return data[pos:vpos - 8], data[vpos:vpos + vlen]
    return None


def iter_leveldb_records(data: bytes, prefixes: tuple[bytes, ...]) -> Iterator[tuple[bytes, bytes]]:
    for prefix in prefixes:
        pos = data.find(prefix)
        while pos >= 0:
            record = _record_at(data, pos)
            if record is not None:
                yield record
            pos = data.find(prefix, pos + 1)


def _decode_prefixed(raw: bytes) -> str:
    """Chromium local-storage strings: 0x01 + Latin-1, or 0x00 + UTF-16LE."""
    if raw[:1] == b"\x00":
        return raw[1:].decode("utf-16-le", errors="ignore")
    if raw[:1] == b"\x01":
        return raw[1:].decode("latin-1")
    return raw.decode("utf-8", errors="ignore")


def _decode_loose(raw: bytes) -> str:
    if len(raw) >= 2 and len(raw) % 2 == 0 and raw[1::2].count(0) > len(raw) // 4:
        return raw.decode("utf-16-le", errors="ignore")
    return raw.decode("utf-8", errors="ignore")


def _leveldb_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    files = [p for p in directory.iterdir() if p.suffix in (".log", ".ldb") and p.is_file()]
    return sorted(files, key=lambda p: p.stat().st_mtime, reverse=True)


def _read_bytes(path: Path) -> bytes:
    try:
        if path.stat().st_size > _MAX_FILE_BYTES:
            return b""
        return path.read_bytes()
    except OSError as e:
        # browser holds a lock or the file rotated under us
        log.debug("cannot read %s: %s", path, e)
        return b""


def read_local_storage(directory: Path, origins: list[str]) -> list[StorageEntry]:
    """Local-storage entries for ``origins`` from a Chromium ``leveldb`` directory."""
    prefixes = tuple(b"_" + o.encode() + b"\x00" for o in origins)
    entries: list[StorageEntry] = []
    seen: set[tuple[str, str]] = set()
    for path in _leveldb_files(directory):
        for key, value in iter_leveldb_records(_read_bytes(path), prefixes):
            origin_raw, _, script_key = key[1:].partition(b"\x00")
            entry = StorageEntry(_decode_prefixed(script_key), _decode_prefixed(value),
                                 origin_raw.decode("latin-1"))
            if (entry.key, entry.value) not in seen:
                seen.add((entry.key, entry.value))
                entries.append(entry)
    return entries


def read_text_entries(directory: Path) -> list[StorageEntry]:
    """Printable runs (ASCII or UTF-16LE) from every LevelDB file in ``directory``."""
    entries = []
    for path in _leveldb_files(directory):
        data = _read_bytes(path)
        for m in _PRINTABLE_RUN.finditer(data):
            entries.append(StorageEntry("", m.group().decode("ascii")))
        for m in _UTF16_RUN.finditer(data):
            entries.append(StorageEntry("", m.group().decode("utf-16-le")))
    return entries


def read_token_candidates(directory: Path) -> list[str]:
    found: list[str] = []
    for path in _leveldb_files(directory):
        for m in _RAW_TOKEN.finditer(_read_bytes(path)):
            token = m.group().decode("ascii")
            if token not in found:
                found.append(token)
    return found


def read_session_storage(directory: Path, origins: list[str]) -> list[StorageEntry]:
    """Session-storage entries: ``namespace-<id>-<origin>`` names a map id,
    ``map-<id>-<key>`` holds the values."""
    records: list[tuple[str, str]] = []
    for path in _leveldb_files(directory):
        for key, value in iter_leveldb_records(_read_bytes(path), (b"namespace-", b"map-")):
            records.append((key.decode("latin-1"), _decode_loose(value)))
    map_ids = set()
    for key, value in records:
        if key.startswith("namespace-") and any(o.lower() in key.lower() for o in origins):
            if value.strip().isdigit():
                map_ids.add(value.strip())
    entries = []
    for key, value in records:
        if key.startswith("map-"):
            parts = key.split("-", 2)
            if len(parts) == 3 and parts[1] in map_ids:
                entries.append(StorageEntry(parts[2], value))
    return entries


# ── Firefox ───────────────────────────────────────────────────────────────────

def _copy_db(path: Path) -> Path | None:
    """Copy a live SQLite file (and its WAL) aside so the browser's lock can't bite."""
    try:
        tmp_dir = Path(tempfile.mkdtemp(prefix="quotabar-ls-"))
    except OSError as e:
        log.warning("Failed to copy %s: %s", path, e)
        return None
    try:
        shutil.copy2(path, tmp_dir / path.name)
        wal = path.with_name(path.name + "-wal")
        if wal.exists():
            shutil.copy2(wal, tmp_dir / wal.name)
    except OSError as e:
        log.warning("Failed to copy %s: %s", path, e)
        shutil.rmtree(tmp_dir, ignore_errors=True)
        return None
    return tmp_dir / path.name


def _firefox_origin_dir(origin: str) -> str:
    return origin.replace("://", "+++").replace(":", "+")


def read_firefox_local_storage(profile_dir: Path, origins: list[str]) -> list[StorageEntry]:
    entries = []
    for origin in origins:
        db = profile_dir / "storage" / "default" / _firefox_origin_dir(origin) / "ls" / "data.sqlite"
        if not db.is_file():
            continue
        copy = _copy_db(db)
        if copy is None:
            continue
        try:
            conn = sqlite3.connect(f"file:{copy}?mode=ro", uri=True)
            try:
                rows = conn.execute(
                    "SELECT key, value, conversion_type, compression_type FROM data"
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            log.debug("firefox local storage %s unreadable: %s", db, e)
            continue
        finally:
            shutil.rmtree(copy.parent, ignore_errors=True)
        for key, value, conversion, compression in rows:
            if compression:
                # snappy-compressed values are not decoded
                continue
            if isinstance(value, bytes):
                value = value.decode("utf-8" if conversion == 1 else "utf-16-le", errors="ignore")
            entries.append(StorageEntry(key, value or "", origin))
    return entries


# ── importer ──────────────────────────────────────────────────────────────────

class LocalStorageImporter:
    """Find bearer tokens for a set of origins across installed browser profiles."""

    def __init__(self, home: Path | None = None, platform: str | None = None):
        self.home = home
        self.platform = platform or sys.platform

    async def import_tokens(self, origins: list[str], domain_hint: str, order=DEFAULT_ORDER,
                            accept: Callable[[str], bool] | None = None) -> list[StorageToken]:
        return await asyncio.to_thread(self._import_tokens, origins, domain_hint, order, accept)

    def _import_tokens(self, origins, domain_hint, order, accept) -> list[StorageToken]:
        found: list[StorageToken] = []
        for browser in installed(order, self.home, self.platform):
            for profile in profiles(browser, self.home, self.platform):
                try:
                    found.extend(self.tokens_for_profile(profile, origins, domain_hint, accept))
                except OSError as e:
                    log.debug("%s storage unreadable: %s", profile.label, e)
        if not found:
            log.info("No access token for %s found in browser storage", domain_hint)
        return found

    def tokens_for_profile(self, profile: BrowserProfile, origins: list[str], domain_hint: str,
                           accept: Callable[[str], bool] | None = None) -> list[StorageToken]:
        if profile.browser.family == "firefox":
            entries = read_firefox_local_storage(profile.path, origins)
            return self._from_entries(entries, profile.label, accept)
        if profile.browser.family != "chromium":
            return []

        leveldb = profile.path / "Local Storage" / "leveldb"
        entries = read_local_storage(leveldb, origins)
        tokens = self._from_entries(entries, profile.label, None)
        if tokens:
            return tokens

        hint = domain_hint.lower()
        text = [e for e in read_text_entries(leveldb) if hint in e.value.lower()]
        tokens = self._from_entries(text, profile.label, accept)
        if tokens:
            return tokens

        if entries or text:
            group = next(filter(None, (extract_group_id(e.value) for e in entries + text)), None)
            raw = [t for t in read_token_candidates(leveldb)
                   if looks_like_token(t) and "." in t and (accept is None or accept(t))]
            if raw:
                return [StorageToken(t, group or group_id_from_jwt(t), profile.label) for t in raw]

        session = read_session_storage(profile.path / "Session Storage", origins)
        tokens = self._from_entries(session, f"{profile.label} (Session Storage)", accept)
        if tokens:
            return tokens

        return self._from_indexeddb(profile, origins, accept)

    def _from_indexeddb(self, profile, origins, accept) -> list[StorageToken]:
        root = profile.path / "IndexedDB"
        if not root.is_dir():
            return []
        prefixes = [o.replace("://", "_") + "_" for o in origins]
        tokens: list[StorageToken] = []
        label = f"{profile.label} (IndexedDB)"
        for directory in sorted(root.iterdir()):
            if not (directory.name.endswith(".indexeddb.leveldb")
                    and any(directory.name.startswith(p) for p in prefixes)):
                continue
            for candidate in read_token_candidates(directory):
                if "." in candidate and looks_like_token(candidate) and (accept is None or accept(candidate)):
                    tokens.append(StorageToken(candidate, group_id_from_jwt(candidate), label))
        return tokens

    @staticmethod
    def _from_entries(entries: list[StorageEntry], label: str,
                      accept: Callable[[str], bool] | None) -> list[StorageToken]:
        tokens: list[str] = []
        group_id = None
        for entry in entries:
            for token in extract_access_tokens(entry.value):
                if "." in token and accept is not None and not accept(token):
                    continue
                if token not in tokens:
                    tokens.append(token)
            if group_id is None:
                group_id = extract_group_id(entry.value)
        return [StorageToken(t, group_id or group_id_from_jwt(t), label) for t in tokens]
