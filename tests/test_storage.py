"""Tests for local-storage token discovery."""

import asyncio
import json

from conftest import make_jwt

from quotabar.browser import storage
from quotabar.browser.storage import (
    LocalStorageImporter, iter_leveldb_records, read_local_storage, read_session_storage,
)

ORIGIN = "https://platform.minimax.io"
JWT = make_jwt({"iss": "minimax", "GroupID": "20240101", "exp": 1_900_000_000})


def _varint(n: int) -> bytes:
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _log_record(key: bytes, value: bytes) -> bytes:
    return b"\x01" + _varint(len(key)) + key + _varint(len(value)) + value


def _local_storage_key(origin: str, key: str) -> bytes:
    return b"_" + origin.encode() + b"\x00\x01" + key.encode("latin-1")


def _write_leveldb(directory, *records, name="000003.log"):
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_bytes(b"\x00" * 7 + b"".join(records) + b"\x00" * 4)
    return directory


def test_iter_records_in_log_layout():
    data = b"junk" + _log_record(b"map-1-token", b"value-one") + _log_record(b"other", b"x")
    assert list(iter_leveldb_records(data, (b"map-",))) == [(b"map-1-token", b"value-one")]


def test_read_local_storage_decodes_prefixes(tmp_path):
    value = json.dumps({"access_token": JWT})
    leveldb = _write_leveldb(
        tmp_path / "leveldb",
        _log_record(_local_storage_key(ORIGIN, "auth"), b"\x01" + value.encode("latin-1")),
        _log_record(_local_storage_key(ORIGIN, "name"), b"\x00" + "Ünïcode".encode("utf-16-le")),
        _log_record(_local_storage_key("https://elsewhere.example", "auth"), b"\x01nope"),
    )
    entries = read_local_storage(leveldb, [ORIGIN])
    assert [(e.key, e.value, e.origin) for e in entries] == [
        ("auth", value, ORIGIN),
        ("name", "Ünïcode", ORIGIN),
    ]


def test_read_session_storage_follows_map_ids(tmp_path):
    directory = _write_leveldb(
        tmp_path / "Session Storage",
        _log_record(f"namespace-abc-{ORIGIN}/".encode(), b"7"),
        _log_record(b"map-7-token", JWT.encode()),
        _log_record(b"map-8-token", b"unrelated"),
    )
    entries = read_session_storage(directory, [ORIGIN])
    assert [(e.key, e.value) for e in entries] == [("token", JWT)]


def test_missing_directory_is_empty(tmp_path):
    assert read_local_storage(tmp_path / "absent", [ORIGIN]) == []


def test_importer_finds_token_in_chrome_profile(tmp_path):
    profile = tmp_path / ".config" / "google-chrome" / "Default"
    _write_leveldb(
        profile / "Local Storage" / "leveldb",
        _log_record(_local_storage_key(ORIGIN, "user_detail"),
                    b"\x01" + json.dumps({"access_token": JWT}).encode()),
    )
    importer = LocalStorageImporter(home=tmp_path, platform="linux")
    tokens = asyncio.run(importer.import_tokens([ORIGIN], "minimax", ("chrome",)))
    assert len(tokens) == 1
    assert tokens[0].access_token == JWT
    assert tokens[0].group_id == "20240101"
    assert tokens[0].source_label == "Chrome Default"


def test_importer_filters_raw_scan_with_accept(tmp_path):
    other = make_jwt({"iss": "someone-else", "sub": "x" * 20})
    profile = tmp_path / ".config" / "google-chrome" / "Default"
    _write_leveldb(
        profile / "Local Storage" / "leveldb",
        f"blob for minimax.io session {other} end".encode(),
    )
    importer = LocalStorageImporter(home=tmp_path, platform="linux")
    tokens = asyncio.run(importer.import_tokens(
        [ORIGIN], "minimax", ("chrome",), accept=lambda t: "minimax" in t))
    assert tokens == []


def test_copy_db_removes_temp_dir_when_wal_copy_fails(tmp_path, monkeypatch):
    db = tmp_path / "profile" / "data.sqlite"
    db.parent.mkdir()
    db.write_bytes(b"main")
    db.with_name("data.sqlite-wal").write_bytes(b"wal")
    scratch = tmp_path / "scratch"

    def mkdtemp(prefix):
        scratch.mkdir()
        return str(scratch)

    monkeypatch.setattr(storage.tempfile, "mkdtemp", mkdtemp)
    real_copy = storage.shutil.copy2

    def copy2(src, dst):
        if str(src).endswith("-wal"):
            raise PermissionError("locked")
        return real_copy(src, dst)

    monkeypatch.setattr(storage.shutil, "copy2", copy2)
    assert storage._copy_db(db) is None
    assert not scratch.exists()
