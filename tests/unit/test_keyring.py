from __future__ import annotations

import base64
import json
import os
import stat

import pytest

from state.keyring import DeviceKeyring


KEY = bytes(range(32))
SALT = b"s" * 16


def test_missing_file_has_no_key(tmp_path):
    kr = DeviceKeyring(tmp_path / "keys.json")
    assert kr.get_cached_key("env_a") is None
    assert kr.invalidate("env_a") is False


def test_persist_and_read_back(tmp_path):
    path = tmp_path / "nested" / "keys.json"
    kr = DeviceKeyring(path)
    kr.persist_key("env_a", SALT, KEY)

    assert kr.get_cached_key("env_a") == KEY
    assert kr.get_cached_salt("env_a") == SALT

    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc["keys"][0]["projectId"] == "env_a"
    assert base64.b64decode(doc["keys"][0]["derivedKey"]) == KEY
    assert "createdAt" in doc["keys"][0]


@pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
def test_keyring_file_is_private(tmp_path):
    path = tmp_path / "keys.json"
    DeviceKeyring(path).persist_key("env_a", SALT, KEY)
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_persist_is_an_upsert_per_project(tmp_path):
    kr = DeviceKeyring(tmp_path / "keys.json")
    kr.persist_key("env_a", SALT, KEY)
    kr.persist_key("env_b", SALT, KEY)
    kr.persist_key("env_a", b"t" * 16, b"k" * 32)

    doc = json.loads((tmp_path / "keys.json").read_text(encoding="utf-8"))
    assert sorted(e["projectId"] for e in doc["keys"]) == ["env_a", "env_b"]
    assert kr.get_cached_key("env_a") == b"k" * 32
    assert kr.get_cached_key("env_b") == KEY


def test_invalidate_removes_only_that_project(tmp_path):
    kr = DeviceKeyring(tmp_path / "keys.json")
    kr.persist_key("env_a", SALT, KEY)
    kr.persist_key("env_b", SALT, KEY)

    assert kr.invalidate("env_a") is True
    assert kr.get_cached_key("env_a") is None
    assert kr.get_cached_key("env_b") == KEY


def test_reads_entries_written_with_legacy_field_name(tmp_path):
    path = tmp_path / "keys.json"
    path.write_text(
        json.dumps(
            {
                "keys": [
                    {
                        "projectId": "env_old",
                        "salt": base64.b64encode(SALT).decode(),
                        "key": base64.b64encode(KEY).decode(),
                        "createdAt": "2024-01-01T00:00:00Z",
                    }
                ]
            }
        ),
        encoding="utf-8",
    )
    assert DeviceKeyring(path).get_cached_key("env_old") == KEY


def test_corrupt_file_is_treated_as_empty(tmp_path):
    path = tmp_path / "keys.json"
    path.write_text("{not json", encoding="utf-8")
    kr = DeviceKeyring(path)
    assert kr.get_cached_key("env_a") is None

    kr.persist_key("env_a", SALT, KEY)
    assert kr.get_cached_key("env_a") == KEY


def test_undecodable_entry_is_dropped(tmp_path):
    path = tmp_path / "keys.json"
    path.write_text(
        json.dumps(
            {"keys": [{"projectId": "env_a", "salt": "c2FsdA==", "derivedKey": "***", "createdAt": "x"}]}
        ),
        encoding="utf-8",
    )
    kr = DeviceKeyring(path)
    assert kr.get_cached_key("env_a") is None
    assert kr.get_entry("env_a") is None


def test_default_location_honors_pushenv_home(pushenv_home):
    kr = DeviceKeyring()
    assert kr.path == pushenv_home / "keys.json"
