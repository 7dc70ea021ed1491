from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import tempfile
from datetime import datetime, UTC
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .models import KeyEntry, KeyringFile


ENV_HOME = "PUSHENV_HOME"
HOME_DIR_NAME = ".pushenv"
KEYS_FILE_NAME = "keys.json"

logger = logging.getLogger("pushenv.state.keyring")


def default_home() -> Path:
    base = os.environ.get(ENV_HOME)
    if base:
        return Path(base)
    return Path.home() / HOME_DIR_NAME


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


class DeviceKeyring:
    """
    Per-device cache of derived keys, one entry per project.

    - Backed by a single JSON file: {"keys": [{projectId, salt, derivedKey, createdAt}, ...]}
    - The passphrase itself never touches disk; only the PBKDF2 output and its salt.
    - A corrupt file or entry is logged and treated as absent, so the next
      command asks for the passphrase again.
    - Not locked across processes: two invocations racing on the same
      project write the same key, since derivation is deterministic.
    """

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = Path(path) if path else default_home() / KEYS_FILE_NAME

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> List[KeyEntry]:
        if not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return KeyringFile.model_validate(raw).keys
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable keyring %s: %s", self._path, exc)
            return []

    def _save(self, entries: List[KeyEntry]) -> None:
        doc = KeyringFile(keys=entries).model_dump(by_alias=True)
        data = json.dumps(doc, indent=2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".keys-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(data)
                os.chmod(tmp, 0o600)
                os.replace(tmp, self._path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            # The cache is an optimization; the next run re-prompts instead
            logger.warning("Could not write keyring %s: %s", self._path, exc)

    def get_entry(self, project_id: str) -> Optional[KeyEntry]:
        for entry in self._load():
            if entry.project_id == project_id:
                return entry
        return None

    def get_cached_key(self, project_id: str) -> Optional[bytes]:
        entry = self.get_entry(project_id)
        if entry is None:
            return None
        try:
            return _b64decode(entry.derived_key)
        except (binascii.Error, ValueError):
            logger.warning("Dropping undecodable keyring entry for %s", project_id)
            self.invalidate(project_id)
            return None

    def get_cached_salt(self, project_id: str) -> Optional[bytes]:
        entry = self.get_entry(project_id)
        if entry is None:
            return None
        try:
            return _b64decode(entry.salt)
        except (binascii.Error, ValueError):
            return None

    def persist_key(self, project_id: str, salt: bytes, key: bytes) -> KeyEntry:
        """Insert or replace the entry for `project_id`."""
        entry = KeyEntry(
            project_id=project_id,
            salt=base64.b64encode(salt).decode("ascii"),
            derived_key=base64.b64encode(key).decode("ascii"),
            created_at=datetime.now(UTC).isoformat(timespec="seconds"),
        )
        entries = [e for e in self._load() if e.project_id != project_id]
        entries.append(entry)
        self._save(entries)
        return entry

    def invalidate(self, project_id: str) -> bool:
        """Remove the entry for `project_id`; returns False if there was none."""
        entries = self._load()
        kept = [e for e in entries if e.project_id != project_id]
        if len(kept) == len(entries):
            return False
        self._save(kept)
        logger.info("Removed cached key for project %s", project_id)
        return True


__all__ = ["DeviceKeyring", "default_home"]
