"""
Append-only version history per stage.

Each push writes three objects, in this order:

1. the immutable version object  `<project>/<stage>/versions/<NNNNNN>.encrypted`
2. the primary key mirror        `<project>/<stage>/env.encrypted`
3. the version index             `<project>/<stage>/history.json`

The index is the commit point: a version is visible to `list_versions`,
`get_version` and `get_latest` only once the index names it. A failure at
step 1 or 2 leaves an orphan object that no reader ever sees.

Rollback appends a copy of an older payload as a new version; existing
versions are never rewritten.

Concurrent pushes from two devices are not reconciled: both read the same
index, both write sequence N+1, and the last index write wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Callable, List, Optional, Union

from pydantic import ValidationError

from common.crypto import DerivedKey, decode_payload, open_envelope, pack_payload, seal, unpack_payload
from common.envfile import EnvDiff, diff_env, parse_env
from common.errors import EmptyHistoryError, FormatError, NotFoundError

from .addressing import RemoteAddressing, history_key, version_key
from .blob_store import BlobStore
from .models import Version, VersionIndex, VersionRecord


logger = logging.getLogger("pushenv.state.ledger")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _dump_index_json(index: VersionIndex) -> bytes:
    # Deterministic JSON: stable key order, no extra whitespace
    payload = json.dumps(
        index.model_dump(mode="json", by_alias=True, exclude_none=True),
        separators=(",", ":"),
        sort_keys=True,
    ).encode("utf-8")
    return payload


def _load_index_json(data: bytes) -> VersionIndex:
    raw = json.loads(data.decode("utf-8"))
    return VersionIndex.model_validate(raw)


@dataclass
class PushResult:
    record: VersionRecord
    skipped: bool = False

    @property
    def sequence(self) -> int:
        return self.record.sequence


class VersionLedger:
    """Version history of every stage of one project."""

    def __init__(
        self,
        store: BlobStore,
        project_id: str,
        *,
        addressing: Optional[RemoteAddressing] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._project_id = project_id
        self._addressing = addressing or RemoteAddressing(store)
        self._clock = clock

    @property
    def project_id(self) -> str:
        return self._project_id

    # -------- Reads --------
    def read_index(self, stage: str) -> VersionIndex:
        data = self._store.get(history_key(self._project_id, stage))
        if data is None:
            return VersionIndex.empty(stage)
        try:
            index = _load_index_json(data)
        except (ValueError, ValidationError) as ex:
            raise FormatError(f"Version index for stage '{stage}' is corrupt") from ex
        index.versions.sort(key=lambda r: r.sequence)
        return index

    def current_max(self, stage: str) -> int:
        return self.read_index(stage).current_max

    def list_versions(self, stage: str) -> List[VersionRecord]:
        """Version metadata, oldest first (ascending sequence)."""
        return list(self.read_index(stage).versions)

    def get_version(self, stage: str, sequence: int) -> Version:
        rec = self.read_index(stage).find(sequence)
        if rec is None:
            raise NotFoundError(f"Version {sequence} not found for stage '{stage}'")
        data = self._store.get(rec.object_key)
        if data is None:
            raise NotFoundError(
                f"Version {sequence} of stage '{stage}' is listed but its object {rec.object_key} is missing"
            )
        return Version(**rec.model_dump(), payload=decode_payload(data))

    def get_latest(self, stage: str) -> Version:
        current = self.current_max(stage)
        if current == 0:
            raise EmptyHistoryError(f"Stage '{stage}' has no versions yet")
        return self.get_version(stage, current)

    @staticmethod
    def decrypt(version: Version, key: bytes) -> bytes:
        _salt, envelope = unpack_payload(version.payload)
        return open_envelope(envelope, key)

    # -------- Writes --------
    def push(
        self,
        stage: str,
        plaintext: Union[str, bytes],
        key: DerivedKey,
        *,
        message: Optional[str] = None,
        force: bool = False,
    ) -> PushResult:
        """Seal `plaintext` and append it as the next version of `stage`.

        When the stage already has versions the latest one is decrypted first,
        so a key that cannot read the history is rejected before any write.
        Unchanged content is skipped unless `force` is set.
        """
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else bytes(plaintext)
        index = self.read_index(stage)
        if index.versions:
            latest = self.get_version(stage, index.current_max)
            previous = self.decrypt(latest, key.key)
            if previous == data and not force:
                logger.info("Stage %s unchanged since version %d; push skipped", stage, latest.sequence)
                return PushResult(record=VersionRecord(**latest.model_dump(exclude={"payload"})), skipped=True)

        payload = pack_payload(key.salt, seal(data, key.key))
        record = self._append(stage, index, payload, message=message)
        return PushResult(record=record)

    def rollback(self, stage: str, target: int, *, message: Optional[str] = None) -> VersionRecord:
        """Append a new version carrying version `target`'s payload unchanged."""
        source = self.get_version(stage, target)
        index = self.read_index(stage)
        return self._append(
            stage,
            index,
            source.payload,
            message=message or f"Rollback to version {target}",
            rolled_back_from=target,
        )

    def _append(
        self,
        stage: str,
        index: VersionIndex,
        payload: str,
        *,
        message: Optional[str],
        rolled_back_from: Optional[int] = None,
    ) -> VersionRecord:
        sequence = index.current_max + 1
        obj_key = version_key(self._project_id, stage, sequence)
        body = payload.encode("utf-8")

        self._store.put(obj_key, body)
        self._store.put(self._addressing.resolve_write(self._project_id, stage), body)

        record = VersionRecord(
            sequence=sequence,
            timestamp=self._clock(),
            message=message,
            object_key=obj_key,
            rolled_back_from=rolled_back_from,
        )
        updated = VersionIndex(stage=stage, versions=[*index.versions, record])
        self._store.put(history_key(self._project_id, stage), _dump_index_json(updated))
        logger.info("Recorded version %d of stage %s", sequence, stage)
        return record

    # -------- Comparison --------
    def diff(
        self,
        stage: str,
        local_plaintext: Union[str, bytes],
        key: bytes,
        target: Optional[int] = None,
    ) -> EnvDiff:
        """Compare a local file with version `target` (default: latest)."""
        version = self.get_latest(stage) if target is None else self.get_version(stage, target)
        remote = self.decrypt(version, key)
        return diff_env(parse_env(local_plaintext), parse_env(remote))


__all__ = ["PushResult", "VersionLedger"]
