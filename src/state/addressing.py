"""
Remote key layout for a project.

    <projectId>/env.encrypted                          legacy, pre-stage data
    <projectId>/<stage>/env.encrypted                  primary (latest payload)
    <projectId>/<stage>/history.json                   version index
    <projectId>/<stage>/versions/<NNNNNN>.encrypted    immutable versions

Writes always go to the primary key. Reads of the default stage fall back to
the legacy key so projects pushed before stages existed keep working without
a migration step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from common.errors import FormatError, NotFoundError

from .blob_store import BlobStore
from .models import DEFAULT_STAGE


OBJECT_NAME = "env.encrypted"
HISTORY_NAME = "history.json"
VERSIONS_DIR = "versions"

logger = logging.getLogger("pushenv.state.addressing")

# (project_id, stage) -> candidate key, or None when the resolver does not apply
Resolver = Callable[[str, str], Optional[str]]


def _check_segment(value: str, what: str) -> str:
    if not value or "/" in value or value in (".", ".."):
        raise FormatError(f"Invalid {what} for remote addressing: {value!r}")
    return value


def locate(project_id: str, stage: str) -> str:
    return f"{_check_segment(project_id, 'project id')}/{_check_segment(stage, 'stage')}/{OBJECT_NAME}"


def locate_legacy(project_id: str) -> str:
    return f"{_check_segment(project_id, 'project id')}/{OBJECT_NAME}"


def history_key(project_id: str, stage: str) -> str:
    return f"{_check_segment(project_id, 'project id')}/{_check_segment(stage, 'stage')}/{HISTORY_NAME}"


def version_key(project_id: str, stage: str, sequence: int) -> str:
    if sequence < 1:
        raise ValueError("sequence must be >= 1")
    return (
        f"{_check_segment(project_id, 'project id')}/{_check_segment(stage, 'stage')}"
        f"/{VERSIONS_DIR}/{sequence:06d}.encrypted"
    )


@dataclass(frozen=True)
class ResolvedObject:
    key: str
    data: bytes
    legacy: bool = False


class RemoteAddressing:
    """Maps (project, stage) to store keys and resolves reads in priority order."""

    def __init__(self, store: BlobStore, *, default_stage: str = DEFAULT_STAGE) -> None:
        self._store = store
        self._default_stage = default_stage
        self._resolvers: List[Resolver] = [self._primary, self._legacy]

    def _primary(self, project_id: str, stage: str) -> Optional[str]:
        return locate(project_id, stage)

    def _legacy(self, project_id: str, stage: str) -> Optional[str]:
        if stage != self._default_stage:
            return None
        return locate_legacy(project_id)

    def candidates(self, project_id: str, stage: str) -> List[str]:
        keys = (resolve(project_id, stage) for resolve in self._resolvers)
        return [k for k in keys if k is not None]

    def find(self, project_id: str, stage: str) -> Optional[ResolvedObject]:
        primary = locate(project_id, stage)
        for key in self.candidates(project_id, stage):
            data = self._store.get(key)
            if data is not None:
                if key != primary:
                    logger.debug("Stage %s resolved through legacy key %s", stage, key)
                return ResolvedObject(key=key, data=data, legacy=key != primary)
        return None

    def resolve_read(self, project_id: str, stage: str) -> ResolvedObject:
        found = self.find(project_id, stage)
        if found is None:
            raise NotFoundError(
                f"No encrypted .env found for stage '{stage}'. "
                f"Run 'pushenv push --stage {stage}' first."
            )
        return found

    def resolve_write(self, project_id: str, stage: str) -> str:
        return locate(project_id, stage)

    def exists(self, project_id: str, stage: str) -> bool:
        return any(self._store.head(key) for key in self.candidates(project_id, stage))


__all__ = [
    "RemoteAddressing",
    "ResolvedObject",
    "history_key",
    "locate",
    "locate_legacy",
    "version_key",
]
