from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from common.crypto import (
    DerivedKey,
    decode_payload,
    derive_key,
    generate_project_id,
    open_envelope,
    unpack_payload,
)
from common.envfile import EnvDiff, count_env_vars, diff_env, parse_env
from common.errors import (
    AuthenticationError,
    ConfigError,
    NotFoundError,
    PassphraseError,
)
from state.addressing import RemoteAddressing
from state.blob_store import BlobStore
from state.keyring import DeviceKeyring
from state.ledger import PushResult, VersionLedger
from state.models import AVAILABLE_STAGES, DEFAULT_STAGE, ProjectConfig, StageConfig, VersionRecord
from state.project import ProjectStore


MIN_PASSPHRASE_LENGTH = 8

logger = logging.getLogger("pushenv.sync.orchestrator")

# Called with a prompt message, returns the passphrase typed by the user
PassphrasePrompt = Callable[[str], str]


@dataclass
class PushOptions:
    """
    Options for `push`.

    - message: free-text note stored with the version (default: none).
    - force: record a new version even when content is unchanged (default: False).
    """

    message: Optional[str] = None
    force: bool = False


@dataclass
class PullResult:
    path: Path
    count: int
    legacy: bool = False


@dataclass
class StageStatus:
    name: str
    env_path: str
    local_exists: bool
    remote_exists: bool
    versions: int = 0


@dataclass
class _Unlocked:
    key: DerivedKey
    cached: bool


def _utcnow() -> datetime:
    return datetime.now(UTC)


def check_passphrase(passphrase: str, *, min_length: int = MIN_PASSPHRASE_LENGTH) -> str:
    if len(passphrase) < min_length:
        raise PassphraseError(f"Passphrase must be at least {min_length} characters")
    return passphrase


class SyncOrchestrator:
    """
    Push/pull/diff/history/rollback flows for one project checkout.

    Dependencies are passed in explicitly: the blob store (S3 in production,
    in-memory in tests), the project config store, the device keyring and a
    passphrase prompt.

    Key handling
    - A cached keyring entry is used when present; otherwise the prompt is
      called and the key is derived with the salt carried by the remote payload.
      Pushing to a stage without data borrows the payload of another stage,
      and a fresh salt is used only when the whole project has no remote data.
    - Whatever key is used must decrypt existing data before anything is written.
    - A prompted key is cached only after it has proven itself.
    - Any AuthenticationError drops the cached entry, so the next command
      asks for the passphrase again.
    """

    def __init__(
        self,
        *,
        store: BlobStore,
        project: ProjectStore,
        keyring: DeviceKeyring,
        prompt: PassphrasePrompt,
        min_passphrase_length: int = MIN_PASSPHRASE_LENGTH,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store
        self._project = project
        self._keyring = keyring
        self._prompt = prompt
        self._min_len = min_passphrase_length
        self._clock = clock or _utcnow
        self._addressing = RemoteAddressing(store)

    # -------- Project setup --------
    def init_project(
        self,
        passphrase: str,
        *,
        env_path: str = ".env",
        create_env: bool = True,
    ) -> ProjectConfig:
        check_passphrase(passphrase, min_length=self._min_len)
        derived = derive_key(passphrase)
        project_id = generate_project_id()

        rel = self._project.relative(env_path)
        config = ProjectConfig(
            project_id=project_id,
            created_at=self._clock().isoformat(timespec="seconds"),
            stages={DEFAULT_STAGE: StageConfig(env_path=rel)},
        )
        self._project.save(config)
        self._keyring.persist_key(project_id, derived.salt, derived.key)

        target = self._project.root / rel
        if create_env and not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text("# Environment variables\n", encoding="utf-8")
        logger.info("Initialized project %s", project_id)
        return config

    def add_stage(self, stage: str, *, env_path: Optional[str] = None, create_env: bool = True) -> ProjectConfig:
        config = self._project.load()
        if stage not in AVAILABLE_STAGES:
            raise ConfigError(f"Unknown stage '{stage}'. Available: {', '.join(AVAILABLE_STAGES)}")
        if stage in config.stage_names():
            raise ConfigError(f"Stage '{stage}' is already configured")

        stages = dict(config.stages)
        if not stages and config.env_path:
            # Promote the pre-stage single-file layout
            stages[DEFAULT_STAGE] = StageConfig(env_path=config.env_path)
        rel = self._project.relative(env_path or f".env.{stage}")
        stages[stage] = StageConfig(env_path=rel)
        updated = config.model_copy(update={"stages": stages, "env_path": None})
        self._project.save(updated)

        target = self._project.root / rel
        if create_env and not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(f"# {stage.upper()} environment variables\n", encoding="utf-8")
        return updated

    def list_stages(self) -> List[StageStatus]:
        config = self._project.load()
        ledger = self._ledger(config)
        out: List[StageStatus] = []
        for stage in config.stage_names():
            rel = config.env_path_for(stage) or ""
            out.append(
                StageStatus(
                    name=stage,
                    env_path=rel,
                    local_exists=(self._project.root / rel).exists(),
                    remote_exists=self._addressing.exists(config.project_id, stage),
                    versions=ledger.current_max(stage),
                )
            )
        return out

    # -------- Sync flows --------
    def push(self, stage: str = DEFAULT_STAGE, options: Optional[PushOptions] = None) -> PushResult:
        opts = options or PushOptions()
        config = self._project.load()
        content = self._read_local(config, stage)
        ledger = self._ledger(config)

        # A stage without data is checked against the project's other stages
        reference = self._remote_payload(config, ledger, stage)
        if reference is None:
            reference = self._project_payload(config, ledger, exclude=stage)
        unlocked = self._unlock(config.project_id, reference)
        with self._authenticated(config.project_id):
            if reference is not None and ledger.current_max(stage) == 0:
                # The ledger only checks the key against this stage's own history
                self._open(reference, unlocked.key.key)
            result = ledger.push(stage, content, unlocked.key, message=opts.message, force=opts.force)
        self._remember(config.project_id, unlocked)
        return result

    def pull(self, stage: str = DEFAULT_STAGE) -> PullResult:
        config = self._project.load()
        target = self._project.resolve_env_path(config, stage)
        plaintext, legacy = self._decrypt_current(config, stage)

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(plaintext)
        count = count_env_vars(plaintext)
        logger.info("Wrote %d variables for stage %s to %s", count, stage, target)
        return PullResult(path=target, count=count, legacy=legacy)

    def load_env(self, stage: str = DEFAULT_STAGE) -> Dict[str, str]:
        """Decrypt a stage into a dict without writing any file."""
        config = self._project.load()
        self._project.resolve_env_path(config, stage)
        plaintext, _legacy = self._decrypt_current(config, stage)
        return parse_env(plaintext)

    def diff(self, stage: str = DEFAULT_STAGE, version: Optional[int] = None) -> EnvDiff:
        config = self._project.load()
        local = self._read_local(config, stage)
        if version is None:
            remote, _legacy = self._decrypt_current(config, stage)
            return diff_env(parse_env(local), parse_env(remote))

        ledger = self._ledger(config)
        target = ledger.get_version(stage, version)
        unlocked = self._unlock(config.project_id, target.payload)
        with self._authenticated(config.project_id):
            result = ledger.diff(stage, local, unlocked.key.key, target=version)
        self._remember(config.project_id, unlocked)
        return result

    def history(self, stage: str = DEFAULT_STAGE) -> List[VersionRecord]:
        config = self._project.load()
        self._project.resolve_env_path(config, stage)
        return self._ledger(config).list_versions(stage)

    def rollback(self, stage: str, version: int) -> VersionRecord:
        config = self._project.load()
        self._project.resolve_env_path(config, stage)
        ledger = self._ledger(config)
        source = ledger.get_version(stage, version)

        # Only passphrase holders may move history, even though the payload is copied as-is
        unlocked = self._unlock(config.project_id, source.payload)
        with self._authenticated(config.project_id):
            ledger.decrypt(source, unlocked.key.key)
        self._remember(config.project_id, unlocked)
        return ledger.rollback(stage, version)

    # -------- Internal --------
    def _ledger(self, config: ProjectConfig) -> VersionLedger:
        return VersionLedger(self._store, config.project_id, addressing=self._addressing, clock=self._clock)

    def _read_local(self, config: ProjectConfig, stage: str) -> bytes:
        path = self._project.resolve_env_path(config, stage)
        if not path.exists():
            raise NotFoundError(f".env file not found at {self._project.relative(path)} for stage '{stage}'")
        return path.read_bytes()

    def _remote_payload(self, config: ProjectConfig, ledger: VersionLedger, stage: str) -> Optional[str]:
        if ledger.current_max(stage) > 0:
            return ledger.get_latest(stage).payload
        found = self._addressing.find(config.project_id, stage)
        return decode_payload(found.data) if found else None

    def _project_payload(self, config: ProjectConfig, ledger: VersionLedger, *, exclude: str) -> Optional[str]:
        """Latest payload of the first other configured stage that has one."""
        for other in config.stage_names():
            if other == exclude:
                continue
            payload = self._remote_payload(config, ledger, other)
            if payload is not None:
                return payload
        return None

    def _decrypt_current(self, config: ProjectConfig, stage: str) -> Tuple[bytes, bool]:
        ledger = self._ledger(config)
        if ledger.current_max(stage) > 0:
            payload, legacy = ledger.get_latest(stage).payload, False
        else:
            found = self._addressing.resolve_read(config.project_id, stage)
            payload, legacy = decode_payload(found.data), found.legacy

        unlocked = self._unlock(config.project_id, payload)
        with self._authenticated(config.project_id):
            plaintext = self._open(payload, unlocked.key.key)
        self._remember(config.project_id, unlocked)
        return plaintext, legacy

    @staticmethod
    def _open(payload: str, key: bytes) -> bytes:
        _salt, envelope = unpack_payload(payload)
        return open_envelope(envelope, key)

    def _unlock(self, project_id: str, payload: Optional[str]) -> _Unlocked:
        key = self._keyring.get_cached_key(project_id)
        salt = self._keyring.get_cached_salt(project_id)
        if key is not None and salt is not None:
            return _Unlocked(key=DerivedKey(key=key, salt=salt), cached=True)

        remote_salt = unpack_payload(payload)[0] if payload is not None else None
        passphrase = check_passphrase(self._prompt("Enter the passphrase:"), min_length=self._min_len)
        return _Unlocked(key=derive_key(passphrase, remote_salt), cached=False)

    def _remember(self, project_id: str, unlocked: _Unlocked) -> None:
        if not unlocked.cached:
            self._keyring.persist_key(project_id, unlocked.key.salt, unlocked.key.key)

    @contextmanager
    def _authenticated(self, project_id: str) -> Iterator[None]:
        try:
            yield
        except AuthenticationError as exc:
            self._keyring.invalidate(project_id)
            raise AuthenticationError(
                "Incorrect passphrase. The cached key was removed; you will be asked for it again."
            ) from exc


__all__ = [
    "MIN_PASSPHRASE_LENGTH",
    "PassphrasePrompt",
    "PullResult",
    "PushOptions",
    "StageStatus",
    "SyncOrchestrator",
    "check_passphrase",
]
