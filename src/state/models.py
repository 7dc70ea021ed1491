from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


AVAILABLE_STAGES = ("development", "staging", "production")
DEFAULT_STAGE = "development"


class StageConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    env_path: str = Field(..., alias="envPath", description="Local .env path, relative to the project root")


class ProjectConfig(BaseModel):
    """
    Project identity and stage layout, stored in `.pushenv/config.json`.

    Fields
    - project_id: opaque id generated once at init; namespaces every remote key.
    - created_at: ISO 8601 timestamp of init.
    - stages: stage name -> local file location.
    - env_path: single-file layout written before stages existed. When set and
      `stages` is empty it is read as the default stage.
    """

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(..., alias="projectId")
    created_at: str = Field(..., alias="createdAt")
    stages: Dict[str, StageConfig] = Field(default_factory=dict)
    env_path: Optional[str] = Field(default=None, alias="envPath")

    def stage_names(self) -> List[str]:
        if self.stages:
            # Known stages first in canonical order, then any extras
            known = [s for s in AVAILABLE_STAGES if s in self.stages]
            return known + sorted(s for s in self.stages if s not in AVAILABLE_STAGES)
        if self.env_path:
            return [DEFAULT_STAGE]
        return []

    def env_path_for(self, stage: str) -> Optional[str]:
        cfg = self.stages.get(stage)
        if cfg is not None:
            return cfg.env_path
        if stage == DEFAULT_STAGE and not self.stages and self.env_path:
            return self.env_path
        return None


class KeyEntry(BaseModel):
    """One cached key per project per device; salt and key are base64."""

    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(..., alias="projectId")
    salt: str
    # Older keyring files call this field "key"
    derived_key: str = Field(
        ...,
        alias="derivedKey",
        validation_alias=AliasChoices("derivedKey", "key"),
    )
    created_at: str = Field(..., alias="createdAt")


class KeyringFile(BaseModel):
    keys: List[KeyEntry] = Field(default_factory=list)


class VersionRecord(BaseModel):
    """Metadata of one immutable stage version."""

    model_config = ConfigDict(populate_by_name=True)

    sequence: int = Field(..., ge=1)
    timestamp: datetime
    message: Optional[str] = None
    object_key: str = Field(..., alias="objectKey")
    rolled_back_from: Optional[int] = Field(default=None, alias="rolledBackFrom")


class Version(VersionRecord):
    """A version record together with its stored payload (salt:iv:tag:ciphertext)."""

    payload: str


class VersionIndex(BaseModel):
    """Per-stage ledger index; the only document readers consult to list versions."""

    stage: str
    versions: List[VersionRecord] = Field(default_factory=list)

    @property
    def current_max(self) -> int:
        return self.versions[-1].sequence if self.versions else 0

    def find(self, sequence: int) -> Optional[VersionRecord]:
        for rec in self.versions:
            if rec.sequence == sequence:
                return rec
        return None

    @classmethod
    def empty(cls, stage: str) -> "VersionIndex":
        return cls(stage=stage)
