from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from common.errors import ConfigError, FormatError, NotFoundError

from .models import ProjectConfig


PROJECT_DIR_NAME = ".pushenv"
PROJECT_FILE_NAME = "config.json"


class ProjectStore:
    """Reads and writes `.pushenv/config.json` under a project root.

    This file is meant to be committed: it carries the project id and the
    stage -> local path mapping, never key material.
    """

    def __init__(self, root: Optional[os.PathLike[str] | str] = None) -> None:
        self._root = Path(root) if root else Path.cwd()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def config_dir(self) -> Path:
        return self._root / PROJECT_DIR_NAME

    @property
    def config_path(self) -> Path:
        return self.config_dir / PROJECT_FILE_NAME

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> ProjectConfig:
        if not self.exists():
            raise ConfigError(
                f"Project not initialized: {self.config_path} not found. Run 'pushenv init' first."
            )
        try:
            raw = json.loads(self.config_path.read_text(encoding="utf-8"))
            return ProjectConfig.model_validate(raw)
        except (ValueError, ValidationError) as ex:
            raise FormatError(f"Invalid project config at {self.config_path}: {ex}") from ex

    def save(self, config: ProjectConfig) -> Path:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        doc = config.model_dump(by_alias=True, exclude_none=True)
        self.config_path.write_text(json.dumps(doc, indent=2) + "\n", encoding="utf-8")
        return self.config_path

    def resolve_env_path(self, config: ProjectConfig, stage: str) -> Path:
        rel = config.env_path_for(stage)
        if rel is None:
            configured = ", ".join(config.stage_names()) or "none"
            raise NotFoundError(
                f"Stage '{stage}' is not configured (configured: {configured}). "
                f"Run 'pushenv add-stage' to add it."
            )
        return (self._root / rel).resolve()

    def relative(self, path: os.PathLike[str] | str) -> str:
        resolved = (self._root / Path(path)).resolve()
        try:
            return str(resolved.relative_to(self._root.resolve()))
        except ValueError:
            return str(resolved)


__all__ = ["ProjectStore", "PROJECT_DIR_NAME", "PROJECT_FILE_NAME"]
