from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, MutableMapping, Optional, Union

from dotenv import dotenv_values

from .errors import NotFoundError


logger = logging.getLogger("pushenv.common.envfile")


def parse_env(content: Union[str, bytes]) -> Dict[str, str]:
    """Parse `.env` text into an ordered ``{KEY: value}`` dict.

    Variable interpolation is disabled: secrets containing ``$`` must come
    back exactly as written. Keys declared without a value map to "".
    """
    text = content.decode("utf-8") if isinstance(content, bytes) else content
    values = dotenv_values(stream=io.StringIO(text), interpolate=False)
    return {k: (v if v is not None else "") for k, v in values.items()}


def count_env_vars(content: Union[str, bytes]) -> int:
    return len(parse_env(content))


def load_into_environ(
    path: Union[str, os.PathLike[str]] = ".env",
    *,
    override: bool = False,
    environ: Optional[MutableMapping[str, str]] = None,
) -> Dict[str, str]:
    """Load a local `.env` file into the process environment.

    Variables already set are left alone unless `override` is true. Returns
    the parsed file. Raises NotFoundError when the file does not exist.
    """
    target = Path(path).resolve()
    if not target.is_file():
        raise NotFoundError(f"No .env file at {target}")
    parsed = parse_env(target.read_bytes())
    env = os.environ if environ is None else environ
    for key, value in parsed.items():
        if override or key not in env:
            env[key] = value
    logger.debug("Loaded %d variables from %s", len(parsed), target)
    return parsed


@dataclass
class EnvDiff:
    """
    Key-level comparison of a local file against a remote version.

    - added: keys present only remotely (a pull would add them locally)
    - removed: keys present only locally
    - changed: keys present in both with different values
    """

    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    unchanged_count: int = 0

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)


def diff_env(local: Mapping[str, str], remote: Mapping[str, str]) -> EnvDiff:
    out = EnvDiff()
    for key in sorted(remote):
        if key not in local:
            out.added.append(key)
        elif local[key] != remote[key]:
            out.changed.append(key)
        else:
            out.unchanged_count += 1
    out.removed = sorted(k for k in local if k not in remote)
    return out


__all__ = ["EnvDiff", "count_env_vars", "diff_env", "load_into_environ", "parse_env"]
