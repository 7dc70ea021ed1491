"""
Local and remote persistence for pushenv.

This package holds the persisted document models, the device keyring, the
project config file, the remote addressing scheme and the version ledger
stored in an S3-compatible blob store.
"""

from .models import KeyEntry, ProjectConfig, Version, VersionIndex, VersionRecord

__all__ = ["KeyEntry", "ProjectConfig", "Version", "VersionIndex", "VersionRecord"]
