"""
Blob store contract used by the addressing scheme and the version ledger.

The store is a flat key -> bytes namespace. `get` returns None for a
missing object instead of raising, so callers can walk candidate keys
without exception-driven control flow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional


class BlobStore(ABC):
    """Abstract remote object store."""

    @abstractmethod
    def put(self, key: str, data: bytes) -> None:
        """Write `data` under `key`, replacing any existing object."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the object bytes, or None if no object exists at `key`."""

    @abstractmethod
    def head(self, key: str) -> bool:
        """Return True if an object exists at `key`."""


class MemoryBlobStore(BlobStore):
    """Dict-backed store for tests and dry runs."""

    def __init__(self, objects: Optional[Dict[str, bytes]] = None) -> None:
        self.objects: Dict[str, bytes] = dict(objects or {})
        self.puts: List[str] = []

    def put(self, key: str, data: bytes) -> None:
        self.objects[key] = bytes(data)
        self.puts.append(key)

    def get(self, key: str) -> Optional[bytes]:
        return self.objects.get(key)

    def head(self, key: str) -> bool:
        return key in self.objects


__all__ = ["BlobStore", "MemoryBlobStore"]
