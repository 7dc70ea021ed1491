import os
import sys

import pytest


def pytest_configure():
    # Ensure `src/` is importable as top-level for `common.*` / `state.*` imports
    root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    src_path = os.path.join(root, "src")
    if src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture
def pushenv_home(tmp_path, monkeypatch):
    # Keep keyring writes away from the real home directory
    home = tmp_path / "home"
    monkeypatch.setenv("PUSHENV_HOME", str(home))
    return home


@pytest.fixture
def memory_store():
    from state.blob_store import MemoryBlobStore

    return MemoryBlobStore()
