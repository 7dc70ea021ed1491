from __future__ import annotations

import pytest
from click.testing import CliRunner

import cli
from cli import _common
from state.blob_store import MemoryBlobStore


PASSPHRASE = "correct horse battery"


@pytest.fixture
def project(tmp_path, monkeypatch, pushenv_home):
    root = tmp_path / "repo"
    root.mkdir()
    monkeypatch.chdir(root)

    store = MemoryBlobStore()
    monkeypatch.setattr(_common, "build_store", lambda: store)
    monkeypatch.setattr(_common, "prompt_passphrase", lambda message: PASSPHRASE)
    return root


def _invoke(*args, input=None):
    return CliRunner().invoke(cli.main, list(args), input=input)


def _init():
    res = _invoke("init", "--env-path", ".env", input=f"{PASSPHRASE}\n{PASSPHRASE}\n")
    assert res.exit_code == 0, res.output
    return res


def test_version_flag():
    res = _invoke("--version")
    assert res.exit_code == 0
    assert cli.__version__ in res.output


def test_init_writes_config_and_env(project, pushenv_home):
    res = _init()
    assert "Project ID" in res.output
    assert (project / ".pushenv" / "config.json").exists()
    assert (project / ".env").read_text(encoding="utf-8") == "# Environment variables\n"
    assert (pushenv_home / "keys.json").exists()


def test_init_rejects_short_passphrase(project):
    res = _invoke("init", "--env-path", ".env", input="short\nshort\n")
    assert res.exit_code == 1
    assert "at least 8 characters" in res.output
    assert not (project / ".pushenv").exists()


def test_command_before_init_fails_cleanly(project):
    res = _invoke("push")
    assert res.exit_code == 1
    assert "Project not initialized" in res.output


def test_push_history_pull_and_diff(project):
    _init()
    (project / ".env").write_text("API_KEY=abc\nDB=postgres\n", encoding="utf-8")

    res = _invoke("push", "-m", "first secrets")
    assert res.exit_code == 0, res.output
    assert "version 1" in res.output

    res = _invoke("push")
    assert "No changes since version 1" in res.output

    res = _invoke("history")
    assert res.exit_code == 0, res.output
    assert "first secrets" in res.output

    (project / ".env").write_text("API_KEY=changed\nNEW=1\n", encoding="utf-8")
    res = _invoke("diff")
    assert res.exit_code == 0, res.output
    assert "+ DB" in res.output
    assert "- NEW" in res.output
    assert "~ API_KEY" in res.output

    res = _invoke("pull", "--yes")
    assert res.exit_code == 0, res.output
    assert "Saved 2 environment variables" in res.output
    assert (project / ".env").read_text(encoding="utf-8") == "API_KEY=abc\nDB=postgres\n"


def test_pull_declined_keeps_local_file(project):
    _init()
    (project / ".env").write_text("A=1\n", encoding="utf-8")
    _invoke("push")
    (project / ".env").write_text("A=local\n", encoding="utf-8")

    res = _invoke("pull", input="n\n")
    assert "Pull cancelled" in res.output
    assert (project / ".env").read_text(encoding="utf-8") == "A=local\n"


def test_add_stage_and_rollback(project):
    _init()
    res = _invoke("add-stage", "production")
    assert res.exit_code == 0, res.output
    assert (project / ".env.production").exists()

    for value in ("1", "2"):
        (project / ".env.production").write_text(f"A={value}\n", encoding="utf-8")
        assert _invoke("push", "--stage", "production").exit_code == 0

    res = _invoke("rollback", "--stage", "production", "1", "--yes")
    assert res.exit_code == 0, res.output
    assert "Recorded version 3" in res.output

    res = _invoke("list-stages")
    assert res.exit_code == 0, res.output
    assert "production" in res.output


def test_unknown_stage_is_rejected_by_cli(project):
    _init()
    res = _invoke("push", "--stage", "qa")
    assert res.exit_code == 2


def test_run_dry_run_lists_variables(project):
    _init()
    (project / ".env").write_text("API_KEY=abc\n", encoding="utf-8")
    _invoke("push")

    res = _invoke("run", "--dry-run", "npm", "start")
    assert res.exit_code == 0, res.output
    assert "Loaded 1 environment variables" in res.output
    assert "API_KEY" in res.output
    assert "npm start" in res.output
