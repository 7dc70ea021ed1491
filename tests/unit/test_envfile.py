from __future__ import annotations

import pytest

from common.envfile import count_env_vars, diff_env, load_into_environ, parse_env
from common.errors import NotFoundError


def test_parse_env_basic_forms():
    content = (
        "# comment\n"
        "\n"
        "A=1\n"
        "export B=two\n"
        'C="quoted value"\n'
        "D='single $NOT_EXPANDED'\n"
        "E=${HOME}/x\n"
        "EMPTY=\n"
    )
    env = parse_env(content)
    assert env == {
        "A": "1",
        "B": "two",
        "C": "quoted value",
        "D": "single $NOT_EXPANDED",
        "E": "${HOME}/x",
        "EMPTY": "",
    }
    assert list(env) == ["A", "B", "C", "D", "E", "EMPTY"]


def test_parse_env_accepts_bytes():
    assert parse_env(b"A=1\nB=2") == {"A": "1", "B": "2"}


def test_count_env_vars_ignores_comments_and_blanks():
    assert count_env_vars("# header\n\nA=1\nB=2\n") == 2


def test_diff_example():
    result = diff_env(parse_env("A=1\nB=2"), parse_env("A=1\nB=3\nC=4"))
    assert result.added == ["C"]
    assert result.removed == []
    assert result.changed == ["B"]
    assert result.unchanged_count == 1
    assert result.has_changes


def test_diff_removed_and_identical():
    result = diff_env({"A": "1", "X": "9"}, {"A": "1"})
    assert result.removed == ["X"]
    assert result.added == [] and result.changed == []

    same = diff_env({"A": "1"}, {"A": "1"})
    assert not same.has_changes
    assert same.unchanged_count == 1


def test_load_into_environ_keeps_existing_values(tmp_path):
    (tmp_path / ".env").write_text("PORT=8080\nAPI_KEY=from-file\n", encoding="utf-8")
    environ = {"API_KEY": "already-set"}

    parsed = load_into_environ(tmp_path / ".env", environ=environ)

    assert parsed == {"PORT": "8080", "API_KEY": "from-file"}
    assert environ == {"PORT": "8080", "API_KEY": "already-set"}


def test_load_into_environ_override(tmp_path):
    (tmp_path / ".env.production").write_text("API_KEY=from-file\n", encoding="utf-8")
    environ = {"API_KEY": "already-set"}

    load_into_environ(tmp_path / ".env.production", override=True, environ=environ)
    assert environ["API_KEY"] == "from-file"


def test_load_into_environ_missing_file(tmp_path):
    with pytest.raises(NotFoundError):
        load_into_environ(tmp_path / "nope.env", environ={})
