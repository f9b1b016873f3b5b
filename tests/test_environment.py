from __future__ import annotations

import pytest

from worktree_init.shell import build_script_environment, sanitize_environment


def test_script_environment_layers_over_base() -> None:
    env = build_script_environment(
        "/repo",
        "/repo/.worktrees/feature-x",
        "feature-x",
        base={"PATH": "/usr/bin", "HOME": "/home/dev"},
    )

    assert env["PATH"] == "/usr/bin"
    assert env["HOME"] == "/home/dev"
    assert env["AUTOMAKER_PROJECT_PATH"] == "/repo"
    assert env["AUTOMAKER_WORKTREE_PATH"] == "/repo/.worktrees/feature-x"
    assert env["AUTOMAKER_BRANCH"] == "feature-x"
    assert env["FORCE_COLOR"] == "1"
    assert env["npm_config_color"] == "always"
    assert env["CLICOLOR_FORCE"] == "1"
    assert env["GIT_TERMINAL_PROMPT"] == "0"


def test_script_environment_overrides_inherited_values() -> None:
    env = build_script_environment(
        "/repo", "/wt", "main", base={"GIT_TERMINAL_PROMPT": "1", "FORCE_COLOR": "0"}
    )
    assert env["GIT_TERMINAL_PROMPT"] == "0"
    assert env["FORCE_COLOR"] == "1"


def test_script_environment_drops_interpreter_variables() -> None:
    env = build_script_environment(
        "/repo", "/wt", "main", base={"VIRTUAL_ENV": "/venv", "PYTHONPATH": "/src", "LANG": "C"}
    )
    assert "VIRTUAL_ENV" not in env
    assert "PYTHONPATH" not in env
    assert env["LANG"] == "C"


def test_sanitize_environment_reads_process_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONHOME", "/opt/python")
    monkeypatch.setenv("WORKTREE_INIT_MARKER", "1")
    env = sanitize_environment()
    assert "PYTHONHOME" not in env
    assert env["WORKTREE_INIT_MARKER"] == "1"
