"""Environment helpers for init script processes."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

PROJECT_PATH_VAR = "AUTOMAKER_PROJECT_PATH"
WORKTREE_PATH_VAR = "AUTOMAKER_WORKTREE_PATH"
BRANCH_VAR = "AUTOMAKER_BRANCH"

# Scripts run without a TTY; keep tool output colorized and git non-interactive.
_TERMINAL_OVERRIDES = {
    "FORCE_COLOR": "1",
    "npm_config_color": "always",
    "CLICOLOR_FORCE": "1",
    "GIT_TERMINAL_PROMPT": "0",
}


def sanitize_environment(
    additional: Mapping[str, str] | None = None,
    *,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ if base is None else base)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def build_script_environment(
    project_path: str,
    worktree_path: str,
    branch: str,
    *,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Return the environment an init script is launched with."""

    return sanitize_environment(
        {
            PROJECT_PATH_VAR: project_path,
            WORKTREE_PATH_VAR: worktree_path,
            BRANCH_VAR: branch,
            **_TERMINAL_OVERRIDES,
        },
        base=base,
    )


__all__ = [
    "BRANCH_VAR",
    "PROJECT_PATH_VAR",
    "WORKTREE_PATH_VAR",
    "build_script_environment",
    "sanitize_environment",
]
