"""Locate a Bash-compatible interpreter for running init scripts."""

from __future__ import annotations

import ntpath
import os
import sys
from dataclasses import dataclass, field
from typing import Callable, Mapping

WINDOWS_PLATFORM = "win32"

POSIX_SHELLS = ("/bin/bash", "/bin/sh")

MISSING_GIT_BASH_MESSAGE = "Git Bash not found. Please install Git for Windows to run init scripts."
MISSING_POSIX_SHELL_MESSAGE = "No shell found (/bin/bash or /bin/sh)"


@dataclass(slots=True, frozen=True)
class ShellCommand:
    """Interpreter plus the arguments that precede the script path."""

    executable: str
    args: tuple[str, ...] = ()


@dataclass(slots=True)
class PlatformProbe:
    """Platform facts and filesystem checks consulted while resolving a shell."""

    platform: str = field(default_factory=lambda: sys.platform)
    exists: Callable[[str], bool] = os.path.exists
    environ: Mapping[str, str] = field(default_factory=lambda: os.environ)

    @property
    def is_windows(self) -> bool:
        return self.platform == WINDOWS_PLATFORM


def git_bash_candidates(environ: Mapping[str, str]) -> list[str]:
    """Return Git Bash install locations in lookup order."""

    return [
        "C:\\Program Files\\Git\\bin\\bash.exe",
        "C:\\Program Files (x86)\\Git\\bin\\bash.exe",
        ntpath.join(environ.get("LOCALAPPDATA", ""), "Programs", "Git", "bin", "bash.exe"),
        ntpath.join(
            environ.get("USERPROFILE", ""), "scoop", "apps", "git", "current", "bin", "bash.exe"
        ),
    ]


class ShellResolver:
    """Pick the shell used to execute init scripts on the current platform."""

    def __init__(self, probe: PlatformProbe | None = None) -> None:
        self._probe = probe or PlatformProbe()

    @property
    def probe(self) -> PlatformProbe:
        return self._probe

    def candidates(self) -> list[str]:
        if self._probe.is_windows:
            return git_bash_candidates(self._probe.environ)
        return list(POSIX_SHELLS)

    def resolve(self) -> ShellCommand | None:
        """Return the first usable shell, or ``None`` when nothing is installed.

        Windows only accepts Git Bash because ``cmd.exe`` cannot run POSIX
        scripts; elsewhere ``/bin/bash`` is preferred over ``/bin/sh``.
        """

        for candidate in self.candidates():
            if self._probe.exists(candidate):
                return ShellCommand(executable=candidate)
        return None

    def missing_shell_message(self) -> str:
        if self._probe.is_windows:
            return MISSING_GIT_BASH_MESSAGE
        return MISSING_POSIX_SHELL_MESSAGE


__all__ = [
    "MISSING_GIT_BASH_MESSAGE",
    "MISSING_POSIX_SHELL_MESSAGE",
    "PlatformProbe",
    "ShellCommand",
    "ShellResolver",
    "git_bash_candidates",
]
