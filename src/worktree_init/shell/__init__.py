"""Shell resolution and process environment for init scripts."""

from .environment import build_script_environment, sanitize_environment
from .resolver import PlatformProbe, ShellCommand, ShellResolver

__all__ = [
    "PlatformProbe",
    "ShellCommand",
    "ShellResolver",
    "build_script_environment",
    "sanitize_environment",
]
