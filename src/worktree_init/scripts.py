"""Read, write, and delete a project's worktree init script."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field

from .runner import init_script_path

logger = logging.getLogger(__name__)


class InitScriptFileError(RuntimeError):
    """Raised when the init script file cannot be read, written, or removed."""


class InitScriptFile(BaseModel):
    """Current content of a project's init script."""

    path: str = Field(..., description="Absolute location of the init script.")
    exists: bool = Field(..., description="Whether the script file is present.")
    content: str = Field(default="", description="Script body; empty when the file is absent.")


def _require_project(project_path: str) -> Path:
    if not project_path:
        raise ValueError("projectPath is required")
    return init_script_path(project_path)


def read_init_script(project_path: str) -> InitScriptFile:
    script_path = _require_project(project_path)
    try:
        content = script_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return InitScriptFile(path=str(script_path), exists=False)
    except OSError as exc:
        raise InitScriptFileError(f"Failed to read init script at {script_path}: {exc}") from exc
    return InitScriptFile(path=str(script_path), exists=True, content=content)


def write_init_script(project_path: str, content: str) -> Path:
    """Write ``content`` to the init script, creating ``.automaker/`` if needed."""

    script_path = _require_project(project_path)
    if not isinstance(content, str):
        raise ValueError("content must be a string")
    try:
        script_path.parent.mkdir(parents=True, exist_ok=True)
        script_path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise InitScriptFileError(f"Failed to write init script at {script_path}: {exc}") from exc
    logger.info("Wrote init script", extra={"script_path": str(script_path)})
    return script_path


def delete_init_script(project_path: str) -> bool:
    """Remove the init script. A missing file is not an error."""

    script_path = _require_project(project_path)
    try:
        script_path.unlink()
    except FileNotFoundError:
        return False
    except OSError as exc:
        raise InitScriptFileError(f"Failed to delete init script at {script_path}: {exc}") from exc
    logger.info("Deleted init script", extra={"script_path": str(script_path)})
    return True


__all__ = [
    "InitScriptFile",
    "InitScriptFileError",
    "delete_init_script",
    "read_init_script",
    "write_init_script",
]
