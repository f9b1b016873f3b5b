"""Metadata store contract and implementations."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .models import RunMetadata

logger = logging.getLogger(__name__)

AUTOMAKER_DIR = ".automaker"
WORKTREES_DIR = "worktrees"
METADATA_FILENAME = "worktree.json"
MAX_SANITIZED_BRANCH_LENGTH = 200

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|]')
_WHITESPACE = re.compile(r"\s+")
_TRAILING_DOTS = re.compile(r"\.+$")
_DASH_RUNS = re.compile(r"-+")
_WINDOWS_RESERVED = re.compile(r"^(CON|PRN|AUX|NUL|COM[1-9]|LPT[1-9])$", re.IGNORECASE)


class MetadataStore(Protocol):
    """Key-value store of :class:`RunMetadata` keyed by (project path, branch)."""

    async def read(self, project_path: str, branch: str) -> RunMetadata | None:
        ...

    async def write(self, project_path: str, branch: str, metadata: RunMetadata) -> None:
        ...


def sanitize_branch_name(branch: str) -> str:
    """Map a branch name onto a single, portable directory name."""

    safe = _UNSAFE_CHARS.sub("-", branch)
    safe = _WHITESPACE.sub("_", safe)
    safe = _TRAILING_DOTS.sub("", safe)
    safe = _DASH_RUNS.sub("-", safe)
    safe = safe.strip("-")
    safe = safe[:MAX_SANITIZED_BRANCH_LENGTH]
    if not safe or _WINDOWS_RESERVED.match(safe):
        safe = f"_{safe}"
    return safe


class JsonMetadataStore:
    """Stores one pretty-printed JSON document per worktree inside the project."""

    def metadata_path(self, project_path: str, branch: str) -> Path:
        return (
            Path(project_path)
            / AUTOMAKER_DIR
            / WORKTREES_DIR
            / sanitize_branch_name(branch)
            / METADATA_FILENAME
        )

    async def read(self, project_path: str, branch: str) -> RunMetadata | None:
        return await asyncio.to_thread(
            self._read_sync, self.metadata_path(project_path, branch), branch
        )

    async def write(self, project_path: str, branch: str, metadata: RunMetadata) -> None:
        await asyncio.to_thread(
            self._write_sync, self.metadata_path(project_path, branch), metadata
        )

    @staticmethod
    def _read_sync(path: Path, branch: str) -> RunMetadata | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Unable to read worktree metadata", extra={"path": str(path), "error": str(exc)})
            return None

        try:
            document = json.loads(raw)
            if isinstance(document, dict):
                document.setdefault("branch", branch)
            return RunMetadata.model_validate(document)
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring malformed worktree metadata", extra={"path": str(path), "error": str(exc)})
            return None

    @staticmethod
    def _write_sync(path: Path, metadata: RunMetadata) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(metadata.to_document(), indent=2), encoding="utf-8")


class InMemoryMetadataStore:
    """Dict-backed store that records every write; handy for tests and embedding."""

    def __init__(self, records: dict[tuple[str, str], RunMetadata] | None = None) -> None:
        self._records: dict[tuple[str, str], RunMetadata] = dict(records or {})
        self._writes: list[tuple[str, str, RunMetadata]] = []

    async def read(self, project_path: str, branch: str) -> RunMetadata | None:
        record = self._records.get((project_path, branch))
        return record.model_copy(deep=True) if record is not None else None

    async def write(self, project_path: str, branch: str, metadata: RunMetadata) -> None:
        stored = metadata.model_copy(deep=True)
        self._records[(project_path, branch)] = stored
        self._writes.append((project_path, branch, stored))

    @property
    def writes(self) -> list[tuple[str, str, RunMetadata]]:
        return list(self._writes)

    def get(self, project_path: str, branch: str) -> RunMetadata | None:
        return self._records.get((project_path, branch))


__all__ = [
    "InMemoryMetadataStore",
    "JsonMetadataStore",
    "MetadataStore",
    "sanitize_branch_name",
]
