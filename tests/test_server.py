from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from pathlib import Path

from worktree_init.config import WorktreeInitSettings
from worktree_init.events import INIT_COMPLETED
from worktree_init.metadata import InMemoryMetadataStore
from worktree_init.runner import InitScriptRunner
from worktree_init.server import CompletionTracker, create_server
from worktree_init.shell import PlatformProbe, ShellResolver
from worktree_init.storage import ChromaEventLog, ChromaUnavailableError


class _Collection:
    def __init__(self) -> None:
        self.documents: list[str] = []
        self.metadatas: list[dict] = []

    def add(self, *, documents, metadatas, ids) -> None:  # type: ignore[override]
        self.documents.extend(documents)
        self.metadatas.extend(metadatas)

    def get(self, *, ids=None, where=None, limit=None):  # type: ignore[override]
        return {"ids": [], "documents": [], "metadatas": []}


class _Client:
    def __init__(self) -> None:
        self.collections = defaultdict(_Collection)

    def get_or_create_collection(self, name: str) -> _Collection:
        return self.collections[name]


def _settings(tmp_path: Path) -> WorktreeInitSettings:
    return WorktreeInitSettings(CHROMA_PERSIST_PATH=str(tmp_path / "chroma"))


def test_create_server_wires_event_log(tmp_path: Path) -> None:
    client = _Client()
    event_log = ChromaEventLog(
        tmp_path,
        client_factory=lambda: client,
        clock=lambda: datetime.fromisoformat("2025-01-01T00:00:00+00:00"),
    )
    runner = InitScriptRunner(InMemoryMetadataStore())

    server = create_server(_settings(tmp_path), runner=runner, event_log=event_log)

    assert getattr(server, "init_runner") is runner
    assert getattr(server, "chroma_metadata")["available"] is True
    assert getattr(server, "tool_handles").run_init_script is not None

    getattr(server, "event_bus").publish(
        INIT_COMPLETED,
        {"projectPath": "/repo", "worktreePath": "/wt", "branch": "main", "success": True, "exitCode": 0},
    )
    getattr(server, "event_log_writer").flush(timeout=5)
    collection = client.collections["worktree_init_events"]
    assert collection.metadatas[0]["event_type"] == INIT_COMPLETED


def test_create_server_without_chroma(tmp_path: Path, monkeypatch) -> None:
    def _unavailable(self):
        raise ChromaUnavailableError("chromadb package is not installed")

    monkeypatch.setattr(ChromaEventLog, "_default_client_factory", _unavailable)

    server = create_server(_settings(tmp_path), runner=InitScriptRunner(InMemoryMetadataStore()))

    metadata = getattr(server, "chroma_metadata")
    assert metadata["available"] is False
    assert "not installed" in metadata["error"]
    assert getattr(server, "event_log") is None


def test_shell_status_comes_from_the_runner_resolver(tmp_path: Path) -> None:
    resolver = ShellResolver(PlatformProbe(platform="linux", exists=lambda _path: False, environ={}))
    runner = InitScriptRunner(InMemoryMetadataStore(), resolver=resolver)
    event_log = ChromaEventLog(tmp_path, client_factory=_Client)

    server = create_server(_settings(tmp_path), runner=runner, event_log=event_log)

    shell = getattr(server, "shell_metadata")
    assert shell["available"] is False
    assert shell["executable"] is None
    assert shell["error"] == resolver.missing_shell_message()


def test_completion_tracker_keeps_counts_and_a_bounded_history() -> None:
    tracker = CompletionTracker(recent=5)

    for index in range(12):
        tracker(INIT_COMPLETED, {"branch": f"b{index}", "success": index % 3 != 0})
    tracker("worktree:init-output", {"branch": "b0", "type": "stdout", "content": "x"})

    assert tracker.total == 12
    assert tracker.by_outcome == {"failed": 4, "success": 8}
    assert [payload["branch"] for payload in tracker.recent] == ["b7", "b8", "b9", "b10", "b11"]
