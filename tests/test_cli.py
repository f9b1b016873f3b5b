from __future__ import annotations

import argparse
import asyncio
import importlib.util
import json
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

from worktree_init.metadata import JsonMetadataStore, RunMetadata
from worktree_init.scripts import write_init_script


def _load_module():
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "worktree_init_diag.py"
    spec = importlib.util.spec_from_file_location("worktree_init_diag_test_module", module_path)
    assert spec and spec.loader
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_status_prints_recorded_metadata(tmp_path: Path, capsys) -> None:
    diag = _load_module()
    record = RunMetadata(branch="feature-x", init_script_ran=True, init_script_status="success")
    asyncio.run(JsonMetadataStore().write(str(tmp_path), "feature-x", record))

    diag.cmd_status(argparse.Namespace(project=str(tmp_path), branch="feature-x"))

    payload = json.loads(capsys.readouterr().out)
    assert payload["metadata"] == {"branch": "feature-x", "initScriptRan": True, "initScriptStatus": "success"}
    assert payload["metadata_path"].endswith("worktree.json")


def test_status_without_record(tmp_path: Path, capsys) -> None:
    diag = _load_module()

    diag.cmd_status(argparse.Namespace(project=str(tmp_path), branch="missing"))

    assert json.loads(capsys.readouterr().out)["metadata"] is None


def test_script_reports_location(tmp_path: Path, capsys) -> None:
    diag = _load_module()
    write_init_script(str(tmp_path), "npm ci\ncp ../.env .env\n")

    diag.cmd_script(argparse.Namespace(project=str(tmp_path)))

    payload = json.loads(capsys.readouterr().out)
    assert payload["exists"] is True
    assert payload["lines"] == 2


def _stub_records():
    timestamp = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return [
        SimpleNamespace(
            event_type="worktree:init-output",
            timestamp=timestamp,
            payload={"type": "stdout", "content": "installing\n"},
        ),
        SimpleNamespace(
            event_type="worktree:init-completed",
            timestamp=timestamp,
            payload={"success": True, "exitCode": 0},
        ),
    ]


def test_events_prints_json(monkeypatch, capsys) -> None:
    diag = _load_module()

    class StubLog:
        def fetch_branch_events(self, project_path, branch):
            assert (project_path, branch) == ("/repo", "main")
            return _stub_records()

    monkeypatch.setattr(diag, "load_event_log", lambda _settings: StubLog())

    diag.cmd_events(argparse.Namespace(project="/repo", branch="main", limit=1, output_only=False))

    data = json.loads(capsys.readouterr().out)
    assert len(data) == 1
    assert data[0]["event_type"] == "worktree:init-completed"


def test_events_output_only(monkeypatch, capsys) -> None:
    diag = _load_module()

    class StubLog:
        def fetch_branch_events(self, project_path, branch):
            return _stub_records()

    monkeypatch.setattr(diag, "load_event_log", lambda _settings: StubLog())

    diag.cmd_events(argparse.Namespace(project="/repo", branch="main", limit=None, output_only=True))

    assert capsys.readouterr().out == "installing\n"


def test_parser_requires_command() -> None:
    diag = _load_module()
    parser = diag.build_parser()
    args = parser.parse_args(["status", "--project", "/repo", "--branch", "main"])
    assert args.func is diag.cmd_status
