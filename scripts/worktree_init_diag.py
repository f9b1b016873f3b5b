"""Worktree init diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json

from worktree_init.config import WorktreeInitSettings
from worktree_init.metadata import JsonMetadataStore
from worktree_init.scripts import read_init_script
from worktree_init.shell import ShellResolver
from worktree_init.storage import ChromaEventLog, ChromaUnavailableError


def load_event_log(settings: WorktreeInitSettings) -> ChromaEventLog:
    try:
        event_log = ChromaEventLog(settings.chroma_persist_path)
        event_log.ping()
        return event_log
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)


def cmd_status(args: argparse.Namespace) -> None:
    store = JsonMetadataStore()
    metadata = asyncio.run(store.read(args.project, args.branch))
    payload = {
        "metadata_path": str(store.metadata_path(args.project, args.branch)),
        "metadata": metadata.to_document() if metadata is not None else None,
    }
    print(json.dumps(payload, indent=2))


def cmd_events(args: argparse.Namespace) -> None:
    settings = WorktreeInitSettings()
    event_log = load_event_log(settings)
    try:
        records = event_log.fetch_branch_events(args.project, args.branch)
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)

    if args.limit is not None and args.limit > 0:
        records = records[-args.limit :]

    if args.output_only:
        for record in records:
            if "content" in record.payload:
                print(record.payload["content"], end="")
        return

    print(
        json.dumps(
            [
                {
                    "event_type": record.event_type,
                    "timestamp": record.timestamp.isoformat(),
                    "payload": record.payload,
                }
                for record in records
            ],
            indent=2,
        )
    )


def cmd_script(args: argparse.Namespace) -> None:
    script = read_init_script(args.project)
    shell = ShellResolver().resolve()
    payload = {
        "path": script.path,
        "exists": script.exists,
        "lines": len(script.content.splitlines()),
        "shell": shell.executable if shell is not None else None,
    }
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worktree init diagnostics")
    sub = parser.add_subparsers(dest="command", required=True)

    status_parser = sub.add_parser("status", help="Show recorded init script metadata for a branch")
    status_parser.add_argument("--project", required=True, help="Project root path")
    status_parser.add_argument("--branch", required=True, help="Worktree branch name")
    status_parser.set_defaults(func=cmd_status)

    events_parser = sub.add_parser("events", help="List persisted init events for a branch")
    events_parser.add_argument("--project", required=True, help="Project root path")
    events_parser.add_argument("--branch", required=True, help="Worktree branch name")
    events_parser.add_argument("--limit", type=int, default=None, help="Only show the latest N events")
    events_parser.add_argument(
        "--output-only",
        action="store_true",
        help="Print the captured script output instead of JSON",
    )
    events_parser.set_defaults(func=cmd_events)

    script_parser = sub.add_parser("script", help="Show the init script location and resolved shell")
    script_parser.add_argument("--project", required=True, help="Project root path")
    script_parser.set_defaults(func=cmd_script)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
