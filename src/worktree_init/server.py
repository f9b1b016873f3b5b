"""FastMCP server bootstrap for the worktree init runner."""

import json
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Optional

from fastmcp import Context, FastMCP

from . import __version__
from .config import WorktreeInitSettings, get_settings
from .events import INIT_COMPLETED, EventBus
from .metadata import JsonMetadataStore
from .runner import InitScriptRunner
from .storage import ChromaEventLog, ChromaUnavailableError, EventLogWriter
from .tools import register_tools

RECENT_COMPLETIONS = 5


def configure_logging(level: str) -> None:
    """Configure root logging for the worktree init server."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


class CompletionTracker:
    """Event bus subscriber that keeps outcome counts and the latest completions."""

    def __init__(self, recent: int = RECENT_COMPLETIONS) -> None:
        self.total = 0
        self.by_outcome: dict[str, int] = {}
        self.recent: deque[dict[str, Any]] = deque(maxlen=recent)

    def __call__(self, event_type: str, payload: dict[str, Any]) -> None:
        if event_type != INIT_COMPLETED:
            return
        outcome = "success" if payload.get("success") else "failed"
        self.total += 1
        self.by_outcome[outcome] = self.by_outcome.get(outcome, 0) + 1
        self.recent.append(payload)


def create_server(
    settings: Optional[WorktreeInitSettings] = None,
    runner: InitScriptRunner | None = None,
    event_log: ChromaEventLog | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server with the init script tools."""

    settings = settings or get_settings()
    runner = runner or InitScriptRunner(JsonMetadataStore(), flush_timeout=settings.flush_timeout)

    event_bus = EventBus()
    completions = CompletionTracker()
    event_bus.subscribe(completions)

    chroma_metadata: dict[str, Any] = {
        "available": False,
        "path": str(settings.chroma_persist_path),
        "collection": "worktree_init_events",
        "error": None,
    }

    if event_log is None:
        try:
            event_log = ChromaEventLog(settings.chroma_persist_path)
            event_log.ping()
        except ChromaUnavailableError as exc:
            chroma_metadata["error"] = str(exc)
            event_log = None
    event_log_writer = None
    if event_log is not None:
        chroma_metadata["available"] = True
        event_log_writer = EventLogWriter(event_log)
        event_bus.subscribe(event_log_writer)

    resolver = runner.resolver
    shell = resolver.resolve()
    shell_metadata = {
        "available": shell is not None,
        "executable": shell.executable if shell is not None else None,
        "error": None if shell is not None else resolver.missing_shell_message(),
    }

    server = FastMCP(
        name="Worktree Init",
        version=__version__,
        instructions=(
            "Runs a project's .automaker/worktree-init.sh once per worktree branch and records "
            "the outcome. Use the provided tools to edit the script, trigger runs, and inspect "
            "their status and streamed output."
        ),
    )

    handles = register_tools(
        server,
        runner=runner,
        event_bus=event_bus,
        event_log=event_log,
    )

    @server.resource(
        "resource://worktree-init/status",
        name="worktree_init_status",
        description="Provides the current runtime status for the worktree init server.",
        mime_type="application/json",
        tags={"status", "health"},
    )
    def status_resource(context: Context) -> str:
        """Return a JSON string summarizing basic runtime state."""

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "shell": shell_metadata,
            "storage": {"chroma": chroma_metadata},
            "runs": {
                "in_flight": [
                    {"project_path": project_path, "branch": branch}
                    for project_path, branch in sorted(runner.in_flight)
                ],
                "completed": completions.total,
                "by_outcome": dict(completions.by_outcome),
                "recent": list(completions.recent),
            },
            "request_id": getattr(context, "request_id", None),
        }
        return json.dumps(payload)

    setattr(server, "init_runner", runner)
    setattr(server, "event_bus", event_bus)
    setattr(server, "event_log", event_log)
    setattr(server, "event_log_writer", event_log_writer)
    setattr(server, "completion_tracker", completions)
    setattr(server, "chroma_metadata", chroma_metadata)
    setattr(server, "shell_metadata", shell_metadata)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the worktree init MCP server via CLI."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    logging.getLogger(__name__).info(
        "Launching worktree init MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "shell_available": getattr(server, "shell_metadata", {}).get("available"),
            "chroma_available": getattr(server, "chroma_metadata", {}).get("available"),
        },
    )
    try:
        server.run()
    finally:
        writer = getattr(server, "event_log_writer", None)
        if writer is not None:
            writer.close()


if __name__ == "__main__":
    main()
