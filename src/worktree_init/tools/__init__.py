"""Tool registration for the worktree init MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from ..events import EventBus
from ..runner import InitScriptRunner
from ..scripts import delete_init_script, read_init_script, write_init_script
from ..storage import ChromaEventLog

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    get_init_script: Any
    put_init_script: Any
    delete_init_script: Any
    run_init_script: Any
    init_script_status: Any
    init_script_events: Any


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Best-effort logging that prefers the MCP context logger when available."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


def register_tools(
    server: FastMCP,
    *,
    runner: InitScriptRunner,
    event_bus: EventBus,
    event_log: ChromaEventLog | None,
) -> ToolHandles:
    """Register the init script tools on the server."""

    def _get_init_script(project_path: str, context: Context | None = None) -> dict[str, Any]:
        """Return the init script content for a project."""

        script = read_init_script(project_path)
        _emit_log(
            context,
            "debug",
            "Read init script",
            extra={"script_path": script.path, "exists": script.exists},
        )
        return script.model_dump()

    def _put_init_script(
        project_path: str,
        content: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Write the init script content for a project."""

        script_path = write_init_script(project_path, content)
        _emit_log(context, "info", "Saved init script", extra={"script_path": str(script_path)})
        return {"path": str(script_path)}

    def _delete_init_script(project_path: str, context: Context | None = None) -> dict[str, Any]:
        """Delete the init script for a project."""

        deleted = delete_init_script(project_path)
        _emit_log(context, "info", "Deleted init script", extra={"deleted": deleted})
        return {"deleted": deleted}

    async def _run_init_script(
        project_path: str,
        worktree_path: str,
        branch: str,
        wait: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Run the init script for a freshly created worktree."""

        if not project_path or not worktree_path or not branch:
            raise ValueError("project_path, worktree_path and branch are required")

        task = await runner.run(project_path, worktree_path, branch, event_bus)
        started = task is not None
        if started and wait:
            await task
        metadata = await runner.store.read(project_path, branch)

        _emit_log(
            context,
            "info",
            "Init script requested",
            extra={"branch": branch, "started": started, "wait": wait},
        )
        return {
            "branch": branch,
            "started": started,
            "metadata": metadata.to_document() if metadata is not None else None,
        }

    async def _init_script_status(
        project_path: str,
        branch: str,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Return the recorded init script state for a branch."""

        metadata = await runner.store.read(project_path, branch)
        running = (project_path, branch) in runner.in_flight
        _emit_log(context, "debug", "Init script status", extra={"branch": branch, "running": running})
        if metadata is None:
            return {"branch": branch, "status": None, "ran": False, "error": None, "in_flight": running}
        return {
            "branch": branch,
            "status": metadata.init_script_status,
            "ran": metadata.init_script_ran is True,
            "error": metadata.init_script_error,
            "in_flight": running,
        }

    def _init_script_events(
        project_path: str,
        branch: str,
        limit: int | None = None,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """List persisted lifecycle events for a branch."""

        if event_log is None:
            raise RuntimeError("Event log is unavailable; enable Chroma persistence to use this tool")

        records = event_log.fetch_branch_events(project_path, branch)
        if limit is not None and limit > 0:
            records = records[-limit:]
        _emit_log(context, "debug", "Listed init events", extra={"branch": branch, "count": len(records)})
        return [
            {
                "event_id": record.id,
                "event_type": record.event_type,
                "timestamp": record.timestamp.isoformat(),
                "payload": record.payload,
            }
            for record in records
        ]

    tool_get = server.tool(
        name="get_init_script",
        description="Read .automaker/worktree-init.sh for a project (empty content when absent).",
    )(_get_init_script)

    tool_put = server.tool(
        name="put_init_script",
        description="Create or replace .automaker/worktree-init.sh for a project.",
    )(_put_init_script)

    tool_delete = server.tool(
        name="delete_init_script",
        description="Delete .automaker/worktree-init.sh for a project; missing scripts are not an error.",
    )(_delete_init_script)

    tool_run = server.tool(
        name="run_init_script",
        description=(
            "Run the project's worktree init script for a branch. The script runs at most once "
            "per branch; set wait=true to block until it finishes."
        ),
    )(_run_init_script)

    tool_status = server.tool(
        name="init_script_status",
        description="Return the recorded init script status for a worktree branch.",
    )(_init_script_status)

    tool_events = server.tool(
        name="init_script_events",
        description="List persisted init script events (started, output, completed) for a branch.",
    )(_init_script_events)

    return ToolHandles(
        get_init_script=tool_get,
        put_init_script=tool_put,
        delete_init_script=tool_delete,
        run_init_script=tool_run,
        init_script_status=tool_status,
        init_script_events=tool_events,
    )


__all__ = ["register_tools", "ToolHandles"]
