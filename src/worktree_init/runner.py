"""Run a project's worktree init script once per branch."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Mapping

from .events import (
    INIT_COMPLETED,
    INIT_OUTPUT,
    INIT_STARTED,
    InitCompletedEvent,
    InitOutputEvent,
    InitStartedEvent,
    Notifier,
    OutputStream,
)
from .metadata import InitScriptStatus, MetadataStore, RunMetadata
from .shell import ShellCommand, ShellResolver, build_script_environment

logger = logging.getLogger(__name__)

INIT_SCRIPT_DIR = ".automaker"
INIT_SCRIPT_FILENAME = "worktree-init.sh"
DEFAULT_FLUSH_TIMEOUT = 5.0
_READ_CHUNK_SIZE = 65536
_STREAM_LIMIT = 2**16


def init_script_path(project_path: str | Path) -> Path:
    """Return the fixed location of a project's init script."""

    return Path(project_path) / INIT_SCRIPT_DIR / INIT_SCRIPT_FILENAME


@dataclass(slots=True, frozen=True)
class ScriptInvocation:
    """Everything a single run needs; discarded once the process is done."""

    project_path: str
    worktree_path: str
    branch: str
    script_path: Path
    notifier: Notifier

    @property
    def key(self) -> tuple[str, str]:
        return (self.project_path, self.branch)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _ExitAwareProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that resolves ``exited`` when the child itself exits.

    ``Process.wait()`` also waits for the pipes to close, which never happens
    while a background grandchild keeps them open.
    """

    def __init__(self, *, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited: asyncio.Future[int | None] = loop.create_future()
        self._exit_transport: asyncio.SubprocessTransport | None = None

    def connection_made(self, transport) -> None:
        self._exit_transport = transport
        super().connection_made(transport)

    def process_exited(self) -> None:
        super().process_exited()
        if not self.exited.done():
            returncode = self._exit_transport.get_returncode() if self._exit_transport else None
            self.exited.set_result(returncode)


class InitScriptRunner:
    """Execute ``.automaker/worktree-init.sh`` for newly created worktrees.

    ``run`` returns as soon as the child process is spawned; the returned task
    streams output and records the terminal outcome. Every failure ends up in
    the metadata record and the completion event, never as an exception.
    """

    def __init__(
        self,
        store: MetadataStore,
        *,
        resolver: ShellResolver | None = None,
        script_exists: Callable[[Path], bool] | None = None,
        clock: Callable[[], datetime] | None = None,
        environ: Mapping[str, str] | None = None,
        flush_timeout: float = DEFAULT_FLUSH_TIMEOUT,
    ) -> None:
        self._store = store
        self._resolver = resolver or ShellResolver()
        self._script_exists = script_exists or (lambda path: path.is_file())
        self._clock = clock or _utc_now
        self._environ = environ
        self._flush_timeout = flush_timeout
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._gate_users: dict[tuple[str, str], int] = {}
        self._in_flight: set[tuple[str, str]] = set()
        self._tasks: set[asyncio.Task[RunMetadata | None]] = set()

    @property
    def store(self) -> MetadataStore:
        return self._store

    @property
    def resolver(self) -> ShellResolver:
        return self._resolver

    @property
    def in_flight(self) -> set[tuple[str, str]]:
        return set(self._in_flight)

    async def has_run(self, project_path: str, branch: str) -> bool:
        metadata = await self._store.read(project_path, branch)
        return metadata is not None and metadata.init_script_ran is True

    async def run(
        self,
        project_path: str,
        worktree_path: str,
        branch: str,
        notifier: Notifier,
    ) -> asyncio.Task[RunMetadata | None] | None:
        """Start the init script for ``branch`` if it exists and never ran.

        Returns the supervision task once the process is spawned, or ``None``
        when nothing was started.
        """

        script_path = init_script_path(project_path)
        if not self._script_exists(script_path):
            logger.debug("No init script found", extra={"script_path": str(script_path)})
            return None

        invocation = ScriptInvocation(
            project_path=project_path,
            worktree_path=worktree_path,
            branch=branch,
            script_path=script_path,
            notifier=notifier,
        )

        async with self._branch_gate(invocation.key):
            if invocation.key in self._in_flight:
                logger.info("Init script already running, skipping", extra={"branch": branch})
                return None

            existing = await self._read_quietly(invocation)
            if existing is not None and existing.init_script_ran is True:
                logger.info("Init script already ran, skipping", extra={"branch": branch})
                return None

            shell = self._resolver.resolve()
            if shell is None:
                await self._fail_preflight(invocation, existing)
                return None

            logger.info(
                "Running init script",
                extra={"branch": branch, "worktree_path": worktree_path, "shell": shell.executable},
            )
            await self._save(invocation, existing, ran=False, status="running")
            self._in_flight.add(invocation.key)

        self._publish(
            invocation,
            INIT_STARTED,
            InitStartedEvent(project_path=project_path, worktree_path=worktree_path, branch=branch),
        )

        try:
            transport, protocol = await self._spawn(invocation, shell)
        except OSError as exc:
            logger.error("Init script error", extra={"branch": branch, "error": str(exc)})
            try:
                await self._finish(invocation, success=False, error=str(exc))
            finally:
                self._in_flight.discard(invocation.key)
            return None

        task = asyncio.create_task(self._supervise(invocation, transport, protocol))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def run_and_wait(
        self,
        project_path: str,
        worktree_path: str,
        branch: str,
        notifier: Notifier,
    ) -> RunMetadata | None:
        """Run the init script and wait for its terminal record."""

        task = await self.run(project_path, worktree_path, branch, notifier)
        if task is not None:
            return await task
        return await self._store.read(project_path, branch)

    @contextlib.asynccontextmanager
    async def _branch_gate(self, key: tuple[str, str]):
        """Hold the per-branch lock; the entry is dropped once no caller waits on it."""

        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._gate_users[key] = self._gate_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._gate_users[key] -= 1
            if not self._gate_users[key]:
                del self._gate_users[key]
                del self._locks[key]

    async def _spawn(
        self, invocation: ScriptInvocation, shell: ShellCommand
    ) -> tuple[asyncio.SubprocessTransport, _ExitAwareProtocol]:
        env = build_script_environment(
            invocation.project_path,
            invocation.worktree_path,
            invocation.branch,
            base=self._environ,
        )
        loop = asyncio.get_running_loop()
        return await loop.subprocess_exec(
            lambda: _ExitAwareProtocol(limit=_STREAM_LIMIT, loop=loop),
            shell.executable,
            *shell.args,
            str(invocation.script_path),
            cwd=invocation.worktree_path,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

    async def _supervise(
        self,
        invocation: ScriptInvocation,
        transport: asyncio.SubprocessTransport,
        protocol: _ExitAwareProtocol,
    ) -> RunMetadata | None:
        readers = [
            asyncio.create_task(self._pump(invocation, protocol.stdout, "stdout")),
            asyncio.create_task(self._pump(invocation, protocol.stderr, "stderr")),
        ]
        try:
            returncode = await protocol.exited
            stream_error = await self._drain(readers)
            if stream_error is not None:
                logger.error(
                    "Init script output error",
                    extra={"branch": invocation.branch, "error": str(stream_error)},
                )
                return await self._finish(invocation, success=False, error=str(stream_error))

            success = returncode == 0
            logger.info(
                "Init script finished",
                extra={
                    "branch": invocation.branch,
                    "status": "success" if success else "failed",
                    "exit_code": returncode,
                },
            )
            return await self._finish(
                invocation,
                success=success,
                exit_code=returncode,
                error=None if success else f"Exit code: {returncode}",
            )
        finally:
            transport.close()
            self._in_flight.discard(invocation.key)

    async def _pump(
        self,
        invocation: ScriptInvocation,
        stream: asyncio.StreamReader | None,
        stream_type: OutputStream,
    ) -> None:
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(_READ_CHUNK_SIZE)
            content = decoder.decode(chunk, final=not chunk)
            if content:
                self._publish(
                    invocation,
                    INIT_OUTPUT,
                    InitOutputEvent(
                        project_path=invocation.project_path,
                        branch=invocation.branch,
                        type=stream_type,
                        content=content,
                    ),
                )
            if not chunk:
                return

    async def _drain(self, readers: list[asyncio.Task[None]]) -> BaseException | None:
        """Let pending output flush, bounded by the flush timeout."""

        done, pending = await asyncio.wait(readers, timeout=self._flush_timeout)
        for reader in pending:
            reader.cancel()
        if pending:
            logger.warning(
                "Init script output still open after exit; dropping the remainder",
                extra={"open_streams": len(pending)},
            )
            await asyncio.gather(*pending, return_exceptions=True)
        for reader in done:
            error = reader.exception()
            if error is not None:
                return error
        return None

    async def _fail_preflight(self, invocation: ScriptInvocation, existing: RunMetadata | None) -> None:
        error = self._resolver.missing_shell_message()
        logger.error(error, extra={"branch": invocation.branch})
        await self._save(invocation, existing, ran=True, status="failed", error=error)
        self._publish(
            invocation,
            INIT_COMPLETED,
            InitCompletedEvent(
                project_path=invocation.project_path,
                worktree_path=invocation.worktree_path,
                branch=invocation.branch,
                success=False,
                error=error,
            ),
        )

    async def _finish(
        self,
        invocation: ScriptInvocation,
        *,
        success: bool,
        exit_code: int | None = None,
        error: str | None = None,
    ) -> RunMetadata | None:
        existing = await self._read_quietly(invocation)
        record = await self._save(
            invocation,
            existing,
            ran=True,
            status="success" if success else "failed",
            error=error,
        )
        self._publish(
            invocation,
            INIT_COMPLETED,
            InitCompletedEvent(
                project_path=invocation.project_path,
                worktree_path=invocation.worktree_path,
                branch=invocation.branch,
                success=success,
                exit_code=exit_code,
                error=error if exit_code is None else None,
            ),
        )
        return record

    async def _read_quietly(self, invocation: ScriptInvocation) -> RunMetadata | None:
        try:
            return await self._store.read(invocation.project_path, invocation.branch)
        except OSError as exc:
            logger.error(
                "Failed to read worktree metadata",
                extra={"branch": invocation.branch, "error": str(exc)},
            )
            return None

    async def _save(
        self,
        invocation: ScriptInvocation,
        existing: RunMetadata | None,
        *,
        ran: bool,
        status: InitScriptStatus,
        error: str | None = None,
    ) -> RunMetadata | None:
        base = existing or RunMetadata(branch=invocation.branch)
        record = base.with_init_state(
            created_at=self._clock().isoformat(),
            ran=ran,
            status=status,
            error=error,
        )
        try:
            await self._store.write(invocation.project_path, invocation.branch, record)
        except OSError as exc:
            logger.error(
                "Failed to write worktree metadata",
                extra={"branch": invocation.branch, "status": status, "error": str(exc)},
            )
            return None
        return record

    @staticmethod
    def _publish(invocation: ScriptInvocation, event_type: str, event) -> None:
        try:
            invocation.notifier.publish(event_type, event.to_payload())
        except Exception:
            logger.exception(
                "Failed to publish init script event",
                extra={"branch": invocation.branch, "event_type": event_type},
            )


__all__ = [
    "INIT_SCRIPT_DIR",
    "INIT_SCRIPT_FILENAME",
    "InitScriptRunner",
    "ScriptInvocation",
    "init_script_path",
]
