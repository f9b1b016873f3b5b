"""Chroma-backed log of init script lifecycle events."""

from __future__ import annotations

import json
import logging
import uuid
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

logger = logging.getLogger(__name__)


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used here."""

    def add(
        self,
        *,
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        ids: Iterable[str],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used here."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


@dataclass(slots=True)
class InitEventRecord:
    """A stored init script event."""

    id: str
    project_path: str
    branch: str
    event_type: str
    payload: dict[str, Any]
    metadata: dict[str, Any]
    timestamp: datetime


def _branch_key(project_path: str, branch: str) -> str:
    return f"{project_path}::{branch}"


class ChromaEventLog:
    """Persist published init events so runs can be inspected after the fact."""

    def __init__(
        self,
        path: Path,
        *,
        collection_name: str = "worktree_init_events",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_name = collection_name
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collection: CollectionProtocol | None = None
        self._counters: dict[str, int] = defaultdict(int)

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install worktree-init with the events extra"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self) -> CollectionProtocol:
        if self._collection is None:
            client = self._client or self._client_factory()
            self._client = client
            self._collection = client.get_or_create_collection(self._collection_name)
        return self._collection

    def _convert_result(self, result: dict[str, list[Any]]) -> list[InitEventRecord]:
        records: list[InitEventRecord] = []
        ids = result.get("ids", [])
        documents = result.get("documents", [])
        metadatas = result.get("metadatas", [])
        for event_id, document, metadata in zip(ids, documents, metadatas):
            timestamp_raw = metadata.get("timestamp")
            timestamp = (
                datetime.fromisoformat(timestamp_raw)
                if isinstance(timestamp_raw, str)
                else self._clock()
            )
            records.append(
                InitEventRecord(
                    id=event_id,
                    project_path=metadata.get("project_path", ""),
                    branch=metadata.get("branch", ""),
                    event_type=metadata.get("event_type", ""),
                    payload=json.loads(document),
                    metadata=metadata,
                    timestamp=timestamp,
                )
            )
        records.sort(key=lambda record: record.metadata.get("sequence", 0))
        return records

    def ping(self) -> bool:
        """Verify that the underlying collection can be obtained."""

        self._ensure_collection()
        return True

    def record_event(self, event_type: str, payload: dict[str, Any]) -> InitEventRecord:
        collection = self._ensure_collection()
        project_path = str(payload.get("projectPath", ""))
        branch = str(payload.get("branch", ""))
        key = _branch_key(project_path, branch)
        counter = self._counters[key] = self._counters[key] + 1
        event_id = f"{key}:{uuid.uuid4().hex}"
        timestamp = self._clock()

        # Chroma metadata values must be scalars; the full payload lives in the document.
        record_metadata: dict[str, Any] = {
            "project_path": project_path,
            "branch": branch,
            "branch_key": key,
            "event_type": event_type,
            "timestamp": timestamp.isoformat(),
            "sequence": counter,
        }
        if "success" in payload:
            record_metadata["success"] = bool(payload["success"])
        if "type" in payload:
            record_metadata["stream"] = str(payload["type"])

        collection.add(
            documents=[json.dumps(payload)],
            metadatas=[record_metadata],
            ids=[event_id],
        )

        return InitEventRecord(
            id=event_id,
            project_path=project_path,
            branch=branch,
            event_type=event_type,
            payload=dict(payload),
            metadata=record_metadata,
            timestamp=timestamp,
        )

    __call__ = record_event

    def fetch_branch_events(
        self, project_path: str, branch: str, *, limit: int | None = None
    ) -> list[InitEventRecord]:
        collection = self._ensure_collection()
        result = collection.get(where={"branch_key": _branch_key(project_path, branch)})
        records = self._convert_result(result)
        return records[:limit] if limit else records

    def search_events(
        self,
        query: str | None = None,
        *,
        filters: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[InitEventRecord]:
        collection = self._ensure_collection()
        result = collection.get(where=filters)
        records = self._convert_result(result)
        if query:
            needle = query.lower()
            records = [
                record
                for record in records
                if needle in json.dumps(record.payload).lower()
                or any(needle in str(value).lower() for value in record.metadata.values())
            ]
        return records[:limit] if limit else records


class EventLogWriter:
    """Event bus subscriber that records events on a single background thread.

    Chroma writes are blocking, so publishing only queues the event. One
    worker keeps events in publish order.
    """

    def __init__(self, event_log: ChromaEventLog) -> None:
        self._event_log = event_log
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="worktree-init-events")

    @property
    def event_log(self) -> ChromaEventLog:
        return self._event_log

    def __call__(self, event_type: str, payload: dict[str, Any]) -> None:
        self._executor.submit(self._record, event_type, dict(payload))

    def _record(self, event_type: str, payload: dict[str, Any]) -> None:
        try:
            self._event_log.record_event(event_type, payload)
        except Exception:
            logger.exception(
                "Failed to record init script event",
                extra={"event_type": event_type, "branch": payload.get("branch")},
            )

    def flush(self, timeout: float | None = None) -> None:
        """Block until every event queued so far has been recorded."""

        self._executor.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


__all__ = ["ChromaEventLog", "ChromaUnavailableError", "EventLogWriter", "InitEventRecord"]
