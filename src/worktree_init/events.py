"""Lifecycle events published while an init script runs."""

from __future__ import annotations

import logging
from typing import Any, Callable, Literal, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

INIT_STARTED = "worktree:init-started"
INIT_OUTPUT = "worktree:init-output"
INIT_COMPLETED = "worktree:init-completed"

OutputStream = Literal["stdout", "stderr"]
Subscriber = Callable[[str, dict[str, Any]], None]


class _EventPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class InitStartedEvent(_EventPayload):
    project_path: str
    worktree_path: str
    branch: str


class InitOutputEvent(_EventPayload):
    project_path: str
    branch: str
    type: OutputStream
    content: str


class InitCompletedEvent(_EventPayload):
    project_path: str
    worktree_path: str
    branch: str
    success: bool
    exit_code: int | None = None
    error: str | None = None


class Notifier(Protocol):
    """Channel the runner publishes lifecycle events to."""

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        ...


class EventBus:
    """In-process publish/subscribe channel.

    Subscribers run synchronously in subscription order. A failing subscriber
    is logged and skipped so publishers never see its exception.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event_type, payload)
            except Exception:
                logger.exception("Event subscriber failed", extra={"event_type": event_type})

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


__all__ = [
    "INIT_COMPLETED",
    "INIT_OUTPUT",
    "INIT_STARTED",
    "EventBus",
    "InitCompletedEvent",
    "InitOutputEvent",
    "InitStartedEvent",
    "Notifier",
    "OutputStream",
]
