from __future__ import annotations

from typing import Any

from worktree_init.events import (
    INIT_COMPLETED,
    EventBus,
    InitCompletedEvent,
    InitOutputEvent,
)


def test_event_bus_delivers_in_subscription_order() -> None:
    bus = EventBus()
    seen: list[str] = []

    bus.subscribe(lambda event_type, payload: seen.append(f"first:{event_type}"))
    bus.subscribe(lambda event_type, payload: seen.append(f"second:{event_type}"))
    bus.publish(INIT_COMPLETED, {"success": True})

    assert seen == [f"first:{INIT_COMPLETED}", f"second:{INIT_COMPLETED}"]


def test_event_bus_isolates_failing_subscriber() -> None:
    bus = EventBus()
    received: list[dict[str, Any]] = []

    def broken(event_type: str, payload: dict[str, Any]) -> None:
        raise ValueError("boom")

    bus.subscribe(broken)
    bus.subscribe(lambda event_type, payload: received.append(payload))
    bus.publish(INIT_COMPLETED, {"success": False})

    assert received == [{"success": False}]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    received: list[str] = []
    unsubscribe = bus.subscribe(lambda event_type, payload: received.append(event_type))

    unsubscribe()
    unsubscribe()
    bus.publish(INIT_COMPLETED, {})

    assert received == []
    assert bus.subscriber_count == 0


def test_completed_payload_omits_unset_fields() -> None:
    event = InitCompletedEvent(
        project_path="/repo", worktree_path="/wt", branch="main", success=True, exit_code=0
    )
    assert event.to_payload() == {
        "projectPath": "/repo",
        "worktreePath": "/wt",
        "branch": "main",
        "success": True,
        "exitCode": 0,
    }


def test_output_payload_keeps_stream_tag() -> None:
    event = InitOutputEvent(project_path="/repo", branch="main", type="stderr", content="warn\n")
    assert event.to_payload()["type"] == "stderr"
