"""Audit log implementations."""

import json
from pathlib import Path
from typing import Any

from helmsman.domain.audit import AuditEvent, AuditEventType
from helmsman.domain.interfaces import AuditLogInterface


def _matches(
    event: AuditEvent,
    run_id: str | None,
    event_type: AuditEventType | None,
    instance_id: str | None,
) -> bool:
    return (
        (run_id is None or event.run_id == run_id)
        and (event_type is None or event.event_type == event_type)
        and (instance_id is None or event.instance_id == instance_id)
    )


def _tail(events: list[AuditEvent], limit: int | None) -> list[AuditEvent]:
    if limit is None:
        return events
    return events[-limit:] if limit > 0 else []


class InMemoryAuditLog(AuditLogInterface):
    """In-memory implementation for testing."""

    def __init__(self) -> None:
        self._events: list[AuditEvent] = []

    def append(self, event: AuditEvent) -> str:
        self._events.append(event)
        return event.event_id

    def get_events(
        self,
        run_id: str | None = None,
        event_type: AuditEventType | None = None,
        instance_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        return _tail(
            [e for e in self._events if _matches(e, run_id, event_type, instance_id)],
            limit,
        )


class FilesystemAuditLog(AuditLogInterface):
    """Filesystem implementation appending events to ``events.jsonl``."""

    def __init__(self, base_path: str | Path) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.log_file = self.base_path / "events.jsonl"

    def append(self, event: AuditEvent) -> str:
        with open(self.log_file, "a") as f:
            f.write(json.dumps(self._event_to_dict(event)) + "\n")
        return event.event_id

    def get_events(
        self,
        run_id: str | None = None,
        event_type: AuditEventType | None = None,
        instance_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        if not self.log_file.exists():
            return []
        events: list[AuditEvent] = []
        with open(self.log_file) as f:
            for line in f:
                if not line.strip():
                    continue
                event = self._dict_to_event(json.loads(line))
                if _matches(event, run_id, event_type, instance_id):
                    events.append(event)
        return _tail(events, limit)

    def _event_to_dict(self, event: AuditEvent) -> dict[str, Any]:
        """Serialize event to dict."""
        data: dict[str, Any] = {
            "event_id": event.event_id,
            "event": event.event_type.value,
            "at": event.at,
        }
        if event.agent:
            data["agent"] = event.agent
        if event.run_id:
            data["run_id"] = event.run_id
        if event.instance_id:
            data["instance_id"] = event.instance_id
        if event.details:
            data["details"] = event.details
        return data

    def _dict_to_event(self, data: dict[str, Any]) -> AuditEvent:
        """Deserialize dict to event."""
        return AuditEvent(
            event_id=data["event_id"],
            event_type=AuditEventType(data["event"]),
            at=data.get("at", ""),
            agent=data.get("agent"),
            run_id=data.get("run_id"),
            instance_id=data.get("instance_id"),
            details=data.get("details", {}),
        )
