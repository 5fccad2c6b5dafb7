"""Agent and work item data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


class AgentStatus:
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"

    ALL = frozenset([IDLE, BUSY, ERROR])


class WorkItemStatus:
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = frozenset([PENDING, IN_PROGRESS, COMPLETED, FAILED])
    TERMINAL = frozenset([COMPLETED, FAILED])


class Priority:
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    ALL = frozenset([LOW, MEDIUM, HIGH])


# {from_status: allowed to_statuses}
WORK_ITEM_TRANSITIONS: dict[str, frozenset[str]] = {
    WorkItemStatus.PENDING: frozenset([WorkItemStatus.IN_PROGRESS]),
    WorkItemStatus.IN_PROGRESS: frozenset([
        WorkItemStatus.COMPLETED,
        WorkItemStatus.FAILED,
    ]),
    WorkItemStatus.COMPLETED: frozenset(),
    WorkItemStatus.FAILED: frozenset(),
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Agent:
    """A worker slot in the pool, optionally backed by a live process."""

    id: int
    name: str
    status: str = AgentStatus.IDLE       # idle | busy | error
    work_item_id: int | None = None
    pid: int | None = None
    workspace: Path | None = None
    started_at: datetime | None = None
    exit_code: int | None = None
    # Opaque handle owned by the process supervisor; never serialized
    process: Any = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view, used for events and status reports."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "workItemId": self.work_item_id,
            "pid": self.pid,
            "workspace": str(self.workspace) if self.workspace else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "exitCode": self.exit_code,
        }


@dataclass
class WorkItem:
    """A unit of work with a status lifecycle."""

    id: int
    title: str
    description: str | None = None
    status: str = WorkItemStatus.PENDING
    priority: str = Priority.MEDIUM
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkItem:
        return cls(
            id=int(data["id"]),
            title=data["title"],
            description=data.get("description") or None,
            status=data.get("status", WorkItemStatus.PENDING),
            priority=data.get("priority", Priority.MEDIUM),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
