"""Work item storage used by the assignment coordinator."""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from typing import Protocol

from src.orchestrator.errors import NotFound
from src.orchestrator.models import Priority, WorkItem, WorkItemStatus, utcnow


class WorkItemStore(Protocol):
    """Persistence contract for work items."""

    def create(
        self,
        title: str,
        description: str | None = None,
        priority: str = Priority.MEDIUM,
    ) -> WorkItem: ...

    def load(self, work_item_id: int) -> WorkItem: ...

    def set_status(self, work_item_id: int, status: str) -> WorkItem: ...

    def list(self) -> list[WorkItem]: ...


def validate_new_item(title: str, priority: str) -> None:
    if not title or not title.strip():
        raise ValueError("Work item title is required")
    if priority not in Priority.ALL:
        raise ValueError(
            f"Unknown priority '{priority}'. Valid priorities: {sorted(Priority.ALL)}"
        )


class InMemoryWorkItemStore:
    """Process-local store; ids are assigned from 1."""

    def __init__(self) -> None:
        self._items: dict[int, WorkItem] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(
        self,
        title: str,
        description: str | None = None,
        priority: str = Priority.MEDIUM,
    ) -> WorkItem:
        validate_new_item(title, priority)
        with self._lock:
            item = WorkItem(
                id=next(self._ids),
                title=title.strip(),
                description=description,
                priority=priority,
            )
            self._items[item.id] = item
            return replace(item)

    def load(self, work_item_id: int) -> WorkItem:
        with self._lock:
            item = self._items.get(work_item_id)
            if item is None:
                raise NotFound("work item", work_item_id)
            return replace(item)

    def set_status(self, work_item_id: int, status: str) -> WorkItem:
        if status not in WorkItemStatus.ALL:
            raise ValueError(f"Unknown work item status: '{status}'")
        with self._lock:
            item = self._items.get(work_item_id)
            if item is None:
                raise NotFound("work item", work_item_id)
            item.status = status
            item.updated_at = utcnow()
            return replace(item)

    def list(self) -> list[WorkItem]:
        """Newest first, like the dashboard listing."""
        with self._lock:
            return [replace(i) for i in sorted(
                self._items.values(), key=lambda i: i.id, reverse=True,
            )]
