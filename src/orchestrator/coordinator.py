"""Matching work items to agents and driving work item status."""

from __future__ import annotations

import threading
from collections import defaultdict

import structlog

from src.orchestrator.errors import AlreadyBusy, InvalidState, NoAgentAvailable
from src.orchestrator.models import (
    WORK_ITEM_TRANSITIONS,
    Agent,
    AgentStatus,
    Priority,
    WorkItem,
    WorkItemStatus,
)
from src.orchestrator.pool import AgentPool
from src.orchestrator.provisioning import render_instructions
from src.orchestrator.work_items import WorkItemStore


class AssignmentCoordinator:
    """Assigns pending work items to idle agents.

    An assignment is all-or-nothing: the work item is marked in_progress
    while the agent lock is held, before the agent turns busy or
    ``agent:started`` goes out. If the status update fails the new process
    is stopped and neither record changes. Assignments of
    the same work item are serialized so it can never go to two agents.
    """

    def __init__(self, store: WorkItemStore, pool: AgentPool) -> None:
        self._store = store
        self._pool = pool
        self._item_locks: defaultdict[int, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()
        self._log = structlog.get_logger("assignment_coordinator")

    def _item_lock(self, work_item_id: int) -> threading.Lock:
        with self._locks_guard:
            return self._item_locks[work_item_id]

    def _finish(self, work_item_id: int, to_status: str) -> WorkItem:
        """Move an in-progress item to a terminal status. Caller holds the item lock."""
        item = self._store.load(work_item_id)
        if to_status not in WORK_ITEM_TRANSITIONS.get(item.status, frozenset()):
            self._forget_if_terminal(item)
            raise InvalidState(work_item_id, item.status, WorkItemStatus.IN_PROGRESS)
        item = self._store.set_status(work_item_id, to_status)
        self._forget_if_terminal(item)
        return item

    def _forget_if_terminal(self, item: WorkItem) -> None:
        # Terminal items have no further transitions to serialize
        if item.status in WorkItemStatus.TERMINAL:
            with self._locks_guard:
                self._item_locks.pop(item.id, None)

    # ── Work items ───────────────────────────────────────────────────────

    def create_work_item(
        self,
        title: str,
        description: str | None = None,
        priority: str = Priority.MEDIUM,
    ) -> WorkItem:
        item = self._store.create(title, description, priority)
        self._log.info("work_item_created", work_item_id=item.id, title=item.title)
        return item

    def list_work_items(self) -> list[WorkItem]:
        return self._store.list()

    # ── Assignment ───────────────────────────────────────────────────────

    def assign(self, work_item_id: int, agent_id: int) -> None:
        """Start *agent_id* on *work_item_id* and mark the item in progress."""
        with self._item_lock(work_item_id):
            item = self._store.load(work_item_id)
            if item.status != WorkItemStatus.PENDING:
                self._forget_if_terminal(item)
                raise InvalidState(work_item_id, item.status, WorkItemStatus.PENDING)
            self._start_and_mark(item, agent_id)

    def assign_next(self, work_item_id: int) -> Agent:
        """Assign to the first idle agent. Raises NoAgentAvailable if none is free."""
        with self._item_lock(work_item_id):
            item = self._store.load(work_item_id)
            if item.status != WorkItemStatus.PENDING:
                self._forget_if_terminal(item)
                raise InvalidState(work_item_id, item.status, WorkItemStatus.PENDING)
            for agent in self._pool.list():
                if agent.status != AgentStatus.IDLE:
                    continue
                try:
                    self._start_and_mark(item, agent.id)
                except AlreadyBusy:
                    # Claimed by someone else since the listing; try the next one
                    continue
                return self._pool.get(agent.id) or agent
        raise NoAgentAvailable()

    def _start_and_mark(self, item: WorkItem, agent_id: int) -> None:
        def mark_in_progress() -> None:
            self._store.set_status(item.id, WorkItemStatus.IN_PROGRESS)

        self._pool.start(
            agent_id,
            item.id,
            render_instructions(agent_id, item.id, item),
            on_claimed=mark_in_progress,
        )
        self._log.info("work_item_assigned", work_item_id=item.id, agent_id=agent_id)

    def complete(self, work_item_id: int) -> WorkItem:
        """Mark an in-progress item completed. The agent is not stopped."""
        with self._item_lock(work_item_id):
            item = self._finish(work_item_id, WorkItemStatus.COMPLETED)
        self._log.info("work_item_completed", work_item_id=work_item_id)
        return item

    def fail(self, work_item_id: int) -> WorkItem:
        """Mark an in-progress item failed. The agent is not stopped."""
        with self._item_lock(work_item_id):
            item = self._finish(work_item_id, WorkItemStatus.FAILED)
        self._log.info("work_item_failed", work_item_id=work_item_id)
        return item
