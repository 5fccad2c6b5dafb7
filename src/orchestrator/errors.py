"""Error types raised by the orchestrator core.

Every error is raised synchronously to the caller of the triggering
operation; a rejected operation leaves agents and work items as they were.
"""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class NotFound(OrchestratorError, LookupError):
    """Unknown agent or work item id."""

    def __init__(self, kind: str, item_id: int):
        self.kind = kind
        self.item_id = item_id
        super().__init__(f"{kind.capitalize()} {item_id} not found")


class AlreadyBusy(OrchestratorError):
    """The agent is not idle and cannot take an assignment."""

    def __init__(self, agent_id: int | None, status: str | None = None):
        self.agent_id = agent_id
        self.status = status
        detail = f" (status={status})" if status else ""
        super().__init__(f"Agent {agent_id} is already busy{detail}")


class NoAgentAvailable(AlreadyBusy):
    """No registered agent is idle."""

    def __init__(self) -> None:
        self.agent_id = None
        self.status = None
        OrchestratorError.__init__(self, "No idle agent available")


class InvalidState(OrchestratorError, ValueError):
    """A work item is not in the status the requested transition needs."""

    def __init__(self, work_item_id: int, status: str, expected: str):
        self.work_item_id = work_item_id
        self.status = status
        self.expected = expected
        super().__init__(
            f"Work item {work_item_id} is '{status}', expected '{expected}'"
        )


class SpawnError(OrchestratorError):
    """The worker process could not be launched."""


class WorkspaceError(OrchestratorError, OSError):
    """The assignment workspace could not be prepared."""
