"""Agent registry: identity, status, and the process behind each agent.

Every status transition of an agent happens under that agent's own lock,
so two concurrent ``start`` calls on one agent cannot both see it idle.
The registry lock only guards insertion and lookup.

Events are queued in transition order while the agent lock is held and
delivered after it is released, so a slow event sink never blocks readers.
"""

from __future__ import annotations

import itertools
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Callable

import structlog

from src.common.config import Settings
from src.common.constants import (
    EVENT_AGENT_CREATED,
    EVENT_AGENT_ERROR,
    EVENT_AGENT_STARTED,
    EVENT_AGENT_STOPPED,
)
from src.common.logging import get_json_file_logger
from src.orchestrator.errors import AlreadyBusy, NotFound
from src.orchestrator.events import EventPublisher, LoggingEventPublisher
from src.orchestrator.models import Agent, AgentStatus, utcnow
from src.orchestrator.provisioning import (
    prepare_workspace,
    render_instructions,
    workspace_path,
)
from src.orchestrator.supervisor import OutputObserver, ProcessExit, ProcessSupervisor

ExitListener = Callable[[Agent, ProcessExit], None]


class _Entry:
    """Registry slot: the agent record plus its transition lock."""

    def __init__(self, agent: Agent) -> None:
        self.agent = agent
        self.lock = threading.Lock()
        self.released = threading.Condition(self.lock)  # process handle dropped
        self.generation = 0     # bumped on every start; stale exits are ignored


def _clear_assignment(agent: Agent) -> None:
    agent.status = AgentStatus.IDLE
    agent.work_item_id = None
    agent.process = None
    agent.pid = None
    agent.workspace = None
    agent.started_at = None


class AgentPool:
    """Owns the agent registry and delegates process work to the supervisor."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        publisher: EventPublisher | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._supervisor = supervisor
        self._publisher = publisher or LoggingEventPublisher()
        self._entries: dict[int, _Entry] = {}
        self._registry_lock = threading.Lock()
        self._ids = itertools.count(1)
        self._exit_listeners: list[ExitListener] = []
        self._outbox: deque[tuple[str, dict[str, Any]]] = deque()
        self._delivery_lock = threading.RLock()
        self._log = structlog.get_logger("agent_pool")

    # ── Registry ─────────────────────────────────────────────────────────

    def register(self, name: str) -> Agent:
        """Create a new idle agent."""
        if not name or not name.strip():
            raise ValueError("Agent name is required")
        with self._registry_lock:
            agent = Agent(id=next(self._ids), name=name.strip())
            self._entries[agent.id] = _Entry(agent)
            snapshot = replace(agent)
            self._outbox.append((EVENT_AGENT_CREATED, snapshot.to_dict()))

        self._log.info("agent_created", agent_id=agent.id, name=agent.name)
        self._flush()
        return snapshot

    def _entry(self, agent_id: int) -> _Entry:
        with self._registry_lock:
            entry = self._entries.get(agent_id)
        if entry is None:
            raise NotFound("agent", agent_id)
        return entry

    def get(self, agent_id: int) -> Agent | None:
        with self._registry_lock:
            entry = self._entries.get(agent_id)
        if entry is None:
            return None
        with entry.lock:
            return replace(entry.agent)

    def list(self) -> list[Agent]:
        """All agents in registration order."""
        with self._registry_lock:
            entries = list(self._entries.values())
        result = []
        for entry in entries:
            with entry.lock:
                result.append(replace(entry.agent))
        return result

    def find_available(self) -> Agent | None:
        """First idle agent in registration order."""
        for agent in self.list():
            if agent.status == AgentStatus.IDLE:
                return agent
        return None

    def snapshot(self) -> list[dict[str, Any]]:
        """Status rows for monitoring."""
        now = utcnow()
        rows = []
        for agent in self.list():
            row = agent.to_dict()
            row["uptimeSeconds"] = (
                round((now - agent.started_at).total_seconds(), 1)
                if agent.started_at else None
            )
            rows.append(row)
        return rows

    def add_exit_listener(self, listener: ExitListener) -> None:
        """Call *listener(agent, exit)* whenever an assignment's process ends.

        The agent passed is a snapshot taken just before its assignment was
        cleared, so ``work_item_id`` and ``workspace`` are still set.
        """
        self._exit_listeners.append(listener)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start(
        self,
        agent_id: int,
        work_item_id: int,
        instructions: str | None = None,
        *,
        on_claimed: Callable[[], None] | None = None,
    ) -> Agent:
        """Provision a workspace and launch the agent's process.

        *on_claimed* runs under the agent lock once the process is up but
        before the agent is marked busy or ``agent:started`` is queued. If
        it raises, the new process is told to stop, the agent stays idle,
        no event is emitted and the error propagates.

        Raises NotFound, AlreadyBusy, WorkspaceError or SpawnError; on any
        failure the agent is left exactly as it was.
        """
        entry = self._entry(agent_id)
        with entry.lock:
            agent = entry.agent
            if agent.status != AgentStatus.IDLE:
                raise AlreadyBusy(agent_id, agent.status)

            workspace = prepare_workspace(
                workspace_path(self._settings.workspace_root, agent_id, work_item_id),
                instructions or render_instructions(agent_id, work_item_id),
            )
            generation = entry.generation + 1
            handle = self._supervisor.spawn(
                workspace,
                self._settings.agent_command,
                self._settings.agent_args,
                env={"AGENT_ID": str(agent_id), "WORK_ITEM_ID": str(work_item_id)},
                label=f"agent-{agent_id}",
                on_exit=lambda info: self._on_process_exit(agent_id, generation, info),
                on_output=self._output_observer(agent_id),
            )
            # Exits from an abandoned process find no process on the agent
            entry.generation = generation

            if on_claimed is not None:
                try:
                    on_claimed()
                except Exception:
                    self._log.error(
                        "agent_claim_rolled_back",
                        agent_id=agent_id,
                        work_item_id=work_item_id,
                        pid=handle.pid,
                    )
                    self._supervisor.request_graceful_stop(handle)
                    raise

            agent.status = AgentStatus.BUSY
            agent.work_item_id = work_item_id
            agent.process = handle
            agent.pid = handle.pid
            agent.workspace = workspace
            agent.started_at = utcnow()
            agent.exit_code = None
            snapshot = replace(agent)

            self._log.info(
                "agent_started",
                agent_id=agent_id,
                work_item_id=work_item_id,
                pid=handle.pid,
                workspace=str(workspace),
            )
            self._outbox.append(
                (EVENT_AGENT_STARTED, {"agentId": agent_id, "workItemId": work_item_id}),
            )
        self._flush()
        return snapshot

    def stop(self, agent_id: int) -> None:
        """Stop the agent's process (if any) and return it to idle.

        Blocks until the process is gone: the graceful stop is followed by
        a forced kill once the grace period elapses. Stopping an agent with
        no process just resets it to idle.
        """
        entry = self._entry(agent_id)
        with entry.lock:
            handle = entry.agent.process
            if handle is None:
                _clear_assignment(entry.agent)
                self._stopped(agent_id)
            generation = entry.generation
        if handle is None:
            self._flush()
            return

        self._supervisor.request_graceful_stop(handle)
        timeout = self._supervisor.grace_period + self._settings.stop_timeout

        with entry.lock:
            released = entry.released.wait_for(
                lambda: entry.generation != generation or entry.agent.process is not handle,
                timeout=timeout,
            )
            if not released:
                self._log.error(
                    "agent_stop_timeout", agent_id=agent_id, pid=handle.pid, timeout=timeout,
                )
                _clear_assignment(entry.agent)
                self._stopped(agent_id)
            elif entry.generation == generation and entry.agent.status != AgentStatus.IDLE:
                # The process exited on its own with an error just before the
                # stop request landed.
                _clear_assignment(entry.agent)
                self._stopped(agent_id)
        # Waits for an exit-side delivery already in flight
        self._flush()

    def shutdown(self) -> None:
        """Stop every agent that has a live process, in parallel."""
        busy = [a.id for a in self.list() if a.process is not None]
        if not busy:
            return
        self._log.info("pool_shutdown", agents=busy)
        with ThreadPoolExecutor(max_workers=len(busy)) as pool:
            for future in [pool.submit(self.stop, agent_id) for agent_id in busy]:
                future.result()

    # ── Events ───────────────────────────────────────────────────────────

    def _flush(self) -> None:
        """Deliver queued events in order. Never called with an agent lock held."""
        with self._delivery_lock:
            while self._outbox:
                event, payload = self._outbox.popleft()
                self._publisher.publish(event, payload)

    # ── Process callbacks ────────────────────────────────────────────────

    def _stopped(self, agent_id: int, **details: Any) -> None:
        """Log and queue the announcement that an agent went idle. Caller holds its lock."""
        self._log.info("agent_stopped", agent_id=agent_id, **details)
        self._outbox.append((EVENT_AGENT_STOPPED, {"agentId": agent_id}))

    def _on_process_exit(self, agent_id: int, generation: int, info: ProcessExit) -> None:
        entry = self._entry(agent_id)
        with entry.lock:
            agent = entry.agent
            if entry.generation != generation or agent.process is None:
                return
            agent.exit_code = info.returncode
            finished = replace(agent, process=None, pid=None)
            if info.abnormal:
                # Keep the work item so the failure can be traced
                agent.status = AgentStatus.ERROR
                agent.process = None
                agent.pid = None
                self._log.warning(
                    "agent_error",
                    agent_id=agent_id,
                    work_item_id=finished.work_item_id,
                    exit_code=info.returncode,
                )
                self._outbox.append((EVENT_AGENT_ERROR, {
                    "agentId": agent_id,
                    "workItemId": finished.work_item_id,
                    "exitCode": info.returncode,
                }))
            else:
                _clear_assignment(agent)
                self._stopped(agent_id, exit_code=info.returncode, forced=info.forced)
            entry.released.notify_all()
        self._flush()

        for listener in list(self._exit_listeners):
            try:
                listener(finished, info)
            except Exception:
                self._log.exception("exit_listener_failed", agent_id=agent_id)

    def _output_observer(self, agent_id: int) -> OutputObserver:
        log_dir = self._settings.log_dir
        file_log = (
            get_json_file_logger(log_dir / f"agent-{agent_id}" / "output.jsonl")
            if log_dir is not None else None
        )

        def observe(stream: str, line: str) -> None:
            self._log.debug("agent_output", agent_id=agent_id, stream=stream, line=line)
            if file_log is not None:
                file_log.info("agent_output", agent_id=agent_id, stream=stream, line=line)

        return observe
