"""CLI entrypoint: spawn a pool of agents and work through a batch of items.

Flow:
  1. Register N agents and create one work item per title
  2. Assign each item to the first idle agent (one process per agent)
  3. Mark items completed/failed as their processes exit
  4. Ctrl+C stops every agent (graceful, then forced)
  5. Print a summary with the artifacts each workspace holds
"""

from __future__ import annotations

import argparse
import textwrap
import threading
from pathlib import Path

from src.common.config import load_dotenv, load_settings
from src.common.console import banner, coloured_status, fail, info, ok, warn
from src.common.logging import configure_structlog
from src.orchestrator.coordinator import AssignmentCoordinator
from src.orchestrator.errors import InvalidState, OrchestratorError
from src.orchestrator.events import (
    EventPublisher,
    FanoutEventPublisher,
    RecordingEventPublisher,
)
from src.orchestrator.models import Agent, Priority, WorkItemStatus
from src.orchestrator.monitor import PoolMonitor
from src.orchestrator.pool import AgentPool
from src.orchestrator.provisioning import list_artifacts
from src.orchestrator.supervisor import ProcessExit, ProcessSupervisor
from src.orchestrator.work_items import InMemoryWorkItemStore, WorkItemStore


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Agent Boss — spawn worker agents and assign work items",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              python3 run_agents.py                          # 2 agents, 2 items
              python3 run_agents.py -n 3 --title "Refactor module"
              python3 run_agents.py --command ./worker.sh --auto-exit 0
        """),
    )
    parser.add_argument(
        "-n", "--agents", type=int, default=2,
        help="Number of agents to register. Default: 2",
    )
    parser.add_argument(
        "--title", action="append", default=None,
        help="Work item title (repeatable). Default: one generic item per agent",
    )
    parser.add_argument("--description", default=None, help="Description for every item")
    parser.add_argument(
        "--priority", choices=sorted(Priority.ALL), default=Priority.MEDIUM,
    )
    parser.add_argument("--command", default=None, help="Worker executable")
    parser.add_argument(
        "--arg", dest="args", action="append", default=None,
        help="Worker argument (repeatable); replaces the default arguments",
    )
    parser.add_argument("--grace-period", type=float, default=None, help="Seconds")
    parser.add_argument(
        "--auto-exit", type=float, default=None, help="Seconds; 0 disables",
    )
    parser.add_argument("--workspace-root", type=Path, default=None)
    parser.add_argument(
        "--monitor-interval", type=float, default=30.0,
        help="Seconds between pool status reports. Default: 30",
    )
    parser.add_argument(
        "--redis", action="store_true", default=False,
        help="Store work items in Redis and publish events on its channel",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.agents < 1:
        fail("At least one agent is required.")

    load_dotenv()
    try:
        settings = load_settings()
    except ValueError as exc:
        fail(str(exc))

    if args.command:
        settings.agent_command = args.command
    if args.args is not None:
        settings.agent_args = args.args
    if args.grace_period is not None:
        settings.grace_period = args.grace_period
    if args.auto_exit is not None:
        settings.auto_exit = args.auto_exit or None
    if args.workspace_root is not None:
        settings.workspace_root = args.workspace_root

    configure_structlog(settings.log_level)

    # ── Wiring ───────────────────────────────────────────────────────────
    recorder = RecordingEventPublisher()
    publisher: EventPublisher = recorder
    store: WorkItemStore
    if args.redis:
        from src.common.redis import RedisEventPublisher, RedisWorkItemStore, get_redis

        client = get_redis(settings)
        store = RedisWorkItemStore(client)
        publisher = FanoutEventPublisher(
            recorder, RedisEventPublisher(client, settings.events_channel),
        )
    else:
        store = InMemoryWorkItemStore()

    supervisor = ProcessSupervisor(
        grace_period=settings.grace_period, auto_exit=settings.auto_exit,
    )
    pool = AgentPool(supervisor, publisher, settings=settings)
    coordinator = AssignmentCoordinator(store, pool)

    banner("Agent Boss — Agent Runner")
    info(f"Agents: {args.agents}   command: {settings.agent_command}")
    info(
        f"Grace period: {settings.grace_period}s   "
        f"auto-exit: {settings.auto_exit or 'off'}"
    )
    info(f"Workspaces: {settings.workspace_root}")
    print()

    # ── Exit handling ────────────────────────────────────────────────────
    progress = {"assigned": 0, "exited": 0, "closed": False}
    progress_lock = threading.Lock()
    all_done = threading.Event()
    finished: list[tuple[Agent, ProcessExit]] = []

    def _check_done() -> None:
        # caller holds progress_lock
        if progress["closed"] and progress["exited"] >= progress["assigned"]:
            all_done.set()

    def on_exit(agent: Agent, exit_info: ProcessExit) -> None:
        finished.append((agent, exit_info))
        work_item_id = agent.work_item_id
        if work_item_id is not None:
            try:
                if exit_info.returncode == 0:
                    coordinator.complete(work_item_id)
                else:
                    coordinator.fail(work_item_id)
            except InvalidState as exc:
                warn(str(exc))
        with progress_lock:
            progress["exited"] += 1
            _check_done()

    pool.add_exit_listener(on_exit)

    # ── Register + assign ────────────────────────────────────────────────
    for i in range(1, args.agents + 1):
        pool.register(f"agent-{i}")

    titles = args.title or [f"Work item {i}" for i in range(1, args.agents + 1)]
    items = [
        coordinator.create_work_item(title, args.description, args.priority)
        for title in titles
    ]

    for item in items:
        try:
            agent = coordinator.assign_next(item.id)
        except OrchestratorError as exc:
            warn(f"Work item {item.id} not assigned: {exc}")
            continue
        with progress_lock:
            progress["assigned"] += 1
        ok(f"Work item {item.id} -> {agent.name} (pid {agent.pid})")

    # ── Wait ─────────────────────────────────────────────────────────────
    with progress_lock:
        progress["closed"] = True
        _check_done()

    try:
        with PoolMonitor(pool, log_dir=settings.log_dir, interval=args.monitor_interval):
            while not all_done.wait(timeout=0.5):
                pass
    except KeyboardInterrupt:
        print()
        warn("Interrupted — stopping all agents ...")
        pool.shutdown()

    # ── Summary ──────────────────────────────────────────────────────────
    banner("RUN COMPLETE")
    for item in coordinator.list_work_items()[::-1]:
        print(f"  work item {item.id:<4} {coloured_status(item.status)} {item.title}")
    print()
    for agent, exit_info in sorted(finished, key=lambda f: f[0].id):
        artifacts = list_artifacts(agent.workspace) if agent.workspace else []
        print(
            f"  {agent.name:<12} exit={exit_info.returncode!s:<4} "
            f"runtime={exit_info.runtime:.1f}s  forced={exit_info.forced}"
        )
        if agent.workspace:
            print(f"    workspace: {agent.workspace}")
        print(f"    artifacts: {', '.join(artifacts) or '<none>'}")
    print()
    for agent in pool.list():
        print(f"  {agent.name:<12} {coloured_status(agent.status)}")
    print()
    info(f"Events emitted: {len(recorder.events)}")

    statuses = [item.status for item in coordinator.list_work_items()]
    if statuses and all(s == WorkItemStatus.COMPLETED for s in statuses):
        ok("All work items completed.")
        return 0
    warn("Some work items did not complete.")
    return 1
