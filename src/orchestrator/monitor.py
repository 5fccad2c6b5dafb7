"""Periodic status reporter for the agent pool."""

from __future__ import annotations

import threading
from pathlib import Path

import structlog

from src.common.logging import get_json_file_logger
from src.orchestrator.pool import AgentPool


class PoolMonitor:
    """Context manager that logs every agent's status on a daemon thread.

    Usage::

        with PoolMonitor(pool, log_dir=results_dir, interval=30):
            # ... run agents ...
    """

    def __init__(
        self,
        pool: AgentPool,
        *,
        log_dir: Path | None = None,
        interval: float = 30.0,
    ) -> None:
        self._pool = pool
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.polls = 0

        self._console = structlog.get_logger("pool_monitor")
        self._file_log = (
            get_json_file_logger(log_dir / "pool_status.jsonl") if log_dir else None
        )

    def __enter__(self) -> PoolMonitor:
        self._thread = threading.Thread(
            target=self._poll_loop,
            name="pool-monitor",
            daemon=True,
        )
        self._thread.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval + 5)

    def _poll_loop(self) -> None:
        """Report once immediately, then every interval until stopped."""
        while not self._stop.is_set():
            self.report()
            self._stop.wait(timeout=self._interval)

    def report(self) -> None:
        """Emit one ``agent_status`` event per agent."""
        self.polls += 1
        for row in self._pool.snapshot():
            event = {
                "agent_id": row["id"],
                "name": row["name"],
                "status": row["status"],
                "work_item_id": row["workItemId"],
                "pid": row["pid"],
                "uptime_seconds": row["uptimeSeconds"],
            }
            self._console.info("agent_status", **event)
            if self._file_log is not None:
                self._file_log.info("agent_status", **event)
