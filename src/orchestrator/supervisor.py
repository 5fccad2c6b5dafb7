"""Supervision of external agent processes.

Each spawned process runs in its own process group and moves through::

    running ──(graceful stop)──> grace_period ──(grace elapsed)──> force_killed
       │                              │                                 │
       └──────────────────────────────┴──────────── exited <────────────┘

A graceful stop writes ``exit`` to the worker's stdin; if the worker is
still alive when the grace period elapses, the whole process group is sent
SIGKILL. ``exited`` is terminal and the exit callback fires exactly once,
never before :meth:`ProcessSupervisor.spawn` has finished setting up the
handle (auto-exit armed, spawn logged). Callers that must see the handle
before the callback runs synchronise on their own lock, as the pool does.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Sequence

import structlog

from src.common.constants import AUTO_EXIT_SECS, EXIT_TOKEN, GRACE_PERIOD_SECS
from src.orchestrator.errors import SpawnError


class ProcessState:
    RUNNING = "running"
    GRACE_PERIOD = "grace_period"
    FORCE_KILLED = "force_killed"
    EXITED = "exited"


@dataclass(frozen=True)
class ProcessExit:
    """What the exit watcher observed when a process ended."""

    pid: int
    returncode: int | None
    stop_requested: bool
    forced: bool
    runtime: float

    @property
    def abnormal(self) -> bool:
        """Non-zero exit that nobody asked for."""
        return not self.stop_requested and self.returncode != 0


OutputObserver = Callable[[str, str], None]
ExitCallback = Callable[[ProcessExit], None]


def _kill_group(proc: subprocess.Popen) -> None:
    if hasattr(os, "killpg"):
        os.killpg(proc.pid, signal.SIGKILL)
    else:
        proc.kill()


class SupervisedProcess:
    """Handle for one running worker. Created only by ProcessSupervisor."""

    def __init__(
        self,
        proc: subprocess.Popen,
        *,
        label: str,
        grace_period: float,
        on_exit: ExitCallback | None,
        on_output: OutputObserver | None,
    ) -> None:
        self._proc = proc
        self.pid: int = proc.pid
        self.label = label
        self._grace_period = grace_period
        self._on_exit = on_exit
        self._on_output = on_output

        self._lock = threading.Lock()
        self._state = ProcessState.RUNNING
        self._stop_requested = False
        self._returncode: int | None = None
        self._forced = False
        self._timers: list[threading.Timer] = []
        self._handed_over = threading.Event()
        self._exited = threading.Event()
        self._start = time.monotonic()
        self._log = structlog.get_logger("process_supervisor").bind(
            label=label, pid=self.pid,
        )

        self._readers = [
            threading.Thread(
                target=self._pump,
                args=(stream, name),
                name=f"{name}-reader-{label}",
                daemon=True,
            )
            for stream, name in ((proc.stdout, "stdout"), (proc.stderr, "stderr"))
        ]
        self._watcher = threading.Thread(
            target=self._watch,
            name=f"exit-watcher-{label}",
            daemon=True,
        )

    # ── Public surface ───────────────────────────────────────────────────

    @property
    def state(self) -> str:
        return self._state

    @property
    def returncode(self) -> int | None:
        return self._returncode

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def forced(self) -> bool:
        return self._state == ProcessState.FORCE_KILLED or self._forced

    @property
    def runtime(self) -> float:
        return time.monotonic() - self._start

    def is_running(self) -> bool:
        return not self._exited.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the exit callback has run. Returns False on timeout."""
        return self._exited.wait(timeout)

    def request_graceful_stop(self) -> bool:
        """Ask the worker to exit and arm the forced-kill timer.

        Returns False if a stop is already under way or the process ended.
        """
        with self._lock:
            if self._state != ProcessState.RUNNING:
                return False
            self._state = ProcessState.GRACE_PERIOD
            self._stop_requested = True
            self._schedule(self._grace_period, self._force_kill)
            try:
                self._proc.stdin.write(EXIT_TOKEN.encode())
                self._proc.stdin.flush()
            except (OSError, ValueError) as exc:
                # stdin already closed: the process is going away on its own
                self._log.debug("exit_token_not_delivered", error=str(exc))
        self._log.info("graceful_stop_requested", grace_period=self._grace_period)
        return True

    def arm_auto_exit(self, delay: float) -> None:
        """Issue a graceful stop after *delay* seconds unless already exited."""
        with self._lock:
            if self._state == ProcessState.EXITED:
                return
            self._schedule(delay, self._auto_exit)

    # ── Internals ────────────────────────────────────────────────────────

    def _schedule(self, delay: float, fn: Callable[[], None]) -> None:
        """Start a daemon timer. Caller holds ``_lock``."""
        timer = threading.Timer(delay, fn)
        timer.daemon = True
        timer.name = f"timer-{self.label}"
        self._timers.append(timer)
        timer.start()

    def _begin(self) -> None:
        for reader in self._readers:
            reader.start()
        self._watcher.start()

    def _hand_over(self) -> None:
        self._handed_over.set()

    def _auto_exit(self) -> None:
        if self._state == ProcessState.RUNNING:
            self._log.info("auto_exit_timeout", runtime=round(self.runtime, 1))
        self.request_graceful_stop()

    def _force_kill(self) -> None:
        # Serialized with the reap in _watch
        with self._lock:
            if self._state != ProcessState.GRACE_PERIOD:
                return
            self._state = ProcessState.FORCE_KILLED
            try:
                _kill_group(self._proc)
            except (ProcessLookupError, PermissionError):
                # Already gone; the exit watcher records the exit
                self._log.debug("force_kill_target_gone")
        self._log.warning("process_force_kill", grace_period=self._grace_period)

    def _pump(self, stream: IO[bytes], name: str) -> None:
        """Forward each output line to the observer until EOF."""
        with stream:
            for raw_line in stream:
                if self._on_output is None:
                    continue
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                try:
                    self._on_output(name, line)
                except Exception:
                    self._log.exception("output_observer_failed", stream=name)

    def _watch(self) -> None:
        returncode = self._proc.wait()
        # Reaped: the pid may be reused, so no timer may signal it from here on
        with self._lock:
            self._forced = self._state == ProcessState.FORCE_KILLED
            self._state = ProcessState.EXITED
            self._returncode = returncode
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
            try:
                self._proc.stdin.close()
            except OSError:
                pass

        # Output still buffered in the pipes is drained before the callback
        for reader in self._readers:
            reader.join(timeout=2.0)

        exit_info = ProcessExit(
            pid=self.pid,
            returncode=returncode,
            stop_requested=self._stop_requested,
            forced=self._forced,
            runtime=round(self.runtime, 3),
        )
        self._log.info(
            "process_exited",
            exit_code=returncode,
            stop_requested=exit_info.stop_requested,
            forced=exit_info.forced,
            runtime=exit_info.runtime,
        )

        self._handed_over.wait()
        try:
            if self._on_exit is not None:
                self._on_exit(exit_info)
        except Exception:
            self._log.exception("exit_callback_failed")
        finally:
            self._exited.set()


class ProcessSupervisor:
    """Launches worker processes and owns their shutdown policy.

    Usage::

        supervisor = ProcessSupervisor(grace_period=1.0, auto_exit=15.0)
        handle = supervisor.spawn(workspace, "claude", ["-p", prompt],
                                  env={"AGENT_ID": "1"}, on_exit=done)
        ...
        supervisor.request_graceful_stop(handle)
    """

    def __init__(
        self,
        *,
        grace_period: float = GRACE_PERIOD_SECS,
        auto_exit: float | None = AUTO_EXIT_SECS,
    ) -> None:
        self.grace_period = grace_period
        self.auto_exit = auto_exit
        self._log = structlog.get_logger("process_supervisor")

    def spawn(
        self,
        workspace: Path,
        command: str,
        args: Sequence[str] = (),
        env: dict[str, str] | None = None,
        *,
        label: str | None = None,
        on_exit: ExitCallback | None = None,
        on_output: OutputObserver | None = None,
    ) -> SupervisedProcess:
        """Launch *command* inside *workspace*; returns without waiting."""
        workspace = Path(workspace)
        if not workspace.is_dir():
            raise SpawnError(f"Workspace {workspace} is not a directory")

        argv = [command, *args]
        try:
            proc = subprocess.Popen(
                argv,
                cwd=workspace,
                env={**os.environ, **(env or {})},
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            raise SpawnError(f"Cannot launch {command!r} in {workspace}: {exc}") from exc

        handle = SupervisedProcess(
            proc,
            label=label or f"pid-{proc.pid}",
            grace_period=self.grace_period,
            on_exit=on_exit,
            on_output=on_output,
        )
        handle._begin()
        if self.auto_exit:
            handle.arm_auto_exit(self.auto_exit)

        self._log.info(
            "process_spawned",
            label=handle.label,
            pid=proc.pid,
            command=command,
            workspace=str(workspace),
        )
        handle._hand_over()
        return handle

    def request_graceful_stop(self, handle: SupervisedProcess) -> bool:
        return handle.request_graceful_stop()
