"""
Tests for orchestrator/supervisor.py

Validates:
- spawn is non-blocking and forwards stdout/stderr lines
- graceful stop: worker honours "exit" within the grace window
- forced kill after the grace window for workers that ignore "exit"
- auto-exit timer bounds the lifetime of a worker that never exits
- exit callback fires exactly once, with pending timers cancelled
- a worker that exits inside the grace window is never reported as forced
- spawn failures raise SpawnError without producing a handle
"""

import sys

import pytest

from conftest import CHATTY, COOPERATIVE, FAILING, GRACE, STUBBORN, wait_until
from src.orchestrator.errors import SpawnError
from src.orchestrator.supervisor import ProcessState, ProcessSupervisor


@pytest.fixture
def workspace(tmp_path):
    path = tmp_path / "ws"
    path.mkdir()
    return path


@pytest.fixture
def spawned():
    """Track handles so stray workers are killed after each test."""
    handles = []
    yield handles
    for handle in handles:
        if handle.is_running():
            handle.request_graceful_stop()
            handle.wait(GRACE + 5)


def _spawn(supervisor, workspace, script, spawned, **kwargs):
    handle = supervisor.spawn(workspace, sys.executable, ["-c", script], **kwargs)
    spawned.append(handle)
    return handle


# ---------------------------------------------------------------------------
# Spawn + output capture
# ---------------------------------------------------------------------------


def test_spawn_returns_running_handle(workspace, spawned):
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    handle = _spawn(supervisor, workspace, COOPERATIVE, spawned)

    assert handle.pid > 0
    assert handle.state == ProcessState.RUNNING
    assert handle.is_running()
    assert handle.returncode is None


def test_output_lines_forwarded_to_observer(workspace, spawned):
    lines = []
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    handle = _spawn(
        supervisor, workspace, CHATTY, spawned,
        on_output=lambda stream, line: lines.append((stream, line)),
    )

    assert wait_until(lambda: len(lines) >= 2)
    assert ("stdout", "hello from stdout") in lines
    assert ("stderr", "oops on stderr") in lines

    supervisor.request_graceful_stop(handle)
    assert handle.wait(GRACE + 5)


def test_environment_overlay_and_cwd(workspace, spawned):
    script = (
        "import os\n"
        "print(os.environ['AGENT_ID'], os.getcwd(), flush=True)\n"
    )
    lines = []
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    handle = _spawn(
        supervisor, workspace, script, spawned,
        env={"AGENT_ID": "42"},
        on_output=lambda stream, line: lines.append(line),
    )

    assert handle.wait(10)
    agent_id, cwd = lines[0].split(" ", 1)
    assert agent_id == "42"
    assert cwd == str(workspace.resolve())


# ---------------------------------------------------------------------------
# Shutdown paths
# ---------------------------------------------------------------------------


def test_graceful_stop_within_grace_window(workspace, spawned):
    exits = []
    supervisor = ProcessSupervisor(grace_period=5.0, auto_exit=None)
    handle = _spawn(supervisor, workspace, COOPERATIVE, spawned, on_exit=exits.append)

    assert supervisor.request_graceful_stop(handle) is True
    assert handle.wait(10)

    assert handle.state == ProcessState.EXITED
    assert handle.returncode == 0
    assert len(exits) == 1
    assert exits[0].stop_requested is True
    assert exits[0].forced is False
    assert exits[0].abnormal is False


def test_second_graceful_stop_is_a_no_op(workspace, spawned):
    supervisor = ProcessSupervisor(grace_period=5.0, auto_exit=None)
    handle = _spawn(supervisor, workspace, STUBBORN, spawned)

    assert supervisor.request_graceful_stop(handle) is True
    assert supervisor.request_graceful_stop(handle) is False
    assert handle.state == ProcessState.GRACE_PERIOD


def test_stubborn_worker_is_force_killed(workspace, spawned):
    exits = []
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    handle = _spawn(supervisor, workspace, STUBBORN, spawned, on_exit=exits.append)

    supervisor.request_graceful_stop(handle)
    assert handle.wait(GRACE + 10)

    assert handle.forced is True
    assert handle.returncode != 0
    assert len(exits) == 1
    assert exits[0].forced is True
    assert exits[0].stop_requested is True
    # a requested stop is never reported as abnormal
    assert exits[0].abnormal is False


def test_clean_exit_inside_grace_window_is_not_forced(workspace, spawned):
    # A grandchild keeps the output pipes open after the worker itself exits
    script = (
        "import subprocess, sys\n"
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(1.5)'])\n"
        "for line in sys.stdin:\n"
        "    if line.strip() == 'exit':\n"
        "        break\n"
    )
    exits = []
    supervisor = ProcessSupervisor(grace_period=0.3, auto_exit=None)
    handle = _spawn(supervisor, workspace, script, spawned, on_exit=exits.append)

    supervisor.request_graceful_stop(handle)
    assert handle.wait(10)

    assert handle.returncode == 0
    assert handle.forced is False
    assert exits[0].forced is False


def test_auto_exit_bounds_lifetime(workspace, spawned):
    exits = []
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=0.5)
    handle = _spawn(supervisor, workspace, STUBBORN, spawned, on_exit=exits.append)

    assert handle.wait(0.5 + GRACE + 10)
    assert exits[0].forced is True
    assert exits[0].stop_requested is True


def test_auto_exit_graceful_for_cooperative_worker(workspace, spawned):
    supervisor = ProcessSupervisor(grace_period=5.0, auto_exit=0.3)
    handle = _spawn(supervisor, workspace, COOPERATIVE, spawned)

    assert handle.wait(10)
    assert handle.returncode == 0
    assert handle.forced is False


# ---------------------------------------------------------------------------
# Exit detection
# ---------------------------------------------------------------------------


def test_spontaneous_nonzero_exit_is_abnormal(workspace, spawned):
    exits = []
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    handle = _spawn(supervisor, workspace, FAILING, spawned, on_exit=exits.append)

    assert handle.wait(10)
    assert handle.returncode == 3
    assert exits[0].abnormal is True
    assert exits[0].stop_requested is False
    # stopping an exited process is harmless
    assert supervisor.request_graceful_stop(handle) is False


def test_instant_exit_callback_fires_once_with_timers_cancelled(workspace, spawned):
    exits = []
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=5.0)
    handle = _spawn(supervisor, workspace, FAILING, spawned, on_exit=exits.append)

    assert handle.wait(10)
    assert len(exits) == 1
    assert exits[0].pid == handle.pid
    assert exits[0].stop_requested is False
    assert handle.state == ProcessState.EXITED
    assert handle._timers == []


def test_exit_callback_error_does_not_hang_wait(workspace, spawned):
    def on_exit(info):
        raise RuntimeError("listener bug")

    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    handle = _spawn(supervisor, workspace, FAILING, spawned, on_exit=on_exit)

    assert handle.wait(10)


# ---------------------------------------------------------------------------
# Spawn failures
# ---------------------------------------------------------------------------


def test_missing_executable_raises_spawn_error(workspace):
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    with pytest.raises(SpawnError):
        supervisor.spawn(workspace, "definitely-not-a-real-agent-binary")


def test_missing_workspace_raises_spawn_error(tmp_path):
    supervisor = ProcessSupervisor(grace_period=GRACE, auto_exit=None)
    with pytest.raises(SpawnError):
        supervisor.spawn(tmp_path / "nope", sys.executable, ["-c", "pass"])
