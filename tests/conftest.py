"""
Shared fixtures for the orchestrator tests.

Workers are real subprocesses: ``sys.executable -c <script>`` with one of
the scripts below, so the full spawn / stdin / kill path is exercised.
"""

import sys
import time

import pytest

from src.common.config import Settings
from src.orchestrator.coordinator import AssignmentCoordinator
from src.orchestrator.events import RecordingEventPublisher
from src.orchestrator.pool import AgentPool
from src.orchestrator.supervisor import ProcessSupervisor
from src.orchestrator.work_items import InMemoryWorkItemStore


# Exits cleanly when it reads the "exit" line
COOPERATIVE = (
    "import sys\n"
    "print('ready', flush=True)\n"
    "for line in sys.stdin:\n"
    "    if line.strip() == 'exit':\n"
    "        break\n"
)

# Never reads stdin and never exits on its own
STUBBORN = (
    "import time\n"
    "print('ready', flush=True)\n"
    "while True:\n"
    "    time.sleep(0.1)\n"
)

# Dies immediately with a non-zero code
FAILING = "import sys\nsys.exit(3)\n"

# Writes to both streams, then waits for one line
CHATTY = (
    "import sys\n"
    "print('hello from stdout', flush=True)\n"
    "print('oops on stderr', file=sys.stderr, flush=True)\n"
    "sys.stdin.readline()\n"
)

# Leaves an artifact built from the environment overlay, then exits
ARTIFACT = (
    "import os, pathlib\n"
    "pathlib.Path('completed.txt').write_text(\n"
    "    os.environ['AGENT_ID'] + ':' + os.environ['WORK_ITEM_ID'])\n"
)

GRACE = 0.5


def wait_until(predicate, timeout=10.0, interval=0.05):
    """Poll *predicate* until it returns truthy or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def make_settings(tmp_path, script=COOPERATIVE, **overrides):
    values = dict(
        workspace_root=tmp_path / "workspaces",
        grace_period=GRACE,
        auto_exit=None,
        stop_timeout=5.0,
        agent_command=sys.executable,
        agent_args=["-c", script],
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def publisher():
    return RecordingEventPublisher()


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def make_pool(publisher):
    """Factory for pools; every pool is shut down after the test."""
    pools = []

    def _make(settings):
        supervisor = ProcessSupervisor(
            grace_period=settings.grace_period, auto_exit=settings.auto_exit,
        )
        pool = AgentPool(supervisor, publisher, settings=settings)
        pools.append(pool)
        return pool

    yield _make
    for pool in pools:
        pool.shutdown()


@pytest.fixture
def pool(make_pool, settings):
    return make_pool(settings)


@pytest.fixture
def store():
    return InMemoryWorkItemStore()


@pytest.fixture
def coordinator(store, pool):
    return AssignmentCoordinator(store, pool)
