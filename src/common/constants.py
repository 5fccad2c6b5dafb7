"""Shared constants for the agent orchestrator."""

from pathlib import Path

# Project root = agent-boss/
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

# Workspaces
WORKSPACES_DIR = PROJECT_ROOT / "workspaces"
INSTRUCTIONS_FILE = "INSTRUCTIONS.md"

# Graceful-stop convention: worker programs exit when they read this line
EXIT_TOKEN = "exit\n"

# ── Process timing (seconds) ─────────────────────────────────────────────────
GRACE_PERIOD_SECS = 1.0         # graceful-stop request -> forced kill
AUTO_EXIT_SECS = 15.0           # spawn -> proactive graceful-stop request
STOP_TIMEOUT_SECS = 5.0         # extra wait for exit after a forced kill

# Agent command
AGENT_COMMAND = "claude"
AGENT_PROMPT = (
    f"Please read the {INSTRUCTIONS_FILE} file and complete all tasks. "
    'Remember to type "exit" when done.'
)
AGENT_ARGS = ["--dangerously-skip-permissions", AGENT_PROMPT]

# Live-update channel
EVENTS_CHANNEL = "agent-boss:events"
REDIS_SOCKET_TIMEOUT_SECS = 5.0    # bounds every publish / store round trip

# Event names
EVENT_AGENT_CREATED = "agent:created"
EVENT_AGENT_STARTED = "agent:started"
EVENT_AGENT_STOPPED = "agent:stopped"
EVENT_AGENT_ERROR = "agent:error"
