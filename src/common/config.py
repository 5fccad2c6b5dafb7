"""Runtime settings, resolved from the environment with sensible defaults."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from src.common.constants import (
    AGENT_ARGS,
    AGENT_COMMAND,
    AUTO_EXIT_SECS,
    EVENTS_CHANNEL,
    GRACE_PERIOD_SECS,
    PROJECT_ROOT,
    STOP_TIMEOUT_SECS,
    WORKSPACES_DIR,
)


@dataclass
class Settings:
    """Orchestrator configuration surface."""

    workspace_root: Path = WORKSPACES_DIR
    grace_period: float = GRACE_PERIOD_SECS
    auto_exit: float | None = AUTO_EXIT_SECS     # None disables the timer
    stop_timeout: float = STOP_TIMEOUT_SECS
    agent_command: str = AGENT_COMMAND
    agent_args: list[str] = field(default_factory=lambda: list(AGENT_ARGS))
    log_level: str = "info"
    log_dir: Path | None = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_password: str | None = None
    events_channel: str = EVENTS_CHANNEL


def load_dotenv(env_path: Path | None = None) -> None:
    """Load variables from a .env file into os.environ (no overwrite)."""
    env_path = env_path or PROJECT_ROOT / ".env"
    if not env_path.is_file():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            os.environ.setdefault(key.strip(), value.strip().strip("\"'"))


def _float(env: dict[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _int(env: dict[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Build Settings from *env* (defaults to ``os.environ``)."""
    env = dict(os.environ if env is None else env)

    auto_exit: float | None = _float(env, "AGENT_BOSS_AUTO_EXIT", AUTO_EXIT_SECS)
    if auto_exit == 0:
        auto_exit = None

    raw_args = env.get("AGENT_BOSS_ARGS")
    agent_args = shlex.split(raw_args) if raw_args is not None else list(AGENT_ARGS)

    log_dir = env.get("AGENT_BOSS_LOG_DIR", "").strip()

    return Settings(
        workspace_root=Path(env.get("AGENT_BOSS_WORKSPACE_ROOT") or WORKSPACES_DIR),
        grace_period=_float(env, "AGENT_BOSS_GRACE_PERIOD", GRACE_PERIOD_SECS),
        auto_exit=auto_exit,
        stop_timeout=_float(env, "AGENT_BOSS_STOP_TIMEOUT", STOP_TIMEOUT_SECS),
        agent_command=env.get("AGENT_BOSS_COMMAND") or AGENT_COMMAND,
        agent_args=agent_args,
        log_level=(env.get("LOG_LEVEL") or "info").lower(),
        log_dir=Path(log_dir) if log_dir else None,
        redis_host=env.get("REDIS_HOST") or "localhost",
        redis_port=_int(env, "REDIS_PORT", 6379),
        redis_db=_int(env, "REDIS_DB", 0),
        redis_password=env.get("REDIS_PASSWORD") or None,
        events_channel=env.get("AGENT_BOSS_EVENTS_CHANNEL") or EVENTS_CHANNEL,
    )
