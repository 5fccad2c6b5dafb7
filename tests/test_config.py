"""
Tests for common/config.py

Validates:
- defaults when the environment is empty
- environment overrides, including shell-style argument parsing
- AGENT_BOSS_AUTO_EXIT=0 disables the auto-exit timer
- malformed numbers raise ValueError naming the variable
- load_dotenv never overwrites variables that are already set
"""

import os
from pathlib import Path

import pytest

from src.common.config import Settings, load_dotenv, load_settings
from src.common.constants import (
    AGENT_ARGS,
    AGENT_COMMAND,
    AUTO_EXIT_SECS,
    GRACE_PERIOD_SECS,
    WORKSPACES_DIR,
)


def test_defaults():
    settings = load_settings({})

    assert settings.workspace_root == WORKSPACES_DIR
    assert settings.grace_period == GRACE_PERIOD_SECS
    assert settings.auto_exit == AUTO_EXIT_SECS
    assert settings.agent_command == AGENT_COMMAND
    assert settings.agent_args == list(AGENT_ARGS)
    assert settings.log_dir is None
    assert settings.redis_port == 6379


def test_defaults_match_dataclass():
    assert load_settings({}) == Settings()


def test_environment_overrides(tmp_path):
    settings = load_settings({
        "AGENT_BOSS_WORKSPACE_ROOT": str(tmp_path),
        "AGENT_BOSS_GRACE_PERIOD": "2.5",
        "AGENT_BOSS_AUTO_EXIT": "60",
        "AGENT_BOSS_COMMAND": "worker",
        "AGENT_BOSS_ARGS": "--mode 'two words'",
        "AGENT_BOSS_LOG_DIR": str(tmp_path / "logs"),
        "LOG_LEVEL": "DEBUG",
        "REDIS_PORT": "6380",
    })

    assert settings.workspace_root == Path(tmp_path)
    assert settings.grace_period == 2.5
    assert settings.auto_exit == 60.0
    assert settings.agent_command == "worker"
    assert settings.agent_args == ["--mode", "two words"]
    assert settings.log_dir == tmp_path / "logs"
    assert settings.log_level == "debug"
    assert settings.redis_port == 6380


def test_empty_args_variable_means_no_args():
    assert load_settings({"AGENT_BOSS_ARGS": ""}).agent_args == []


def test_zero_auto_exit_disables_timer():
    assert load_settings({"AGENT_BOSS_AUTO_EXIT": "0"}).auto_exit is None


@pytest.mark.parametrize("name,value", [
    ("AGENT_BOSS_GRACE_PERIOD", "soon"),
    ("AGENT_BOSS_GRACE_PERIOD", "-1"),
    ("AGENT_BOSS_STOP_TIMEOUT", "abc"),
    ("REDIS_PORT", "6379.5"),
])
def test_invalid_values_raise(name, value):
    with pytest.raises(ValueError, match=name):
        load_settings({name: value})


def test_load_dotenv_does_not_overwrite(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\n"
        "AGENT_BOSS_TEST_NEW='from file'\n"
        "AGENT_BOSS_TEST_SET=from file\n"
        "not a pair\n"
    )
    monkeypatch.delenv("AGENT_BOSS_TEST_NEW", raising=False)
    monkeypatch.setenv("AGENT_BOSS_TEST_SET", "from shell")

    load_dotenv(env_file)

    assert os.environ["AGENT_BOSS_TEST_NEW"] == "from file"
    assert os.environ["AGENT_BOSS_TEST_SET"] == "from shell"
    monkeypatch.delenv("AGENT_BOSS_TEST_NEW")


def test_load_dotenv_missing_file(tmp_path):
    load_dotenv(tmp_path / "missing.env")
