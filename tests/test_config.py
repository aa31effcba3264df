"""Tests for environment-driven settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from orchestra.config import OrchestraSettings, load_settings
from orchestra.process.completion import DEFAULT_SENTINELS


class TestLoadSettings:
    def test_defaults_from_empty_env(self) -> None:
        settings = load_settings({})
        assert settings.command == "claude"
        assert settings.args == ()
        assert settings.workspace_root == Path("claude_workspaces")
        assert settings.response_timeout == 120.0
        assert settings.quiet_period == 3.0
        assert settings.min_response_chars == 500
        assert settings.sentinels == DEFAULT_SENTINELS
        assert settings.stop_grace == 1.0
        assert settings.exit_command == "exit"
        assert settings.persist_interval == 300.0
        assert settings.port == 3000
        assert settings.api_key is None

    def test_command_and_args(self) -> None:
        settings = load_settings(
            {"CLAUDE_COMMAND": "/opt/bin/claude", "CLAUDE_ARGS": "--model 'big one' -v"}
        )
        assert settings.command == "/opt/bin/claude"
        assert settings.args == ("--model", "big one", "-v")

    def test_numeric_overrides(self) -> None:
        settings = load_settings(
            {
                "ORCHESTRA_RESPONSE_TIMEOUT": "30",
                "ORCHESTRA_QUIET_PERIOD": "0.5",
                "ORCHESTRA_MIN_RESPONSE_CHARS": "10",
                "ORCHESTRA_PORT": "8080",
            }
        )
        assert settings.response_timeout == 30.0
        assert settings.quiet_period == 0.5
        assert settings.min_response_chars == 10
        assert settings.port == 8080

    def test_blank_numeric_uses_default(self) -> None:
        assert load_settings({"ORCHESTRA_STOP_GRACE": "  "}).stop_grace == 1.0

    def test_invalid_number_names_variable(self) -> None:
        with pytest.raises(ValueError, match="ORCHESTRA_RESPONSE_TIMEOUT"):
            load_settings({"ORCHESTRA_RESPONSE_TIMEOUT": "soon"})

    def test_negative_number_rejected(self) -> None:
        with pytest.raises(ValueError, match="ORCHESTRA_QUIET_PERIOD"):
            load_settings({"ORCHESTRA_QUIET_PERIOD": "-1"})

    def test_invalid_integer(self) -> None:
        with pytest.raises(ValueError, match="ORCHESTRA_PORT"):
            load_settings({"ORCHESTRA_PORT": "http"})

    def test_sentinels_keep_whitespace(self) -> None:
        settings = load_settings({"ORCHESTRA_PROMPT_SENTINELS": "> ,>>>"})
        assert settings.sentinels == ("> ", ">>>")

    def test_empty_sentinels_fall_back(self) -> None:
        assert load_settings({"ORCHESTRA_PROMPT_SENTINELS": ","}).sentinels == DEFAULT_SENTINELS

    def test_empty_api_key_disables_auth(self) -> None:
        assert load_settings({"ORCHESTRA_API_KEY": ""}).api_key is None

    def test_log_level_uppercased(self) -> None:
        assert load_settings({"ORCHESTRA_LOG_LEVEL": "debug"}).log_level == "DEBUG"


class TestDerivedValues:
    def test_paths_under_data_dir(self, tmp_path: Path) -> None:
        settings = OrchestraSettings(data_dir=tmp_path)
        assert settings.snapshot_path == tmp_path / "sessions" / "sessions.json"
        assert settings.log_dir == tmp_path / "logs"

    def test_completion_policy_mirrors_settings(self) -> None:
        settings = OrchestraSettings(
            response_timeout=7.0, quiet_period=0.25, min_response_chars=42, sentinels=("$",)
        )
        policy = settings.completion_policy()
        assert policy.hard_timeout == 7.0
        assert policy.quiet_period == 0.25
        assert policy.min_response_chars == 42
        assert policy.sentinels == ("$",)
