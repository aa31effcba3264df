"""Tests for the ``orchestra`` command-line entrypoint."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from orchestra.cli import main, parse_cli_args


def test_parse_defaults() -> None:
    args = parse_cli_args([])
    assert args.command == "serve"
    assert args.host is None
    assert args.port is None


def test_serve_uses_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ORCHESTRA_HOST", "0.0.0.0")
    monkeypatch.setenv("ORCHESTRA_PORT", "4000")
    with patch("orchestra.server.cli.run_server") as run_server:
        main(["serve", "--env-file", str(tmp_path / ".env")])
    run_server.assert_called_once_with(host="0.0.0.0", port=4000, log_level="INFO")


def test_flags_override_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ORCHESTRA_PORT", "4000")
    with patch("orchestra.server.cli.run_server") as run_server:
        main(["serve", "--host", "::1", "--port", "5000", "--env-file", str(tmp_path / ".env")])
    run_server.assert_called_once_with(host="::1", port=5000, log_level="INFO")


def test_env_file_is_loaded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("ORCHESTRA_PORT", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("ORCHESTRA_PORT=4555\n", encoding="utf-8")
    # load_dotenv writes into os.environ; restore it afterwards.
    with patch.dict(os.environ), patch("orchestra.server.cli.run_server") as run_server:
        main(["serve", "--env-file", str(env_file)])
    assert run_server.call_args.kwargs["port"] == 4555


def test_unknown_command_exits(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["dance", "--env-file", str(tmp_path / ".env")])
    assert excinfo.value.code == 2


def test_invalid_configuration_exits(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ORCHESTRA_RESPONSE_TIMEOUT", "soon")
    with pytest.raises(SystemExit) as excinfo:
        main(["serve", "--env-file", str(tmp_path / ".env")])
    assert excinfo.value.code == 2
