"""Shared test fixtures for orchestra."""

from __future__ import annotations

import sys
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest
from bots import ECHO_BOT, ControllerFactory, SettingsFactory

from orchestra.config import OrchestraSettings
from orchestra.process import CommandChannel, ProcessRegistry, SessionController


@pytest.fixture()
def make_settings(tmp_path: Path) -> SettingsFactory:
    """Build settings that run *script* as the session program."""

    def factory(script: str = ECHO_BOT, **overrides: Any) -> OrchestraSettings:
        values: dict[str, Any] = {
            "command": sys.executable,
            "args": ("-u", "-c", script),
            "workspace_root": tmp_path / "workspaces",
            "data_dir": tmp_path / "data",
            "response_timeout": 5.0,
            "quiet_period": 0.2,
            "stop_grace": 0.5,
            "startup_delay": 0.0,
            "persist_interval": 0.0,
        }
        values.update(overrides)
        return OrchestraSettings(**values)

    return factory


@pytest.fixture()
def settings(make_settings: SettingsFactory) -> OrchestraSettings:
    return make_settings()


@pytest.fixture()
def registry() -> ProcessRegistry:
    return ProcessRegistry()


@pytest.fixture()
async def controller(
    registry: ProcessRegistry, settings: OrchestraSettings
) -> AsyncIterator[SessionController]:
    """Controller whose children are all stopped after the test."""
    ctrl = SessionController(registry, settings)
    yield ctrl
    await ctrl.cleanup_all()


@pytest.fixture()
async def make_controller(make_settings: SettingsFactory) -> AsyncIterator[ControllerFactory]:
    """Build controllers running custom scripts; all are cleaned up afterwards."""
    created: list[SessionController] = []

    def factory(script: str, **overrides: Any) -> SessionController:
        ctrl = SessionController(ProcessRegistry(), make_settings(script, **overrides))
        created.append(ctrl)
        return ctrl

    yield factory
    for ctrl in created:
        await ctrl.cleanup_all()


@pytest.fixture()
def channel(registry: ProcessRegistry, settings: OrchestraSettings) -> CommandChannel:
    return CommandChannel(registry, settings.completion_policy())
