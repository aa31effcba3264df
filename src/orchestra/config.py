"""Runtime settings loaded from environment variables.

Every tunable of the process layer (child command, timeouts, prompt
sentinels) and of the server (bind address, persistence cadence) lives on a
single frozen ``OrchestraSettings`` instance.  ``load_settings`` reads the
process environment; tests construct the dataclass directly.

Dependencies: process.completion
Wired in: cli.py → main(), server/app.py → create_app()
"""

from __future__ import annotations

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from orchestra.process.completion import DEFAULT_SENTINELS, CompletionPolicy

_DEFAULT_COMMAND = "claude"
_DEFAULT_RESPONSE_TIMEOUT = 120.0
_DEFAULT_QUIET_PERIOD = 3.0
_DEFAULT_MIN_RESPONSE_CHARS = 500
_DEFAULT_STOP_GRACE = 1.0
_DEFAULT_PERSIST_INTERVAL = 5 * 60.0
_DEFAULT_PORT = 3000


@dataclass(frozen=True)
class OrchestraSettings:
    """Immutable configuration shared by the controller, channel and server."""

    command: str = _DEFAULT_COMMAND
    """Executable of the interactive assistant, e.g. ``"claude"``."""

    args: tuple[str, ...] = ()
    """Extra arguments passed to ``command``."""

    workspace_root: Path = field(default_factory=lambda: Path("claude_workspaces"))
    """Parent directory of the per-session working directories."""

    data_dir: Path = field(default_factory=lambda: Path("data"))
    """Holds ``sessions/sessions.json`` and the per-session transcript logs."""

    response_timeout: float = _DEFAULT_RESPONSE_TIMEOUT
    quiet_period: float = _DEFAULT_QUIET_PERIOD
    min_response_chars: int = _DEFAULT_MIN_RESPONSE_CHARS
    sentinels: tuple[str, ...] = DEFAULT_SENTINELS

    stop_grace: float = _DEFAULT_STOP_GRACE
    """Seconds between the exit command and the forced kill."""

    exit_command: str = "exit"
    startup_delay: float = 1.0
    """Pause after spawning before the first command is written."""

    persist_interval: float = _DEFAULT_PERSIST_INTERVAL
    host: str = "127.0.0.1"
    port: int = _DEFAULT_PORT
    api_key: str | None = None
    log_level: str = "INFO"

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / "sessions" / "sessions.json"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    def completion_policy(self) -> CompletionPolicy:
        """Build the response-completion policy from these settings."""
        return CompletionPolicy(
            sentinels=self.sentinels,
            min_response_chars=self.min_response_chars,
            quiet_period=self.quiet_period,
            hard_timeout=self.response_timeout,
        )


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _sentinels(raw: str | None) -> tuple[str, ...]:
    if raw is None:
        return DEFAULT_SENTINELS
    # Commas separate markers; surrounding whitespace is significant ("> ").
    markers = tuple(m for m in raw.split(",") if m)
    return markers or DEFAULT_SENTINELS


def load_settings(env: Mapping[str, str] | None = None) -> OrchestraSettings:
    """Read settings from *env* (defaults to ``os.environ``).

    ``CLAUDE_COMMAND`` and ``CLAUDE_ARGS`` select the child program; every
    other knob uses the ``ORCHESTRA_`` prefix.  Raises ``ValueError`` for
    malformed numeric values.
    """
    source: Mapping[str, str] = os.environ if env is None else env
    return OrchestraSettings(
        command=source.get("CLAUDE_COMMAND") or _DEFAULT_COMMAND,
        args=tuple(shlex.split(source.get("CLAUDE_ARGS", ""))),
        workspace_root=Path(source.get("ORCHESTRA_WORKSPACE_ROOT", "claude_workspaces")),
        data_dir=Path(source.get("ORCHESTRA_DATA_DIR", "data")),
        response_timeout=_float(source, "ORCHESTRA_RESPONSE_TIMEOUT", _DEFAULT_RESPONSE_TIMEOUT),
        quiet_period=_float(source, "ORCHESTRA_QUIET_PERIOD", _DEFAULT_QUIET_PERIOD),
        min_response_chars=_int(
            source, "ORCHESTRA_MIN_RESPONSE_CHARS", _DEFAULT_MIN_RESPONSE_CHARS
        ),
        sentinels=_sentinels(source.get("ORCHESTRA_PROMPT_SENTINELS")),
        stop_grace=_float(source, "ORCHESTRA_STOP_GRACE", _DEFAULT_STOP_GRACE),
        exit_command=source.get("ORCHESTRA_EXIT_COMMAND", "exit"),
        startup_delay=_float(source, "ORCHESTRA_STARTUP_DELAY", 1.0),
        persist_interval=_float(
            source, "ORCHESTRA_PERSIST_INTERVAL", _DEFAULT_PERSIST_INTERVAL
        ),
        host=source.get("ORCHESTRA_HOST", "127.0.0.1"),
        port=_int(source, "ORCHESTRA_PORT", _DEFAULT_PORT),
        api_key=source.get("ORCHESTRA_API_KEY") or None,
        log_level=source.get("ORCHESTRA_LOG_LEVEL", "INFO").upper(),
    )
