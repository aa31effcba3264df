"""Shared types for session process state.

``ProcessStatus`` is the read-only view handed to HTTP handlers, WebSocket
subscribers and the snapshot file.  Projects, chat sessions and messages are
the business data kept by ``store.projects``.  Field names are camelCase on
the wire.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ProcessState(StrEnum):
    """Lifecycle of one session's child process."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    EXITED = "exited"


class CamelModel(BaseModel):
    """Base model that serializes field names as camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProcessStatus(CamelModel):
    """Point-in-time status of a session process."""

    session_id: str
    running: bool
    pid: int | None = None
    start_time: datetime | None = None
    exit_time: datetime | None = None
    exit_code: int | None = None
    workdir: str
    state: ProcessState = ProcessState.EXITED


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Project(CamelModel):
    """A named project that chat sessions belong to."""

    id: str
    name: str
    description: str = ""
    created_at: datetime = Field(default_factory=_utc_now)


class ChatMessage(CamelModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: datetime = Field(default_factory=_utc_now)


class ChatSession(CamelModel):
    """A conversation bound to one project and one assistant process."""

    id: str
    project_id: str
    project_name: str
    status: str = "active"
    message_count: int = 0
    created_at: datetime = Field(default_factory=_utc_now)
    last_active: datetime = Field(default_factory=_utc_now)
