"""Pydantic models for server API requests, responses, and WebSocket messages."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import ConfigDict, Field

from orchestra import __version__
from orchestra.models import CamelModel, ChatMessage, ChatSession, ProcessStatus


def _utc_now() -> datetime:
    return datetime.now(UTC)


# --- REST models ---


class StartProcessRequest(CamelModel):
    """POST /api/claude/processes request body."""

    session_id: str | None = None
    workdir: str | None = None


class CommandRequest(CamelModel):
    """POST /api/claude/processes/{id}/command request body."""

    command: str | None = None


class CommandResponse(CamelModel):
    session_id: str
    response: str
    timestamp: datetime = Field(default_factory=_utc_now)


class StopResponse(CamelModel):
    session_id: str
    message: str


class HealthResponse(CamelModel):
    """GET /api/health response."""

    status: str = "ok"
    version: str = __version__
    processes: int = 0


class CreateProjectRequest(CamelModel):
    name: str
    description: str = ""


class CreateSessionRequest(CamelModel):
    project_id: str | None = None


class SessionMessageRequest(CamelModel):
    message: str | None = None


class SessionMessageResponse(CamelModel):
    session_id: str
    message: str
    message_count: int


class SessionDetail(ChatSession):
    """GET /api/sessions/{id} response: session plus its history."""

    messages: list[ChatMessage] = Field(default_factory=list)


# --- WebSocket models ---


class WSIncoming(CamelModel):
    """Incoming WebSocket frame from a client."""

    model_config = ConfigDict(extra="ignore")

    type: str
    session_id: str | None = None
    content: str | None = None


class WSEvent(CamelModel):
    """Base for outgoing WebSocket frames."""

    type: str

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class WelcomeEvent(WSEvent):
    type: Literal["welcome"] = "welcome"
    message: str = "WebSocket connection established. Authenticate with a session id."


class AuthSuccessEvent(WSEvent):
    type: Literal["auth_success"] = "auth_success"
    session_id: str
    message: str = "WebSocket connection authenticated"


class OutputEvent(WSEvent):
    type: Literal["claude_output"] = "claude_output"
    session_id: str
    content: str
    timestamp: datetime = Field(default_factory=_utc_now)


class ErrorEvent(WSEvent):
    type: Literal["error"] = "error"
    session_id: str | None = None
    message: str
    timestamp: datetime = Field(default_factory=_utc_now)


class ProcessStatusEvent(WSEvent):
    type: Literal["process_status"] = "process_status"
    session_id: str
    status: ProcessStatus
    timestamp: datetime = Field(default_factory=_utc_now)
