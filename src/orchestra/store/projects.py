"""In-memory store for projects, chat sessions and their messages."""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from typing import Any, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ValidationError

from orchestra.models import ChatMessage, ChatSession, Project

_log = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


class ProjectStore:
    """Thread-safe in-memory project and chat-session manager.

    The whole store round-trips through ``to_document`` / ``load_document``
    so it can be persisted in the state snapshot.
    """

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}
        self._sessions: dict[str, ChatSession] = {}
        self._messages: dict[str, list[ChatMessage]] = {}
        self._lock = threading.Lock()

    def create_project(self, name: str, description: str = "") -> Project:
        project = Project(id=uuid4().hex, name=name, description=description)
        with self._lock:
            self._projects[project.id] = project
        return project

    def list_projects(self) -> list[Project]:
        with self._lock:
            return list(self._projects.values())

    def get_project(self, project_id: str) -> Project | None:
        with self._lock:
            return self._projects.get(project_id)

    def create_session(self, project_id: str) -> ChatSession | None:
        """Create a chat session for *project_id*; None if the project is unknown."""
        with self._lock:
            project = self._projects.get(project_id)
            if project is None:
                return None
            session = ChatSession(
                id=uuid4().hex, project_id=project_id, project_name=project.name
            )
            self._sessions[session.id] = session
            self._messages[session.id] = []
            return session

    def list_sessions(self) -> list[ChatSession]:
        with self._lock:
            return list(self._sessions.values())

    def get_session(self, session_id: str) -> ChatSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def get_messages(self, session_id: str) -> list[ChatMessage]:
        with self._lock:
            return list(self._messages.get(session_id, []))

    def append_messages(self, session_id: str, *messages: ChatMessage) -> ChatSession | None:
        """Append *messages* and touch the session. Returns the updated session."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            history = self._messages.setdefault(session_id, [])
            history.extend(messages)
            session.message_count = len(history)
            session.last_active = datetime.now(UTC)
            return session

    def to_document(self) -> dict[str, Any]:
        with self._lock:
            return {
                "projects": [p.model_dump(mode="json", by_alias=True) for p in self._projects.values()],
                "sessions": [s.model_dump(mode="json", by_alias=True) for s in self._sessions.values()],
                "messages": {
                    sid: [m.model_dump(mode="json", by_alias=True) for m in msgs]
                    for sid, msgs in self._messages.items()
                },
            }

    def load_document(self, document: dict[str, Any]) -> None:
        """Replace contents with a snapshot document; bad entries are skipped."""
        projects = _parse_many(Project, document.get("projects"))
        sessions = _parse_many(ChatSession, document.get("sessions"))
        raw_messages = document.get("messages")
        messages: dict[str, list[ChatMessage]] = {}
        if isinstance(raw_messages, dict):
            for sid, items in raw_messages.items():
                messages[str(sid)] = _parse_many(ChatMessage, items)
        with self._lock:
            self._projects = {p.id: p for p in projects}
            self._sessions = {s.id: s for s in sessions}
            self._messages = messages
        _log.info("Restored %d project(s) and %d session(s)", len(projects), len(sessions))


def _parse_many(model: type[_M], raw: object) -> list[_M]:
    if not isinstance(raw, list):
        return []
    parsed: list[_M] = []
    for item in raw:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as exc:
            _log.warning("Skipping invalid %s in snapshot: %s", model.__name__, exc)
    return parsed
