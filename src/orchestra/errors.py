"""Exception hierarchy for the session process layer.

Dependencies: (none, leaf module)
Wired in: process/controller.py, process/channel.py, process/completion.py,
    server/routes.py
"""

from __future__ import annotations


class OrchestraError(RuntimeError):
    """Base class for errors raised by the process layer."""

    def __init__(self, session_id: str, message: str) -> None:
        super().__init__(message)
        self.session_id = session_id


class SpawnFailureError(OrchestraError):
    """The OS could not create the child process."""


class SessionNotFoundError(OrchestraError):
    """No record exists for the session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, f"No process found for session {session_id}")


class SessionNotRunningError(OrchestraError):
    """The record exists but its process is not accepting commands."""

    def __init__(self, session_id: str, message: str | None = None) -> None:
        super().__init__(
            session_id, message or f"Process for session {session_id} is not running"
        )


class ProcessDiedError(SessionNotRunningError):
    """The process exited while a command was outstanding, with no output."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            session_id,
            f"Process for session {session_id} is not responding; it may have exited",
        )


class ChannelBusyError(OrchestraError):
    """A command is already in flight and the caller asked not to queue."""

    def __init__(self, session_id: str) -> None:
        super().__init__(session_id, f"A command is already in flight for session {session_id}")


class ChannelClosedError(OrchestraError):
    """Writing to the child's stdin failed."""
