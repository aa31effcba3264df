"""Command/response channel over a session process's stdin/stdout.

One command is in flight per session at a time: concurrent callers queue on
a per-session ``asyncio.Lock`` and are served in submission order, so the
output collected for a command can never belong to another command.  Sessions
never wait on each other.

Dependencies: errors, process.completion, process.registry
Wired in: server/app.py → create_app(), server/routes.py
"""

from __future__ import annotations

import asyncio
import logging

from orchestra.errors import (
    ChannelBusyError,
    ChannelClosedError,
    SessionNotFoundError,
    SessionNotRunningError,
)
from orchestra.models import ProcessState
from orchestra.process.completion import CollectedResponse, CompletionPolicy, ResponseCollector
from orchestra.process.registry import ProcessRecord, ProcessRegistry

_log = logging.getLogger(__name__)

_PREVIEW_CHARS = 50


def _preview(text: str) -> str:
    return text[:_PREVIEW_CHARS] + ("..." if len(text) > _PREVIEW_CHARS else "")


class CommandChannel:
    """Send input lines to session processes and collect their replies."""

    def __init__(self, registry: ProcessRegistry, policy: CompletionPolicy) -> None:
        self._registry = registry
        self._policy = policy
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def policy(self) -> CompletionPolicy:
        return self._policy

    def in_flight(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    def forget(self, session_id: str) -> None:
        """Drop the session's queue lock unless a command still holds it."""
        lock = self._locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._locks[session_id]

    async def send(self, session_id: str, line: str) -> str:
        """Send *line* and return the reply text (possibly timeout-annotated)."""
        response = await self.exchange(session_id, line)
        return response.text

    async def exchange(
        self, session_id: str, line: str, *, wait: bool = True
    ) -> CollectedResponse:
        """Send *line* and return the collected reply with its completion reason.

        With ``wait=False`` a busy session raises ``ChannelBusyError`` instead
        of queuing.
        """
        self._require_running(session_id)
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        if not wait and lock.locked():
            raise ChannelBusyError(session_id)
        async with lock:
            # The process may have exited while we were queued.
            record = self._require_running(session_id)
            return await self._round_trip(record, line)

    def _require_running(self, session_id: str) -> ProcessRecord:
        record = self._registry.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        if record.state is not ProcessState.RUNNING or not record.is_alive:
            raise SessionNotRunningError(session_id)
        return record

    async def _round_trip(self, record: ProcessRecord, line: str) -> CollectedResponse:
        session_id = record.session_id
        process = record.process
        assert process is not None

        # Subscribe before writing so no reply byte can slip past.
        chunks = record.attach_listener()
        try:
            _log.info("Sending command to session %s: %s", session_id, _preview(line))
            record.log("COMMAND", line)
            await self._write_line(record, line)
            collector = ResponseCollector(session_id, self._policy)
            response = await collector.collect(chunks, lambda: record.is_alive)
        finally:
            record.detach_listener()
            record.clear_pending()

        _log.info(
            "Session %s reply complete (%s): %d chars in %.1fs",
            session_id,
            response.reason,
            len(response.text),
            response.elapsed,
        )
        return response

    async def _write_line(self, record: ProcessRecord, line: str) -> None:
        process = record.process
        stdin = process.stdin if process is not None else None
        if stdin is None or stdin.is_closing():
            raise ChannelClosedError(
                record.session_id, f"stdin of session {record.session_id} is closed"
            )
        try:
            stdin.write(f"{line}\n".encode())
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ChannelClosedError(
                record.session_id,
                f"Could not write to session {record.session_id}: {exc}",
            ) from exc
