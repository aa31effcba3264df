"""WebSocket fan-out hub: per-session subscriptions and event broadcast.

A connection starts unauthenticated and only receives its welcome frame.
After an ``auth`` frame it is subscribed to exactly one session; a later
``auth`` for another session moves the subscription.  Closing the socket
removes it everywhere.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from uuid import uuid4

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from orchestra.models import ProcessStatus
from orchestra.server.models import (
    AuthSuccessEvent,
    ErrorEvent,
    OutputEvent,
    ProcessStatusEvent,
    WelcomeEvent,
    WSEvent,
)

_log = logging.getLogger(__name__)

CommandHandler = Callable[[str, str], Awaitable[str]]


@dataclass
class _Client:
    websocket: WebSocket
    session_id: str | None = None


def _is_open(ws: WebSocket) -> bool:
    return (
        ws.client_state is WebSocketState.CONNECTED
        and ws.application_state is WebSocketState.CONNECTED
    )


async def _send_one(connection_id: str, ws: WebSocket, payload: str) -> str | None:
    """Try sending *payload* to a single client; return its id on failure."""
    if not _is_open(ws):
        return connection_id
    try:
        await ws.send_text(payload)
    except Exception:
        _log.warning("Failed to send to connection %s, marking as dead", connection_id)
        return connection_id
    return None


class ConnectionManager:
    """Track WebSocket connections per session and broadcast events."""

    def __init__(self) -> None:
        self._clients: dict[str, _Client] = {}
        self._subscribers: dict[str, set[str]] = {}
        self._lock = asyncio.Lock()
        self._command_handler: CommandHandler | None = None
        self._command_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    async def connect(self, websocket: WebSocket) -> str:
        """Accept *websocket*, register it and send the welcome frame."""
        await websocket.accept()
        connection_id = uuid4().hex
        async with self._lock:
            self._clients[connection_id] = _Client(websocket=websocket)
        _log.info("WebSocket connection opened: %s", connection_id)
        await _send_one(connection_id, websocket, WelcomeEvent().to_json())
        return connection_id

    async def authenticate(self, connection_id: str, session_id: str) -> bool:
        """Subscribe *connection_id* to *session_id*. False if the connection is gone."""
        async with self._lock:
            client = self._clients.get(connection_id)
            if client is None:
                return False
            if client.session_id is not None and client.session_id != session_id:
                self._unsubscribe(connection_id, client.session_id)
            client.session_id = session_id
            self._subscribers.setdefault(session_id, set()).add(connection_id)
            ws = client.websocket
        _log.info("WebSocket connection %s authenticated for session %s", connection_id, session_id)
        await _send_one(connection_id, ws, AuthSuccessEvent(session_id=session_id).to_json())
        return True

    async def disconnect(self, connection_id: str) -> None:
        """Forget *connection_id* and drop any subscriber set it empties."""
        async with self._lock:
            client = self._clients.pop(connection_id, None)
            for session_id in list(self._subscribers):
                self._unsubscribe(connection_id, session_id)
        if client is not None:
            _log.info("WebSocket connection closed: %s", connection_id)

    def _unsubscribe(self, connection_id: str, session_id: str) -> None:
        """Caller holds the lock."""
        members = self._subscribers.get(session_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._subscribers[session_id]

    async def send_to(self, connection_id: str, event: WSEvent) -> bool:
        """Send *event* to one connection; False if it is gone or not open."""
        client = self._clients.get(connection_id)
        if client is None:
            return False
        return await _send_one(connection_id, client.websocket, event.to_json()) is None

    async def broadcast(self, session_id: str, event: WSEvent) -> int:
        """Send *event* to every open subscriber of *session_id*.

        Closed or failing sockets are skipped and pruned.  Returns the number
        of clients that received the event.
        """
        async with self._lock:
            targets = [
                (cid, self._clients[cid].websocket)
                for cid in self._subscribers.get(session_id, ())
                if cid in self._clients
            ]
        if not targets:
            return 0

        payload = event.to_json()
        results = await asyncio.gather(
            *[_send_one(cid, ws, payload) for cid, ws in targets],
            return_exceptions=True,
        )
        dead: list[str] = []
        for result in results:
            if isinstance(result, BaseException):
                _log.error("Unexpected error during broadcast: %s", result)
            elif result is not None:
                dead.append(result)
        if dead:
            async with self._lock:
                for cid in dead:
                    self._unsubscribe(cid, session_id)
        return len(targets) - len(dead)

    async def send_output(self, session_id: str, content: str) -> int:
        return await self.broadcast(session_id, OutputEvent(session_id=session_id, content=content))

    async def send_error(self, session_id: str, message: str) -> int:
        return await self.broadcast(session_id, ErrorEvent(session_id=session_id, message=message))

    async def send_process_status(self, session_id: str, status: ProcessStatus) -> int:
        return await self.broadcast(
            session_id, ProcessStatusEvent(session_id=session_id, status=status)
        )

    def set_command_handler(self, handler: CommandHandler) -> None:
        """Register the coroutine that turns a command into reply text."""
        self._command_handler = handler

    async def on_command(self, session_id: str, content: str) -> None:
        """Run the command handler and push its reply (or error) to subscribers.

        Commands for the same session are handled one at a time, so output
        events go out in the order their replies completed.
        """
        handler = self._command_handler
        if handler is None:
            await self.send_error(session_id, "No command handler is registered")
            return
        lock = self._command_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            try:
                output = await handler(session_id, content)
            except Exception as exc:
                _log.exception("Command handling failed for session %s", session_id)
                await self.send_error(session_id, f"Error: {exc}")
                return
            await self.send_output(session_id, output)

    def forget_session(self, session_id: str) -> None:
        """Drop the session's command lock unless a command is running."""
        lock = self._command_locks.get(session_id)
        if lock is not None and not lock.locked():
            del self._command_locks[session_id]

    def dispatch_command(self, session_id: str, content: str) -> asyncio.Task[None]:
        """Schedule ``on_command`` without blocking the caller's receive loop."""
        task = asyncio.create_task(self.on_command(session_id, content))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def schedule_status(self, session_id: str, status: ProcessStatus) -> None:
        """Fire-and-forget ``process_status`` broadcast from synchronous code."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._broadcast_status(session_id, status))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _broadcast_status(self, session_id: str, status: ProcessStatus) -> None:
        await self.send_process_status(session_id, status)

    def session_of(self, connection_id: str) -> str | None:
        """Return the session *connection_id* is authenticated for, if any."""
        client = self._clients.get(connection_id)
        return client.session_id if client is not None else None

    def subscribers(self, session_id: str) -> set[str]:
        return set(self._subscribers.get(session_id, ()))

    def client_count(self, session_id: str) -> int:
        """Return number of subscribed clients for a session."""
        return len(self._subscribers.get(session_id, ()))

    def active_sessions(self) -> list[str]:
        """Return list of session IDs with subscribed clients."""
        return list(self._subscribers)
