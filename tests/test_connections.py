"""Tests for the WebSocket fan-out hub, using fake sockets."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from starlette.websockets import WebSocketState

from orchestra.models import ProcessStatus
from orchestra.server.connections import ConnectionManager
from orchestra.server.models import OutputEvent


class FakeWebSocket:
    """Just enough of ``starlette.websockets.WebSocket`` for the manager."""

    def __init__(self, *, fail: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.sent: list[dict[str, Any]] = []
        self.fail = fail

    async def accept(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket broke")
        self.sent.append(json.loads(data))

    def types(self) -> list[str]:
        return [frame["type"] for frame in self.sent]


async def _connected(
    manager: ConnectionManager, session_id: str | None = None
) -> tuple[str, FakeWebSocket]:
    ws = FakeWebSocket()
    cid = await manager.connect(ws)  # type: ignore[arg-type]
    if session_id is not None:
        await manager.authenticate(cid, session_id)
    return cid, ws


class TestSubscriptions:
    async def test_connect_sends_welcome(self) -> None:
        manager = ConnectionManager()
        _, ws = await _connected(manager)
        assert ws.types() == ["welcome"]
        assert ws.sent[0]["message"]

    async def test_authenticate_subscribes(self) -> None:
        manager = ConnectionManager()
        cid, ws = await _connected(manager, "s1")
        assert ws.sent[-1] == {
            "type": "auth_success",
            "sessionId": "s1",
            "message": "WebSocket connection authenticated",
        }
        assert manager.subscribers("s1") == {cid}
        assert manager.session_of(cid) == "s1"
        assert manager.active_sessions() == ["s1"]

    async def test_reauth_moves_subscription(self) -> None:
        manager = ConnectionManager()
        cid, _ = await _connected(manager, "s1")
        await manager.authenticate(cid, "s2")
        assert manager.subscribers("s1") == set()
        assert manager.subscribers("s2") == {cid}
        assert manager.active_sessions() == ["s2"]

    async def test_authenticate_unknown_connection(self) -> None:
        assert await ConnectionManager().authenticate("ghost", "s1") is False

    async def test_disconnect_drops_empty_sets(self) -> None:
        manager = ConnectionManager()
        cid, _ = await _connected(manager, "s1")
        other, _ = await _connected(manager, "s1")
        await manager.disconnect(cid)
        assert manager.subscribers("s1") == {other}
        await manager.disconnect(other)
        assert manager.active_sessions() == []
        assert manager.client_count("s1") == 0


class TestBroadcast:
    async def test_only_subscribers_receive(self) -> None:
        manager = ConnectionManager()
        _, ws1 = await _connected(manager, "s1")
        _, ws2 = await _connected(manager, "s2")
        _, idle = await _connected(manager)
        delivered = await manager.send_output("s1", "hello")
        assert delivered == 1
        assert ws1.sent[-1]["type"] == "claude_output"
        assert ws1.sent[-1]["content"] == "hello"
        assert ws1.sent[-1]["sessionId"] == "s1"
        assert "timestamp" in ws1.sent[-1]
        assert "claude_output" not in ws2.types()
        assert idle.types() == ["welcome"]

    async def test_no_subscribers(self) -> None:
        assert await ConnectionManager().send_output("nobody", "hi") == 0

    async def test_closed_socket_is_skipped_and_pruned(self) -> None:
        manager = ConnectionManager()
        closed_id, closed = await _connected(manager, "s1")
        live_id, live = await _connected(manager, "s1")
        closed.client_state = WebSocketState.DISCONNECTED
        assert await manager.send_output("s1", "hi") == 1
        assert live.sent[-1]["content"] == "hi"
        assert "claude_output" not in closed.types()
        assert manager.subscribers("s1") == {live_id}
        assert closed_id not in manager.subscribers("s1")

    async def test_failing_socket_never_raises(self) -> None:
        manager = ConnectionManager()
        bad_id, bad = await _connected(manager, "s1")
        _, good = await _connected(manager, "s1")
        bad.fail = True
        assert await manager.broadcast("s1", OutputEvent(session_id="s1", content="x")) == 1
        assert good.sent[-1]["content"] == "x"
        assert bad_id not in manager.subscribers("s1")

    async def test_error_event(self) -> None:
        manager = ConnectionManager()
        _, ws = await _connected(manager, "s1")
        await manager.send_error("s1", "went wrong")
        assert ws.sent[-1]["type"] == "error"
        assert ws.sent[-1]["message"] == "went wrong"

    async def test_process_status_event(self) -> None:
        manager = ConnectionManager()
        _, ws = await _connected(manager, "s1")
        status = ProcessStatus(session_id="s1", running=True, pid=12, workdir="/w")
        await manager.send_process_status("s1", status)
        frame = ws.sent[-1]
        assert frame["type"] == "process_status"
        assert frame["status"]["sessionId"] == "s1"
        assert frame["status"]["running"] is True

    async def test_send_to_single_connection(self) -> None:
        manager = ConnectionManager()
        cid, ws = await _connected(manager)
        assert await manager.send_to(cid, OutputEvent(session_id="s1", content="direct"))
        assert ws.sent[-1]["content"] == "direct"
        assert not await manager.send_to("ghost", OutputEvent(session_id="s1", content="x"))


class TestCommands:
    async def test_command_output_is_broadcast(self) -> None:
        manager = ConnectionManager()
        _, ws = await _connected(manager, "s1")

        async def handler(session_id: str, content: str) -> str:
            return f"{session_id}:{content}"

        manager.set_command_handler(handler)
        await manager.dispatch_command("s1", "hi")
        assert ws.sent[-1]["type"] == "claude_output"
        assert ws.sent[-1]["content"] == "s1:hi"

    async def test_handler_error_becomes_error_event(self) -> None:
        manager = ConnectionManager()
        _, ws = await _connected(manager, "s1")

        async def handler(session_id: str, content: str) -> str:
            raise RuntimeError("boom")

        manager.set_command_handler(handler)
        await manager.on_command("s1", "hi")
        assert ws.sent[-1]["type"] == "error"
        assert ws.sent[-1]["message"] == "Error: boom"

    async def test_missing_handler(self) -> None:
        manager = ConnectionManager()
        _, ws = await _connected(manager, "s1")
        await manager.on_command("s1", "hi")
        assert ws.sent[-1]["type"] == "error"

    async def test_outputs_follow_submission_order(self) -> None:
        manager = ConnectionManager()
        _, ws = await _connected(manager, "s1")

        async def handler(session_id: str, content: str) -> str:
            if content == "slow":
                await asyncio.sleep(0.1)
            return content

        manager.set_command_handler(handler)
        first = manager.dispatch_command("s1", "slow")
        second = manager.dispatch_command("s1", "fast")
        await asyncio.gather(first, second)
        outputs = [f["content"] for f in ws.sent if f["type"] == "claude_output"]
        assert outputs == ["slow", "fast"]

    async def test_schedule_status_outside_loop_is_noop(self) -> None:
        manager = ConnectionManager()
        status = ProcessStatus(session_id="s1", running=False, workdir="/w")
        # Called from a worker thread with no running loop.
        await asyncio.to_thread(manager.schedule_status, "s1", status)

    async def test_forget_session_drops_idle_command_lock(self) -> None:
        manager = ConnectionManager()

        async def handler(session_id: str, content: str) -> str:
            return content

        manager.set_command_handler(handler)
        await manager.dispatch_command("s1", "hi")
        assert "s1" in manager._command_locks  # type: ignore[reportPrivateUsage]
        manager.forget_session("s1")
        assert manager._command_locks == {}  # type: ignore[reportPrivateUsage]
        manager.forget_session("never-seen")
