"""Route handlers for the FastAPI server."""

from __future__ import annotations

import contextlib
import logging
from typing import Annotated

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Request,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from pydantic import ValidationError

from orchestra.errors import OrchestraError, SessionNotFoundError
from orchestra.models import ChatMessage, ChatSession, ProcessStatus, Project
from orchestra.server.auth import verify_api_key, verify_ws_api_key
from orchestra.server.models import (
    CommandRequest,
    CommandResponse,
    CreateProjectRequest,
    CreateSessionRequest,
    ErrorEvent,
    HealthResponse,
    SessionDetail,
    SessionMessageRequest,
    SessionMessageResponse,
    StartProcessRequest,
    StopResponse,
    WSIncoming,
)
from orchestra.server.services import OrchestraServices

_log = logging.getLogger(__name__)

router = APIRouter()


def get_services(request: Request) -> OrchestraServices:
    """Return the service container attached by ``create_app``."""
    return request.app.state.orchestra


Services = Annotated[OrchestraServices, Depends(get_services)]

_authenticated = [Depends(verify_api_key)]


# --- Health ---


@router.get("/api/health", response_model=HealthResponse)
def health(services: Services) -> HealthResponse:
    """Health check endpoint."""
    live = sum(1 for s in services.controller.get_all_statuses().values() if s.running)
    return HealthResponse(processes=live)


# --- Processes ---


@router.post(
    "/api/claude/processes",
    response_model=ProcessStatus,
    status_code=status.HTTP_201_CREATED,
    dependencies=_authenticated,
)
async def start_process(body: StartProcessRequest, services: Services) -> ProcessStatus:
    """Start (or reuse) the process for a session."""
    if not body.session_id:
        raise HTTPException(status_code=400, detail="sessionId is required")
    record = await services.controller.start_session(body.session_id, body.workdir)
    if record is None:
        raise HTTPException(status_code=500, detail="Failed to start process")
    current = services.controller.get_status(body.session_id)
    return current if current is not None else record.to_status()


@router.get(
    "/api/claude/processes",
    response_model=dict[str, ProcessStatus],
    dependencies=_authenticated,
)
def list_processes(services: Services) -> dict[str, ProcessStatus]:
    return services.controller.get_all_statuses()


@router.get(
    "/api/claude/processes/{session_id}",
    response_model=ProcessStatus,
    dependencies=_authenticated,
)
def get_process(session_id: str, services: Services) -> ProcessStatus:
    current = services.controller.get_status(session_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Process not found")
    return current


@router.post(
    "/api/claude/processes/{session_id}/command",
    response_model=CommandResponse,
    dependencies=_authenticated,
)
async def send_command(
    session_id: str, body: CommandRequest, services: Services
) -> CommandResponse:
    """Send one input line to a running process and wait for its reply."""
    if not body.command:
        raise HTTPException(status_code=400, detail="command is required")
    try:
        reply = await services.channel.send(session_id, body.command)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except OrchestraError as exc:
        _log.error("Command failed for session %s: %s", session_id, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return CommandResponse(session_id=session_id, response=reply)


@router.delete(
    "/api/claude/processes/{session_id}",
    response_model=StopResponse,
    dependencies=_authenticated,
)
async def stop_process(
    session_id: str, services: Services, remove: bool = False
) -> StopResponse:
    """Stop a session's process; with ``?remove=true`` also forget its record."""
    if remove:
        if not await services.remove_session(session_id):
            raise HTTPException(status_code=404, detail="Process not found")
        return StopResponse(session_id=session_id, message="Process removed")
    if not await services.controller.stop_session(session_id):
        raise HTTPException(status_code=404, detail="Process not found")
    return StopResponse(session_id=session_id, message="Process stopped")


# --- Projects and chat sessions ---


@router.get("/api/projects", response_model=list[Project], dependencies=_authenticated)
def list_projects(services: Services) -> list[Project]:
    return services.projects.list_projects()


@router.post(
    "/api/projects",
    response_model=Project,
    status_code=status.HTTP_201_CREATED,
    dependencies=_authenticated,
)
def create_project(body: CreateProjectRequest, services: Services) -> Project:
    return services.projects.create_project(body.name, body.description)


@router.get("/api/sessions", response_model=list[ChatSession], dependencies=_authenticated)
def list_sessions(services: Services) -> list[ChatSession]:
    return services.projects.list_sessions()


@router.post(
    "/api/sessions",
    response_model=ChatSession,
    status_code=status.HTTP_201_CREATED,
    dependencies=_authenticated,
)
def create_session(body: CreateSessionRequest, services: Services) -> ChatSession:
    """Create a chat session for a project."""
    if not body.project_id:
        raise HTTPException(status_code=400, detail="projectId is required")
    session = services.projects.create_session(body.project_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return session


@router.get(
    "/api/sessions/{session_id}", response_model=SessionDetail, dependencies=_authenticated
)
def get_session(session_id: str, services: Services) -> SessionDetail:
    session = services.projects.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionDetail(
        **session.model_dump(), messages=services.projects.get_messages(session_id)
    )


@router.post(
    "/api/sessions/{session_id}/message",
    response_model=SessionMessageResponse,
    dependencies=_authenticated,
)
async def post_session_message(
    session_id: str, body: SessionMessageRequest, services: Services
) -> SessionMessageResponse:
    """Record a user message, relay it to the session's process, record the reply."""
    if services.projects.get_session(session_id) is None:
        raise HTTPException(status_code=404, detail="Session not found")
    if not body.message:
        raise HTTPException(status_code=400, detail="message is required")

    services.projects.append_messages(
        session_id, ChatMessage(role="user", content=body.message)
    )
    try:
        reply = await services.run_command(session_id, body.message)
    except OrchestraError as exc:
        _log.error("Message relay failed for session %s: %s", session_id, exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    session = services.projects.append_messages(
        session_id, ChatMessage(role="assistant", content=reply)
    )
    await services.persist_quietly()
    return SessionMessageResponse(
        session_id=session_id,
        message=reply,
        message_count=session.message_count if session is not None else 0,
    )


# --- WebSocket ---


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Bidirectional WebSocket: ``auth`` subscribes, ``command`` relays input."""
    if not await verify_ws_api_key(websocket):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    services: OrchestraServices = websocket.app.state.orchestra
    manager = services.connections
    connection_id = await manager.connect(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = WSIncoming.model_validate_json(raw)
            except ValidationError:
                await manager.send_to(connection_id, ErrorEvent(message="Invalid message format"))
                continue

            if msg.type == "auth":
                if not msg.session_id:
                    await manager.send_to(connection_id, ErrorEvent(message="sessionId is required"))
                    continue
                await manager.authenticate(connection_id, msg.session_id)
            elif msg.type == "command":
                session_id = msg.session_id or manager.session_of(connection_id)
                if not session_id or not msg.content:
                    await manager.send_to(
                        connection_id,
                        ErrorEvent(session_id=session_id, message="sessionId and content are required"),
                    )
                    continue
                manager.dispatch_command(session_id, msg.content)
            else:
                await manager.send_to(
                    connection_id, ErrorEvent(message=f"Unknown message type: {msg.type}")
                )
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        _log.exception("WebSocket error on connection %s", connection_id)
        with contextlib.suppress(Exception):
            await manager.send_to(connection_id, ErrorEvent(message=str(exc)))
    finally:
        await manager.disconnect(connection_id)
