"""API key authentication for the server."""

from __future__ import annotations

import secrets

from fastapi import HTTPException, Request, WebSocket, status
from starlette.requests import HTTPConnection


def get_api_key(connection: HTTPConnection) -> str | None:
    """Return the configured API key, or None if auth is disabled."""
    return connection.app.state.orchestra.settings.api_key


def verify_api_key(request: Request) -> None:
    """Verify X-API-Key header against configured key. No-op if key not set."""
    expected = get_api_key(request)
    if expected is None:
        return
    provided = request.headers.get("X-API-Key", "")
    if not secrets.compare_digest(provided, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )


async def verify_ws_api_key(websocket: WebSocket) -> bool:
    """Verify API key for WebSocket connections via X-API-Key header only.

    Query-parameter auth is not supported so keys never land in access logs.
    Returns True if valid.
    """
    expected = get_api_key(websocket)
    if expected is None:
        return True
    provided = websocket.headers.get("X-API-Key", "")
    return secrets.compare_digest(provided, expected) if provided else False
