"""
REST API routes for the serverdeck dashboard.

Endpoints:
    GET    /api/server             — Current server view
    POST   /api/server/start       — Start a new server
    POST   /api/server/stop        — Stop the tracked server
    POST   /api/server/refresh     — Re-describe the tracked server now
    POST   /api/visibility         — Report dashboard visibility changes
    GET    /api/health             — Health check
    WS     /ws/server              — Real-time view updates and notices
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from control_plane.errors import (
    Conflict,
    ControlPlaneError,
    NotFound,
    Transient,
    Unauthenticated,
    Validation,
)
from dashboard.api.auth import require_api_key
from dashboard.models.server import CommandOutcome, DerivedView, ServerConfig

router = APIRouter()

# Injected by the app factory
_manager = None
_ws_connections: list[WebSocket] = []

_ERROR_STATUS: list[tuple[type[ControlPlaneError], int]] = [
    (Unauthenticated, 401),
    (NotFound, 404),
    (Conflict, 409),
    (Validation, 422),
    (Transient, 503),
]


def set_dependencies(manager):
    global _manager
    _manager = manager


class StartServerBody(BaseModel):
    """Request body for starting a server. Omit both to send the request without type or version."""

    type: Optional[str] = None
    version: Optional[str] = None


class VisibilityBody(BaseModel):
    visible: bool


class ServerStateResponse(BaseModel):
    """API response for the current server state."""

    view: DerivedView
    is_loading: bool
    is_starting: bool
    is_stopping: bool
    last_outcome: Optional[CommandOutcome] = None


def _require_manager():
    if _manager is None:
        raise HTTPException(status_code=503, detail="Server manager not initialized")
    return _manager


def _to_http_error(error: ControlPlaneError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=502, detail=error.message)


def _state_response(manager) -> ServerStateResponse:
    return ServerStateResponse(
        view=manager.view,
        is_loading=manager.is_loading,
        is_starting=manager.is_starting,
        is_stopping=manager.is_stopping,
        last_outcome=manager.commands.last_outcome,
    )


# ── Server endpoints ──────────────────────────────────────────────


@router.get(
    "/api/server",
    response_model=ServerStateResponse,
    dependencies=[Depends(require_api_key)],
)
async def get_server():
    """Get the reconciled view of the user's server."""
    return _state_response(_require_manager())


@router.post("/api/server/start", status_code=202, dependencies=[Depends(require_api_key)])
async def start_server(body: Optional[StartServerBody] = None):
    """Ask the control plane for a new server.

    Returns as soon as the command is accepted; the view reports PENDING
    until the server is up.
    """
    manager = _require_manager()
    config = None
    if body is not None and (body.type or body.version):
        config = ServerConfig(type=body.type or "", version=body.version or "")

    try:
        server_id = await manager.start_server(config)
    except ControlPlaneError as e:
        raise _to_http_error(e)

    return {"server_id": server_id, "status": manager.view.status.value}


@router.post("/api/server/stop", status_code=202, dependencies=[Depends(require_api_key)])
async def stop_server():
    """Ask the control plane to tear down the tracked server."""
    manager = _require_manager()
    try:
        await manager.stop_server()
    except ControlPlaneError as e:
        raise _to_http_error(e)

    return {"server_id": manager.view.server_id, "status": manager.view.status.value}


@router.post("/api/server/refresh", status_code=202, dependencies=[Depends(require_api_key)])
async def refresh_server():
    """Describe the tracked server now, even if its status is stable."""
    manager = _require_manager()
    manager.refresh()
    return {"server_id": manager.view.server_id}


@router.post("/api/visibility", dependencies=[Depends(require_api_key)])
async def report_visibility(body: VisibilityBody):
    """Report that the dashboard was hidden or shown again."""
    manager = _require_manager()
    resynced = manager.set_visibility(body.visible)
    return {"visible": body.visible, "resynced": resynced}


# ── Health check ──────────────────────────────────────────────────


@router.get("/api/health")
async def health_check():
    """System health check."""
    return {
        "status": "healthy",
        "manager_connected": _manager is not None,
        "polling": _manager.poller.is_polling if _manager else False,
    }


# ── WebSocket for real-time updates ──────────────────────────────


@router.websocket("/ws/server")
async def server_websocket(websocket: WebSocket):
    """WebSocket endpoint for real-time view updates and notices."""
    await websocket.accept()
    _ws_connections.append(websocket)

    if _manager is not None:
        await websocket.send_json({"event": "view", "view": _manager.view.model_dump(mode="json")})

    try:
        while True:
            # Keep connection alive, client can send pings
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        _ws_connections.remove(websocket)


async def broadcast(data: dict):
    """Broadcast an event to every connected dashboard."""
    for ws in list(_ws_connections):
        try:
            await ws.send_json(data)
        except Exception:
            _ws_connections.remove(ws)
