"""
Main FastAPI application — the entry point for serverdeck.

Wires together:
- Control-plane client (describe, list, create, destroy)
- Server manager (lookup, polling, commands, reconciled view)
- REST API routes (view, start/stop, refresh, visibility, health)
- WebSocket push of view changes and user notices
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from control_plane.client import ControlPlaneClient
from control_plane.credentials import SettingsCredentialSource
from dashboard.api.routes import broadcast, router, set_dependencies
from dashboard.models.server import DerivedView, Notice
from dashboard.services.config import configure_logging, get_settings
from lifecycle.manager import ServerManager

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings = get_settings()

    credentials = SettingsCredentialSource()
    client = ControlPlaneClient(credentials)

    # ── WebSocket callbacks ────────────────────────────────────
    async def on_change(view: DerivedView):
        await broadcast({"event": "view", "view": view.model_dump(mode="json")})

    async def on_notice(notice: Notice):
        await broadcast({"event": "notice", "notice": notice.model_dump(mode="json")})

    manager = ServerManager(
        client=client,
        credentials=credentials,
        interval=settings.poll_interval_seconds,
        on_change=on_change,
        on_notice=on_notice,
    )
    set_dependencies(manager)

    for w in settings.validate_required_keys():
        await logger.awarning("Configuration warning", message=w)

    await manager.open()
    await logger.ainfo(
        "serverdeck started",
        env=settings.env,
        control_plane=settings.control_plane_url,
        poll_interval=settings.poll_interval_seconds,
    )

    yield

    # Shutdown
    await manager.close()
    await client.close()
    set_dependencies(None)
    await logger.ainfo("serverdeck shut down")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="serverdeck",
        description="serverdeck — start, stop and watch an on-demand game server",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS: restrict origins, override with SERVERDECK_CORS_ORIGINS env var
    allowed_origins = os.getenv(
        "SERVERDECK_CORS_ORIGINS", "http://localhost:3000,http://localhost:8000"
    ).split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    app.include_router(router)
    return app


# For running with uvicorn directly
app = create_app()
