"""
Server manager — one user's view of their game server.

Wires the pieces together:

    lookup ──┐
    poller ──┼──▶ reconcile() ──▶ DerivedView ──▶ on_change
    commands ┘         ▲
    visibility ─▶ poller.refresh()

UI intents (start, stop, visibility) come in through the public methods;
the view and user notices go out through the ``on_change`` and
``on_notice`` callbacks.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import structlog

from control_plane.client import ControlPlaneClient
from control_plane.credentials import CredentialSource
from control_plane.errors import Conflict, ControlPlaneError, NotFound, Unauthenticated
from dashboard.models.server import (
    CommandKind,
    DerivedView,
    Notice,
    NoticeLevel,
    PollResult,
    ServerConfig,
    ServerSnapshot,
)
from lifecycle.commands import CommandCoordinator
from lifecycle.poller import AdaptivePoller
from lifecycle.reconciler import reconcile
from lifecycle.visibility import VisibilityResynchronizer

logger = structlog.get_logger()


class ServerManager:
    """Keeps a reconciled view of the user's server and routes their commands."""

    def __init__(
        self,
        client: ControlPlaneClient,
        credentials: CredentialSource,
        interval: Optional[float] = None,
        on_change: Optional[Callable[[DerivedView], Awaitable[None]]] = None,
        on_notice: Optional[Callable[[Notice], Awaitable[None]]] = None,
    ):
        self.client = client
        self.on_change = on_change
        self.on_notice = on_notice

        self.commands = CommandCoordinator(client, credentials, seq_of=lambda: self.poller.seq)
        self.poller = AdaptivePoller(
            describe=client.describe,
            status_of=lambda: self.view.status,
            on_result=self._apply_poll,
            on_missing=self._on_missing,
            on_error=self._on_poll_error,
            interval=interval,
        )
        self.visibility = VisibilityResynchronizer(on_resume=self.poller.refresh)

        self.is_loading = False
        self._lookup: Optional[ServerSnapshot] = None
        self._poll: Optional[PollResult] = None
        self._last_view: Optional[DerivedView] = None

    @property
    def view(self) -> DerivedView:
        return reconcile(self.commands.server_id, self._lookup, self._poll, self.commands.override)

    @property
    def is_starting(self) -> bool:
        return self.commands.is_starting

    @property
    def is_stopping(self) -> bool:
        return self.commands.is_stopping

    async def open(self) -> None:
        """Start polling and recover the user's current server, if any."""
        await self.poller.start()
        await self.recover()

    async def close(self) -> None:
        await self.poller.stop()

    async def recover(self) -> None:
        """Look up the user's most recent server when nothing is tracked yet."""
        if self.commands.server_id is not None:
            return
        self.is_loading = True
        try:
            snapshot = await self.client.find_owned()
        except ControlPlaneError as e:
            await self._notify_error("Failed to load server", e)
            snapshot = None
        finally:
            self.is_loading = False

        if snapshot is None:
            await logger.ainfo("No existing server found")
        elif self.commands.server_id is None:
            self._lookup = snapshot
            self.commands.adopt(snapshot.server_id)
            self.poller.retarget(snapshot.server_id)
            await logger.ainfo(
                "Recovered existing server",
                server_id=snapshot.server_id,
                status=snapshot.status.value,
            )
        await self._emit()

    # ── UI intents ────────────────────────────────────────────────

    async def start_server(self, config: Optional[ServerConfig] = None) -> str:
        try:
            server_id = await self.commands.start(config)
        except Conflict as e:
            await self._notify(Notice(level=NoticeLevel.ERROR, title="Server is already running", description=e.message))
            raise
        except ControlPlaneError as e:
            await self._notify_error("Failed to start server", e)
            raise

        self.poller.retarget(server_id)
        await self._notify(
            Notice(
                level=NoticeLevel.SUCCESS,
                title="Server startup initiated",
                description="This may take a few minutes…",
            )
        )
        await self._emit()
        return server_id

    async def stop_server(self, server_id: Optional[str] = None) -> None:
        try:
            await self.commands.stop(server_id)
        except NotFound as e:
            self.poller.retarget(self.commands.server_id)
            await self._notify_error("Cannot stop server", e)
            await self._emit()
            raise
        except ControlPlaneError as e:
            await self._notify_error("Failed to stop server", e)
            raise

        self.poller.retarget(self.commands.server_id)
        self.poller.refresh()
        await self._notify(
            Notice(
                level=NoticeLevel.SUCCESS,
                title="Server shutdown initiated",
                description="The server is now stopping.",
            )
        )
        await self._emit()

    def refresh(self) -> None:
        self.poller.refresh()

    def set_visibility(self, visible: bool) -> bool:
        return self.visibility.set_visible(visible)

    # ── Poller callbacks ──────────────────────────────────────────

    async def _apply_poll(self, result: PollResult) -> None:
        server_id = result.snapshot.server_id
        if server_id != self.commands.server_id:
            await logger.adebug("Ignoring poll for untracked server", server_id=server_id)
            return
        if (
            self._poll is not None
            and self._poll.snapshot.server_id == server_id
            and result.seq <= self._poll.seq
        ):
            await logger.adebug("Ignoring stale poll", server_id=server_id, seq=result.seq)
            return

        self._poll = result
        self.commands.confirm(result)
        await self._emit()

    async def _on_missing(self, server_id: str) -> None:
        override = self.commands.override
        if override and override.kind == CommandKind.START and override.target_server_id == server_id:
            # A just-created server may not be readable yet; keep the PENDING override.
            await logger.adebug("New server not visible yet", server_id=server_id)
            return
        self.commands.forget(server_id)
        if self.commands.server_id is None:
            self.poller.retarget(None)
        await self._emit()

    async def _on_poll_error(self, server_id: str, error: Exception) -> None:
        if isinstance(error, Unauthenticated):
            await self._notify_error("Session expired", error)
        elif isinstance(error, ControlPlaneError):
            await self._notify_error("Failed to refresh server status", error)
        else:
            await self._notify(
                Notice(level=NoticeLevel.ERROR, title="Failed to refresh server status", description=str(error))
            )

    # ── Outputs ───────────────────────────────────────────────────

    async def _emit(self) -> None:
        view = self.view
        if view == self._last_view:
            return
        self._last_view = view
        await logger.adebug(
            "View changed",
            status=view.status.value,
            server_id=view.server_id,
            has_active_server=view.has_active_server,
        )
        if self.on_change:
            await self.on_change(view)

    async def _notify_error(self, title: str, error: ControlPlaneError) -> None:
        await self._notify(Notice(level=NoticeLevel.ERROR, title=title, description=error.message))

    async def _notify(self, notice: Notice) -> None:
        if self.on_notice:
            try:
                await self.on_notice(notice)
            except Exception as e:
                await logger.awarning("Failed to deliver notice", title=notice.title, error=str(e))
