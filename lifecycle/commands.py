"""Command coordinator — issues start/stop and holds the optimistic override."""

from __future__ import annotations

from typing import Callable, Optional

import structlog

from control_plane.client import ControlPlaneClient
from control_plane.credentials import CredentialSource
from control_plane.errors import ControlPlaneError, NotFound, Unauthenticated, Validation
from dashboard.models.server import (
    CommandKind,
    CommandOutcome,
    PendingCommand,
    PollResult,
    ServerConfig,
)
from lifecycle.reconciler import supersedes

logger = structlog.get_logger()


class CommandCoordinator:
    """
    Sends start/stop commands to the control plane and tracks their outcome.

    Owns the tracked ``server_id`` and the optimistic ``override``; nothing
    else writes them. An accepted command becomes the override and stays
    until ``confirm()`` sees a poll that matches or supersedes it. Commands
    are never retried here: retrying a start or stop is the user's call.
    """

    def __init__(
        self,
        client: ControlPlaneClient,
        credentials: CredentialSource,
        seq_of: Optional[Callable[[], int]] = None,
    ):
        self.client = client
        self.credentials = credentials
        self.seq_of = seq_of or (lambda: 0)
        self.server_id: Optional[str] = None
        self.override: Optional[PendingCommand] = None
        self.last_outcome: Optional[CommandOutcome] = None
        self._in_flight: dict[CommandKind, PendingCommand] = {}

    @property
    def is_starting(self) -> bool:
        return CommandKind.START in self._in_flight

    @property
    def is_stopping(self) -> bool:
        return CommandKind.STOP in self._in_flight

    def adopt(self, server_id: str) -> None:
        """Track a server recovered by lookup, unless one is already tracked."""
        if self.server_id is None:
            self.server_id = server_id

    def forget(self, server_id: str) -> None:
        """Stop tracking ``server_id`` once the control plane has no record of it."""
        if self.server_id != server_id:
            return
        self.server_id = None
        self.override = None

    def confirm(self, poll: PollResult) -> bool:
        """Clear the override if ``poll`` confirms it. Returns True when cleared."""
        if self.override is None or not supersedes(poll, self.override):
            return False
        logger.debug(
            "Override confirmed by poll",
            kind=self.override.kind.value,
            server_id=poll.snapshot.server_id,
            status=poll.snapshot.status.value,
        )
        self.override = None
        return True

    async def start(self, config: Optional[ServerConfig] = None) -> str:
        """Create a new server. Returns its id and sets the PENDING override."""
        if self.is_starting:
            raise Validation("A start request is already in flight")
        credential = await self.credentials.get_credential()
        if credential is None:
            raise Unauthenticated("User not authenticated")

        command = PendingCommand(kind=CommandKind.START, issued_seq=self.seq_of(), config=config)
        self._in_flight[CommandKind.START] = command
        try:
            server_id = await self.client.create_server(credential.user_id, config)
        except ControlPlaneError as e:
            self._record(command, None, e)
            await logger.awarning("Start command failed", error=e.message)
            raise
        finally:
            self._in_flight.pop(CommandKind.START, None)

        self.server_id = server_id
        self.override = command.accepted(server_id)
        self._record(command, server_id)
        await logger.ainfo("Start command accepted", server_id=server_id)
        return server_id

    async def stop(self, server_id: Optional[str] = None) -> None:
        """Destroy the tracked server (or ``server_id``) and set the STOPPING override."""
        target = server_id or self.server_id
        if not target:
            raise Validation("No server to stop")
        if self.is_stopping:
            raise Validation("A stop request is already in flight")
        credential = await self.credentials.get_credential()
        if credential is None:
            raise Unauthenticated("User not authenticated")

        command = PendingCommand(kind=CommandKind.STOP, issued_seq=self.seq_of(), target_server_id=target)
        self._in_flight[CommandKind.STOP] = command
        try:
            await self.client.destroy_server(target)
        except NotFound as e:
            self._record(command, target, e)
            self.forget(target)
            await logger.awarning("Stop command for unknown server", server_id=target)
            raise
        except ControlPlaneError as e:
            self._record(command, target, e)
            await logger.awarning("Stop command failed", server_id=target, error=e.message)
            raise
        finally:
            self._in_flight.pop(CommandKind.STOP, None)

        self.adopt(target)
        if target == self.server_id:
            self.override = command
        self._record(command, target)
        await logger.ainfo("Stop command accepted", server_id=target)

    def _record(
        self,
        command: PendingCommand,
        server_id: Optional[str],
        error: Optional[ControlPlaneError] = None,
    ) -> None:
        self.last_outcome = CommandOutcome(
            kind=command.kind,
            server_id=server_id,
            succeeded=error is None,
            error_message=error.message if error else None,
        )
