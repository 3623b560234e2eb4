"""
Lifecycle reconciler — folds every source of server state into one view.

Inputs, highest precedence first:

    1. optimistic override  (command accepted, not yet confirmed by a poll)
    2. latest poll result   (ground truth for the tracked server)
    3. lookup snapshot      (recovered when the session opened)
    4. default              (STOPPED, no server)

``reconcile`` has no side effects and is memoised, so calling it with
the same inputs returns the very same ``DerivedView`` object.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dashboard.models.server import (
    DerivedView,
    PendingCommand,
    PollResult,
    ServerConfig,
    ServerSnapshot,
    ServerStatus,
)

LIFECYCLE_ORDER: dict[ServerStatus, int] = {
    ServerStatus.PENDING: 0,
    ServerStatus.RUNNING: 1,
    ServerStatus.STOPPING: 2,
    ServerStatus.STOPPED: 3,
}


def supersedes(poll: Optional[PollResult], override: PendingCommand) -> bool:
    """True once a poll confirms the override or has moved past it.

    Only polls for the override's target that were requested after the
    command was issued count, ordered by poll sequence rather than clock.
    """
    if poll is None or override.target_server_id is None:
        return False
    if poll.snapshot.server_id != override.target_server_id:
        return False
    if poll.seq <= override.issued_seq:
        return False
    return LIFECYCLE_ORDER[poll.snapshot.status] >= LIFECYCLE_ORDER[override.override_status]


def _view(server_id: str, status: ServerStatus, config: ServerConfig, public_ip: Optional[str]) -> DerivedView:
    # An address is only meaningful while serving; RUNNING without one is not serving yet.
    if status == ServerStatus.RUNNING and not public_ip:
        status = ServerStatus.PENDING
    return DerivedView(
        status=status,
        config=config,
        public_ip=public_ip if status == ServerStatus.RUNNING else None,
        server_id=server_id,
        has_active_server=status == ServerStatus.RUNNING,
    )


@lru_cache(maxsize=64)
def reconcile(
    server_id: Optional[str],
    lookup: Optional[ServerSnapshot],
    poll: Optional[PollResult],
    override: Optional[PendingCommand],
) -> DerivedView:
    """Compute the view for the tracked ``server_id``.

    Inputs describing any other server are ignored.
    """
    if server_id is None:
        return DerivedView()

    if poll is not None and poll.snapshot.server_id != server_id:
        poll = None
    if lookup is not None and lookup.server_id != server_id:
        lookup = None
    if override is not None and override.target_server_id != server_id:
        override = None

    base = poll.snapshot if poll is not None else lookup

    if override is not None and not supersedes(poll, override):
        config = override.config or (base.config if base is not None else ServerConfig())
        return _view(server_id, override.override_status, config, None)

    if base is None:
        return DerivedView()

    return _view(server_id, base.status, base.config, base.public_ip)
