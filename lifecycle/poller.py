"""
Adaptive poller — keeps the tracked server's snapshot fresh.

Cadence is a pure policy (``next_delay``): poll every few seconds while a
transition is in progress (PENDING, STOPPING), not at all once the
server is stable (RUNNING, STOPPED) or when there is nothing to track.
Stable-state suspension is lifted by ``retarget()`` and ``refresh()``.

Only one describe is in flight at a time. Each request is tagged with the
server id it was issued for and a sequence number; a response for an id
that is no longer tracked is dropped.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import structlog

from control_plane.errors import ControlPlaneError, NotFound, Unauthorized
from dashboard.models.server import PollResult, ServerSnapshot, ServerStatus
from dashboard.services.config import get_settings

logger = structlog.get_logger()

ACTIVE_STATUSES = frozenset({ServerStatus.PENDING, ServerStatus.STOPPING})


def next_delay(status: Optional[ServerStatus], interval: float) -> Optional[float]:
    """Seconds until the next poll, or None when polling should be suspended."""
    if status in ACTIVE_STATUSES:
        return interval
    return None


class AdaptivePoller:
    """Background loop that describes the tracked server on a status-driven cadence."""

    def __init__(
        self,
        describe: Callable[[str], Awaitable[ServerSnapshot]],
        status_of: Callable[[], Optional[ServerStatus]],
        on_result: Callable[[PollResult], Awaitable[None]],
        on_missing: Optional[Callable[[str], Awaitable[None]]] = None,
        on_error: Optional[Callable[[str, Exception], Awaitable[None]]] = None,
        interval: Optional[float] = None,
    ):
        self.describe = describe
        self.status_of = status_of
        self.on_result = on_result
        self.on_missing = on_missing
        self.on_error = on_error
        self.interval = interval if interval is not None else get_settings().poll_interval_seconds

        self._server_id: Optional[str] = None
        self._seq = 0
        self._wake = asyncio.Event()
        self._inflight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._running = False
        self._halted = False

    @property
    def server_id(self) -> Optional[str]:
        return self._server_id

    @property
    def seq(self) -> int:
        """Sequence number of the most recently issued describe."""
        return self._seq

    @property
    def is_polling(self) -> bool:
        """True when the loop will poll again without being woken."""
        if self._server_id is None or self._halted:
            return False
        return next_delay(self.status_of(), self.interval) is not None

    async def start(self) -> None:
        self._running = True
        self._loop_task = asyncio.create_task(self._poll_loop())
        await logger.adebug("Poller started", interval=self.interval)

    async def stop(self) -> None:
        """Stop polling. An in-flight describe is abandoned and never applied."""
        self._running = False
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        await logger.adebug("Poller stopped")

    def retarget(self, server_id: Optional[str]) -> None:
        """Track a different server (or none) and describe it right away."""
        if server_id == self._server_id:
            return
        previous = self._server_id
        self._server_id = server_id
        self._halted = False
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()
        logger.debug("Poller retargeted", previous=previous, server_id=server_id)
        if server_id is not None:
            self._wake.set()

    def refresh(self) -> None:
        """Describe the tracked server once now, even if its status is stable."""
        if self._server_id is None:
            return
        self._halted = False
        self._wake.set()

    async def _poll_loop(self):
        while self._running:
            try:
                delay = None
                if self._server_id is not None and not self._halted:
                    delay = next_delay(self.status_of(), self.interval)
                await self._wait(delay)
                self._wake.clear()

                server_id = self._server_id
                if server_id is None:
                    continue
                await self._poll_once(server_id)
            except asyncio.CancelledError:
                break
            except Exception as e:
                await logger.aerror("Poll loop error", error=str(e))
                await asyncio.sleep(1)

    async def _wait(self, delay: Optional[float]) -> None:
        if delay is None:
            await self._wake.wait()
            return
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _poll_once(self, server_id: str) -> None:
        self._seq += 1
        seq = self._seq
        requested_at = datetime.now(timezone.utc)

        task = asyncio.create_task(self.describe(server_id))
        self._inflight = task
        await asyncio.wait({task})
        if self._inflight is task:
            self._inflight = None

        if task.cancelled():
            await logger.adebug("Describe abandoned", server_id=server_id, seq=seq)
            return
        if not self._running or server_id != self._server_id:
            await logger.adebug("Dropping response for superseded server", server_id=server_id, seq=seq)
            return

        error = task.exception()
        if error is None:
            await self.on_result(PollResult(snapshot=task.result(), seq=seq, requested_at=requested_at))
            return

        if isinstance(error, NotFound):
            await logger.ainfo("Tracked server not found", server_id=server_id)
            if self.on_missing:
                await self.on_missing(server_id)
            return

        if isinstance(error, Unauthorized):
            # Never retried; wait for a refresh or retarget.
            self._halted = True

        message = error.message if isinstance(error, ControlPlaneError) else str(error)
        await logger.awarning("Describe failed", server_id=server_id, seq=seq, error=message)
        if self.on_error:
            await self.on_error(server_id, error)
