"""Shared test fixtures for the serverdeck test suite."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from control_plane.credentials import StaticCredentialSource
from control_plane.errors import NotFound
from dashboard.models.server import ServerConfig, ServerSnapshot, ServerStatus


def make_snapshot(
    server_id: str = "abc",
    status: ServerStatus = ServerStatus.RUNNING,
    public_ip: Optional[str] = None,
    type: str = "PAPER",
    version: str = "1.21",
) -> ServerSnapshot:
    return ServerSnapshot(
        server_id=server_id,
        status=status,
        config=ServerConfig(type=type, version=version),
        public_ip=public_ip,
    )


class FakeControlPlane:
    """A control-plane client that records calls instead of making HTTP requests.

    ``snapshots`` is what describe returns per server id (missing → NotFound).
    ``gates`` holds describe calls for an id until the event is set.
    """

    def __init__(self):
        self.snapshots: dict[str, ServerSnapshot] = {}
        self.owned: Optional[ServerSnapshot] = None
        self.gates: dict[str, asyncio.Event] = {}
        self.server_ids: list[str] = []
        self.describe_calls: list[str] = []
        self.created: list[tuple[str, Optional[ServerConfig]]] = []
        self.destroyed: list[str] = []
        self.describe_error: Optional[Exception] = None
        self.lookup_error: Optional[Exception] = None
        self.create_error: Optional[Exception] = None
        self.destroy_error: Optional[Exception] = None
        self.closed = False
        self._counter = 0

    async def describe(self, server_id: str) -> ServerSnapshot:
        self.describe_calls.append(server_id)
        gate = self.gates.get(server_id)
        if gate is not None:
            await gate.wait()
        if self.describe_error is not None:
            raise self.describe_error
        if server_id not in self.snapshots:
            raise NotFound("Request failed (404)", 404)
        return self.snapshots[server_id]

    async def find_owned(self, user_id=None, limit=1, after_key=None):
        if self.lookup_error is not None:
            raise self.lookup_error
        return self.owned

    async def create_server(self, user_id: str, config: Optional[ServerConfig] = None) -> str:
        if self.create_error is not None:
            raise self.create_error
        self._counter += 1
        server_id = self.server_ids.pop(0) if self.server_ids else f"srv-{self._counter}"
        self.created.append((user_id, config))
        return server_id

    async def destroy_server(self, server_id: str) -> None:
        if self.destroy_error is not None:
            raise self.destroy_error
        self.destroyed.append(server_id)

    async def close(self) -> None:
        self.closed = True


class Recorder:
    """Async callback that remembers every value it was called with."""

    def __init__(self):
        self.calls: list = []

    async def __call__(self, *args):
        self.calls.append(args[0] if len(args) == 1 else args)

    @property
    def last(self):
        return self.calls[-1] if self.calls else None


async def _wait_until(predicate, timeout: float = 2.0, step: float = 0.005) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(step)
    return True


@pytest.fixture
def snapshot_factory():
    """Return the ServerSnapshot factory."""
    return make_snapshot


@pytest.fixture
def fake_control_plane():
    """Return a fresh FakeControlPlane instance."""
    return FakeControlPlane()


@pytest.fixture
def credentials():
    """Return a signed-in credential source."""
    return StaticCredentialSource(token="tok-123", user_id="user-1")


@pytest.fixture
def recorder():
    """Return a factory for async recording callbacks."""
    return Recorder


@pytest.fixture
def wait_until():
    """Return an async helper that polls a predicate until it holds or times out."""
    return _wait_until
