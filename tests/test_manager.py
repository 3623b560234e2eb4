"""End-to-end lifecycle tests for the server manager against a fake control plane."""

import asyncio
from datetime import datetime, timezone

import pytest

from control_plane.errors import Conflict, NotFound, Transient, Unauthenticated
from dashboard.models.server import (
    CommandKind,
    DerivedView,
    NoticeLevel,
    PollResult,
    ServerConfig,
    ServerStatus,
)
from lifecycle.manager import ServerManager


def _manager(fake, credentials, recorder, interval=0.01):
    views = recorder()
    notices = recorder()
    manager = ServerManager(fake, credentials, interval=interval, on_change=views, on_notice=notices)
    return manager, views, notices


class TestScenarios:
    @pytest.mark.asyncio
    async def test_a_no_server_found(self, fake_control_plane, credentials, recorder):
        manager, views, notices = _manager(fake_control_plane, credentials, recorder)
        await manager.open()

        assert manager.view == DerivedView()
        assert manager.view.status == ServerStatus.STOPPED
        assert manager.view.has_active_server is False
        assert views.last == DerivedView()
        assert notices.calls == []
        assert fake_control_plane.describe_calls == []
        await manager.close()

    @pytest.mark.asyncio
    async def test_b_start_shows_pending_before_any_poll(
        self, fake_control_plane, credentials, recorder
    ):
        fake_control_plane.server_ids = ["abc"]
        fake_control_plane.gates["abc"] = asyncio.Event()
        manager, views, notices = _manager(fake_control_plane, credentials, recorder)
        await manager.open()

        server_id = await manager.start_server(ServerConfig(type="PAPER", version="1.21"))

        assert server_id == "abc"
        view = manager.view
        assert view.status == ServerStatus.PENDING
        assert view.server_id == "abc"
        assert view.config.type == "PAPER"
        assert view.has_active_server is False
        assert notices.last.level == NoticeLevel.SUCCESS
        assert notices.last.title == "Server startup initiated"
        await manager.close()

    @pytest.mark.asyncio
    async def test_c_running_poll_activates_and_suspends(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        fake_control_plane.server_ids = ["abc"]
        fake_control_plane.snapshots["abc"] = snapshot_factory(status=ServerStatus.PENDING)
        manager, views, _ = _manager(fake_control_plane, credentials, recorder)
        await manager.open()
        await manager.start_server()

        assert await wait_until(lambda: len(fake_control_plane.describe_calls) >= 2)
        fake_control_plane.snapshots["abc"] = snapshot_factory(
            status=ServerStatus.RUNNING, public_ip="1.2.3.4"
        )
        assert await wait_until(lambda: manager.view.status == ServerStatus.RUNNING)

        view = manager.view
        assert view.has_active_server is True
        assert view.public_ip == "1.2.3.4"
        assert views.last == view
        assert manager.commands.override is None

        calls = len(fake_control_plane.describe_calls)
        await asyncio.sleep(0.1)
        assert len(fake_control_plane.describe_calls) == calls
        assert manager.poller.is_polling is False
        await manager.close()

    @pytest.mark.asyncio
    async def test_d_stop_flips_to_stopping_then_stopped(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        running = snapshot_factory(status=ServerStatus.RUNNING, public_ip="1.2.3.4")
        fake_control_plane.owned = running
        fake_control_plane.snapshots["abc"] = running
        manager, views, notices = _manager(fake_control_plane, credentials, recorder)
        await manager.open()
        assert manager.view.status == ServerStatus.RUNNING
        assert await wait_until(lambda: manager._poll is not None)

        await manager.stop_server()

        assert manager.view.status == ServerStatus.STOPPING
        assert manager.view.has_active_server is False
        assert fake_control_plane.destroyed == ["abc"]
        assert notices.last.title == "Server shutdown initiated"
        assert any(v.status == ServerStatus.STOPPING for v in views.calls)

        # Polls that still say RUNNING do not undo the stop.
        calls = len(fake_control_plane.describe_calls)
        assert await wait_until(lambda: len(fake_control_plane.describe_calls) >= calls + 2)
        assert manager.view.status == ServerStatus.STOPPING

        fake_control_plane.snapshots["abc"] = snapshot_factory(status=ServerStatus.STOPPED)
        assert await wait_until(lambda: manager.view.status == ServerStatus.STOPPED)
        assert manager.commands.override is None
        assert manager.view.server_id == "abc"

        calls = len(fake_control_plane.describe_calls)
        await asyncio.sleep(0.1)
        assert len(fake_control_plane.describe_calls) == calls
        await manager.close()

    @pytest.mark.asyncio
    async def test_stop_explicit_server_with_nothing_tracked(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        fake_control_plane.snapshots["xyz"] = snapshot_factory(server_id="xyz", status=ServerStatus.STOPPED)
        manager, _, _ = _manager(fake_control_plane, credentials, recorder)
        await manager.open()

        await manager.stop_server("xyz")

        assert fake_control_plane.destroyed == ["xyz"]
        assert manager.poller.server_id == "xyz"
        assert await wait_until(lambda: manager.view.status == ServerStatus.STOPPED)
        assert fake_control_plane.describe_calls[0] == "xyz"
        assert manager.commands.override is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_e_conflict_leaves_view_unchanged(self, fake_control_plane, credentials, recorder):
        fake_control_plane.create_error = Conflict("Server is already running (409)", 409)
        manager, views, notices = _manager(fake_control_plane, credentials, recorder)
        await manager.open()
        before = manager.view
        changes = len(views.calls)

        with pytest.raises(Conflict):
            await manager.start_server()

        assert manager.view == before
        assert len(views.calls) == changes
        assert manager.commands.override is None
        assert notices.last.level == NoticeLevel.ERROR
        assert notices.last.title == "Server is already running"
        assert notices.last.description == "Server is already running (409)"
        await manager.close()

    @pytest.mark.asyncio
    async def test_f_visibility_resync_fires_one_describe(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        fake_control_plane.server_ids = ["abc"]
        fake_control_plane.snapshots["abc"] = snapshot_factory(status=ServerStatus.PENDING)
        # Regular cadence far beyond the test's lifetime.
        manager, _, _ = _manager(fake_control_plane, credentials, recorder, interval=300)
        await manager.open()
        await manager.start_server()
        assert await wait_until(lambda: len(fake_control_plane.describe_calls) == 1)

        assert manager.set_visibility(False) is False
        await asyncio.sleep(0.05)
        assert len(fake_control_plane.describe_calls) == 1

        assert manager.set_visibility(True) is True
        assert await wait_until(lambda: len(fake_control_plane.describe_calls) == 2)
        await asyncio.sleep(0.05)
        assert len(fake_control_plane.describe_calls) == 2
        assert manager.view.status == ServerStatus.PENDING
        await manager.close()


class TestLateResponses:
    @pytest.mark.asyncio
    async def test_response_for_previous_server_is_never_applied(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        old = snapshot_factory(server_id="old", status=ServerStatus.RUNNING, public_ip="9.9.9.9")
        fake_control_plane.owned = old
        fake_control_plane.snapshots["old"] = old
        fake_control_plane.gates["old"] = asyncio.Event()
        fake_control_plane.server_ids = ["new"]
        fake_control_plane.snapshots["new"] = snapshot_factory(server_id="new", status=ServerStatus.PENDING)
        manager, views, _ = _manager(fake_control_plane, credentials, recorder, interval=300)
        await manager.open()
        assert await wait_until(lambda: fake_control_plane.describe_calls == ["old"])

        await manager.start_server()
        fake_control_plane.gates["old"].set()
        assert await wait_until(lambda: "new" in fake_control_plane.describe_calls)
        await asyncio.sleep(0.05)

        assert manager.view.server_id == "new"
        assert manager.view.status == ServerStatus.PENDING
        assert manager._poll is None or manager._poll.snapshot.server_id == "new"
        assert all(v.public_ip != "9.9.9.9" for v in views.calls if v.server_id == "new")
        await manager.close()

    @pytest.mark.asyncio
    async def test_stale_sequence_is_ignored(
        self, fake_control_plane, credentials, recorder, snapshot_factory
    ):
        manager, _, _ = _manager(fake_control_plane, credentials, recorder, interval=300)
        manager.commands.adopt("abc")
        now = datetime.now(timezone.utc)

        await manager._apply_poll(
            PollResult(snapshot=snapshot_factory(status=ServerStatus.STOPPED), seq=5, requested_at=now)
        )
        await manager._apply_poll(
            PollResult(
                snapshot=snapshot_factory(status=ServerStatus.RUNNING, public_ip="1.2.3.4"),
                seq=4,
                requested_at=now,
            )
        )

        assert manager.view.status == ServerStatus.STOPPED

    @pytest.mark.asyncio
    async def test_poll_for_untracked_server_is_ignored(
        self, fake_control_plane, credentials, recorder, snapshot_factory
    ):
        manager, views, _ = _manager(fake_control_plane, credentials, recorder)
        manager.commands.adopt("abc")

        await manager._apply_poll(
            PollResult(
                snapshot=snapshot_factory(server_id="other", public_ip="1.2.3.4"),
                seq=1,
                requested_at=datetime.now(timezone.utc),
            )
        )

        assert manager._poll is None
        assert views.calls == []


class TestFailures:
    @pytest.mark.asyncio
    async def test_lookup_failure_surfaces_notice(self, fake_control_plane, credentials, recorder):
        fake_control_plane.lookup_error = Transient("Request failed (503)", 503)
        manager, _, notices = _manager(fake_control_plane, credentials, recorder)
        await manager.open()

        assert manager.view.status == ServerStatus.STOPPED
        assert manager.is_loading is False
        assert notices.last.title == "Failed to load server"
        assert notices.last.description == "Request failed (503)"
        await manager.close()

    @pytest.mark.asyncio
    async def test_vanished_server_is_forgotten(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        fake_control_plane.owned = snapshot_factory(status=ServerStatus.RUNNING, public_ip="1.2.3.4")
        manager, _, _ = _manager(fake_control_plane, credentials, recorder)
        await manager.open()

        assert await wait_until(lambda: manager.commands.server_id is None)
        assert manager.view == DerivedView()
        assert manager.poller.server_id is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_new_server_not_visible_yet_keeps_pending(
        self, fake_control_plane, credentials, recorder, wait_until
    ):
        fake_control_plane.server_ids = ["abc"]
        manager, _, _ = _manager(fake_control_plane, credentials, recorder)
        await manager.open()
        await manager.start_server()

        assert await wait_until(lambda: len(fake_control_plane.describe_calls) >= 2)
        assert manager.view.status == ServerStatus.PENDING
        assert manager.commands.server_id == "abc"
        assert manager.commands.override.kind == CommandKind.START
        await manager.close()

    @pytest.mark.asyncio
    async def test_stop_unknown_server(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        running = snapshot_factory(status=ServerStatus.RUNNING, public_ip="1.2.3.4")
        fake_control_plane.owned = running
        fake_control_plane.snapshots["abc"] = running
        fake_control_plane.destroy_error = NotFound("Server not found (404)", 404)
        manager, _, notices = _manager(fake_control_plane, credentials, recorder)
        await manager.open()

        with pytest.raises(NotFound):
            await manager.stop_server()

        assert manager.commands.server_id is None
        assert manager.view == DerivedView()
        assert notices.last.title == "Cannot stop server"
        await manager.close()

    @pytest.mark.asyncio
    async def test_expired_session_notice(
        self, fake_control_plane, credentials, recorder, snapshot_factory, wait_until
    ):
        fake_control_plane.owned = snapshot_factory(status=ServerStatus.PENDING)
        fake_control_plane.describe_error = Unauthenticated("Request failed (401)", 401)
        manager, _, notices = _manager(fake_control_plane, credentials, recorder)
        await manager.open()

        assert await wait_until(lambda: notices.last is not None)
        assert notices.last.title == "Session expired"
        await asyncio.sleep(0.05)
        assert len(fake_control_plane.describe_calls) == 1
        await manager.close()

    @pytest.mark.asyncio
    async def test_notice_delivery_failure_is_contained(self, fake_control_plane, credentials):
        async def broken(notice):
            raise RuntimeError("socket closed")

        fake_control_plane.lookup_error = Transient("Request failed (503)", 503)
        manager = ServerManager(fake_control_plane, credentials, interval=0.01, on_notice=broken)

        await manager.open()

        assert manager.view.status == ServerStatus.STOPPED
        await manager.close()
