import asyncio

import pytest

from conftest import wait_until
from obs_local_controller.config import SessionConfig
from obs_local_controller.session import HandleCell, SessionManager


@pytest.mark.asyncio
async def test_handle_cell_announces_publish_and_clear():
    cell = HandleCell()
    waiter = asyncio.create_task(cell.wait_changed(1.0))
    await asyncio.sleep(0)
    cell.publish("h1")
    assert await waiter is True
    assert cell.current == "h1"
    assert cell.clear() == "h1"
    assert cell.current is None
    assert cell.generation == 2


@pytest.mark.asyncio
async def test_handle_cell_wait_times_out():
    cell = HandleCell()
    assert await cell.wait_changed(0.01) is False
    # clearing an empty cell is not a change
    cell.clear()
    assert cell.generation == 0


@pytest.mark.asyncio
async def test_connects_after_failed_attempts(fake_obs, timings):
    fake_obs.open_failures = 2
    mgr = SessionManager(SessionConfig(), transport_factory=fake_obs, timings=timings)
    assert mgr.state == "disconnected"
    async with mgr:
        await wait_until(lambda: mgr.connected)
        assert mgr.connect_attempts == 3
        assert mgr.state == "connected"
        assert mgr.handle is fake_obs.transports[-1]
        # failed partial sessions were closed
        assert all(t.close_calls == 1 for t in fake_obs.transports[:2])
    assert mgr.state == "torn_down"
    assert mgr.handle is None
    assert fake_obs.transports[-1].close_calls == 1


@pytest.mark.asyncio
async def test_reconnects_after_drop(fake_obs, timings):
    mgr = SessionManager(SessionConfig(), transport_factory=fake_obs, timings=timings)
    async with mgr:
        await wait_until(lambda: mgr.connected)
        first = mgr.handle
        fake_obs.drop()
        await wait_until(lambda: mgr.connected and mgr.handle is not first)
        assert first.close_calls == 1
        assert mgr.reconnect_count == 1
        assert len(fake_obs.transports) == 2


@pytest.mark.asyncio
async def test_teardown_while_connecting_never_publishes(fake_obs, timings):
    gate = asyncio.Event()

    class SlowOpen:
        def __init__(self, session):
            self.inner = fake_obs(session)

        async def open(self):
            await gate.wait()
            await self.inner.open()

        def __getattr__(self, name):
            return getattr(self.inner, name)

    mgr = SessionManager(SessionConfig(), transport_factory=SlowOpen, timings=timings)
    mgr.start()
    await wait_until(lambda: fake_obs.transports)
    close = asyncio.create_task(mgr.close())
    await asyncio.sleep(0)
    gate.set()
    await close
    await asyncio.sleep(0.01)

    assert mgr.handle is None
    assert mgr.cell.generation == 0
    assert fake_obs.transports[0].close_calls >= 1


@pytest.mark.asyncio
async def test_connect_loop_stops_on_teardown(fake_obs, timings):
    fake_obs.open_failures = 10_000
    mgr = SessionManager(SessionConfig(), transport_factory=fake_obs, timings=timings)
    mgr.start()
    await wait_until(lambda: mgr.connect_attempts >= 2)
    await mgr.close()
    attempts = mgr.connect_attempts
    await asyncio.sleep(0.05)
    assert mgr.connect_attempts == attempts
    assert not mgr.connecting
    assert "connection refused" in mgr.last_error


@pytest.mark.asyncio
async def test_status_reports_url(fake_obs, timings):
    mgr = SessionManager(SessionConfig("obs.local", 4444), transport_factory=fake_obs, timings=timings)
    status = mgr.status()
    assert status["url"] == "ws://obs.local:4444"
    assert status["connected"] is False
