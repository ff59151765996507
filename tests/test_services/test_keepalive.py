"""
Unit tests for KeepaliveMonitor
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from archiver.services.keepalive import PING_INTERVAL, PONG_WAIT, KeepaliveMonitor


class FakeWebSocket:
    """Records pings; optionally answers them through the monitor."""

    def __init__(self):
        self.closed = False
        self.pings = 0
        self.on_ping = None
        self.ping_error = None
        self.close = AsyncMock()

    async def ping(self, message: bytes = b""):
        if self.ping_error is not None:
            raise self.ping_error
        self.pings += 1
        if self.on_ping is not None:
            asyncio.get_running_loop().call_soon(self.on_ping)


async def wait_until(predicate, timeout=1.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout=timeout)


class TestDefaults:
    def test_intervals(self):
        assert PING_INTERVAL == 30.0
        assert PONG_WAIT == 10.0
        assert PONG_WAIT < PING_INTERVAL


class TestKeepaliveMonitor:
    @pytest.mark.asyncio
    async def test_answered_ping_is_not_a_miss(self):
        ws = FakeWebSocket()
        monitor = KeepaliveMonitor(ws, ping_interval=0.01, pong_wait=0.5)
        ws.on_ping = monitor.acknowledge

        monitor.start()
        try:
            await wait_until(lambda: ws.pings >= 3)
        finally:
            await monitor.stop()

        assert monitor.missed_pongs == 0

    @pytest.mark.asyncio
    async def test_missed_pong_is_logged_but_connection_stays_open(self, caplog):
        ws = FakeWebSocket()
        monitor = KeepaliveMonitor(ws, ping_interval=0.01, pong_wait=0.02)

        with caplog.at_level("WARNING"):
            monitor.start()
            try:
                await wait_until(lambda: monitor.missed_pongs >= 2)
            finally:
                await monitor.stop()

        assert "Pong not received within expected timeframe." in caplog.text
        ws.close.assert_not_awaited()
        assert ws.closed is False
        assert ws.pings >= 2

    @pytest.mark.asyncio
    async def test_late_pong_is_dropped(self):
        ws = FakeWebSocket()
        monitor = KeepaliveMonitor(ws, ping_interval=0.01, pong_wait=0.02)

        monitor.start()
        try:
            await wait_until(lambda: monitor.missed_pongs >= 1)
            # Arrives after the window closed; must not satisfy the next ping
            monitor.acknowledge()
            await wait_until(lambda: monitor.missed_pongs >= 2)
        finally:
            await monitor.stop()

        ws.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_acknowledge_never_blocks(self):
        ws = FakeWebSocket()
        monitor = KeepaliveMonitor(ws)

        # No ping outstanding: repeated acks are simply ignored
        for _ in range(100):
            monitor.acknowledge()

        assert not monitor.running

    @pytest.mark.asyncio
    async def test_ping_failure_stops_monitor(self, caplog):
        ws = FakeWebSocket()
        ws.ping_error = ConnectionResetError("Cannot write to closing transport")
        monitor = KeepaliveMonitor(ws, ping_interval=0.01, pong_wait=0.5)

        with caplog.at_level("WARNING"):
            monitor.start()
            await wait_until(lambda: not monitor.running)

        assert "Ping error" in caplog.text
        assert "connection will be retried" in caplog.text

    @pytest.mark.asyncio
    async def test_stops_when_connection_closes(self):
        ws = FakeWebSocket()
        monitor = KeepaliveMonitor(ws, ping_interval=0.01, pong_wait=0.02)

        monitor.start()
        ws.closed = True
        await wait_until(lambda: not monitor.running)

        assert ws.pings == 0

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        monitor = KeepaliveMonitor(MagicMock(closed=False), ping_interval=60)
        monitor.start()
        assert monitor.running

        await monitor.stop()
        await monitor.stop()

        assert not monitor.running

    @pytest.mark.asyncio
    async def test_start_twice_keeps_single_task(self):
        monitor = KeepaliveMonitor(MagicMock(closed=False), ping_interval=60)
        monitor.start()
        first = monitor._task
        monitor.start()

        assert monitor._task is first
        await monitor.stop()
