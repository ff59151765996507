"""
Keepalive monitor for the Frigate WebSocket.

Pings the peer periodically so a silently dead connection surfaces as a
failed read or write. A missing pong is only logged: the connection is
abandoned when a later read or write actually fails.
"""
import asyncio
import logging
from typing import Optional

import aiohttp

from archiver.core import metrics

logger = logging.getLogger(__name__)

# Interval between pings (must be longer than PONG_WAIT)
PING_INTERVAL = 30.0

# Time to wait for a pong after each ping
PONG_WAIT = 10.0


class KeepaliveMonitor:
    """
    Background pinger for one open WebSocket connection.

    The read loop calls acknowledge() for every PONG frame. The slot is
    only filled while a ping is awaiting its pong, so a late or duplicate
    pong is dropped instead of satisfying the next ping, and the read
    loop never blocks on it.

    Attributes:
        missed_pongs: Number of pings that went unanswered in time
    """

    def __init__(
        self,
        ws: aiohttp.ClientWebSocketResponse,
        ping_interval: float = PING_INTERVAL,
        pong_wait: float = PONG_WAIT,
    ):
        self._ws = ws
        self.ping_interval = ping_interval
        self.pong_wait = pong_wait
        self.missed_pongs = 0
        self._pong_received = asyncio.Event()
        self._awaiting_pong = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="frigate_ws_keepalive")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def acknowledge(self) -> None:
        """Record a pong; ignored when no ping is outstanding."""
        if self._awaiting_pong:
            self._pong_received.set()

    async def _run(self) -> None:
        while not self._ws.closed:
            await asyncio.sleep(self.ping_interval)
            if self._ws.closed:
                break

            self._pong_received.clear()
            self._awaiting_pong = True
            try:
                try:
                    await self._ws.ping()
                except Exception as e:
                    logger.warning(
                        f"Ping error: {e}, connection will be retried...",
                        extra={
                            "event_type": "keepalive_ping_failed",
                            "error_type": type(e).__name__,
                        }
                    )
                    return

                try:
                    await asyncio.wait_for(self._pong_received.wait(), timeout=self.pong_wait)
                except asyncio.TimeoutError:
                    self.missed_pongs += 1
                    metrics.keepalive_missed_pongs_total.inc()
                    logger.warning(
                        "Pong not received within expected timeframe.",
                        extra={
                            "event_type": "keepalive_pong_missed",
                            "pong_wait_seconds": self.pong_wait,
                            "missed_pongs": self.missed_pongs,
                        }
                    )
            finally:
                self._awaiting_pong = False
