"""
Frigate WebSocket connector.

Provides functionality to:
- Dial the Frigate event feed, redialing every 5 seconds until it
  succeeds or shutdown is requested
- Attach a KeepaliveMonitor to every connection it opens
- Read frames, answering pings and routing pongs to the monitor
"""
import asyncio
import logging
from typing import Union

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    wait_fixed,
)

from archiver.core import metrics
from archiver.core.backoff import DIAL_RETRY_DELAY, sleep_unless_shutdown
from archiver.services.keepalive import KeepaliveMonitor

logger = logging.getLogger(__name__)


class ConnectError(Exception):
    """The WebSocket dial failed; the connector will retry."""
    pass


class ConnectCancelled(Exception):
    """Shutdown was requested before a connection could be established."""
    pass


class StreamReadError(Exception):
    """The open connection failed or was closed by the peer."""
    pass


class StreamConnection:
    """
    An open Frigate WebSocket plus the keepalive monitor watching it.

    The socket is opened with automatic ping handling disabled, so
    receive() answers PING frames itself and hands PONG frames to the
    monitor.
    """

    def __init__(self, ws: aiohttp.ClientWebSocketResponse, monitor: KeepaliveMonitor):
        self.ws = ws
        self.monitor = monitor

    async def receive(self) -> Union[str, bytes]:
        """
        Return the next data frame.

        Raises:
            StreamReadError: On close, error frames or transport failure
        """
        while True:
            try:
                msg = await self.ws.receive()
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                raise StreamReadError(f"read: {e}") from e

            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                return msg.data

            if msg.type == aiohttp.WSMsgType.PING:
                try:
                    await self.ws.pong(msg.data)
                except (aiohttp.ClientError, OSError) as e:
                    raise StreamReadError(f"pong: {e}") from e
                continue

            if msg.type == aiohttp.WSMsgType.PONG:
                self.monitor.acknowledge()
                continue

            if msg.type == aiohttp.WSMsgType.ERROR:
                raise StreamReadError(f"read: {self.ws.exception() or msg.data}")

            # CLOSE, CLOSING, CLOSED
            raise StreamReadError(f"read: connection closed ({msg.type.name})")

    async def close(self) -> None:
        await self.monitor.stop()
        if not self.ws.closed:
            await self.ws.close()


class StreamConnector:
    """
    Opens live connections to the Frigate WebSocket.

    Dial failures are retried indefinitely with a fixed delay; the wait
    between attempts ends early when shutdown is requested.

    Attributes:
        url: WebSocket URL, e.g. ws://frigate:5000/ws
        retry_delay: Seconds between failed dials
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        url: str,
        retry_delay: float = DIAL_RETRY_DELAY,
        **monitor_options,
    ):
        self._session = session
        self.url = url
        self.retry_delay = retry_delay
        self._monitor_options = monitor_options

    async def connect(self, shutdown_event: asyncio.Event) -> StreamConnection:
        """
        Dial until connected or shutdown is requested.

        Args:
            shutdown_event: Process-wide shutdown signal

        Returns:
            Open StreamConnection with its keepalive monitor running

        Raises:
            ConnectCancelled: Shutdown was requested first
        """
        async def sleep_or_cancel(seconds: float) -> None:
            if await sleep_unless_shutdown(seconds, shutdown_event):
                raise ConnectCancelled("shutdown requested while waiting to redial")

        retrying = AsyncRetrying(
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(ConnectError),
            before_sleep=self._log_retry_attempt,
            sleep=sleep_or_cancel,
            reraise=True,
        )

        ws = None
        async for attempt in retrying:
            with attempt:
                if shutdown_event.is_set():
                    raise ConnectCancelled("shutdown requested before dialing")
                ws = await self._dial()

        monitor = KeepaliveMonitor(ws, **self._monitor_options)
        monitor.start()

        logger.info(
            "Connected to Frigate WebSocket",
            extra={"event_type": "frigate_ws_connected", "url": self.url}
        )
        return StreamConnection(ws, monitor)

    async def _dial(self) -> aiohttp.ClientWebSocketResponse:
        try:
            ws = await self._session.ws_connect(
                self.url,
                autoping=False,
                heartbeat=None,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            metrics.record_connection("failed")
            raise ConnectError(f"{type(e).__name__}: {e}") from e

        metrics.record_connection("connected")
        return ws

    def _log_retry_attempt(self, retry_state: RetryCallState) -> None:
        """Log each failed dial before the fixed wait (tenacity before_sleep)."""
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Error connecting to WebSocket: {exception}, retrying...",
            extra={
                "event_type": "frigate_ws_connect_failed",
                "url": self.url,
                "attempt_number": retry_state.attempt_number,
                "wait_seconds": self.retry_delay,
                "error_type": type(exception).__name__ if exception else "Unknown",
            }
        )
