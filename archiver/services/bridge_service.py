"""
Frigate event bridge: the reconnecting outer loop.

Owns the lifetime of the WebSocket connection:
- Connect via StreamConnector (which redials every 5s on its own)
- Stream frames into the FrigateEventHandler until the read fails
- Back off exponentially (1s, 2s, 4s, ... 60s) between passes
- Stop for good once the shutdown event is set
"""
import asyncio
import logging
from enum import Enum
from typing import Optional

from archiver.core.backoff import ExponentialBackoff, sleep_unless_shutdown
from archiver.services.event_handler import FrigateEventHandler
from archiver.services.stream_connector import (
    ConnectCancelled,
    StreamConnection,
    StreamConnector,
    StreamReadError,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    BACKOFF = "backoff"
    CANCELLED = "cancelled"


class ReconnectSupervisor:
    """
    Keeps the Frigate event feed flowing until shutdown.

    State machine:
        CONNECTING → STREAMING   connector returned a live connection
        STREAMING  → BACKOFF     read loop failed (peer closed, network,
                                 keepalive-detected death)
        BACKOFF    → CONNECTING  backoff delay elapsed
        any        → CANCELLED   shutdown event set (terminal)

    The backoff delay grows once per pass and is layered on top of the
    connector's own fixed redial delay.
    """

    def __init__(
        self,
        connector: StreamConnector,
        handler: FrigateEventHandler,
        shutdown_event: asyncio.Event,
        backoff: Optional[ExponentialBackoff] = None,
    ):
        self._connector = connector
        self._handler = handler
        self._shutdown_event = shutdown_event
        self._backoff = backoff or ExponentialBackoff()
        self.state = ConnectionState.CONNECTING
        self.passes = 0

    def _transition(self, state: ConnectionState) -> None:
        if state != self.state:
            logger.debug(
                f"Bridge state {self.state.value} -> {state.value}",
                extra={
                    "event_type": "bridge_state_change",
                    "from_state": self.state.value,
                    "to_state": state.value,
                }
            )
        self.state = state

    async def run(self) -> None:
        """Run until the shutdown event is set."""
        while not self._shutdown_event.is_set():
            self.passes += 1
            self._transition(ConnectionState.CONNECTING)

            try:
                connection = await self._connector.connect(self._shutdown_event)
            except ConnectCancelled:
                break

            self._transition(ConnectionState.STREAMING)
            await self._stream(connection)

            self._transition(ConnectionState.BACKOFF)
            delay = self._backoff.next_delay()
            logger.info(
                f"Reconnecting to Frigate in {delay:.0f}s",
                extra={
                    "event_type": "bridge_reconnect_backoff",
                    "delay_seconds": delay,
                    "pass": self.passes,
                }
            )
            if await sleep_unless_shutdown(delay, self._shutdown_event):
                break

        self._transition(ConnectionState.CANCELLED)
        logger.info(
            "Shutting down gracefully...",
            extra={"event_type": "bridge_stopped", "passes": self.passes}
        )

    async def _stream(self, connection: StreamConnection) -> None:
        """Feed frames to the handler until the connection fails."""
        try:
            while True:
                frame = await connection.receive()
                self._handler.dispatch(frame)
        except StreamReadError as e:
            logger.warning(
                f"Frigate WebSocket read failed: {e}",
                extra={
                    "event_type": "frigate_ws_read_error",
                    "error_type": type(e.__cause__ or e).__name__,
                }
            )
        finally:
            await connection.close()
