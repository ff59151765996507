"""
Shutdown coordination for in-flight clip uploads.

Provides:
- PendingTracker: an asyncio wait-group counting frames being classified
  and scheduled uploads
- ShutdownCoordinator: SIGINT/SIGTERM handling that stops reconnects,
  drains every pending upload, then lets the process exit cleanly
"""
import asyncio
import logging
import signal
from typing import Optional

from archiver.core import metrics

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class PendingTracker:
    """
    Counts operations that must finish before the process may exit.

    add() is called when an upload is scheduled and done() when its
    attempt returns, whatever the outcome. wait() blocks until the
    count is zero; it returns immediately when nothing is pending.
    """

    def __init__(self):
        self._count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def count(self) -> int:
        return self._count

    def add(self, n: int = 1) -> None:
        self._count += n
        if self._count < 0:
            raise RuntimeError("PendingTracker count went negative")
        if self._count == 0:
            self._idle.set()
        else:
            self._idle.clear()
        metrics.clip_uploads_pending.set(self._count)

    def done(self) -> None:
        self.add(-1)

    async def wait(self) -> None:
        # The event can be set and cleared again before this waiter resumes
        while self._count > 0:
            await self._idle.wait()


class ShutdownCoordinator:
    """
    Turns a termination signal into an orderly drain.

    On the first SIGINT/SIGTERM the shared shutdown event is set, which
    stops new connection attempts and cuts short clip-ready waits. The
    coordinator then waits, without a time limit, for the pending count
    to reach zero before stopping the supervisor task.

    Attributes:
        shutdown_event: Process-wide cancellation signal, set once
        pending: Tracker of scheduled-but-unfinished uploads
    """

    def __init__(self, shutdown_event: asyncio.Event, pending: PendingTracker):
        self.shutdown_event = shutdown_event
        self.pending = pending
        self._signal_received = asyncio.Event()
        self._installed = False

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Register signal handlers on the running event loop."""
        loop = loop or asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self.request_shutdown, sig)
        self._installed = True

    def uninstall(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if not self._installed:
            return
        loop = loop or asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        self._installed = False

    def request_shutdown(self, sig: Optional[signal.Signals] = None) -> None:
        """Signal handler: begin the drain sequence (idempotent)."""
        if self._signal_received.is_set():
            logger.info(
                "Shutdown already in progress, still waiting for uploads",
                extra={
                    "event_type": "shutdown_signal_repeated",
                    "pending_uploads": self.pending.count,
                }
            )
            return

        self._signal_received.set()
        self.shutdown_event.set()
        logger.info(
            "Shutdown signal received. Waiting for uploads to complete...",
            extra={
                "event_type": "shutdown_start",
                "signal": sig.name if sig is not None else None,
                "pending_uploads": self.pending.count,
            }
        )

    async def drain(self) -> None:
        """Block until every pending upload has returned."""
        await self.pending.wait()
        logger.info(
            "All uploads completed. Exiting now.",
            extra={"event_type": "shutdown_drain_complete"}
        )

    async def run(self, supervisor_task: asyncio.Task) -> int:
        """
        Wait for a termination signal, drain, then stop the supervisor.

        Args:
            supervisor_task: Task running ReconnectSupervisor.run()

        Returns:
            Process exit code: 0 after a signal-driven drain, 1 if the
            supervisor died on its own
        """
        signal_wait = asyncio.create_task(self._signal_received.wait())
        await asyncio.wait({signal_wait, supervisor_task}, return_when=asyncio.FIRST_COMPLETED)

        if not self._signal_received.is_set():
            signal_wait.cancel()
            # Supervisor exited without a signal; still finish scheduled uploads
            self.shutdown_event.set()
            error = None if supervisor_task.cancelled() else supervisor_task.exception()
            logger.error(
                "Event bridge stopped unexpectedly. Waiting for uploads to complete...",
                exc_info=error,
                extra={
                    "event_type": "bridge_unexpected_exit",
                    "pending_uploads": self.pending.count,
                }
            )
            await self.drain()
            return 1

        await self.drain()

        if not supervisor_task.done():
            supervisor_task.cancel()
        try:
            await supervisor_task
        except asyncio.CancelledError:
            pass

        return 0
