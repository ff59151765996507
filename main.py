"""
Frigate Clip Archiver - entry point

Loads configuration, wires the event bridge together and runs it until
SIGINT/SIGTERM, then drains in-flight uploads before exiting.
"""
import asyncio
import sys

import aiohttp

from archiver import APP_VERSION
from archiver.core.config import ConfigMissing, Settings, load_settings
from archiver.core.lifecycle import PendingTracker, ShutdownCoordinator
from archiver.core.logging_config import get_logger, setup_logging
from archiver.core.metrics import start_metrics_server
from archiver.services.bridge_service import ReconnectSupervisor
from archiver.services.event_handler import FrigateEventHandler
from archiver.services.storage_service import UnsupportedStorageBackend, build_uploader
from archiver.services.stream_connector import StreamConnector

logger = get_logger(__name__)


async def run(settings: Settings) -> int:
    """
    Run the bridge until a termination signal has been fully handled.

    Returns:
        Process exit code
    """
    shutdown_event = asyncio.Event()
    pending = PendingTracker()

    async with aiohttp.ClientSession() as session:
        try:
            uploader = build_uploader(settings, session)
        except UnsupportedStorageBackend as e:
            logger.error(str(e), extra={"event_type": "app_startup_failed"})
            return 1

        handler = FrigateEventHandler(
            uploader=uploader,
            pending=pending,
            shutdown_event=shutdown_event,
            clip_base_url=settings.clip_base_url,
        )
        connector = StreamConnector(session, settings.websocket_url)
        supervisor = ReconnectSupervisor(connector, handler, shutdown_event)

        coordinator = ShutdownCoordinator(shutdown_event, pending)
        coordinator.install()
        try:
            supervisor_task = asyncio.create_task(supervisor.run(), name="frigate_bridge")
            return await coordinator.run(supervisor_task)
        finally:
            coordinator.uninstall()


def main() -> None:
    try:
        settings = load_settings()
    except ConfigMissing as e:
        setup_logging()
        logger.critical(
            str(e),
            extra={"event_type": "config_missing", "missing": e.missing}
        )
        sys.exit(1)

    setup_logging(log_level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR)
    logger.info(
        "Frigate clip archiver starting",
        extra={
            "event_type": "app_startup",
            "version": APP_VERSION,
            "frigate_url": settings.websocket_url,
            "bucket": settings.BUCKET_NAME,
        }
    )

    if settings.METRICS_PORT:
        start_metrics_server(settings.METRICS_PORT)

    sys.exit(asyncio.run(run(settings)))


if __name__ == "__main__":
    main()
