"""
Frigate Event Handler Service

Classifies frames from the Frigate WebSocket and schedules clip uploads
for finished person events.

Event Flow:
    WebSocket frame
            ↓
    FrigateEventHandler.dispatch()  (one task per frame)
            ↓
    1. Decode frame as StreamMessage
            ↓ (if malformed → log, discard)
    2. Check topic == "events"
            ↓ (if other topic → discard)
    3. Decode payload as a JSON string (double-encoded for this topic)
            ↓ (if not a string → log, discard)
    4. Decode that string as EventPayload
            ↓ (if malformed → log, discard)
    5. Apply archival predicate (end + end_time + has_clip + person)
            ↓ (if not matching → discard)
    6. Register pending upload, wait for the clip to be generated
            ↓ (shutdown cuts the wait short, never skips the upload)
    7. Stream clip from Frigate into object storage
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional, Set, Union

from pydantic import ValidationError

from archiver.core import metrics
from archiver.core.backoff import sleep_unless_shutdown
from archiver.core.lifecycle import PendingTracker
from archiver.core.logging_config import clear_event_id, sanitize_log_value, set_event_id
from archiver.schemas.frigate import (
    EVENTS_TOPIC,
    EventDetails,
    EventPayload,
    StreamMessage,
    UploadTask,
)
from archiver.services.storage_service import ClipTransferError, ClipUploader, DownloadFailed

logger = logging.getLogger(__name__)

# Frigate needs time after an event ends before the clip can be served
# (blakeblackshear/frigate#6662)
CLIP_READY_DELAY = 12.0

# Only finished events with this label are archived
ARCHIVE_LABEL = "person"

EVENT_END = "end"

LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class FrameDecodeError(Exception):
    """A frame or its payload could not be decoded."""
    pass


def should_upload_clip(payload: EventPayload) -> bool:
    """Archival predicate: finished, timed, clipped person events only."""
    return (
        payload.type == EVENT_END
        and payload.after.end_time is not None
        and payload.after.has_clip
        and payload.after.label == ARCHIVE_LABEL
    )


def event_time_from_start(start_time: float) -> datetime:
    """Convert a Unix start time to local wall-clock time, dropping fractions."""
    return datetime.fromtimestamp(int(start_time))


def build_object_key(event_time: datetime, camera: str, event_id: str) -> str:
    """
    Build the storage key for a clip.

    Layout: /YYYY/MM/YYYYMMDD_HHMMSS_<camera>_<id>.mp4
    """
    t = event_time
    return (
        f"/{t.year}/{t.month:02d}/"
        f"{t.year}{t.month:02d}{t.day:02d}_{t.hour:02d}{t.minute:02d}{t.second:02d}"
        f"_{camera}_{event_id}.mp4"
    )


def build_clip_url(clip_base_url: str, event_id: str) -> str:
    return f"{clip_base_url}/api/events/{event_id}/clip.mp4"


def decode_event(frame: Union[str, bytes]) -> Optional[EventPayload]:
    """
    Run the two-stage decode of a frame.

    Returns:
        EventPayload for "events" frames, None for any other topic

    Raises:
        FrameDecodeError: If the envelope or event payload is malformed
    """
    try:
        message = StreamMessage.model_validate_json(frame)
    except ValidationError as e:
        raise FrameDecodeError(f"Error unmarshalling message: {e}") from e

    if message.topic != EVENTS_TOPIC:
        return None

    # "events" payloads are JSON-encoded strings; other topics carry numbers
    if not isinstance(message.payload, str):
        raise FrameDecodeError(
            f"Error unmarshalling payload into string: got {type(message.payload).__name__}"
        )

    try:
        return EventPayload.model_validate_json(message.payload)
    except ValidationError as e:
        raise FrameDecodeError(f"Error unmarshalling event payload: {e}") from e


class FrigateEventHandler:
    """
    Turns raw frames into scheduled clip uploads.

    Every frame and every upload runs on its own task so a slow step never
    delays reading the next frame. Frames and uploads are counted in the
    shared PendingTracker from the moment they are dispatched or scheduled
    until their task returns.

    Attributes:
        clip_base_url: Frigate HTTP base, e.g. http://frigate:5000
        clip_ready_delay: Seconds to wait before fetching a clip
    """

    def __init__(
        self,
        uploader: ClipUploader,
        pending: PendingTracker,
        shutdown_event: asyncio.Event,
        clip_base_url: str,
        clip_ready_delay: float = CLIP_READY_DELAY,
    ):
        self._uploader = uploader
        self._pending = pending
        self._shutdown_event = shutdown_event
        self.clip_base_url = clip_base_url
        self.clip_ready_delay = clip_ready_delay
        # Strong references so running tasks are not garbage collected
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def dispatch(self, frame: Union[str, bytes]) -> asyncio.Task:
        """
        Classify a frame on its own task; returns immediately.

        The frame counts as pending until it has been classified.
        """
        metrics.frames_received_total.inc()
        self._pending.add()
        try:
            return self._spawn(self._classify(frame), "frigate_frame")
        except BaseException:
            self._pending.done()
            raise

    async def _classify(self, frame: Union[str, bytes]) -> Optional[asyncio.Task]:
        try:
            return await self.handle_frame(frame)
        finally:
            self._pending.done()

    async def handle_frame(self, frame: Union[str, bytes]) -> Optional[asyncio.Task]:
        """
        Decode one frame and schedule an upload if it qualifies.

        Never raises: decode problems are logged and the frame dropped.

        Returns:
            The scheduled upload task, or None
        """
        try:
            payload = decode_event(frame)
        except FrameDecodeError as e:
            metrics.record_frame_dropped("decode_error")
            logger.warning(
                sanitize_log_value(str(e)),
                extra={"event_type": "frigate_frame_decode_error"}
            )
            return None
        except Exception as e:
            metrics.record_frame_dropped("decode_error")
            logger.error(
                f"Unexpected error decoding frame: {type(e).__name__}",
                exc_info=True,
                extra={"event_type": "frigate_frame_unexpected_error"}
            )
            return None

        if payload is None or not should_upload_clip(payload):
            return None

        task = self.build_upload_task(payload.after)
        if task is None:
            return None
        return self.schedule_upload(task)

    def build_upload_task(self, details: EventDetails) -> Optional[UploadTask]:
        """Derive the clip URL and object key for a qualifying event."""
        if details.start_time is None:
            metrics.record_frame_dropped("missing_start_time")
            logger.warning(
                "Finished event has no start_time, cannot build clip key",
                extra={
                    "event_type": "frigate_event_missing_start_time",
                    "frigate_event_id": details.id,
                    "camera": details.camera,
                }
            )
            return None

        try:
            event_time = event_time_from_start(details.start_time)
        except (OverflowError, OSError, ValueError) as e:
            metrics.record_frame_dropped("invalid_start_time")
            logger.warning(
                f"Finished event has unusable start_time {details.start_time}: {e}",
                extra={
                    "event_type": "frigate_event_invalid_start_time",
                    "frigate_event_id": details.id,
                    "camera": details.camera,
                }
            )
            return None

        return UploadTask(
            source_url=build_clip_url(self.clip_base_url, details.id),
            object_key=build_object_key(event_time, details.camera, details.id),
            event_id=details.id,
            camera=details.camera,
            event_time=event_time,
        )

    def schedule_upload(self, task: UploadTask) -> asyncio.Task:
        """Register the upload as pending and start its delayed attempt."""
        self._pending.add()
        try:
            return self._spawn(self._upload_after_delay(task), f"clip_upload_{task.event_id}")
        except BaseException:
            self._pending.done()
            raise

    async def _upload_after_delay(self, task: UploadTask) -> None:
        token = set_event_id(task.event_id)
        try:
            when = task.event_time.strftime(LOG_TIME_FORMAT)
            logger.info(
                f"Event triggered at {when} on camera {task.camera}. "
                f"Waiting for clip to be ready...",
                extra={
                    "event_type": "clip_upload_scheduled",
                    "camera": task.camera,
                    "delay_seconds": self.clip_ready_delay,
                }
            )

            if await sleep_unless_shutdown(self.clip_ready_delay, self._shutdown_event):
                logger.info(
                    f"Shutdown signal received, but proceeding with upload for clip: {task.event_id}",
                    extra={"event_type": "clip_upload_shutdown_proceed"}
                )
            else:
                logger.info(
                    f"Preparing to upload clip for event at {when} on camera {task.camera}.",
                    extra={
                        "event_type": "clip_upload_start",
                        "source_url": task.source_url,
                        "object_key": task.object_key,
                    }
                )

            await self._upload(task)
        finally:
            self._pending.done()
            clear_event_id(token)

    async def _upload(self, task: UploadTask) -> None:
        try:
            await self._uploader.upload(task.source_url, task.object_key)
        except ClipTransferError as e:
            status = "download_failed" if isinstance(e, DownloadFailed) else "upload_failed"
            metrics.record_upload(status)
            logger.error(
                f"Failed to upload clip: {e}",
                extra={
                    "event_type": f"clip_{status}",
                    "source_url": task.source_url,
                    "object_key": task.object_key,
                    "error_type": type(e).__name__,
                }
            )
            return
        except Exception as e:
            metrics.record_upload("error")
            logger.error(
                f"Failed to upload clip: unexpected {type(e).__name__}",
                exc_info=True,
                extra={
                    "event_type": "clip_upload_unexpected_error",
                    "object_key": task.object_key,
                }
            )
            return

        metrics.record_upload("success")
