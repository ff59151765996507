"""
Clip upload service: streams Frigate clips into S3-compatible storage.

Provides functionality to:
- Download an event clip from Frigate's HTTP API (10 second limit)
- Stream the response body straight into the bucket without buffering
  the whole clip in memory
- Classify failures as download-side or store-side

A failed transfer is never retried; the caller logs it and moves on.
"""
import asyncio
import logging
from typing import Any, Optional

import aiohttp
import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from archiver.core.config import Settings

logger = logging.getLogger(__name__)

# Download timeout in seconds, covering connect and body transfer
DOWNLOAD_TIMEOUT = 10.0

CLIP_CONTENT_TYPE = "video/mp4"

# The only S3-compatible target this service knows how to configure
SUPPORTED_BACKEND = "B2"


class ClipTransferError(Exception):
    """Base class for a failed clip transfer."""
    pass


class DownloadFailed(ClipTransferError):
    """
    The clip could not be fetched from Frigate.

    Raised for connection errors, timeouts and non-2xx responses.
    """
    pass


class UploadFailed(ClipTransferError):
    """The object store rejected or aborted the upload."""
    pass


class UnsupportedStorageBackend(Exception):
    """STORAGE_BACKENDS names no backend this service can upload to."""
    pass


class StreamingBody:
    """
    Blocking, non-seekable file-like view of an aiohttp response body.

    boto3 runs in a worker thread and calls read(); each call schedules
    a read on the event loop that owns the response and waits for it.
    Being non-seekable makes boto3 stream in parts instead of trying to
    rewind or size the body.

    read(size) returns exactly size bytes unless the body ends first;
    boto3 picks single or multipart upload from the first read and cuts
    each part from a single read.
    """

    def __init__(self, content: aiohttp.StreamReader, loop: asyncio.AbstractEventLoop):
        self._content = content
        self._loop = loop

    def read(self, size: Optional[int] = -1) -> bytes:
        return asyncio.run_coroutine_threadsafe(self._read(size), self._loop).result()

    async def _read(self, size: Optional[int]) -> bytes:
        if size is None or size < 0:
            return await self._content.read()

        chunks = []
        received = 0
        while received < size:
            chunk = await self._content.read(size - received)
            if not chunk:
                break
            chunks.append(chunk)
            received += len(chunk)
        return b"".join(chunks)


def create_s3_client(settings: Settings) -> Any:
    """
    Build the boto3 S3 client shared by every upload.

    Args:
        settings: Application settings with storage credentials
    """
    return boto3.client(
        's3',
        region_name=settings.AWS_REGION,
        endpoint_url=settings.AWS_ENDPOINT,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        config=Config(signature_version='s3v4'),
    )


class ClipUploader:
    """
    Stateless clip uploader; one upload() call per clip.

    Attributes:
        _session: Shared aiohttp session for clip downloads
        _s3_client: Shared boto3 client (thread-safe for concurrent uploads)
        bucket_name: Destination bucket
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        s3_client: Any,
        bucket_name: str,
        download_timeout: float = DOWNLOAD_TIMEOUT,
    ):
        self._session = session
        self._s3_client = s3_client
        self.bucket_name = bucket_name
        self._timeout = aiohttp.ClientTimeout(total=download_timeout)

    async def upload(self, source_url: str, object_key: str) -> None:
        """
        Stream the clip at source_url into bucket_name/object_key.

        Overwrites any existing object with the same key.

        Args:
            source_url: Frigate clip URL
            object_key: Destination key in the bucket

        Raises:
            DownloadFailed: The clip could not be fetched
            UploadFailed: The store rejected or aborted the transfer
        """
        try:
            async with self._session.get(source_url, timeout=self._timeout) as response:
                if response.status >= 400:
                    raise DownloadFailed(
                        f"unable to download file: HTTP {response.status} from {source_url}"
                    )
                await self._stream_to_bucket(response, object_key)
        except ClipTransferError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DownloadFailed(f"unable to download file: {e}") from e

        logger.info(
            f"Successfully uploaded {object_key} to {self.bucket_name}",
            extra={
                "event_type": "clip_upload_success",
                "object_key": object_key,
                "bucket": self.bucket_name,
            }
        )

    async def _stream_to_bucket(
        self,
        response: aiohttp.ClientResponse,
        object_key: str
    ) -> None:
        body = StreamingBody(response.content, asyncio.get_running_loop())
        try:
            await asyncio.to_thread(
                self._s3_client.upload_fileobj,
                body,
                self.bucket_name,
                object_key,
                ExtraArgs={"ContentType": CLIP_CONTENT_TYPE},
            )
        except (
            ClientError,
            BotoCoreError,
            S3UploadFailedError,
            aiohttp.ClientError,
            asyncio.TimeoutError,
            OSError,
        ) as e:
            raise UploadFailed(f"failed to upload file: {e}") from e


def build_uploader(settings: Settings, session: aiohttp.ClientSession) -> ClipUploader:
    """
    Select and construct the uploader for the configured storage backend.

    Raises:
        UnsupportedStorageBackend: If STORAGE_BACKENDS does not include B2
    """
    backends = settings.storage_backend_list
    if SUPPORTED_BACKEND not in backends:
        raise UnsupportedStorageBackend(
            f"no supported storage backend found in STORAGE_BACKENDS: {settings.STORAGE_BACKENDS}"
        )

    logger.info(
        "Storage backend configured",
        extra={
            "event_type": "storage_backend_configured",
            "backend": SUPPORTED_BACKEND,
            "bucket": settings.BUCKET_NAME,
            "endpoint": settings.AWS_ENDPOINT,
        }
    )
    return ClipUploader(session, create_s3_client(settings), settings.BUCKET_NAME)
