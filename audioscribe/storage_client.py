"""
Google Cloud Storage staging area.

The recogniser reads audio from Cloud Storage, so the reencoded file is
uploaded to a bucket before recognition and deleted afterwards.  Uploads use
the resumable protocol so progress can be reported chunk by chunk.

Usage::

    store = ObjectStoreClient.from_credentials(credentials, project)
    uri = await store.upload("/tmp/1f0c.flac", "my-bucket")
    await store.delete(uri)
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable, Optional, Tuple

from google.auth.transport.requests import AuthorizedSession
from google.cloud import storage
from google.resumable_media.requests import ResumableUpload

from .errors import DeleteFailed, PipelineError, UploadFailed, check_cancelled
from .models import Stage

logger = logging.getLogger(__name__)

URI_SCHEME = "gs://"
UPLOAD_URL_TEMPLATE = (
    "https://storage.googleapis.com/upload/storage/v1/b/{bucket}/o?uploadType=resumable"
)
# Resumable uploads require chunk sizes that are multiples of 256 KiB.
MINIMUM_CHUNK_SIZE = 256 * 1024
CONTENT_TYPE = "audio/flac"

ProgressCallback = Callable[[float], None]


def build_uri(bucket: str, object_name: str) -> str:
    return f"{URI_SCHEME}{bucket}/{object_name}"


def extract_object_name(uri: str) -> str:
    return uri[uri.rfind("/") + 1:]


def split_uri(uri: str) -> Tuple[str, str]:
    """Return ``(bucket, object_name)`` for a ``gs://`` URI."""
    if not uri.startswith(URI_SCHEME):
        raise ValueError(f"Not a Cloud Storage URI: {uri}")
    bucket = uri[len(URI_SCHEME):uri.rfind("/")]
    return bucket, extract_object_name(uri)


def _percent(sent: int, total: Optional[int]) -> float:
    if not total:
        return 100.0
    return max(0.0, min(100.0, sent / total * 100))


class ObjectStoreClient:
    """Upload and delete objects in Cloud Storage.

    Args:
        client: A ``google.cloud.storage.Client``.
        transport: Authorised ``requests`` session used by the resumable
            upload.
        chunk_multiplier: Chunk size as a multiple of :data:`MINIMUM_CHUNK_SIZE`.
        upload_factory: Builds the resumable upload from ``(url, chunk_size)``.
    """

    def __init__(
        self,
        client: storage.Client,
        transport: Any,
        *,
        chunk_multiplier: int = 4,
        upload_factory: Callable[[str, int], Any] = ResumableUpload,
    ) -> None:
        if chunk_multiplier < 1:
            raise ValueError("chunk_multiplier must be at least 1")
        self.client = client
        self.transport = transport
        self.chunk_size = MINIMUM_CHUNK_SIZE * chunk_multiplier
        self._upload_factory = upload_factory

    @classmethod
    def from_credentials(cls, credentials, project: Optional[str] = None, **kwargs) -> "ObjectStoreClient":
        client = storage.Client(project=project, credentials=credentials)
        return cls(client, AuthorizedSession(credentials), **kwargs)

    async def upload(
        self,
        local_path: str,
        bucket: str,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> str:
        """Upload ``local_path`` to ``bucket`` and return its ``gs://`` URI.

        The object is named after the file's base name.  ``on_progress``
        receives the percentage of bytes sent after each chunk.

        Raises:
            UploadFailed: On any transport or authorisation error.
        """
        object_name = os.path.basename(local_path)
        logger.info("Uploading %s to %s", local_path, build_uri(bucket, object_name))
        try:
            with open(local_path, "rb") as stream:
                upload = self._upload_factory(
                    UPLOAD_URL_TEMPLATE.format(bucket=bucket), self.chunk_size
                )
                await asyncio.to_thread(
                    upload.initiate,
                    self.transport,
                    stream,
                    {"name": object_name},
                    CONTENT_TYPE,
                )
                while not upload.finished:
                    check_cancelled(cancel, Stage.UPLOAD)
                    await asyncio.to_thread(upload.transmit_next_chunk, self.transport)
                    if on_progress is not None:
                        on_progress(_percent(upload.bytes_uploaded, upload.total_bytes))
        except PipelineError:
            raise
        except Exception as exc:
            raise UploadFailed("An error occurred while uploading the file.", cause=exc) from exc
        return build_uri(bucket, object_name)

    async def delete(self, uri: str) -> None:
        """Delete the object behind ``uri``.  Not retried.

        Raises:
            DeleteFailed: If the object could not be deleted.
        """
        try:
            bucket, object_name = split_uri(uri)
            blob = self.client.bucket(bucket).blob(object_name)
            await asyncio.to_thread(blob.delete)
        except Exception as exc:
            raise DeleteFailed("An error occurred while deleting the remote file.", cause=exc) from exc
        logger.info("Deleted %s", uri)
