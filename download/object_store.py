"""S3-compatible object storage for ingested audio."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config

from config.settings import (
    AUDIO_CONTENT_TYPE,
    MULTIPART_CHUNK_SIZE,
    OBJECT_ACL,
    OBJECT_KEY_EXTENSION,
    OBJECT_KEY_PREFIX,
    PIPE_MAX_CHUNKS,
)

logger = logging.getLogger(__name__)

_EOF = object()


class PipeBrokenError(IOError):
    """Raised to the writer once the reading side has gone away."""


def build_object_key(reference: str) -> str:
    ref = (reference or "").strip()
    if not ref:
        raise ValueError("reference is required")
    return f"{OBJECT_KEY_PREFIX}{ref}{OBJECT_KEY_EXTENSION}"


class AudioPipe:
    """Bounded in-memory pipe exposed to the uploader as a readable file.

    ``write`` blocks while ``max_chunks`` chunks are waiting, so a slow upload
    slows the source reader down instead of buffering the whole stream.
    """

    def __init__(self, max_chunks: int = PIPE_MAX_CHUNKS) -> None:
        self._queue: queue.Queue = queue.Queue(maxsize=max_chunks)
        self._buffer = bytearray()
        self._eof = False
        self._error: Optional[BaseException] = None
        self._broken = threading.Event()
        self.bytes_written = 0

    def readable(self) -> bool:
        return True

    def write(self, chunk: bytes) -> None:
        while True:
            if self._broken.is_set():
                raise PipeBrokenError("upload side of the pipe is closed")
            try:
                self._queue.put(chunk, timeout=0.1)
                self.bytes_written += len(chunk)
                return
            except queue.Full:
                continue

    def close(self) -> None:
        """Signal end of stream to the reader."""
        self._put_marker(_EOF)

    def fail(self, exc: BaseException) -> None:
        """Make the reader raise ``exc`` so the upload aborts."""
        self._error = exc
        self._put_marker(_EOF)

    def break_pipe(self) -> None:
        """Called by the reader side when it stops consuming."""
        self._broken.set()

    def _put_marker(self, marker) -> None:
        while not self._broken.is_set():
            try:
                self._queue.put(marker, timeout=0.1)
                return
            except queue.Full:
                if self._error is not None:
                    # Drop pending data; the upload is being aborted anyway.
                    self._drain()

    def _drain(self) -> None:
        try:
            while True:
                self._queue.get_nowait()
        except queue.Empty:
            pass

    def read(self, size: int = -1) -> bytes:
        while not self._eof and (size is None or size < 0 or len(self._buffer) < size):
            item = self._queue.get()
            if item is _EOF:
                self._eof = True
                break
            self._buffer += item
        if self._error is not None:
            raise self._error
        if size is None or size < 0:
            data = bytes(self._buffer)
            self._buffer.clear()
        else:
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
        return data


def build_s3_client(
    *,
    access_key_id,
    secret_access_key,
    region=None,
    endpoint_url=None,
):
    return boto3.client(
        "s3",
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=region or None,
        endpoint_url=endpoint_url or None,
        config=Config(s3={"addressing_style": "path"}),
    )


class S3ObjectStore:
    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        content_type: str = AUDIO_CONTENT_TYPE,
        acl: str = OBJECT_ACL,
        transfer_config: Optional[TransferConfig] = None,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required")
        self.client = client
        self.bucket = bucket
        self.content_type = content_type
        self.acl = acl
        self.transfer_config = transfer_config or TransferConfig(
            multipart_threshold=MULTIPART_CHUNK_SIZE,
            multipart_chunksize=MULTIPART_CHUNK_SIZE,
        )

    def upload(self, key: str, fileobj) -> None:
        """Stream ``fileobj`` to ``key``; returns once S3 acknowledged the object."""
        self.client.upload_fileobj(
            fileobj,
            self.bucket,
            key,
            ExtraArgs={"ContentType": self.content_type, "ACL": self.acl},
            Config=self.transfer_config,
        )
        logger.debug("upload acknowledged bucket=%s key=%s", self.bucket, key)
