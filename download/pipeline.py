"""Streaming ingestion: provider stream -> bounded pipe -> object store upload."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Protocol

from config.settings import (
    STREAM_CHUNK_SIZE,
    STREAM_INACTIVITY_TIMEOUT_SECONDS,
    STREAM_START_TIMEOUT_SECONDS,
)
from download.object_store import AudioPipe, PipeBrokenError, build_object_key
from download.provider import select_audio_format
from engine.cancellation import CancelToken, GuardTimer


class IngestError(Exception):
    """Any failure that prevented a reference from being stored."""

    def __init__(self, message: str, *, reference: Optional[str] = None) -> None:
        super().__init__(message)
        self.reference = reference


class NoSuitableFormat(IngestError):
    pass


class StreamError(IngestError):
    pass


class UploadError(IngestError):
    pass


class StartTimeout(IngestError):
    pass


class InactivityTimeout(IngestError):
    pass


class ShutdownRequested(IngestError):
    pass


class _Provider(Protocol):
    def resolve(self, reference: str) -> list[dict[str, Any]]:
        """Return the available formats for a reference."""

    def open_stream(self, reference: str, fmt: dict[str, Any]) -> Any:
        """Open a closable chunked byte stream for a format."""


class _ObjectStore(Protocol):
    def upload(self, key: str, fileobj) -> None:
        """Upload ``fileobj`` to ``key`` and return once acknowledged."""


def _format_window(seconds: float) -> str:
    return f"{seconds:g}s"


class _Upload:
    """Runs the object store upload on its own thread."""

    def __init__(self, object_store: _ObjectStore, key: str, pipe: AudioPipe) -> None:
        self.key = key
        self.error: Optional[BaseException] = None
        self._object_store = object_store
        self._pipe = pipe
        self._thread = threading.Thread(target=self._run, name=f"upload-{key}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _run(self) -> None:
        try:
            self._object_store.upload(self.key, self._pipe)
        except Exception as exc:
            self.error = exc
        finally:
            self._pipe.break_pipe()

    def wait(self) -> None:
        self._thread.join()


class StreamingPipeline:
    def __init__(
        self,
        provider: _Provider,
        object_store: _ObjectStore,
        *,
        start_timeout: float = STREAM_START_TIMEOUT_SECONDS,
        inactivity_timeout: float = STREAM_INACTIVITY_TIMEOUT_SECONDS,
        chunk_size: int = STREAM_CHUNK_SIZE,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.provider = provider
        self.object_store = object_store
        self.start_timeout = start_timeout
        self.inactivity_timeout = inactivity_timeout
        self.chunk_size = chunk_size
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._active_token: Optional[CancelToken] = None

    def cancel_active(self, reason: str = "Worker shutting down") -> bool:
        """Abort the in-flight ingestion, if any."""
        with self._lock:
            token = self._active_token
        if token is None:
            return False
        return token.cancel(ShutdownRequested(reason))

    def ingest(self, reference: str) -> str:
        """Store the best audio stream for ``reference``; return its object key.

        Raises ``IngestError`` for every failure, with the underlying error
        chained as ``__cause__``.
        """
        try:
            formats = self.provider.resolve(reference)
        except Exception as exc:
            raise StreamError(f"Failed to resolve formats: {exc}", reference=reference) from exc
        fmt = select_audio_format(formats)
        if fmt is None:
            raise NoSuitableFormat("No suitable audio format found", reference=reference)

        key = build_object_key(reference)
        token = CancelToken()
        with self._lock:
            self._active_token = token
        try:
            self._transfer(reference, fmt, key, token)
        finally:
            with self._lock:
                self._active_token = None
        self.logger.info("Uploaded %s to object store as %s", reference, key)
        return key

    def _transfer(self, reference: str, fmt: dict[str, Any], key: str, token: CancelToken) -> None:
        pipe = AudioPipe()
        upload = _Upload(self.object_store, key, pipe)
        upload.start()
        token.add_callback(pipe.fail)

        def start_error() -> StartTimeout:
            return StartTimeout(
                f"Aborted by start timeout (no data received in first {_format_window(self.start_timeout)})",
                reference=reference,
            )

        def inactivity_error() -> InactivityTimeout:
            return InactivityTimeout(
                f"Aborted by inactivity timeout (no data for {_format_window(self.inactivity_timeout)})",
                reference=reference,
            )

        start_guard = GuardTimer(self.start_timeout, token, start_error, name="start")
        inactivity_guard = GuardTimer(self.inactivity_timeout, token, inactivity_error, name="inactivity")

        stream = None
        source_error: Optional[BaseException] = None
        chunk_count = 0
        try:
            start_guard.start()
            stream = self.provider.open_stream(reference, fmt)
            token.add_callback(lambda _reason: stream.close())
            for chunk in stream.iter_chunks(self.chunk_size):
                if token.cancelled:
                    break
                if chunk_count == 0:
                    start_guard.stop()
                    inactivity_guard.start()
                else:
                    inactivity_guard.reset()
                chunk_count += 1
                self.logger.debug(
                    "Stream received data for %s: %d bytes (chunk #%d)",
                    reference,
                    len(chunk),
                    chunk_count,
                )
                pipe.write(chunk)
        except PipeBrokenError:
            # Upload ended early; its own error explains why.
            pass
        except TimeoutError as exc:
            # The socket gave up on a silent source; same outcome as the guard.
            source_error = exc
            token.cancel(start_error() if chunk_count == 0 else inactivity_error())
        except Exception as exc:
            source_error = exc
        finally:
            start_guard.stop()
            inactivity_guard.stop()
            if stream is not None:
                stream.close()

        if token.cancelled or source_error is not None:
            if not token.cancelled:
                token.cancel(StreamError(f"Stream error: {source_error}", reference=reference))
            upload.wait()
            reason = token.reason
            if isinstance(reason, IngestError):
                raise reason from source_error
            raise StreamError(str(reason), reference=reference) from reason

        pipe.close()
        # Completion is the upload acknowledging the object, not the source ending.
        upload.wait()
        if upload.error is not None:
            raise UploadError(f"Upload failed: {upload.error}", reference=reference) from upload.error
