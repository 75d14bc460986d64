"""External media provider: yt-dlp for metadata, requests for the byte stream."""

from __future__ import annotations

import logging
import socket
import threading
import urllib.parse
from typing import Any, Iterator, Optional

import requests
from urllib3.exceptions import ReadTimeoutError
from yt_dlp import YoutubeDL

from config.settings import (
    STREAM_CHUNK_SIZE,
    STREAM_CONNECT_TIMEOUT_SECONDS,
    STREAM_START_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

_WATCH_URL = "https://www.youtube.com/watch?v={reference}"
_PREFERRED_AUDIO_EXT = "webm"


def build_proxy_url(host, username=None, password=None, country=None):
    """Build the authenticated proxy URL, or ``None`` when no host is set.

    The proxy provider selects an exit country from a ``-cc-XX`` suffix on
    the username.
    """
    host = (host or "").strip()
    if not host:
        return None
    if not username:
        return f"http://{host}"
    user = username
    if country:
        user = f"{user}-cc-{country}"
    credentials = urllib.parse.quote(user, safe="-_.")
    if password:
        credentials = f"{credentials}:{urllib.parse.quote(password, safe='')}"
    return f"http://{credentials}@{host}"


def _is_audio_only(fmt: dict[str, Any]) -> bool:
    if not isinstance(fmt, dict) or not fmt.get("url"):
        return False
    vcodec = str(fmt.get("vcodec") or "none").lower()
    acodec = str(fmt.get("acodec") or "none").lower()
    return vcodec == "none" and acodec != "none"


def _audio_rank(fmt: dict[str, Any]) -> tuple[int, float]:
    ext = str(fmt.get("ext") or fmt.get("audio_ext") or "").lower()
    bitrate = fmt.get("abr") or fmt.get("tbr") or 0
    try:
        bitrate = float(bitrate)
    except (TypeError, ValueError):
        bitrate = 0.0
    return (1 if ext == _PREFERRED_AUDIO_EXT else 0, bitrate)


def select_audio_format(formats) -> Optional[dict[str, Any]]:
    """Pick the best audio-only format, preferring the webm container."""
    candidates = [fmt for fmt in formats or [] if _is_audio_only(fmt)]
    if not candidates:
        return None
    return max(candidates, key=_audio_rank)


def _response_socket(response) -> Optional[socket.socket]:
    """Return the socket behind a streamed requests response, if reachable."""
    raw = getattr(response, "raw", None)
    connection = getattr(raw, "_connection", None)
    sock = getattr(connection, "sock", None)
    if sock is None:
        # Connection: close responses detach the socket from the connection.
        fp = getattr(getattr(raw, "_fp", None), "fp", None)
        sock = getattr(getattr(fp, "raw", None), "_sock", None)
    return sock if isinstance(sock, socket.socket) else None


def _is_read_timeout(exc: requests.RequestException) -> bool:
    return isinstance(exc, requests.Timeout) or any(isinstance(arg, ReadTimeoutError) for arg in exc.args)


class SourceStream:
    """Chunked reader over an HTTP response that can be closed from any thread.

    ``close`` shuts the socket down so a read blocked on a silent source
    returns at once instead of waiting out the socket timeout.
    """

    def __init__(self, response: requests.Response) -> None:
        self._response = response
        self._closed = False
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def iter_chunks(self, chunk_size: int = STREAM_CHUNK_SIZE) -> Iterator[bytes]:
        try:
            for chunk in self._response.iter_content(chunk_size=chunk_size):
                if self._closed:
                    raise ConnectionAbortedError("source stream closed")
                if chunk:
                    yield chunk
        except requests.RequestException as exc:
            if self._closed:
                raise ConnectionAbortedError("source stream closed") from exc
            if _is_read_timeout(exc):
                raise TimeoutError("source stream read timed out") from exc
            raise
        if self._closed:
            raise ConnectionAbortedError("source stream closed")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        sock = _response_socket(self._response)
        if sock is not None:
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                logger.debug("source socket shutdown failed", exc_info=True)
        try:
            self._response.close()
        except Exception:
            logger.debug("source response close failed", exc_info=True)


class YtDlpProvider:
    def __init__(
        self,
        *,
        proxy_url=None,
        connect_timeout=STREAM_CONNECT_TIMEOUT_SECONDS,
        read_timeout=STREAM_START_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.proxy_url = proxy_url
        self.connect_timeout = connect_timeout
        # A source that sends no headers within the start window times out here;
        # once streaming, the guards close the socket themselves.
        self.read_timeout = read_timeout
        self._session = session or requests.Session()

    def _ytdlp_opts(self) -> dict[str, Any]:
        opts: dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": True,
            "socket_timeout": self.connect_timeout,
        }
        if self.proxy_url:
            opts["proxy"] = self.proxy_url
        return opts

    def resolve(self, reference: str) -> list[dict[str, Any]]:
        url = _WATCH_URL.format(reference=reference)
        with YoutubeDL(self._ytdlp_opts()) as ydl:
            info = ydl.extract_info(url, download=False)
        if not isinstance(info, dict):
            return []
        return list(info.get("formats") or [])

    def open_stream(self, reference: str, fmt: dict[str, Any]) -> SourceStream:
        proxies = None
        if self.proxy_url:
            proxies = {"http": self.proxy_url, "https": self.proxy_url}
        headers = fmt.get("http_headers") or {}
        logger.debug("opening source stream reference=%s format_id=%s", reference, fmt.get("format_id"))
        try:
            response = self._session.get(
                fmt["url"],
                stream=True,
                headers=headers,
                proxies=proxies,
                timeout=(self.connect_timeout, self.read_timeout),
            )
        except requests.Timeout as exc:
            raise TimeoutError(f"source did not respond: {exc}") from exc
        try:
            response.raise_for_status()
        except requests.HTTPError:
            response.close()
            raise
        return SourceStream(response)
