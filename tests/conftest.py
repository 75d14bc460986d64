import sys
import threading
from pathlib import Path

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from db.tracks import add_track  # noqa: E402
from engine.job_queue import JobStore  # noqa: E402


AUDIO_FORMAT = {
    "format_id": "251",
    "url": "https://media.example.test/251",
    "ext": "webm",
    "vcodec": "none",
    "acodec": "opus",
    "abr": 160,
}


class FakeStream:
    """Source stream fed by a script of ("data", bytes) / ("stall", seconds) steps."""

    def __init__(self, steps) -> None:
        self.steps = list(steps)
        self.closed = threading.Event()

    def iter_chunks(self, chunk_size):
        for kind, value in self.steps:
            if self.closed.is_set():
                raise ConnectionAbortedError("source stream closed")
            if kind == "data":
                yield value
            elif kind == "stall":
                if self.closed.wait(value):
                    raise ConnectionAbortedError("source stream closed")
            elif kind == "error":
                raise value

    def close(self) -> None:
        self.closed.set()


class FakeProvider:
    def __init__(self, formats=None, steps=None, *, resolve_error=None) -> None:
        self.formats = [dict(AUDIO_FORMAT)] if formats is None else formats
        self.steps = steps if steps is not None else [("data", b"abc"), ("data", b"def")]
        self.resolve_error = resolve_error
        self.streams: list[FakeStream] = []

    def resolve(self, reference):
        if self.resolve_error is not None:
            raise self.resolve_error
        return list(self.formats)

    def open_stream(self, reference, fmt):
        stream = FakeStream(self.steps)
        self.streams.append(stream)
        return stream


class FakeObjectStore:
    def __init__(self, *, fail_with=None) -> None:
        self.objects: dict[str, bytes] = {}
        self.attempted: list[str] = []
        self.fail_with = fail_with

    def upload(self, key, fileobj):
        self.attempted.append(key)
        data = b""
        while True:
            chunk = fileobj.read(4)
            if not chunk:
                break
            data += chunk
            if self.fail_with is not None:
                raise self.fail_with
        self.objects[key] = data


class RecordingNotifier:
    def __init__(self) -> None:
        self.successes: list[str] = []
        self.failures: list[tuple[str, str]] = []

    def notify_success(self, reference):
        self.successes.append(reference)

    def notify_failure(self, reference, error):
        self.failures.append((reference, error))


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "jukebox.sqlite3"
    JobStore(path).ensure_schema()
    return str(path)


@pytest.fixture
def store(db_path):
    return JobStore(db_path)


@pytest.fixture
def track(db_path):
    def _add(reference, title=None):
        add_track(db_path, reference, title=title)
        return reference

    return _add


@pytest.fixture
def notifier():
    return RecordingNotifier()
