"""Cancellation tokens, guard timers and the worker ticker."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CancelToken:
    """One-shot cancellation signal carrying the exception that caused it.

    The first ``cancel`` wins; later calls are ignored. Callbacks run once, on
    the thread that cancelled, and a callback registered after cancellation
    runs immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._event = threading.Event()
        self._reason: Optional[BaseException] = None
        self._callbacks: list[Callable[[BaseException], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[BaseException]:
        return self._reason

    def cancel(self, reason: BaseException) -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("cancel callback failed")
        return True

    def add_callback(self, callback: Callable[[BaseException], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
            reason = self._reason
        callback(reason)

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class GuardTimer:
    """Cancel a token when a liveness window elapses without being reset.

    One watchdog thread per guard waits for a moving deadline; ``reset`` only
    pushes the deadline forward. ``error_factory`` builds the exception the
    token is cancelled with, so the caller can classify the abort by the
    token alone.
    """

    def __init__(
        self,
        window: float,
        token: CancelToken,
        error_factory: Callable[[], BaseException],
        *,
        name: str = "guard",
    ) -> None:
        self.window = window
        self.name = name
        self._token = token
        self._error_factory = error_factory
        self._cond = threading.Condition()
        self._deadline: Optional[float] = None
        self._stopped = False
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        with self._cond:
            if self._stopped or self._thread is not None:
                return
            self._deadline = time.monotonic() + self.window
            self._thread = threading.Thread(target=self._watch, name=f"{self.name}-guard", daemon=True)
            self._thread.start()

    def reset(self) -> None:
        with self._cond:
            if self._stopped or self._thread is None:
                return
            self._deadline = time.monotonic() + self.window
            self._cond.notify()

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._cond.notify()

    def _watch(self) -> None:
        with self._cond:
            while not self._stopped:
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    self._stopped = True
                    break
                self._cond.wait(remaining)
            else:
                return
        self._token.cancel(self._error_factory())


class Ticker:
    """Cancellable pacing for the worker loop."""

    def __init__(self, stop_event: Optional[threading.Event] = None) -> None:
        self._stop_event = stop_event or threading.Event()

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self) -> None:
        self._stop_event.set()

    def sleep(self, seconds: float) -> bool:
        """Wait ``seconds``; return False if the ticker stopped meanwhile."""
        if self._stop_event.wait(seconds):
            return False
        return True
