"""Process shutdown handling and in-flight job reconciliation."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from typing import Callable, Iterable, Optional

from engine.retry_policy import RetryPolicy

SHUTDOWN_REASON = "Worker shut down while processing; job returned to the queue"

_SHUTDOWN_SIGNAL_NAMES = ("SIGINT", "SIGTERM", "SIGHUP")


def default_shutdown_signals() -> list[signal.Signals]:
    return [getattr(signal, name) for name in _SHUTDOWN_SIGNAL_NAMES if hasattr(signal, name)]


class LifecycleManager:
    def __init__(
        self,
        policy: RetryPolicy,
        *,
        on_shutdown: Optional[Callable[[str], None]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.policy = policy
        self.on_shutdown = on_shutdown
        self.logger = logger or logging.getLogger(__name__)
        self.received_signal: Optional[int] = None
        self._reconciled = False
        self._lock = threading.Lock()

    def install(self, signals: Optional[Iterable[int]] = None) -> None:
        for signum in signals if signals is not None else default_shutdown_signals():
            signal.signal(signum, self._handle_signal)

    def _handle_signal(self, signum, frame) -> None:
        name = signal.Signals(signum).name
        if self.received_signal is not None:
            self.logger.info("Received %s again; shutdown already in progress", name)
            return
        self.received_signal = signum
        self.logger.info("Received shutdown signal: %s. Initiating graceful shutdown...", name)
        if self.on_shutdown is not None:
            self.on_shutdown(f"Received {name}")

    def reconcile(self, reason: str = SHUTDOWN_REASON) -> int:
        """Return every processing job to pending; runs once per process."""
        with self._lock:
            if self._reconciled:
                return 0
            self._reconciled = True
        try:
            count = self.policy.release_in_flight(reason)
        except Exception:
            self.logger.exception("failed to release in-flight jobs during shutdown")
            return 0
        self.logger.info("Released %d in-flight job(s) back to pending", count)
        return count

    def install_fatal_hooks(self, exit_code: int = 1) -> None:
        """Log uncaught faults and terminate immediately.

        No reconciliation happens here; a supervisor restarts the process.
        """

        def _excepthook(exc_type, exc, tb):
            self.logger.critical("Uncaught fault, terminating worker", exc_info=(exc_type, exc, tb))
            logging.shutdown()
            os._exit(exit_code)

        def _thread_excepthook(args):
            if args.exc_type is SystemExit:
                return
            self.logger.critical(
                "Uncaught fault in thread %s, terminating worker",
                getattr(args.thread, "name", None),
                exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
            )
            logging.shutdown()
            os._exit(exit_code)

        sys.excepthook = _excepthook
        threading.excepthook = _thread_excepthook
