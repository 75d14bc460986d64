"""Ingestion worker loop: claim, stream, record, pace."""

from __future__ import annotations

import logging
import sqlite3
import threading
from typing import Any, Optional

from config.settings import IDLE_POLL_SECONDS, PACE_SECONDS
from download.pipeline import IngestError, StreamingPipeline
from engine.cancellation import Ticker
from engine.job_queue import ClaimContentionError, JobStore, log_event, utc_now
from engine.retry_policy import PersistenceError, RetryPolicy

WORKER_STATE_STARTING = "starting"
WORKER_STATE_IDLE = "idle"
WORKER_STATE_PROCESSING = "processing"
WORKER_STATE_STOPPED = "stopped"


class WorkerStatus:
    """Thread-safe counters read by the liveness endpoint."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.state = WORKER_STATE_STARTING
        self.started_at = utc_now()
        self.claimed = 0
        self.completed = 0
        self.failed_attempts = 0
        self.last_reference: Optional[str] = None
        self.last_error: Optional[str] = None

    def update(self, **fields: Any) -> None:
        with self._lock:
            for name, value in fields.items():
                setattr(self, name, value)

    def increment(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "state": self.state,
                "started_at": self.started_at,
                "claimed": self.claimed,
                "completed": self.completed,
                "failed_attempts": self.failed_attempts,
                "last_reference": self.last_reference,
                "last_error": self.last_error,
            }


class IngestionWorker:
    """Single-threaded control loop for one worker process.

    Errors that belong to one job (ingest failures, status-write failures,
    claim contention) are logged and the loop moves on. Anything else
    escapes ``run_loop`` and is fatal for the process.
    """

    def __init__(
        self,
        store: JobStore,
        pipeline: StreamingPipeline,
        policy: RetryPolicy,
        *,
        ticker: Optional[Ticker] = None,
        idle_interval: float = IDLE_POLL_SECONDS,
        pace_interval: float = PACE_SECONDS,
        status: Optional[WorkerStatus] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.policy = policy
        self.ticker = ticker or Ticker()
        self.idle_interval = idle_interval
        self.pace_interval = pace_interval
        self.status = status or WorkerStatus()
        self.logger = logger or logging.getLogger(__name__)

    def request_stop(self, reason: str = "Worker shutting down") -> threading.Thread:
        """Stop the loop and abort the in-flight ingestion.

        Safe to call from a signal handler: the interrupted main thread may be
        holding the pipe or source stream locks, so the abort runs on its own
        thread and this call never blocks on them.
        """
        self.ticker.stop()
        thread = threading.Thread(
            target=self._cancel_in_flight,
            args=(reason,),
            name="ingest-cancel",
            daemon=True,
        )
        thread.start()
        return thread

    def _cancel_in_flight(self, reason: str) -> None:
        if self.pipeline.cancel_active(reason):
            self.logger.info("cancelled in-flight ingestion: %s", reason)

    def run_once(self) -> bool:
        """Process at most one job; return True when a job was claimed."""
        try:
            reference = self.store.claim_next()
        except ClaimContentionError as exc:
            self.logger.warning("claim transaction failed, retrying next tick: %s", exc)
            return False
        if not reference:
            self.status.update(state=WORKER_STATE_IDLE)
            return False

        self.status.increment("claimed")
        self.status.update(state=WORKER_STATE_PROCESSING, last_reference=reference)
        try:
            job = self.store.get_job(reference)
        except sqlite3.Error as exc:
            # The claim is committed; only the log line loses its retry count.
            self.logger.warning("could not read claimed job reference=%s: %s", reference, exc)
            job = None
        retry_count = job.retry_count if job else None
        log_event(
            logging.INFO,
            "job_claimed",
            log=self.logger,
            reference=reference,
            retry_count=retry_count,
        )

        try:
            self.pipeline.ingest(reference)
        except IngestError as exc:
            self.logger.error("Download/upload error for %s: %s", reference, exc)
            self.status.increment("failed_attempts")
            self.status.update(last_error=str(exc))
            if not self.ticker.running:
                # Left in processing; shutdown reconciliation puts it back to pending.
                self.logger.info("shutdown in progress, leaving %s for reconciliation", reference)
                return True
            self._apply(self.policy.record_failure, reference, exc)
            return True

        self.status.increment("completed")
        self._apply(self.policy.record_success, reference)
        return True

    def _apply(self, fn, *args) -> None:
        try:
            fn(*args)
        except PersistenceError:
            self.logger.exception("persistence_failed reference=%s", args[0])

    def run_loop(self) -> None:
        log_event(logging.INFO, "worker_started", log=self.logger)
        try:
            while self.ticker.running:
                processed = self.run_once()
                interval = self.pace_interval if processed else self.idle_interval
                self.ticker.sleep(interval)
        finally:
            self.status.update(state=WORKER_STATE_STOPPED)
        log_event(logging.INFO, "worker_stopped", log=self.logger)
