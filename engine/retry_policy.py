"""Outcome classification and the job status transitions that follow it."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from config.settings import (
    MAX_RETRIES,
    PERSIST_ATTEMPT_TIMEOUT_SECONDS,
    PERSIST_ATTEMPTS,
    PERSIST_BACKOFF_SECONDS,
)
from engine.job_queue import JOB_STATUS_FAILED, JobStore, log_event
from engine.notifications import Notifier

T = TypeVar("T")


class PersistenceError(Exception):
    """A status write could not be committed after every attempt."""


def describe_error(error: BaseException) -> str:
    message = str(error).strip()
    return message or type(error).__name__


class RetryPolicy:
    """Owns every status transition after a job has been claimed.

    success:           processing -> completed (error cleared), notify.
    retryable failure: processing -> pending, retry_count + 1, while the
                       pre-failure retry_count is below ``MAX_RETRIES``.
    terminal failure:  processing -> failed once the budget is spent, notify.
    release:           processing -> pending with retry_count untouched, used
                       when the process shuts down mid-job.
    """

    def __init__(
        self,
        store: JobStore,
        notifier: Notifier,
        *,
        persist_attempts: int = PERSIST_ATTEMPTS,
        persist_timeout: float = PERSIST_ATTEMPT_TIMEOUT_SECONDS,
        persist_backoff: float = PERSIST_BACKOFF_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.max_retries = MAX_RETRIES
        self.persist_attempts = persist_attempts
        self.persist_timeout = persist_timeout
        self.persist_backoff = persist_backoff
        self.logger = logger or logging.getLogger(__name__)

    def _persist(self, operation: str, fn: Callable[[], T]) -> T:
        last_error = None
        for attempt in range(1, self.persist_attempts + 1):
            try:
                return fn()
            except Exception as exc:
                last_error = exc
                if attempt >= self.persist_attempts:
                    break
                delay = self.persist_backoff * (2 ** (attempt - 1))
                self.logger.warning(
                    "persistence retry op=%s attempt=%s delay=%.2fs err=%s",
                    operation,
                    attempt,
                    delay,
                    exc,
                )
                time.sleep(delay)
        raise PersistenceError(f"{operation} failed after {self.persist_attempts} attempts: {last_error}") from last_error

    def _notify(self, fn: Callable[..., None], *args) -> None:
        try:
            fn(*args)
        except Exception:
            self.logger.exception("notification failed args=%s", args)

    def record_success(self, reference: str) -> bool:
        updated = self._persist(
            "mark_completed",
            lambda: self.store.mark_completed(reference, timeout=self.persist_timeout),
        )
        if not updated:
            self.logger.warning("completed job was no longer processing reference=%s", reference)
            return False
        log_event(logging.INFO, "job_completed", log=self.logger, reference=reference)
        self._notify(self.notifier.notify_success, reference)
        return True

    def record_failure(self, reference: str, error: BaseException) -> Optional[str]:
        detail = describe_error(error)
        new_status = self._persist(
            "record_failure",
            lambda: self.store.record_failure(
                reference,
                error_message=detail,
                max_retries=self.max_retries,
                timeout=self.persist_timeout,
            ),
        )
        if new_status is None:
            self.logger.warning("failed job was no longer processing reference=%s", reference)
            return None
        log_event(
            logging.ERROR,
            "job_failed",
            log=self.logger,
            reference=reference,
            status=new_status,
            error=detail,
            error_type=type(error).__name__,
        )
        if new_status == JOB_STATUS_FAILED:
            self._notify(self.notifier.notify_failure, reference, detail)
        return new_status

    def release_in_flight(self, reason: str) -> int:
        count = self._persist(
            "reset_processing_jobs",
            lambda: self.store.reset_processing_jobs(reason=reason, timeout=self.persist_timeout),
        )
        log_event(logging.INFO, "jobs_released", log=self.logger, count=count, reason=reason)
        return count
