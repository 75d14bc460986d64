import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from db.migrations import ensure_schema

logger = logging.getLogger(__name__)

JOB_STATUS_PENDING = "pending"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"

JOB_STATUSES = (
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
)

TERMINAL_STATUSES = (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
)


class ClaimContentionError(Exception):
    """Raised when the claim transaction could not commit."""


@dataclass(frozen=True)
class IngestionJob:
    id: str
    reference: str
    status: str
    retry_count: int
    error_message: str | None
    created_at: str
    updated_at: str


def utc_now():
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def log_event(level, message, *, log=None, **fields):
    payload = {"message": message, **fields}
    target = log or logger
    try:
        target.log(level, json.dumps(payload, sort_keys=True, default=str))
    except Exception as exc:
        target.log(level, f"log_event_serialization_failed: {exc} message={message}")


class JobStore:
    def __init__(self, db_path, *, timeout=30):
        self.db_path = str(db_path)
        self.timeout = timeout

    def _connect(self, timeout=None):
        conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=self.timeout if timeout is None else timeout,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _row_to_job(self, row):
        if not row:
            return None
        return IngestionJob(
            id=row["id"],
            reference=row["reference"],
            status=row["status"],
            retry_count=row["retry_count"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def ensure_schema(self):
        conn = self._connect()
        try:
            ensure_schema(conn)
        finally:
            conn.close()

    def get_job(self, reference):
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM ingestion_jobs WHERE reference=?", (reference,))
            return self._row_to_job(cur.fetchone())
        finally:
            conn.close()

    def list_jobs(self, *, status=None):
        conn = self._connect()
        try:
            cur = conn.cursor()
            if status:
                cur.execute(
                    "SELECT * FROM ingestion_jobs WHERE status=? ORDER BY reference ASC",
                    (status,),
                )
            else:
                cur.execute("SELECT * FROM ingestion_jobs ORDER BY reference ASC")
            return [self._row_to_job(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def insert_job(self, reference, *, status=JOB_STATUS_PENDING, retry_count=0, error_message=None):
        """Insert a job row directly.

        Raises ``sqlite3.IntegrityError`` when a row for ``reference`` already
        exists or the reference has no track.
        """
        if status not in JOB_STATUSES:
            raise ValueError(f"unsupported job status: {status}")
        now = utc_now()
        conn = self._connect()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO ingestion_jobs (
                    id, reference, status, retry_count, error_message, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (uuid4().hex, reference, status, retry_count, error_message, now, now),
            )
            conn.commit()
        finally:
            conn.close()

    def claim_next(self):
        """Atomically move one available reference into ``processing``.

        A reference is available when its track has no job row yet, or the
        row is still pending. Returns the claimed reference or ``None``.
        """
        now = utc_now()
        conn = self._connect()
        try:
            cur = conn.cursor()
            try:
                cur.execute("BEGIN IMMEDIATE")
                cur.execute(
                    """
                    SELECT t.reference
                    FROM tracks AS t
                    LEFT JOIN ingestion_jobs AS j ON j.reference = t.reference
                    WHERE t.reference IS NOT NULL
                      AND (j.id IS NULL OR j.status NOT IN (?, ?, ?))
                    ORDER BY t.reference ASC
                    LIMIT 1
                    """,
                    (JOB_STATUS_PROCESSING, JOB_STATUS_COMPLETED, JOB_STATUS_FAILED),
                )
                row = cur.fetchone()
                if not row:
                    conn.commit()
                    return None
                reference = row["reference"]
                cur.execute(
                    """
                    UPDATE ingestion_jobs
                    SET status=?, updated_at=?
                    WHERE reference=? AND status=?
                    """,
                    (JOB_STATUS_PROCESSING, now, reference, JOB_STATUS_PENDING),
                )
                if cur.rowcount == 1:
                    conn.commit()
                    return reference
                try:
                    cur.execute(
                        """
                        INSERT INTO ingestion_jobs (
                            id, reference, status, retry_count, error_message, created_at, updated_at
                        )
                        VALUES (?, ?, ?, 0, NULL, ?, ?)
                        """,
                        (uuid4().hex, reference, JOB_STATUS_PROCESSING, now, now),
                    )
                except sqlite3.IntegrityError:
                    # Another coordinator inserted the row first.
                    conn.rollback()
                    return None
                conn.commit()
                return reference
            except sqlite3.OperationalError as exc:
                if conn.in_transaction:
                    conn.rollback()
                raise ClaimContentionError(str(exc)) from exc
        finally:
            conn.close()

    def mark_completed(self, reference, *, timeout=None):
        now = utc_now()
        conn = self._connect(timeout)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE ingestion_jobs
                SET status=?, error_message=NULL, updated_at=?
                WHERE reference=? AND status=?
                """,
                (JOB_STATUS_COMPLETED, now, reference, JOB_STATUS_PROCESSING),
            )
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def record_failure(self, reference, *, error_message, max_retries, timeout=None):
        """Move a processing job back to pending or on to failed.

        Returns the new status, or ``None`` when the job was not processing.
        """
        now = utc_now()
        conn = self._connect(timeout)
        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            cur.execute(
                "SELECT retry_count FROM ingestion_jobs WHERE reference=? AND status=?",
                (reference, JOB_STATUS_PROCESSING),
            )
            row = cur.fetchone()
            if not row:
                conn.commit()
                return None
            retry_count = row["retry_count"]
            if retry_count < max_retries:
                cur.execute(
                    """
                    UPDATE ingestion_jobs
                    SET status=?, retry_count=?, error_message=?, updated_at=?
                    WHERE reference=? AND status=?
                    """,
                    (
                        JOB_STATUS_PENDING,
                        retry_count + 1,
                        error_message,
                        now,
                        reference,
                        JOB_STATUS_PROCESSING,
                    ),
                )
                conn.commit()
                return JOB_STATUS_PENDING

            cur.execute(
                """
                UPDATE ingestion_jobs
                SET status=?, error_message=?, updated_at=?
                WHERE reference=? AND status=?
                """,
                (JOB_STATUS_FAILED, error_message, now, reference, JOB_STATUS_PROCESSING),
            )
            conn.commit()
            return JOB_STATUS_FAILED
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

    def reset_processing_jobs(self, *, reason, timeout=None):
        now = utc_now()
        conn = self._connect(timeout)
        try:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE ingestion_jobs
                SET status=?, error_message=?, updated_at=?
                WHERE status=?
                """,
                (JOB_STATUS_PENDING, reason, now, JOB_STATUS_PROCESSING),
            )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()
