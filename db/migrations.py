"""SQLite migrations for the track registry and ingestion job storage."""

from __future__ import annotations

import sqlite3


def ensure_tracks_table(conn: sqlite3.Connection) -> None:
    """Ensure the minimal track table the ingestion jobs hang off exists.

    The web server owns the full track record; the worker only needs the
    catalog reference and a uniqueness guarantee on it.
    """
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS tracks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            reference TEXT UNIQUE,
            title TEXT,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.commit()


def ensure_ingestion_jobs_table(conn: sqlite3.Connection) -> None:
    """Ensure the ingestion job table and its indexes exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS ingestion_jobs (
            id TEXT PRIMARY KEY,
            reference TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
            retry_count INTEGER NOT NULL DEFAULT 0 CHECK (retry_count >= 0),
            error_message TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (reference) REFERENCES tracks(reference) ON DELETE CASCADE
        )
        """
    )
    cur.execute("CREATE INDEX IF NOT EXISTS idx_ingestion_jobs_status ON ingestion_jobs (status)")
    conn.commit()


def ensure_schema(conn: sqlite3.Connection) -> None:
    ensure_tracks_table(conn)
    ensure_ingestion_jobs_table(conn)
