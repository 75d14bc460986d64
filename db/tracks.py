"""Track registry helpers shared with the playlist web server."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

from db.migrations import ensure_schema


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    ensure_schema(conn)
    return conn


def add_track(db_path: str, reference: str | None, *, title: str | None = None) -> int:
    """Insert a track row and return its id.

    Tracks without a catalog reference are allowed; they are simply never
    picked up for ingestion.
    """
    ref = (reference or "").strip() or None
    now = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
    conn = _connect(db_path)
    try:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO tracks (reference, title, created_at)
            VALUES (?, ?, ?)
            """,
            (ref, title, now),
        )
        conn.commit()
        return int(cur.lastrowid)
    finally:
        conn.close()


def remove_track(db_path: str, reference: str) -> bool:
    """Delete a track by reference; its ingestion job goes with it."""
    ref = (reference or "").strip()
    if not ref:
        raise ValueError("reference is required")
    conn = _connect(db_path)
    try:
        cur = conn.cursor()
        cur.execute("DELETE FROM tracks WHERE reference=?", (ref,))
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()
