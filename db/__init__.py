"""Database helpers for the ingestion worker."""

from db.migrations import ensure_schema
from db.tracks import add_track, remove_track

__all__ = ["add_track", "ensure_schema", "remove_track"]
