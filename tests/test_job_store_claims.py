from __future__ import annotations

import sqlite3
import threading

import pytest

from db.tracks import add_track, remove_track
from engine.job_queue import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    JOB_STATUS_PENDING,
    JOB_STATUS_PROCESSING,
    ClaimContentionError,
    JobStore,
)


def test_claim_next_returns_none_without_tracks(store) -> None:
    assert store.claim_next() is None


def test_claim_inserts_processing_row_for_track_without_job(store, track) -> None:
    track("vid-a")

    assert store.claim_next() == "vid-a"

    job = store.get_job("vid-a")
    assert job.status == JOB_STATUS_PROCESSING
    assert job.retry_count == 0
    assert job.error_message is None


def test_claim_flips_existing_pending_row_and_keeps_retry_count(store, track) -> None:
    track("vid-a")
    store.insert_job("vid-a", status=JOB_STATUS_PENDING, retry_count=2, error_message="boom")

    assert store.claim_next() == "vid-a"

    job = store.get_job("vid-a")
    assert job.status == JOB_STATUS_PROCESSING
    assert job.retry_count == 2
    assert len(store.list_jobs()) == 1


def test_claim_skips_tracks_without_reference_and_non_pending_jobs(store, track, db_path) -> None:
    add_track(db_path, None, title="no catalog id")
    for reference, status in (
        ("vid-a", JOB_STATUS_PROCESSING),
        ("vid-b", JOB_STATUS_COMPLETED),
        ("vid-c", JOB_STATUS_FAILED),
    ):
        track(reference)
        store.insert_job(reference, status=status)
    track("vid-d")

    assert store.claim_next() == "vid-d"
    assert store.claim_next() is None


def test_claims_follow_reference_order(store, track) -> None:
    for reference in ("vid-c", "vid-a", "vid-b"):
        track(reference)

    claimed = [store.claim_next() for _ in range(4)]

    assert claimed == ["vid-a", "vid-b", "vid-c", None]


def test_concurrent_coordinators_never_share_a_claim(db_path, track) -> None:
    for idx in range(5):
        track(f"vid-{idx}")
    results: list[str | None] = []
    lock = threading.Lock()
    barrier = threading.Barrier(8)

    def _claim() -> None:
        coordinator = JobStore(db_path)
        barrier.wait()
        reference = coordinator.claim_next()
        with lock:
            results.append(reference)

    threads = [threading.Thread(target=_claim) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    claimed = [reference for reference in results if reference]
    assert sorted(claimed) == [f"vid-{idx}" for idx in range(5)]
    assert len(claimed) == len(set(claimed))
    assert results.count(None) == 3


def test_second_job_row_for_reference_is_rejected(store, track) -> None:
    track("vid-a")
    store.insert_job("vid-a")

    with pytest.raises(sqlite3.IntegrityError):
        store.insert_job("vid-a", status=JOB_STATUS_PROCESSING)


def test_job_row_requires_an_owning_track(store) -> None:
    with pytest.raises(sqlite3.IntegrityError):
        store.insert_job("vid-orphan")


def test_removing_track_cascades_to_job(store, track, db_path) -> None:
    track("vid-a")
    store.claim_next()

    assert remove_track(db_path, "vid-a") is True
    assert store.get_job("vid-a") is None


def test_store_lock_is_reported_as_claim_contention(db_path, track) -> None:
    track("vid-a")
    blocker = sqlite3.connect(db_path)
    try:
        blocker.execute("BEGIN IMMEDIATE")
        with pytest.raises(ClaimContentionError):
            JobStore(db_path, timeout=0.05).claim_next()
    finally:
        blocker.rollback()
        blocker.close()

    assert JobStore(db_path).get_job("vid-a") is None


def test_terminal_rows_are_not_modified_by_status_writes(store, track) -> None:
    track("vid-a")
    store.insert_job("vid-a", status=JOB_STATUS_COMPLETED)

    assert store.record_failure("vid-a", error_message="late", max_retries=3) is None
    assert store.mark_completed("vid-a") is False
    assert store.reset_processing_jobs(reason="shutdown") == 0
    assert store.get_job("vid-a").status == JOB_STATUS_COMPLETED
