"""
Job Store Tests.

- Single active job per (attempt, owner), including under concurrency
- Monotonic status transitions
- Counter invariant on progress writes
- Unusable database surfaces as JobStoreUnavailableError
"""

import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from quiz_delivery.delivery import (
    DeliveryJobStatus,
    FailureRecord,
    InvalidProgressError,
    InvalidTransitionError,
    JobNotFoundError,
    JobProgress,
    JobStore,
    JobStoreUnavailableError,
)

from .conftest import assert_counters_consistent, assert_job_status


# =============================================================================
# Active-Job Guard
# =============================================================================


class TestActiveJobGuard:
    def test_create_new_job(self, store: JobStore):
        job, created = store.create_if_none_active("attempt-1", "user-1", total_items=5)

        assert created is True
        assert job.status == DeliveryJobStatus.QUEUED
        assert job.total_items == 5
        assert store.get_job(job.job_id) is not None

    def test_second_create_returns_active_job(self, store: JobStore):
        first, _ = store.create_if_none_active("attempt-1", "user-1", total_items=5)
        second, created = store.create_if_none_active("attempt-1", "user-1", total_items=5)

        assert created is False
        assert second.job_id == first.job_id

    def test_in_progress_job_also_blocks(self, store: JobStore):
        first, _ = store.create_if_none_active("attempt-1", "user-1", total_items=5)
        store.mark_started(first.job_id)

        second, created = store.create_if_none_active("attempt-1", "user-1", total_items=5)

        assert created is False
        assert second.status == DeliveryJobStatus.IN_PROGRESS

    def test_terminal_job_allows_new_one(self, store: JobStore):
        first, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)
        store.mark_started(first.job_id)
        store.mark_terminal(first.job_id, DeliveryJobStatus.COMPLETED)

        second, created = store.create_if_none_active("attempt-1", "user-1", total_items=1)

        assert created is True
        assert second.job_id != first.job_id

    def test_guard_is_per_owner_and_attempt(self, store: JobStore):
        _, created_a = store.create_if_none_active("attempt-1", "user-1", total_items=1)
        _, created_b = store.create_if_none_active("attempt-2", "user-1", total_items=1)
        _, created_c = store.create_if_none_active("attempt-1", "user-2", total_items=1)

        assert created_a and created_b and created_c

    def test_concurrent_creates_yield_one_job(self, store: JobStore):
        barrier = threading.Barrier(8)

        def create():
            barrier.wait()
            return store.create_if_none_active("attempt-1", "user-1", total_items=3)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: create(), range(8)))

        created = [job for job, was_created in results if was_created]
        assert len(created) == 1
        assert {job.job_id for job, _ in results} == {created[0].job_id}
        assert len(store.list_active_jobs()) == 1

    def test_database_rejects_second_active_row(self, store: JobStore, temp_db_path):
        """The partial unique index holds even for writes that bypass the store."""
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)

        conn = sqlite3.connect(temp_db_path)
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    "INSERT INTO delivery_jobs (job_id, resource_id, owner_id, status, created_at) "
                    "VALUES ('other', 'attempt-1', 'user-1', 'IN_PROGRESS', '2026-01-01T00:00:00Z')"
                )
        finally:
            conn.close()


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    def test_find_latest_prefers_newest(self, store: JobStore):
        first, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)
        store.mark_terminal(first.job_id, DeliveryJobStatus.FAILED, last_error="boom")
        second, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)

        latest = store.find_latest("attempt-1", "user-1")

        assert latest.job_id == second.job_id

    def test_find_latest_none(self, store: JobStore):
        assert store.find_latest("attempt-1", "user-1") is None
        assert store.find_active("attempt-1", "user-1") is None

    def test_count_by_status(self, store: JobStore):
        store.create_if_none_active("attempt-1", "user-1", total_items=1)
        store.create_if_none_active("attempt-2", "user-1", total_items=1)

        assert store.count_jobs_by_status(DeliveryJobStatus.QUEUED) == 2
        assert store.count_jobs_by_status(DeliveryJobStatus.COMPLETED) == 0


# =============================================================================
# Transitions
# =============================================================================


class TestTransitions:
    def test_start_sets_started_at(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)

        started = store.mark_started(job.job_id)

        assert started.status == DeliveryJobStatus.IN_PROGRESS
        assert started.started_at is not None

    def test_start_twice_rejected(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)
        store.mark_started(job.job_id)

        with pytest.raises(InvalidTransitionError):
            store.mark_started(job.job_id)

    def test_start_unknown_job(self, store: JobStore):
        with pytest.raises(JobNotFoundError):
            store.mark_started("missing")

    def test_terminal_write(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=3)
        store.mark_started(job.job_id)
        failure = FailureRecord("network", 2, "Question 2", "notion create page failed: status=400")

        finished = store.mark_terminal(
            job.job_id,
            DeliveryJobStatus.COMPLETED_WITH_ERRORS,
            last_error=failure.error_message,
            failed_item_details=[failure],
            progress=JobProgress(total_items=3, processed_items=3, succeeded_items=2, failed_items=1),
        )

        assert finished.status == DeliveryJobStatus.COMPLETED_WITH_ERRORS
        assert finished.finished_at is not None
        assert finished.failed_item_details == [failure]
        assert_counters_consistent(finished)

    def test_terminal_is_final(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)
        store.mark_started(job.job_id)
        store.mark_terminal(job.job_id, DeliveryJobStatus.COMPLETED, duplicate_detected=True)

        with pytest.raises(InvalidTransitionError):
            store.mark_terminal(job.job_id, DeliveryJobStatus.FAILED, last_error="late")

        assert_job_status(store, job.job_id, DeliveryJobStatus.COMPLETED)
        assert store.get_job(job.job_id).duplicate_detected is True

    def test_queued_cannot_complete_directly(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)

        with pytest.raises(InvalidTransitionError):
            store.mark_terminal(job.job_id, DeliveryJobStatus.COMPLETED)

    def test_queued_can_fail(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)

        failed = store.mark_terminal(job.job_id, DeliveryJobStatus.FAILED, last_error="aborted")

        assert failed.status == DeliveryJobStatus.FAILED
        assert failed.started_at is None

    def test_non_terminal_target_rejected(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=1)

        with pytest.raises(InvalidTransitionError):
            store.mark_terminal(job.job_id, DeliveryJobStatus.IN_PROGRESS)


# =============================================================================
# Progress
# =============================================================================


class TestProgress:
    def test_last_write_wins(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=3)
        store.mark_started(job.job_id)

        store.update_progress(job.job_id, JobProgress(3, 1, 1, 0))
        store.update_progress(job.job_id, JobProgress(3, 2, 1, 1, last_error="boom"))

        current = store.get_job(job.job_id)
        assert current.processed_items == 2
        assert current.failed_items == 1
        assert current.last_error == "boom"

    def test_inconsistent_progress_rejected(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=3)
        store.mark_started(job.job_id)

        with pytest.raises(InvalidProgressError):
            store.update_progress(job.job_id, JobProgress(3, 2, 2, 1))

    def test_progress_beyond_stored_total_rejected(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=2)
        store.mark_started(job.job_id)

        with pytest.raises(InvalidProgressError):
            store.update_progress(job.job_id, JobProgress(5, 3, 3, 0))

    def test_progress_requires_in_progress(self, store: JobStore):
        job, _ = store.create_if_none_active("attempt-1", "user-1", total_items=2)

        with pytest.raises(InvalidTransitionError):
            store.update_progress(job.job_id, JobProgress(2, 1, 1, 0))


# =============================================================================
# Unavailable Store
# =============================================================================


class TestUnavailable:
    def test_unmigrated_database(self, temp_db_path):
        store = JobStore(temp_db_path, create_schema=False)

        with pytest.raises(JobStoreUnavailableError):
            store.create_if_none_active("attempt-1", "user-1", total_items=1)

        with pytest.raises(JobStoreUnavailableError):
            store.find_latest("attempt-1", "user-1")

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(JobStoreUnavailableError):
            JobStore(tmp_path / "missing" / "dir" / "jobs.db")
