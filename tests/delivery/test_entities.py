"""
Tests for delivery entities: status transitions, public projection, counters.
"""

import pytest

from quiz_delivery.delivery.entities import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    DeliveryJob,
    DeliveryJobStatus,
    FailureRecord,
    JobProgress,
    PublicDeliveryStatus,
    can_transition,
    to_public_status,
)


class TestTransitions:
    """Status is monotonic: QUEUED -> IN_PROGRESS -> terminal."""

    def test_queued_can_start_or_fail(self):
        assert can_transition(DeliveryJobStatus.QUEUED, DeliveryJobStatus.IN_PROGRESS)
        assert can_transition(DeliveryJobStatus.QUEUED, DeliveryJobStatus.FAILED)
        assert not can_transition(DeliveryJobStatus.QUEUED, DeliveryJobStatus.COMPLETED)

    def test_in_progress_reaches_every_terminal(self):
        for target in TERMINAL_STATUSES:
            assert can_transition(DeliveryJobStatus.IN_PROGRESS, target)
        assert not can_transition(DeliveryJobStatus.IN_PROGRESS, DeliveryJobStatus.QUEUED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    def test_terminal_is_final(self, terminal):
        for target in DeliveryJobStatus:
            assert not can_transition(terminal, target)

    def test_active_and_terminal_partition_statuses(self):
        assert ACTIVE_STATUSES | TERMINAL_STATUSES == set(DeliveryJobStatus)
        assert not ACTIVE_STATUSES & TERMINAL_STATUSES


class TestPublicProjection:
    @pytest.mark.parametrize(
        "internal, public",
        [
            (DeliveryJobStatus.QUEUED, PublicDeliveryStatus.QUEUED),
            (DeliveryJobStatus.IN_PROGRESS, PublicDeliveryStatus.IN_PROGRESS),
            (DeliveryJobStatus.COMPLETED, PublicDeliveryStatus.COMPLETED),
            (DeliveryJobStatus.COMPLETED_WITH_ERRORS, PublicDeliveryStatus.FAILED),
            (DeliveryJobStatus.FAILED, PublicDeliveryStatus.FAILED),
        ],
    )
    def test_mapping(self, internal, public):
        assert to_public_status(internal) == public

    def test_job_public_status(self):
        job = DeliveryJob.create("attempt-1", "user-1", total_items=3)
        assert job.status == DeliveryJobStatus.QUEUED
        assert job.public_status == PublicDeliveryStatus.QUEUED
        assert job.is_active()
        assert not job.is_terminal()


class TestJobProgress:
    def test_consistent(self):
        assert JobProgress(total_items=5, processed_items=3, succeeded_items=2, failed_items=1).is_consistent()
        assert JobProgress(total_items=0).is_consistent()

    def test_processed_must_equal_sum(self):
        assert not JobProgress(total_items=5, processed_items=3, succeeded_items=1, failed_items=1).is_consistent()

    def test_processed_cannot_exceed_total(self):
        assert not JobProgress(total_items=2, processed_items=3, succeeded_items=3).is_consistent()

    def test_negative_counters_rejected(self):
        assert not JobProgress(total_items=2, processed_items=0, succeeded_items=1, failed_items=-1).is_consistent()


class TestItems:
    def test_natural_key(self, make_item):
        item = make_item(order=1, category="db", level=2, question_text="What is WAL?")
        assert item.natural_key("attempt-9") == ("attempt-9", "db", 2, "What is WAL?")

    def test_failure_record_round_trip(self, make_item):
        record = FailureRecord.for_item(make_item(order=2), "notion create page failed: status=503")
        assert FailureRecord.from_dict(record.to_dict()) == record
        assert record.question_text == "Question 2"
