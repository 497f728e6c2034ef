"""
Delivery Test Fixtures.

Base fixtures:
  - Empty job database
  - In-memory fake Notion client
  - Recording sleep (no real waiting)

Factories:
  - Delivery items and inputs
  - Engines wired to the fake client
"""

import tempfile
import threading
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from quiz_delivery.delivery import (
    AttemptSummary,
    DedupSyncEngine,
    DeliveryInput,
    DeliveryItem,
    DeliveryJobStatus,
    DeliveryRequestError,
    ItemRetryPolicy,
    JobStore,
)


def retryable_error(status_code: int = 503) -> DeliveryRequestError:
    return DeliveryRequestError(
        f"notion create page failed: status={status_code}",
        status_code=status_code,
        retryable=True,
    )


def permanent_error(status_code: int = 400) -> DeliveryRequestError:
    return DeliveryRequestError(
        f"notion create page failed: status={status_code}",
        status_code=status_code,
        retryable=False,
    )


class FakeDeliveryClient:
    """
    In-memory stand-in for NotionClient.

    Pages are tracked by natural key so exists() reflects earlier creates.
    Failures are scripted per question text.
    """

    def __init__(self):
        self.pages: set = set()
        self.exists_calls: list = []
        self.create_calls: list = []
        self.summaries: list = []
        self._queued_failures: dict[str, list[Exception]] = {}
        self._permanent_failures: dict[str, Exception] = {}
        self._fail_everything: Optional[Exception] = None
        self._lock = threading.Lock()

    def fail_next(self, question_text: str, *errors: Exception) -> None:
        """Raise the given errors on the next create() calls for this question."""
        self._queued_failures.setdefault(question_text, []).extend(errors)

    def fail_always(self, question_text: str, error: Exception) -> None:
        self._permanent_failures[question_text] = error

    def fail_all(self, error: Exception) -> None:
        """Every exists() call raises (total outage)."""
        self._fail_everything = error

    def exists(self, resource_id: str, item: DeliveryItem) -> bool:
        with self._lock:
            self.exists_calls.append((resource_id, item.question_text))
            if self._fail_everything is not None:
                raise self._fail_everything
            return item.natural_key(resource_id) in self.pages

    def create(
        self,
        resource_id: str,
        item: DeliveryItem,
        owner_id: Optional[str] = None,
        summary: Optional[AttemptSummary] = None,
    ) -> None:
        with self._lock:
            self.create_calls.append((resource_id, item.question_text, owner_id))
            self.summaries.append(summary)

            if item.question_text in self._permanent_failures:
                raise self._permanent_failures[item.question_text]

            pending = self._queued_failures.get(item.question_text)
            if pending:
                raise pending.pop(0)

            self.pages.add(item.natural_key(resource_id))


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    Path(db_path).unlink(missing_ok=True)
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def store(temp_db_path: str) -> JobStore:
    """Create a fresh JobStore with empty database."""
    return JobStore(temp_db_path)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def fake_client() -> FakeDeliveryClient:
    return FakeDeliveryClient()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_engine(fake_client: FakeDeliveryClient, recording_sleep: RecordingSleep) -> Callable:
    """Factory fixture for engines backed by the fake client."""

    def _create(max_attempts: int = 3, base_delay_seconds: float = 0.5) -> DedupSyncEngine:
        policy = ItemRetryPolicy(
            fake_client,
            max_attempts=max_attempts,
            base_delay_seconds=base_delay_seconds,
            sleep=recording_sleep,
        )
        return DedupSyncEngine(policy)

    return _create


# =============================================================================
# Item Factory Fixtures
# =============================================================================


@pytest.fixture
def make_item() -> Callable:
    def _create(order: int = 1, **overrides) -> DeliveryItem:
        values = {
            "category": "network",
            "level": 1 + (order % 3),
            "question_text": f"Question {order}",
            "choices": ["A", "B", "C", "D"],
            "answer_index": 0,
            "selected_index": 1,
            "is_correct": False,
            "explanation": "Because.",
            "order": order,
        }
        values.update(overrides)
        return DeliveryItem(**values)

    return _create


@pytest.fixture
def make_input(make_item: Callable) -> Callable:
    def _create(
        count: int = 5,
        resource_id: str = "attempt-1",
        owner_id: str = "user-1",
        summary: Optional[AttemptSummary] = None,
    ) -> DeliveryInput:
        return DeliveryInput(
            resource_id=resource_id,
            owner_id=owner_id,
            items=[make_item(order=i) for i in range(1, count + 1)],
            summary=summary,
        )

    return _create


# =============================================================================
# Assertion Helpers
# =============================================================================


def assert_job_status(store: JobStore, job_id: str, expected: DeliveryJobStatus):
    """Assert a job has the expected status."""
    job = store.get_job(job_id)
    assert job is not None, f"Job {job_id} not found"
    assert job.status == expected, f"Expected {expected}, got {job.status}"


def assert_counters_consistent(job) -> None:
    """Assert processed = succeeded + failed <= total."""
    assert job.processed_items == job.succeeded_items + job.failed_items
    assert job.processed_items <= job.total_items
