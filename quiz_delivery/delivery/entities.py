"""
Delivery Domain Entities.

- DeliveryJob: One tracked campaign delivering every item of an attempt
- DeliveryItem: One graded question snapshot (unit of delivery and retry)
- FailureRecord: Item that exhausted its retries
- AttemptSummary: Attempt-level page fields (status, timestamps, score)
- JobProgress: Counter snapshot reported after every item
- JobOutcome: Terminal classification produced by the engine

Internal status values (DeliveryJobStatus) are persisted verbatim.
Clients only ever see the PublicDeliveryStatus projection.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
import uuid


class DeliveryJobStatus(str, Enum):
    """
    Job lifecycle status (internal, persisted).

    QUEUED -> IN_PROGRESS -> {COMPLETED | COMPLETED_WITH_ERRORS | FAILED}
    QUEUED -> FAILED is only used when a job is aborted before it starts.
    """

    QUEUED = "QUEUED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    COMPLETED_WITH_ERRORS = "COMPLETED_WITH_ERRORS"
    FAILED = "FAILED"


ACTIVE_STATUSES = frozenset({DeliveryJobStatus.QUEUED, DeliveryJobStatus.IN_PROGRESS})

TERMINAL_STATUSES = frozenset({
    DeliveryJobStatus.COMPLETED,
    DeliveryJobStatus.COMPLETED_WITH_ERRORS,
    DeliveryJobStatus.FAILED,
})

ALLOWED_TRANSITIONS: dict[DeliveryJobStatus, frozenset] = {
    DeliveryJobStatus.QUEUED: frozenset({
        DeliveryJobStatus.IN_PROGRESS,
        DeliveryJobStatus.FAILED,
    }),
    DeliveryJobStatus.IN_PROGRESS: TERMINAL_STATUSES,
    DeliveryJobStatus.COMPLETED: frozenset(),
    DeliveryJobStatus.COMPLETED_WITH_ERRORS: frozenset(),
    DeliveryJobStatus.FAILED: frozenset(),
}


def can_transition(current: DeliveryJobStatus, target: DeliveryJobStatus) -> bool:
    """Check whether a status transition is allowed."""
    return target in ALLOWED_TRANSITIONS[current]


class PublicDeliveryStatus(str, Enum):
    """
    Status exposed to polling clients.

    The one and only external projection of DeliveryJobStatus:
    - QUEUED                -> queued
    - IN_PROGRESS           -> in_progress
    - COMPLETED             -> completed
    - COMPLETED_WITH_ERRORS -> failed (with a count-of-failures message)
    - FAILED                -> failed
    IDLE means no job has ever run for the attempt.
    """

    IDLE = "idle"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


_PUBLIC_STATUS_MAP = {
    DeliveryJobStatus.QUEUED: PublicDeliveryStatus.QUEUED,
    DeliveryJobStatus.IN_PROGRESS: PublicDeliveryStatus.IN_PROGRESS,
    DeliveryJobStatus.COMPLETED: PublicDeliveryStatus.COMPLETED,
    DeliveryJobStatus.COMPLETED_WITH_ERRORS: PublicDeliveryStatus.FAILED,
    DeliveryJobStatus.FAILED: PublicDeliveryStatus.FAILED,
}


def to_public_status(status: DeliveryJobStatus) -> PublicDeliveryStatus:
    """Project an internal job status onto the public status."""
    return _PUBLIC_STATUS_MAP[status]


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def now_iso() -> str:
    """Get current UTC time as ISO format string."""
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


@dataclass(frozen=True)
class DeliveryItem:
    """
    One graded question snapshot within an attempt.

    Derived from the attempt on every delivery request, never persisted.
    """

    category: str
    level: int
    question_text: str
    choices: list[str] = field(default_factory=list)
    answer_index: int = 0
    selected_index: Optional[int] = None
    is_correct: Optional[bool] = None
    explanation: str = ""
    order: int = 0

    def natural_key(self, resource_id: str) -> tuple[str, str, int, str]:
        """
        Key used to detect an already delivered item.

        Known limitation: two questions of one attempt sharing category,
        level and text collapse onto the same key, so the second one is
        reported as already delivered.
        """
        return (resource_id, self.category, self.level, self.question_text)


@dataclass(frozen=True)
class FailureRecord:
    """An item that exhausted its retries, with the final error."""

    category: str
    level: int
    question_text: str
    error_message: str

    @classmethod
    def for_item(cls, item: DeliveryItem, error_message: str) -> "FailureRecord":
        return cls(
            category=item.category,
            level=item.level,
            question_text=item.question_text,
            error_message=error_message,
        )

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "level": self.level,
            "question_text": self.question_text,
            "error_message": self.error_message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FailureRecord":
        return cls(
            category=data["category"],
            level=data["level"],
            question_text=data["question_text"],
            error_message=data["error_message"],
        )


@dataclass(frozen=True)
class AttemptSummary:
    """Attempt-level fields copied onto every page. Page content only."""

    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    overall_percent: Optional[float] = None
    category_breakdown: dict = field(default_factory=dict)


@dataclass
class DeliveryInput:
    """Everything a job needs to deliver one attempt."""

    resource_id: str
    owner_id: str
    items: list[DeliveryItem] = field(default_factory=list)
    summary: Optional[AttemptSummary] = None

    @property
    def total_items(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class JobProgress:
    """
    Counter snapshot.

    Invariant: processed_items == succeeded_items + failed_items <= total_items
    """

    total_items: int
    processed_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    last_error: Optional[str] = None

    def is_consistent(self) -> bool:
        """Check the counter invariant."""
        return (
            min(self.total_items, self.processed_items, self.succeeded_items, self.failed_items) >= 0
            and self.processed_items == self.succeeded_items + self.failed_items
            and self.processed_items <= self.total_items
        )


@dataclass
class JobOutcome:
    """
    Terminal classification of one engine run.

    skipped is True when delivery was disabled (missing configuration)
    and no item was processed.
    """

    status: DeliveryJobStatus
    progress: JobProgress
    failures: list[FailureRecord] = field(default_factory=list)
    last_error: Optional[str] = None
    duplicate: bool = False
    created_items: int = 0
    skipped: bool = False


@dataclass
class DeliveryJob:
    """
    Persisted delivery job.

    Mutability rules:
    - job_id, resource_id, owner_id, total_items, created_at: Immutable
    - status: Monotonic (see ALLOWED_TRANSITIONS)
    - counters, last_error: Last write wins, only while IN_PROGRESS or on terminal write
    - started_at, finished_at: Write-once
    """

    job_id: str
    resource_id: str
    owner_id: str
    status: DeliveryJobStatus
    total_items: int = 0
    processed_items: int = 0
    succeeded_items: int = 0
    failed_items: int = 0
    duplicate_detected: bool = False
    last_error: Optional[str] = None
    failed_item_details: list[FailureRecord] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    @classmethod
    def create(cls, resource_id: str, owner_id: str, total_items: int) -> "DeliveryJob":
        """Create a new DeliveryJob with generated ID and QUEUED status."""
        return cls(
            job_id=generate_uuid(),
            resource_id=resource_id,
            owner_id=owner_id,
            status=DeliveryJobStatus.QUEUED,
            total_items=total_items,
        )

    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress(self) -> JobProgress:
        return JobProgress(
            total_items=self.total_items,
            processed_items=self.processed_items,
            succeeded_items=self.succeeded_items,
            failed_items=self.failed_items,
            last_error=self.last_error,
        )

    @property
    def public_status(self) -> PublicDeliveryStatus:
        return to_public_status(self.status)
