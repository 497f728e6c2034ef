"""
Attempt source.

Resolves a quiz attempt into a DeliveryInput after checking ownership and
eligibility. The delivery engine never reads attempts directly.

JsonAttemptSource reads one JSON document per attempt:

    <attempts_dir>/<attempt_id>.json
    {
        "attempt_id": "...",
        "user_id": "...",
        "status": "COMPLETED",
        "started_at": "2024-01-01T00:00:00Z",
        "completed_at": "2024-01-01T00:10:00Z",
        "result": {"overall_percent": 80.0, "category_breakdown": {"network": 80.0}},
        "questions": [
            {"order": 1, "category": "...", "level": 1, "question_text": "...",
             "choices": ["..."], "answer_index": 0, "selected_index": 0,
             "is_correct": true, "explanation": "..."}
        ]
    }
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from ..delivery.entities import AttemptSummary, DeliveryInput, DeliveryItem
from ..delivery.errors import (
    AttemptForbiddenError,
    AttemptNotDeliverableError,
    AttemptNotFoundError,
)


logger = logging.getLogger(__name__)

COMPLETED_STATUS = "COMPLETED"
INVALID_ATTEMPT_MESSAGE = "attempt data is invalid"

_ATTEMPT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


class AttemptSource(Protocol):
    """Protocol for attempt lookup."""

    def authorize(self, attempt_id: str, owner_id: str) -> None:
        """
        Check that the attempt exists and belongs to owner_id.

        Raises:
            AttemptNotFoundError: Unknown attempt
            AttemptForbiddenError: Attempt belongs to another user
        """
        ...

    def load_delivery_input(self, attempt_id: str, owner_id: str) -> DeliveryInput:
        """
        Build the delivery input for an attempt owned by owner_id.

        Raises:
            AttemptNotFoundError: Unknown attempt
            AttemptForbiddenError: Attempt belongs to another user
            AttemptNotDeliverableError: Attempt not completed or not graded
        """
        ...


# =============================================================================
# Attempt Document Models
# =============================================================================

class QuestionRecord(BaseModel):
    order: int = 0
    category: str
    level: int = Field(..., ge=1, le=3)
    question_text: str
    choices: list[str] = Field(default_factory=list)
    answer_index: int = 0
    selected_index: Optional[int] = None
    is_correct: Optional[bool] = None
    explanation: str = ""


class AttemptResult(BaseModel):
    overall_percent: float
    category_breakdown: dict = Field(default_factory=dict)


class AttemptRecord(BaseModel):
    attempt_id: str
    user_id: str
    status: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    result: Optional[AttemptResult] = None
    questions: list[QuestionRecord] = Field(default_factory=list)


def to_delivery_input(attempt: AttemptRecord) -> DeliveryInput:
    """Snapshot the attempt's questions in delivery order."""
    questions = sorted(attempt.questions, key=lambda q: q.order)
    return DeliveryInput(
        resource_id=attempt.attempt_id,
        owner_id=attempt.user_id,
        items=[
            DeliveryItem(
                category=q.category,
                level=q.level,
                question_text=q.question_text,
                choices=list(q.choices),
                answer_index=q.answer_index,
                selected_index=q.selected_index,
                is_correct=q.is_correct,
                explanation=q.explanation,
                order=q.order,
            )
            for q in questions
        ],
        summary=AttemptSummary(
            status=attempt.status,
            started_at=attempt.started_at,
            completed_at=attempt.completed_at,
            overall_percent=attempt.result.overall_percent if attempt.result else None,
            category_breakdown=dict(attempt.result.category_breakdown) if attempt.result else {},
        ),
    )


class JsonAttemptSource:
    """Attempt source backed by a directory of JSON files."""

    def __init__(self, attempts_dir: str | Path):
        self.attempts_dir = Path(attempts_dir)

    def _path_for(self, attempt_id: str) -> Path:
        return self.attempts_dir / f"{attempt_id}.json"

    def load_attempt(self, attempt_id: str) -> AttemptRecord:
        """
        Read and validate one attempt document.

        Raises:
            AttemptNotFoundError: If the id is malformed or no file exists
            AttemptNotDeliverableError: If the document is not a valid attempt
        """
        if not _ATTEMPT_ID_PATTERN.match(attempt_id):
            raise AttemptNotFoundError(attempt_id)

        path = self._path_for(attempt_id)
        if not path.exists():
            raise AttemptNotFoundError(attempt_id)

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return AttemptRecord.model_validate(data)
        except (json.JSONDecodeError, ValidationError) as e:
            logger.error(f"Unreadable attempt document {path.name}: {e}")
            raise AttemptNotDeliverableError(attempt_id, INVALID_ATTEMPT_MESSAGE) from e

    def _load_owned(self, attempt_id: str, owner_id: str) -> AttemptRecord:
        attempt = self.load_attempt(attempt_id)

        if attempt.user_id != owner_id:
            logger.info(f"Attempt {attempt_id} requested by non-owner")
            raise AttemptForbiddenError(attempt_id)

        return attempt

    def authorize(self, attempt_id: str, owner_id: str) -> None:
        self._load_owned(attempt_id, owner_id)

    def load_delivery_input(self, attempt_id: str, owner_id: str) -> DeliveryInput:
        attempt = self._load_owned(attempt_id, owner_id)

        if attempt.status != COMPLETED_STATUS or attempt.result is None:
            raise AttemptNotDeliverableError(attempt_id)

        return to_delivery_input(attempt)
