"""
Pytest configuration and shared fixtures.
"""

import json
import os
from pathlib import Path
from typing import Callable

import pytest


_ENV_KEYS = (
    "API_AUTH_ENABLED",
    "API_KEY",
    "NOTION_API_KEY",
    "NOTION_DATABASE_ID",
    "NOTION_API_BASE_URL",
    "NOTION_DELIVERY_MAX_RETRIES",
    "NOTION_DELIVERY_RETRY_DELAY_MS",
    "NOTION_DELIVERY_TIMEOUT_MS",
    "AUTH_SECRET",
)


@pytest.fixture(autouse=True, scope="function")
def reset_environment():
    """
    Reset environment-driven state before each test.

    Tests run with API_AUTH_ENABLED=false and no Notion credentials
    unless the test explicitly sets them.
    """
    original = {key: os.environ.get(key) for key in _ENV_KEYS}

    for key in _ENV_KEYS:
        os.environ.pop(key, None)
    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    for key, value in original.items():
        if value is not None:
            os.environ[key] = value
        else:
            os.environ.pop(key, None)

    # Reload auth (and the app built from it) to reset state
    import importlib
    import sys

    auth_module = sys.modules.get("quiz_delivery.api.dependencies.auth")
    if auth_module is not None:
        importlib.reload(auth_module)

    main_module = sys.modules.get("quiz_delivery.api.main")
    if main_module is not None:
        importlib.reload(main_module)


# =============================================================================
# Attempt Fixtures
# =============================================================================


def make_question(order: int, **overrides) -> dict:
    question = {
        "order": order,
        "category": "network",
        "level": 1 + (order % 3),
        "question_text": f"Question {order}",
        "choices": ["A", "B", "C", "D"],
        "answer_index": 0,
        "selected_index": order % 2,
        "is_correct": order % 2 == 0,
        "explanation": f"Explanation {order}",
    }
    question.update(overrides)
    return question


@pytest.fixture(name="make_question")
def make_question_fixture() -> Callable:
    return make_question


@pytest.fixture
def attempts_dir(tmp_path: Path) -> Path:
    path = tmp_path / "attempts"
    path.mkdir()
    return path


@pytest.fixture
def write_attempt(attempts_dir: Path) -> Callable:
    """
    Factory fixture for attempt documents.

    Returns a function that writes <attempt_id>.json and returns its data.
    """

    def _write(
        attempt_id: str = "attempt-1",
        user_id: str = "user-1",
        status: str = "COMPLETED",
        question_count: int = 5,
        result: dict | None = None,
        questions: list | None = None,
    ) -> dict:
        data = {
            "attempt_id": attempt_id,
            "user_id": user_id,
            "status": status,
            "started_at": "2026-01-01T00:00:00Z",
            "completed_at": "2026-01-01T00:10:00Z" if status == "COMPLETED" else None,
            "result": result if result is not None else (
                {"overall_percent": 60.0} if status == "COMPLETED" else None
            ),
            "questions": questions if questions is not None else [
                make_question(i) for i in range(1, question_count + 1)
            ],
        }
        (attempts_dir / f"{attempt_id}.json").write_text(
            json.dumps(data, ensure_ascii=False), encoding="utf-8"
        )
        return data

    return _write
