"""
Notion delivery client.

Stateless adapter over two Notion calls:
- exists(): database query filtered on the item's natural key
- create(): page creation populated from the item and attempt summary

Every call carries the configured timeout. Failures are raised as
DeliveryRequestError with a retryable flag:
- 429 and >= 500: retryable
- timeouts and transport errors: retryable
- other 4xx and malformed responses: not retryable
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Optional

import httpx

from .config import NotionConfig
from .entities import AttemptSummary, DeliveryItem
from .errors import DeliveryRequestError

logger = logging.getLogger(__name__)

NOTION_VERSION = "2022-06-28"
NOTION_MAX_TEXT_LENGTH = 2000
PAGE_SCHEMA_VERSION = "1.0"

# Database property names
PROP_QUESTION = "Question"
PROP_ATTEMPT_ID = "Attempt ID"
PROP_CATEGORY = "Category"
PROP_LEVEL = "Level"
PROP_ORDER = "Order"
PROP_CHOICES = "Choices"
PROP_ANSWER_INDEX = "Answer Index"
PROP_SELECTED_INDEX = "Selected Index"
PROP_IS_CORRECT = "Is Correct"
PROP_EXPLANATION = "Explanation"
PROP_USER_HASH = "User Hash"
PROP_SCHEMA_VERSION = "Schema Version"
PROP_STATUS = "Status"
PROP_STARTED_AT = "Started At"
PROP_COMPLETED_AT = "Completed At"
PROP_OVERALL_PERCENT = "Overall Percent"
PROP_CATEGORY_BREAKDOWN = "Category Breakdown JSON"


def truncate_text(value: str, limit: int = NOTION_MAX_TEXT_LENGTH) -> str:
    """Cut a value down to Notion's text limit."""
    return value[:limit]


def to_rich_text(value: str) -> list[dict]:
    return [{"type": "text", "text": {"content": truncate_text(value)}}]


def is_retryable_status(status_code: Optional[int]) -> bool:
    """Rate limiting and server errors are worth retrying."""
    if status_code is None:
        return True
    return status_code == 429 or status_code >= 500


def hash_user_id(user_id: str, secret: str) -> str:
    """HMAC-SHA256 of the user id so pages never carry the raw id."""
    return hmac.new(secret.encode("utf-8"), user_id.encode("utf-8"), hashlib.sha256).hexdigest()


def format_choices(choices: list[str]) -> str:
    return "\n".join(f"{index + 1}. {choice}" for index, choice in enumerate(choices))


class NotionClient:
    """
    Thin Notion API client for per-item delivery.

    Owns an httpx.Client unless one is injected.
    """

    def __init__(
        self,
        config: NotionConfig,
        http_client: Optional[httpx.Client] = None,
    ):
        self.config = config
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=config.timeout_seconds)

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "NotionClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # =========================================================================
    # Public API
    # =========================================================================

    def exists(self, resource_id: str, item: DeliveryItem) -> bool:
        """Return True iff a page with the item's natural key already exists."""
        data = self._post_json(
            f"/databases/{self.config.database_id}/query",
            self.build_query_body(resource_id, item),
            operation="query",
        )

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise DeliveryRequestError(
                "notion query failed: malformed response",
                retryable=False,
            )
        return len(results) > 0

    def create(
        self,
        resource_id: str,
        item: DeliveryItem,
        owner_id: Optional[str] = None,
        summary: Optional[AttemptSummary] = None,
    ) -> None:
        """Create one page for the item."""
        self._post(
            "/pages",
            self.build_page_body(resource_id, item, owner_id=owner_id, summary=summary),
            operation="create page",
        )

    # =========================================================================
    # Request Bodies
    # =========================================================================

    def build_query_body(self, resource_id: str, item: DeliveryItem) -> dict:
        """Equality filter over (attempt id, category, level, question text)."""
        return {
            "filter": {
                "and": [
                    {"property": PROP_ATTEMPT_ID, "rich_text": {"equals": truncate_text(resource_id)}},
                    {"property": PROP_CATEGORY, "rich_text": {"equals": truncate_text(item.category)}},
                    {"property": PROP_LEVEL, "number": {"equals": item.level}},
                    {"property": PROP_QUESTION, "title": {"equals": truncate_text(item.question_text)}},
                ]
            },
            "page_size": 1,
        }

    def build_page_body(
        self,
        resource_id: str,
        item: DeliveryItem,
        owner_id: Optional[str] = None,
        summary: Optional[AttemptSummary] = None,
    ) -> dict:
        properties: dict[str, Any] = {
            PROP_QUESTION: {"title": to_rich_text(item.question_text)},
            PROP_ATTEMPT_ID: {"rich_text": to_rich_text(resource_id)},
            PROP_CATEGORY: {"rich_text": to_rich_text(item.category)},
            PROP_LEVEL: {"number": item.level},
            PROP_ORDER: {"number": item.order},
            PROP_CHOICES: {"rich_text": to_rich_text(format_choices(item.choices))},
            PROP_ANSWER_INDEX: {"number": item.answer_index},
            PROP_SELECTED_INDEX: {"number": item.selected_index},
            PROP_IS_CORRECT: {"checkbox": bool(item.is_correct)},
            PROP_EXPLANATION: {"rich_text": to_rich_text(item.explanation)},
            PROP_SCHEMA_VERSION: {"rich_text": to_rich_text(PAGE_SCHEMA_VERSION)},
        }

        if owner_id and self.config.user_hash_secret:
            properties[PROP_USER_HASH] = {
                "rich_text": to_rich_text(hash_user_id(owner_id, self.config.user_hash_secret))
            }

        if summary is not None:
            properties.update(self.build_summary_properties(summary))

        return {
            "parent": {"database_id": self.config.database_id},
            "properties": properties,
        }

    @staticmethod
    def build_summary_properties(summary: AttemptSummary) -> dict:
        """Attempt-level properties shared by every page of one attempt."""
        properties: dict[str, Any] = {
            PROP_STATUS: {"select": {"name": summary.status}},
            PROP_COMPLETED_AT: {
                "date": {"start": summary.completed_at} if summary.completed_at else None
            },
            PROP_OVERALL_PERCENT: {"number": summary.overall_percent},
            PROP_CATEGORY_BREAKDOWN: {
                "rich_text": to_rich_text(
                    json.dumps(summary.category_breakdown, ensure_ascii=False, sort_keys=True)
                )
            },
        }
        if summary.started_at:
            properties[PROP_STARTED_AT] = {"date": {"start": summary.started_at}}
        return properties

    # =========================================================================
    # Transport
    # =========================================================================

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }

    def _post(self, path: str, body: dict, operation: str) -> httpx.Response:
        url = f"{self.config.api_base_url}{path}"

        try:
            response = self._http.post(
                url,
                json=body,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        except httpx.TimeoutException:
            raise DeliveryRequestError(
                f"notion {operation} failed: timeout after {self.config.timeout_seconds}s",
                retryable=True,
            )
        except httpx.TransportError as e:
            raise DeliveryRequestError(
                f"notion {operation} failed: {e}",
                retryable=True,
            )

        if not response.is_success:
            logger.debug(
                f"Notion {operation} returned HTTP {response.status_code}: {response.text[:200]}"
            )
            raise DeliveryRequestError(
                f"notion {operation} failed: status={response.status_code}",
                status_code=response.status_code,
                retryable=is_retryable_status(response.status_code),
            )

        return response

    def _post_json(self, path: str, body: dict, operation: str) -> Any:
        response = self._post(path, body, operation)
        try:
            return response.json()
        except ValueError:
            raise DeliveryRequestError(
                f"notion {operation} failed: malformed response",
                status_code=response.status_code,
                retryable=False,
            )
