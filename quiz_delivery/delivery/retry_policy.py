"""
Item Retry Policy.

Delivers a single item with bounded exponential-backoff retry:
1. exists() -> already delivered, nothing to create
2. create() -> new page
3. Retryable failure -> wait, then repeat both steps
4. Non-retryable failure or attempts exhausted -> raise the last error

Checking existence before creating makes delivery idempotent across
re-runs without a transaction spanning the external service.

What ItemRetryPolicy MUST NOT do:
- Touch job state or counters
- Continue after a non-retryable error
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from .entities import AttemptSummary, DeliveryItem
from .errors import DeliveryRequestError


logger = logging.getLogger(__name__)


DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 0.5


class DeliveryClientProtocol(Protocol):
    """Protocol for the external delivery client."""

    def exists(self, resource_id: str, item: DeliveryItem) -> bool:
        ...

    def create(
        self,
        resource_id: str,
        item: DeliveryItem,
        owner_id: Optional[str] = None,
        summary: Optional[AttemptSummary] = None,
    ) -> None:
        ...


@dataclass(frozen=True)
class ItemDeliveryResult:
    """Successful delivery of one item."""

    created_new: bool
    attempts: int


class ItemRetryPolicy:
    """
    Wraps a delivery client with per-item retry.

    Backoff calculation:
        delay = base_delay * (2 ^ (attempt_number - 1))
        Example with 0.5s base and 3 attempts: 0.5s -> 1.0s
    """

    def __init__(
        self,
        client: DeliveryClientProtocol,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize ItemRetryPolicy.

        Args:
            client: Delivery client performing exists/create calls
            max_attempts: Maximum attempts per item (including the first)
            base_delay_seconds: Base delay for exponential backoff
            sleep: Blocking wait function (injectable for tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.client = client
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep

    def calculate_backoff(self, attempt_number: int) -> float:
        """
        Delay after a failed attempt.

        Formula: delay = base_delay * (2 ^ (attempt_number - 1))
        """
        return self.base_delay_seconds * (2 ** (attempt_number - 1))

    def deliver(
        self,
        resource_id: str,
        item: DeliveryItem,
        owner_id: Optional[str] = None,
        summary: Optional[AttemptSummary] = None,
    ) -> ItemDeliveryResult:
        """
        Deliver one item.

        Returns:
            ItemDeliveryResult with created_new=False when the item already existed

        Raises:
            DeliveryRequestError: Last error once retries are exhausted or
                the failure is not retryable
        """
        last_error: Optional[DeliveryRequestError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                if self.client.exists(resource_id, item):
                    logger.debug(
                        f"Item already delivered for {resource_id} "
                        f"(category={item.category}, level={item.level})"
                    )
                    return ItemDeliveryResult(created_new=False, attempts=attempt)

                self.client.create(resource_id, item, owner_id=owner_id, summary=summary)
                return ItemDeliveryResult(created_new=True, attempts=attempt)

            except DeliveryRequestError as e:
                last_error = e

                if not e.retryable:
                    logger.warning(
                        f"Non-retryable delivery error for {resource_id} "
                        f"(attempt {attempt}/{self.max_attempts}): {e}"
                    )
                    break

                if attempt >= self.max_attempts:
                    logger.warning(
                        f"Delivery attempts exhausted for {resource_id} "
                        f"({attempt}/{self.max_attempts}): {e}"
                    )
                    break

                delay = self.calculate_backoff(attempt)
                logger.info(
                    f"Retryable delivery error for {resource_id} "
                    f"(attempt {attempt}/{self.max_attempts}), retrying in {delay}s: {e}"
                )
                self._sleep(delay)

        raise last_error
