"""
Dedup-and-Sync Engine.

Walks every item of a delivery input in order, delivers each through the
ItemRetryPolicy and accumulates counters. Per-item failures are isolated;
only exceptions that are not DeliveryRequestError escape.

Terminal classification:
- zero items                        -> COMPLETED, duplicate
- all succeeded, nothing created    -> COMPLETED, duplicate
- all succeeded                     -> COMPLETED
- some failed, some succeeded       -> COMPLETED_WITH_ERRORS
- all failed                        -> FAILED
- delivery not configured           -> FAILED, skipped (no item processed)
"""

import logging
import time
from typing import Callable, Optional

import httpx

from .client import NotionClient
from .config import NotionConfig
from .entities import (
    DeliveryInput,
    DeliveryJobStatus,
    FailureRecord,
    JobOutcome,
    JobProgress,
)
from .errors import DeliveryRequestError
from .retry_policy import ItemRetryPolicy


logger = logging.getLogger(__name__)

MISSING_CONFIG_ERROR = "missing notion config"

ProgressCallback = Callable[[JobProgress], None]


class DedupSyncEngine:
    """
    Sequential per-item delivery with progress reporting.

    An engine without a policy represents disabled delivery and
    short-circuits every run to a skipped outcome.
    """

    def __init__(self, policy: Optional[ItemRetryPolicy]):
        self.policy = policy

    @classmethod
    def from_config(
        cls,
        config: Optional[NotionConfig],
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "DedupSyncEngine":
        """Wire client and retry policy from configuration."""
        if config is None:
            return cls(policy=None)

        client = NotionClient(config, http_client=http_client)
        policy = ItemRetryPolicy(
            client,
            max_attempts=config.max_retries,
            base_delay_seconds=config.retry_delay_seconds,
            sleep=sleep,
        )
        return cls(policy=policy)

    @classmethod
    def from_env(cls) -> "DedupSyncEngine":
        return cls.from_config(NotionConfig.from_env())

    @property
    def enabled(self) -> bool:
        return self.policy is not None

    def close(self) -> None:
        """Release the underlying HTTP client, if any."""
        if self.policy is not None:
            close = getattr(self.policy.client, "close", None)
            if close is not None:
                close()

    def run(
        self,
        delivery_input: DeliveryInput,
        on_progress: Optional[ProgressCallback] = None,
    ) -> JobOutcome:
        """
        Deliver all items of one attempt.

        Args:
            delivery_input: Attempt and its items, in delivery order
            on_progress: Called synchronously after every item

        Returns:
            JobOutcome with terminal status and counters
        """
        total = delivery_input.total_items

        if self.policy is None:
            logger.warning(
                f"Notion delivery is not configured, skipping {delivery_input.resource_id}"
            )
            return JobOutcome(
                status=DeliveryJobStatus.FAILED,
                progress=JobProgress(total_items=total, last_error=MISSING_CONFIG_ERROR),
                last_error=MISSING_CONFIG_ERROR,
                skipped=True,
            )

        processed = 0
        succeeded = 0
        failed = 0
        created = 0
        last_error: Optional[str] = None
        failures: list[FailureRecord] = []

        for item in delivery_input.items:
            try:
                result = self.policy.deliver(
                    delivery_input.resource_id,
                    item,
                    owner_id=delivery_input.owner_id,
                    summary=delivery_input.summary,
                )
                succeeded += 1
                if result.created_new:
                    created += 1
            except DeliveryRequestError as e:
                failed += 1
                last_error = str(e)
                failures.append(FailureRecord.for_item(item, last_error))

            processed += 1

            if on_progress is not None:
                on_progress(JobProgress(
                    total_items=total,
                    processed_items=processed,
                    succeeded_items=succeeded,
                    failed_items=failed,
                    last_error=last_error,
                ))

        progress = JobProgress(
            total_items=total,
            processed_items=processed,
            succeeded_items=succeeded,
            failed_items=failed,
            last_error=last_error,
        )

        return JobOutcome(
            status=self.classify(progress),
            progress=progress,
            failures=failures,
            last_error=last_error,
            duplicate=failed == 0 and created == 0,
            created_items=created,
        )

    @staticmethod
    def classify(progress: JobProgress) -> DeliveryJobStatus:
        """Map final counters onto a terminal status."""
        if progress.failed_items == 0:
            return DeliveryJobStatus.COMPLETED
        if progress.succeeded_items == 0:
            return DeliveryJobStatus.FAILED
        return DeliveryJobStatus.COMPLETED_WITH_ERRORS
