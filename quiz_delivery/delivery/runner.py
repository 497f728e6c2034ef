"""
Job Runner.

Drives one persisted job from QUEUED to a terminal status:
1. mark_started (QUEUED -> IN_PROGRESS)
2. Run the engine, persisting counters after every item
3. mark_terminal with the engine's classification

The runner is the outermost frame of a background task. It never lets an
exception escape: anything unexpected is logged and the job is moved to
FAILED on a best-effort basis so it does not stay active forever.

Log events are single-line JSON messages:
- delivery_job_started
- delivery_job_completed
- delivery_job_completed_with_errors
- delivery_job_failed
- delivery_job_failed_missing_config
- delivery_job_exception
"""

import json
import logging
from typing import Callable, Optional

from .engine import DedupSyncEngine
from .entities import (
    DeliveryInput,
    DeliveryJob,
    DeliveryJobStatus,
    JobOutcome,
    JobProgress,
)
from .persistence import JobStore


logger = logging.getLogger(__name__)

EngineFactory = Callable[[], DedupSyncEngine]


def log_event(event: str, level: int = logging.INFO, **fields) -> None:
    """Emit one structured log line."""
    logger.log(level, json.dumps({"event": event, **fields}, ensure_ascii=False, default=str))


def _outcome_event(outcome: JobOutcome) -> tuple[str, int]:
    if outcome.skipped:
        return "delivery_job_failed_missing_config", logging.WARNING
    if outcome.status == DeliveryJobStatus.COMPLETED:
        return "delivery_job_completed", logging.INFO
    if outcome.status == DeliveryJobStatus.COMPLETED_WITH_ERRORS:
        return "delivery_job_completed_with_errors", logging.WARNING
    return "delivery_job_failed", logging.ERROR


class JobRunner:
    """
    Executes delivery jobs against the job store.

    Only the runner holding a job id writes that job's row.
    """

    def __init__(
        self,
        store: JobStore,
        engine_factory: EngineFactory = DedupSyncEngine.from_env,
    ):
        """
        Initialize JobRunner.

        Args:
            store: JobStore holding the job
            engine_factory: Builds a fresh engine per job (reads config at run time)
        """
        self.store = store
        self.engine_factory = engine_factory

    def run(self, job_id: str, delivery_input: DeliveryInput) -> Optional[DeliveryJob]:
        """
        Run a job to completion.

        Returns:
            The terminal job, or None if it could not be read back
        """
        engine: Optional[DedupSyncEngine] = None

        try:
            job = self.store.mark_started(job_id)
            log_event(
                "delivery_job_started",
                job_id=job_id,
                resource_id=delivery_input.resource_id,
                total_items=job.total_items,
            )

            engine = self.engine_factory()

            def on_progress(progress: JobProgress) -> None:
                self.store.update_progress(job_id, progress)

            outcome = engine.run(delivery_input, on_progress=on_progress)

            job = self.store.mark_terminal(
                job_id,
                outcome.status,
                last_error=outcome.last_error,
                failed_item_details=outcome.failures,
                progress=outcome.progress,
                duplicate_detected=outcome.duplicate,
            )

            event, level = _outcome_event(outcome)
            log_event(
                event,
                level=level,
                job_id=job_id,
                resource_id=delivery_input.resource_id,
                total_items=job.total_items,
                processed_items=job.processed_items,
                succeeded_items=job.succeeded_items,
                failed_items=job.failed_items,
                duplicate_detected=job.duplicate_detected,
                last_error=job.last_error,
            )
            return job

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.exception(f"Delivery job {job_id} raised an unexpected error")
            log_event(
                "delivery_job_exception",
                level=logging.ERROR,
                job_id=job_id,
                resource_id=delivery_input.resource_id,
                error=message,
            )
            return self._mark_failed(job_id, message)

        finally:
            if engine is not None:
                engine.close()

    def _mark_failed(self, job_id: str, message: str) -> Optional[DeliveryJob]:
        """Best-effort FAILED write after an unexpected error."""
        try:
            job = self.store.get_job(job_id)
            if job is None:
                logger.error(f"Delivery job {job_id} vanished, cannot mark FAILED")
                return None
            if job.is_terminal():
                return job

            return self.store.mark_terminal(
                job_id,
                DeliveryJobStatus.FAILED,
                last_error=message,
                failed_item_details=job.failed_item_details,
            )
        except Exception as e:
            logger.error(f"Could not mark delivery job {job_id} FAILED: {e}")
            return None
