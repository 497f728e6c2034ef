"""
Recovery Manager for delivery jobs.

A job is only ever run by the process that created it. If that process
dies, the job stays QUEUED or IN_PROGRESS and the single-active-job guard
would block re-delivery of the attempt forever.

On startup every such orphan is moved to FAILED. Recovery is idempotent:
running it twice finds nothing the second time.
"""

import logging

from .entities import DeliveryJob, DeliveryJobStatus
from .errors import DeliveryError
from .persistence import JobStore


logger = logging.getLogger(__name__)

RECOVERY_ERROR_MESSAGE = "interrupted by restart"


class RecoveryManager:
    """Fails orphaned active jobs left behind by a previous process."""

    def __init__(self, store: JobStore):
        self.store = store

    def recover_on_startup(self) -> dict:
        """
        Fail every QUEUED / IN_PROGRESS job.

        Must run before the dispatcher accepts new work.

        Returns:
            Recovery statistics
        """
        stats = {
            "jobs_recovered": 0,
            "errors": [],
        }

        logger.info("Starting delivery job recovery...")

        try:
            orphans = self.store.list_active_jobs()
        except DeliveryError as e:
            logger.error(f"Error listing active delivery jobs: {e}")
            stats["errors"].append(f"List: {e}")
            return stats

        for job in orphans:
            try:
                self._recover_job(job)
                stats["jobs_recovered"] += 1
            except DeliveryError as e:
                logger.error(f"Error recovering delivery job {job.job_id}: {e}")
                stats["errors"].append(f"{job.job_id}: {e}")

        logger.info(f"Recovery complete: {stats['jobs_recovered']} delivery jobs failed")
        return stats

    def _recover_job(self, job: DeliveryJob) -> DeliveryJob:
        logger.info(f"Recovering {job.status.value} delivery job {job.job_id}")
        return self.store.mark_terminal(
            job.job_id,
            DeliveryJobStatus.FAILED,
            last_error=RECOVERY_ERROR_MESSAGE,
            failed_item_details=job.failed_item_details,
        )
