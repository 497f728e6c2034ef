"""
Delivery Service - entry point for request handlers.

Orchestrates the delivery components:
- AttemptSource (eligibility + item snapshot)
- JobStore (job persistence and the single-active-job guard)
- JobRunner (one job to a terminal status)
- JobDispatcher (background worker pool)
- RecoveryManager (startup cleanup)

Two delivery modes:
- ASYNC_JOB: a persisted job is created and run in the background
- SYNCHRONOUS_FALLBACK: the job store is missing or unusable; the engine
  runs inline and the caller receives a synthesized snapshot

Usage:
    service = DeliveryService.create(db_path, attempts_dir)
    result = service.enqueue(attempt_id, owner_id)
    job = service.poll(attempt_id, owner_id)
    service.shutdown()
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from ..attempts.source import AttemptSource, JsonAttemptSource
from .dispatcher import DEFAULT_MAX_WORKERS, JobDispatcher
from .engine import DedupSyncEngine
from .entities import (
    DeliveryInput,
    DeliveryJob,
    DeliveryJobStatus,
    JobOutcome,
    generate_uuid,
    now_iso,
)
from .errors import DeliveryError, JobStoreUnavailableError
from .persistence import JobStore
from .recovery import RecoveryManager
from .runner import EngineFactory, JobRunner, log_event


logger = logging.getLogger(__name__)

DELIVERY_FAILED_MESSAGE = "Notion送信に失敗しました"


class DeliveryMode(str, Enum):
    """How the service delivers work."""

    ASYNC_JOB = "ASYNC_JOB"
    SYNCHRONOUS_FALLBACK = "SYNCHRONOUS_FALLBACK"


class EnqueueMode(str, Enum):
    """What an enqueue request resulted in."""

    QUEUED = "QUEUED"            # new job created and dispatched
    ACTIVE = "ACTIVE"            # existing active job returned
    SYNCHRONOUS = "SYNCHRONOUS"  # delivered inline (degraded mode)


@dataclass
class EnqueueResult:
    mode: EnqueueMode
    job: DeliveryJob
    outcome: Optional[JobOutcome] = None


def build_status_message(job: DeliveryJob) -> Optional[str]:
    """User-facing message for a failed projection, None otherwise."""
    if job.status == DeliveryJobStatus.COMPLETED_WITH_ERRORS:
        return f"{DELIVERY_FAILED_MESSAGE}（失敗 {job.failed_items} 件）"

    if job.status == DeliveryJobStatus.FAILED:
        if job.last_error:
            return job.last_error
        if job.failed_items:
            return f"{DELIVERY_FAILED_MESSAGE}（失敗 {job.failed_items} 件）"
        return DELIVERY_FAILED_MESSAGE

    return None


def snapshot_from_outcome(delivery_input: DeliveryInput, outcome: JobOutcome) -> DeliveryJob:
    """Synthesize a job snapshot for an inline (non-persisted) run."""
    progress = outcome.progress
    return DeliveryJob(
        job_id=generate_uuid(),
        resource_id=delivery_input.resource_id,
        owner_id=delivery_input.owner_id,
        status=outcome.status,
        total_items=delivery_input.total_items,
        processed_items=progress.processed_items,
        succeeded_items=progress.succeeded_items,
        failed_items=progress.failed_items,
        duplicate_detected=outcome.duplicate,
        last_error=outcome.last_error,
        failed_item_details=list(outcome.failures),
        finished_at=now_iso(),
    )


class DeliveryService:
    """
    Coordinates enqueue, background execution and polling.

    The store may be None when it could not be opened at startup; every
    enqueue then runs in SYNCHRONOUS_FALLBACK mode and poll reports idle.
    """

    def __init__(
        self,
        attempt_source: AttemptSource,
        store: Optional[JobStore],
        runner: Optional[JobRunner],
        dispatcher: Optional[JobDispatcher],
        engine_factory: EngineFactory = DedupSyncEngine.from_env,
    ):
        """
        Initialize DeliveryService with all components.

        Use DeliveryService.create() for convenient construction.
        """
        self.attempt_source = attempt_source
        self.store = store
        self.runner = runner
        self.dispatcher = dispatcher
        self.engine_factory = engine_factory

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        attempts_dir: str | Path,
        max_workers: int = DEFAULT_MAX_WORKERS,
        engine_factory: EngineFactory = DedupSyncEngine.from_env,
        attempt_source: Optional[AttemptSource] = None,
        create_schema: bool = True,
    ) -> "DeliveryService":
        """
        Create a DeliveryService with all components wired together.

        Args:
            db_path: Path to SQLite job database
            attempts_dir: Directory of attempt JSON documents
            max_workers: Concurrent background jobs
            engine_factory: Builds a fresh engine per run
            attempt_source: Overrides the JSON attempt source
            create_schema: Create the job table if missing

        Returns:
            Configured DeliveryService (store is None if it could not be opened)
        """
        source = attempt_source or JsonAttemptSource(attempts_dir)

        try:
            store = JobStore(db_path, create_schema=create_schema)
        except JobStoreUnavailableError as e:
            logger.error(f"Job store unavailable, using synchronous delivery: {e}")
            return cls(
                attempt_source=source,
                store=None,
                runner=None,
                dispatcher=None,
                engine_factory=engine_factory,
            )

        runner = JobRunner(store, engine_factory=engine_factory)
        dispatcher = JobDispatcher(runner.run, max_workers=max_workers)

        return cls(
            attempt_source=source,
            store=store,
            runner=runner,
            dispatcher=dispatcher,
            engine_factory=engine_factory,
        )

    @property
    def mode(self) -> DeliveryMode:
        if self.store is None or self.dispatcher is None:
            return DeliveryMode.SYNCHRONOUS_FALLBACK
        return DeliveryMode.ASYNC_JOB

    @property
    def recovery_manager(self) -> Optional[RecoveryManager]:
        if self.store is None:
            return None
        return RecoveryManager(self.store)

    # =========================================================================
    # Enqueue
    # =========================================================================

    def enqueue(self, resource_id: str, owner_id: str) -> EnqueueResult:
        """
        Start delivery for an attempt.

        Raises:
            AttemptSourceError: Attempt missing, not owned, or not deliverable
            RuntimeError: Dispatcher already shut down (the new job is failed first)
        """
        delivery_input = self.attempt_source.load_delivery_input(resource_id, owner_id)

        if self.mode == DeliveryMode.SYNCHRONOUS_FALLBACK:
            return self._deliver_synchronously(delivery_input)

        try:
            job, created = self.store.create_if_none_active(
                resource_id,
                owner_id,
                delivery_input.total_items,
            )
        except JobStoreUnavailableError as e:
            logger.error(f"Job store unavailable for {resource_id}, delivering inline: {e}")
            return self._deliver_synchronously(delivery_input)

        if not created:
            logger.info(f"Delivery already active for {resource_id}: job {job.job_id}")
            return EnqueueResult(mode=EnqueueMode.ACTIVE, job=job)

        try:
            self.dispatcher.submit(job.job_id, delivery_input)
        except RuntimeError as e:
            self._abandon(job, f"dispatch failed: {e}")
            raise

        logger.info(
            f"Queued delivery job {job.job_id} for {resource_id} "
            f"({job.total_items} items)"
        )
        return EnqueueResult(mode=EnqueueMode.QUEUED, job=job)

    def _abandon(self, job: DeliveryJob, message: str) -> None:
        """Fail a job that was created but never handed to a worker."""
        logger.error(f"Could not dispatch delivery job {job.job_id}: {message}")
        try:
            self.store.mark_terminal(
                job.job_id,
                DeliveryJobStatus.FAILED,
                last_error=message,
            )
        except DeliveryError as e:
            logger.error(f"Could not mark delivery job {job.job_id} FAILED: {e}")

    def _deliver_synchronously(self, delivery_input: DeliveryInput) -> EnqueueResult:
        """Run the engine inline without persisting a job."""
        log_event(
            "delivery_synchronous_fallback",
            level=logging.WARNING,
            resource_id=delivery_input.resource_id,
            total_items=delivery_input.total_items,
        )

        engine = self.engine_factory()
        try:
            outcome = engine.run(delivery_input)
        finally:
            engine.close()

        return EnqueueResult(
            mode=EnqueueMode.SYNCHRONOUS,
            job=snapshot_from_outcome(delivery_input, outcome),
            outcome=outcome,
        )

    # =========================================================================
    # Poll
    # =========================================================================

    def poll(self, resource_id: str, owner_id: str) -> Optional[DeliveryJob]:
        """
        Most recent job for the attempt, or None if none ever ran.

        Raises:
            AttemptNotFoundError, AttemptForbiddenError
        """
        self.attempt_source.authorize(resource_id, owner_id)

        if self.store is None:
            return None

        try:
            return self.store.find_latest(resource_id, owner_id)
        except JobStoreUnavailableError as e:
            logger.error(f"Job store unavailable while polling {resource_id}: {e}")
            return None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def recover(self) -> dict:
        """Run crash recovery if a store is available."""
        manager = self.recovery_manager
        if manager is None:
            return {}
        return manager.recover_on_startup()

    def shutdown(self, wait: bool = True) -> None:
        if self.dispatcher is not None:
            self.dispatcher.shutdown(wait=wait)
