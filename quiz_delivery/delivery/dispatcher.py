"""
Job Dispatcher.

Hands job runs to a bounded worker pool so the request that created a
job returns immediately. Items within one job stay sequential; different
jobs run concurrently, one per worker.

What JobDispatcher MUST NOT do:
- Touch job state (the runner owns it)
- Cancel work in flight
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from .entities import DeliveryInput, DeliveryJob


logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4

RunFunction = Callable[[str, DeliveryInput], Optional[DeliveryJob]]


class JobDispatcher:
    """Thread pool wrapper tracking in-flight delivery jobs."""

    def __init__(self, run: RunFunction, max_workers: int = DEFAULT_MAX_WORKERS):
        """
        Initialize JobDispatcher.

        Args:
            run: Callable executing one job (normally JobRunner.run)
            max_workers: Concurrent jobs
        """
        self._run = run
        self.max_workers = max_workers
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="delivery-job",
        )
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._shutdown = False

    def submit(self, job_id: str, delivery_input: DeliveryInput) -> Future:
        """
        Schedule a job run.

        Raises:
            RuntimeError: If the dispatcher has been shut down
        """
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Dispatcher is shut down")

            future = self._pool.submit(self._run, job_id, delivery_input)
            self._futures[job_id] = future

        future.add_done_callback(lambda f: self._on_done(job_id, f))
        logger.debug(f"Dispatched delivery job {job_id}")
        return future

    def _on_done(self, job_id: str, future: Future) -> None:
        with self._lock:
            self._futures.pop(job_id, None)

        if future.cancelled():
            logger.warning(f"Delivery job {job_id} was cancelled before it ran")
            return

        error = future.exception()
        if error is not None:
            logger.error(f"Delivery job {job_id} escaped its runner: {error!r}")

    @property
    def in_flight(self) -> int:
        """Number of submitted jobs not yet finished."""
        with self._lock:
            return len(self._futures)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting jobs; optionally wait for running ones."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True

        logger.info(f"Shutting down delivery dispatcher ({self.in_flight} jobs in flight)")
        self._pool.shutdown(wait=wait)
