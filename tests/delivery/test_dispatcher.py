"""
Tests for JobDispatcher.
"""

import logging
import threading

import pytest

from quiz_delivery.delivery import JobDispatcher


class TestDispatch:
    def test_runs_submitted_job(self, make_input):
        calls = []
        dispatcher = JobDispatcher(lambda job_id, delivery_input: calls.append(job_id), max_workers=1)

        future = dispatcher.submit("job-1", make_input(count=1))
        future.result(timeout=5)
        dispatcher.shutdown(wait=True)

        assert calls == ["job-1"]
        assert dispatcher.in_flight == 0

    def test_jobs_run_concurrently(self, make_input):
        started = threading.Barrier(2, timeout=5)

        def run(job_id, delivery_input):
            # Both jobs must be running at the same time to pass the barrier
            started.wait()

        dispatcher = JobDispatcher(run, max_workers=2)
        futures = [dispatcher.submit(f"job-{i}", make_input(count=1)) for i in range(2)]

        for future in futures:
            future.result(timeout=5)
        dispatcher.shutdown(wait=True)

    def test_escaped_exception_is_logged(self, make_input, caplog):
        def run(job_id, delivery_input):
            raise RuntimeError("runner bug")

        dispatcher = JobDispatcher(run, max_workers=1)

        with caplog.at_level(logging.ERROR, logger="quiz_delivery"):
            future = dispatcher.submit("job-1", make_input(count=1))
            with pytest.raises(RuntimeError):
                future.result(timeout=5)
            dispatcher.shutdown(wait=True)

        assert any("escaped its runner" in r.getMessage() for r in caplog.records)

    def test_submit_after_shutdown(self, make_input):
        dispatcher = JobDispatcher(lambda job_id, delivery_input: None)
        dispatcher.shutdown()

        with pytest.raises(RuntimeError):
            dispatcher.submit("job-1", make_input(count=1))

    def test_shutdown_is_idempotent(self):
        dispatcher = JobDispatcher(lambda job_id, delivery_input: None)
        dispatcher.shutdown()
        dispatcher.shutdown()
