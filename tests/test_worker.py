"""
Tests for the StreetWise job worker.
"""

import sqlite3
import threading

import pytest

from streetwise.jobs import JobCancelled, JobWorker, demo_handlers


class TestRunOnce:
    """Tests for processing single jobs."""

    def test_idle(self, manager):
        """Test that an empty queue returns None."""
        worker = JobWorker(manager)
        assert worker.run_once() is None

    def test_successful_job(self, manager):
        """Test that a handler's result completes the job."""
        seen = []

        def handler(job, report):
            seen.append(job['input'])
            report(50, "Halfway")
            return {"pages": 4}

        job_id = manager.enqueue_job("user-1", "website_crawl", {"url": "https://a.example"})
        worker = JobWorker(manager, {"website_crawl": handler})

        assert worker.run_once() == job_id

        job = manager.get_job(job_id)
        assert seen == [{"url": "https://a.example"}]
        assert job['status'] == "completed"
        assert job['result']['pages'] == 4
        assert "duration" in job['result']

    def test_handler_error_fails_job(self, manager):
        """Test that an exception from the handler fails the job."""
        def handler(job, report):
            raise ValueError("Site unreachable")

        job_id = manager.enqueue_job("user-1", "website_crawl")
        JobWorker(manager, {"website_crawl": handler}).run_once()

        job = manager.get_job(job_id)
        assert job['status'] == "failed"
        assert job['error'] == "Site unreachable"

    def test_missing_handler_fails_job(self, manager):
        """Test that a job without a handler fails."""
        job_id = manager.enqueue_job("user-1", "serp_tracking")
        JobWorker(manager).run_once()

        job = manager.get_job(job_id)
        assert job['status'] == "failed"
        assert job['error'] == "No handler registered for job type: serp_tracking"

    def test_cancelled_while_running(self, manager):
        """Test that a cancellation stops the handler at its next report."""
        steps = []

        def handler(job, report):
            report(10, "Started")
            steps.append("started")
            manager.cancel_job(job['id'], user_id=job['user_id'])
            report(20, "After cancel")
            steps.append("unreachable")

        job_id = manager.enqueue_job("user-1", "website_crawl")
        JobWorker(manager, {"website_crawl": handler}).run_once()

        job = manager.get_job(job_id)
        assert steps == ["started"]
        assert job['status'] == "cancelled"
        assert job['progress'] == 10

    def test_non_dict_result_fails_job(self, manager):
        """Test that a handler returning something other than a dict fails the job."""
        job_id = manager.enqueue_job("user-1", "website_crawl")
        worker = JobWorker(manager, {"website_crawl": lambda job, report: ["done"]})

        assert worker.run_once() == job_id

        job = manager.get_job(job_id)
        assert job['status'] == "failed"
        assert job['error'] == "Handler returned list, expected a dict"

    def test_completion_error_fails_job(self, manager, monkeypatch):
        """Test that a database error while completing still settles the job."""
        def locked(job_id, result=None):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(manager, "complete_job", locked)
        job_id = manager.enqueue_job("user-1", "website_crawl")
        JobWorker(manager, {"website_crawl": lambda job, report: {}}).run_once()

        job = manager.get_job(job_id)
        assert job['status'] == "failed"
        assert job['error'] == "Could not record result: database is locked"

    def test_reporter_raises_job_cancelled(self, manager):
        """Test the reporter for a job that is not running."""
        job_id = manager.enqueue_job("user-1", "website_crawl")
        worker = JobWorker(manager)

        with pytest.raises(JobCancelled):
            worker._reporter(job_id)(50, "Too early")

    def test_register_unknown_type(self, manager):
        """Test that handlers can only be registered for known types."""
        worker = JobWorker(manager)
        with pytest.raises(ValueError):
            worker.register("mystery", lambda job, report: {})


class TestRun:
    """Tests for the polling loop."""

    def test_run_until_stopped(self, manager):
        """Test that run drains the queue and stops on the event."""
        stop = threading.Event()
        processed = []

        def handler(job, report):
            processed.append(job['id'])
            if len(processed) == 2:
                stop.set()
            return {}

        first = manager.enqueue_job("user-1", "website_crawl")
        second = manager.enqueue_job("user-1", "website_crawl")
        worker = JobWorker(manager, {"website_crawl": handler}, poll_interval=0.01, stop_event=stop)

        worker.run()

        assert processed == [first, second]
        assert manager.get_job(second)['status'] == "completed"

    def test_run_survives_errors(self, manager, monkeypatch):
        """Test that a failing iteration is logged and the loop keeps polling."""
        stop = threading.Event()
        sweep = manager.fail_stale_jobs
        calls = []

        def flaky_sweep():
            calls.append(1)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return sweep()

        def handler(job, report):
            stop.set()
            return {}

        monkeypatch.setattr(manager, "fail_stale_jobs", flaky_sweep)
        job_id = manager.enqueue_job("user-1", "website_crawl")
        worker = JobWorker(manager, {"website_crawl": handler}, poll_interval=0.01, stop_event=stop)

        worker.run()

        assert len(calls) >= 2
        assert manager.get_job(job_id)['status'] == "completed"


class TestDemoHandlers:
    """Tests for the simulated handlers."""

    def test_every_type_has_a_handler(self):
        handlers = demo_handlers(step_delay=0)
        assert set(handlers) == {
            "website_crawl",
            "performance_analysis",
            "competitor_monitoring",
            "content_performance_tracking",
            "serp_tracking",
        }

    def test_demo_job_completes(self, manager):
        """Test a full run with a demo handler."""
        job_id = manager.enqueue_job("user-1", "competitor_monitoring")
        JobWorker(manager, demo_handlers(step_delay=0)).run_once()

        job = manager.get_job(job_id)
        assert job['status'] == "completed"
        assert job['progress'] == 100
        assert job['result']['type'] == "competitor_monitoring"
