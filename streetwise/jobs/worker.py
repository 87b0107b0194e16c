"""
Job Worker

Polls the job store, claims runnable jobs and hands them to the handler
registered for their type. The actual crawl/analysis code lives outside
this package and is plugged in through `handlers`.
"""

import logging
import threading
import time
from typing import Callable, Optional

from streetwise.jobs.errors import JobError
from streetwise.jobs.manager import JobManager
from streetwise.jobs.types import JobType

logger = logging.getLogger(__name__)

# handler(job, report) -> result dict
Handler = Callable[[dict, Callable[..., None]], Optional[dict]]


class JobCancelled(Exception):
    """Raised from a progress report once the job is no longer running."""
    pass


class JobWorker:
    """Runs queued jobs one at a time."""

    def __init__(self, manager: JobManager, handlers: Optional[dict[str, Handler]] = None,
                 poll_interval: Optional[float] = None,
                 stop_event: Optional[threading.Event] = None):
        self.manager = manager
        self.handlers: dict[str, Handler] = {}
        for job_type, handler in (handlers or {}).items():
            self.register(job_type, handler)
        self.poll_interval = (
            manager.config.poll_interval if poll_interval is None else poll_interval
        )
        self.stop_event = stop_event or threading.Event()

    def register(self, job_type: str, handler: Handler) -> None:
        """Register the handler for a job type."""
        self.handlers[JobType(job_type).value] = handler

    def run(self) -> None:
        """Process jobs until the stop event is set."""
        logger.info("Worker started (poll every %.1fs)", self.poll_interval)
        while not self.stop_event.is_set():
            try:
                self.manager.fail_stale_jobs()
                job_id = self.run_once()
            except Exception:
                logger.exception("Worker iteration failed")
                job_id = None
            if job_id is None:
                self.stop_event.wait(self.poll_interval)
        logger.info("Worker stopped")

    def run_once(self) -> Optional[int]:
        """Claim and process a single job. Returns its ID, or None if idle."""
        job = self.manager.claim_next_job()
        if job is None:
            return None
        self.process(job)
        return job["id"]

    def process(self, job: dict) -> None:
        """Run a claimed job and record the outcome."""
        job_id = job["id"]
        handler = self.handlers.get(job["type"])
        if handler is None:
            self._record_failure(job_id, f"No handler registered for job type: {job['type']}")
            return

        started = time.monotonic()
        try:
            result = handler(job, self._reporter(job_id))
        except JobCancelled:
            logger.info("Job %s stopped after cancellation", job_id)
            return
        except Exception as e:
            logger.exception("Job %s raised an error", job_id)
            self._record_failure(job_id, str(e) or e.__class__.__name__)
            return

        if result is not None and not isinstance(result, dict):
            self._record_failure(
                job_id, f"Handler returned {type(result).__name__}, expected a dict"
            )
            return

        result = dict(result or {})
        result.setdefault("duration", int((time.monotonic() - started) * 1000))
        try:
            self.manager.complete_job(job_id, result)
        except JobError as e:
            # Cancelled (or swept) while the handler was finishing.
            logger.info("Job %s result discarded: %s", job_id, e)
        except Exception as e:
            logger.exception("Job %s could not be completed", job_id)
            self._record_failure(job_id, f"Could not record result: {e}")

    def _reporter(self, job_id: int) -> Callable[..., None]:
        def report(progress: int, step: Optional[str] = None, metadata: Optional[dict] = None):
            if not self.manager.update_progress(job_id, progress, step, metadata):
                raise JobCancelled(job_id)
        return report

    def _record_failure(self, job_id: int, error: str) -> None:
        try:
            self.manager.fail_job(job_id, error)
        except JobError as e:
            logger.info("Job %s failure not recorded: %s", job_id, e)


def demo_handlers(step_delay: float = 0.5) -> dict[str, Handler]:
    """Simulated handlers that walk through a few steps per job type."""
    steps = {
        JobType.WEBSITE_CRAWL: ["Fetching pages", "Extracting topics", "Scoring keywords"],
        JobType.PERFORMANCE_ANALYSIS: ["Collecting rankings", "Scoring content", "Grading"],
        JobType.COMPETITOR_MONITORING: ["Crawling competitor", "Diffing snapshots"],
        JobType.CONTENT_PERFORMANCE_TRACKING: ["Loading pages", "Scoring content"],
        JobType.SERP_TRACKING: ["Querying search engines", "Recording positions"],
    }

    def make(job_type: JobType) -> Handler:
        def handler(job: dict, report: Callable[..., None]) -> dict:
            names = steps[job_type]
            for i, name in enumerate(names):
                report(int(i / len(names) * 100), name)
                time.sleep(step_delay)
            return {"success": True, "type": job_type.value, "steps": len(names)}
        return handler

    return {job_type.value: make(job_type) for job_type in JobType}
