"""
Job Manager

Lifecycle of background jobs: enqueue, claim, progress, complete, fail,
cancel and retry. Each transition is a single conditional UPDATE, so a
concurrent request that lost the race sees zero affected rows and gets an
InvalidStateError instead of overwriting the winner. Terminal transitions
write the user's notification in the same transaction.

State machine:

    queued -> running -> completed
                      -> failed -> queued (retry, bounded by max_retries)
    queued | running  -> cancelled
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from streetwise.database import Database, utcnow
from streetwise.jobs.errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from streetwise.jobs.notifications import NotificationStore
from streetwise.jobs.types import (
    CANCELLABLE_STATUSES,
    JobPriority,
    JobStatus,
    JobType,
    NotificationType,
    display_name,
    result_url,
)

logger = logging.getLogger(__name__)

COMPLETED_DISMISS_AFTER = timedelta(minutes=5)
CANCELLED_DISMISS_AFTER = timedelta(minutes=2)


@dataclass
class JobConfig:
    """Tunables for the job manager and worker."""
    default_retries: int = 3
    max_concurrent_jobs: int = 3
    stale_after_minutes: int = 30
    max_job_age_days: int = 7
    poll_interval: float = 2.0
    stream_interval: float = 2.0

    @classmethod
    def from_config(cls, config: dict) -> "JobConfig":
        """Build from the `jobs` section of the application config."""
        section = config.get("jobs") or {}
        known = {k: v for k, v in section.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def _later(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat(timespec="microseconds")


class JobManager:
    """Creates, queries and transitions background jobs."""

    def __init__(self, db: Database, config: Optional[JobConfig] = None,
                 notifications: Optional[NotificationStore] = None):
        self.db = db
        self.config = config or JobConfig()
        self.notifications = notifications or NotificationStore(db)

    # --- Creation and queries ---

    def enqueue_job(self, user_id: str, job_type: str, input: Optional[dict] = None,
                    priority: Optional[int] = None, max_retries: Optional[int] = None) -> int:
        """Queue a new job for user_id and return its ID."""
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise ValidationError(f"Unknown job type: {job_type}", {"type": "unknown job type"})

        priority = JobPriority.NORMAL if priority is None else priority
        if not 1 <= int(priority) <= 10:
            raise ValidationError("priority must be between 1 and 10", {"priority": "must be 1-10"})
        max_retries = self.config.default_retries if max_retries is None else max_retries
        if max_retries < 0:
            raise ValidationError("maxRetries must not be negative", {"maxRetries": "must be >= 0"})

        with self.db.transaction():
            job_id = self.db.create_job(
                user_id=user_id,
                job_type=job_type.value,
                input=input,
                priority=int(priority),
                max_retries=max_retries,
            )
            self.notifications.create(
                user_id=user_id,
                job_id=job_id,
                type=NotificationType.JOB_STARTED.value,
                title="Job Started",
                message=(
                    f"Your {display_name(job_type)} job has been queued "
                    "and will start processing shortly."
                ),
                action_url="/dashboard",
                action_text="View Progress",
            )

        logger.info("Job queued: %s (%s) for user %s", job_id, job_type.value, user_id)
        return job_id

    def get_job(self, job_id: int) -> Optional[dict]:
        """Fetch a job by ID.

        No ownership check happens here; callers exposing the job to a user
        must compare job["user_id"] themselves (see get_user_job).
        """
        return self.db.get_job(job_id)

    def get_user_job(self, job_id: int, user_id: str) -> dict:
        """Fetch a job and verify that user_id owns it."""
        job = self.db.get_job(job_id)
        if job is None:
            raise NotFoundError("Job not found")
        if job["user_id"] != user_id:
            raise ForbiddenError("Access denied")
        return job

    def list_user_jobs(self, user_id: str, limit: int = 20, offset: int = 0) -> list[dict]:
        """A user's jobs, newest first."""
        return self.db.list_jobs(user_id=user_id, limit=limit, offset=offset)

    def count_user_jobs(self, user_id: str) -> int:
        return self.db.count_jobs(user_id=user_id)

    def get_user_active_jobs(self, user_id: str) -> list[dict]:
        """A user's running jobs, newest first."""
        return self.db.list_jobs(user_id=user_id, status=JobStatus.RUNNING.value, limit=None)

    # --- Worker-side transitions ---

    def claim_next_job(self) -> Optional[dict]:
        """Move the next runnable queued job to running and return it."""
        job = self.db.claim_next_job(max_running=self.config.max_concurrent_jobs)
        if job:
            logger.info("Starting job: %s (%s)", job["id"], job["type"])
        return job

    def update_progress(self, job_id: int, progress: int, current_step: Optional[str] = None,
                        metadata: Optional[dict] = None) -> bool:
        """Report progress for a running job.

        Returns False when the job is no longer running (for example it was
        cancelled), which tells the worker to stop.
        """
        progress = max(0, min(int(progress), 100))
        updated = self.db.update_job_progress(job_id, progress, current_step, metadata)
        if updated:
            logger.info("Job %s progress: %d%% - %s", job_id, progress, current_step or "")
        return updated

    def complete_job(self, job_id: int, result: Any = None) -> None:
        """Mark a running job as completed and notify its owner."""
        job = self._require(job_id)
        with self.db.transaction():
            changed = self.db.update_job(
                job_id,
                {
                    "status": JobStatus.COMPLETED.value,
                    "progress": 100,
                    "result": result,
                    "error": None,
                    "completed_at": utcnow(),
                },
                statuses=(JobStatus.RUNNING.value,),
            )
            if not changed:
                raise self._invalid(job_id, "complete")
            self.notifications.create(
                user_id=job["user_id"],
                job_id=job_id,
                type=NotificationType.JOB_COMPLETED.value,
                title="Job Completed",
                message=f"Your {display_name(job['type'])} job has completed successfully.",
                action_url=result_url(job["type"]),
                action_text="View Results",
                auto_dismiss=True,
                dismiss_at=_later(COMPLETED_DISMISS_AFTER),
            )
        logger.info("Job completed: %s (%s)", job_id, job["type"])

    def fail_job(self, job_id: int, error: str) -> None:
        """Mark a running job as failed and notify its owner."""
        job = self._require(job_id)
        with self.db.transaction():
            changed = self.db.update_job(
                job_id,
                {
                    "status": JobStatus.FAILED.value,
                    "error": error,
                    "completed_at": utcnow(),
                },
                statuses=(JobStatus.RUNNING.value,),
            )
            if not changed:
                raise self._invalid(job_id, "fail")
            self._notify_failed(job, error)
        logger.info("Job failed: %s (%s) - %s", job_id, job["type"], error)

    # --- User-initiated transitions ---

    def cancel_job(self, job_id: int, user_id: Optional[str] = None) -> dict:
        """Cancel a queued or running job.

        Cancellation only flips the status; a worker running the job notices
        on its next progress report and stops.
        """
        with self.db.transaction():
            changed = self.db.update_job(
                job_id,
                {"status": JobStatus.CANCELLED.value, "completed_at": utcnow()},
                statuses=tuple(s.value for s in CANCELLABLE_STATUSES),
                user_id=user_id,
            )
            if not changed:
                raise self._diagnose(job_id, user_id, "cancel")
            job = self.db.get_job(job_id)
            self.notifications.create(
                user_id=job["user_id"],
                job_id=job_id,
                type=NotificationType.JOB_CANCELLED.value,
                title="Job Cancelled",
                message=f"Your {display_name(job['type'])} job was cancelled.",
                auto_dismiss=True,
                dismiss_at=_later(CANCELLED_DISMISS_AFTER),
            )
        logger.info("Job cancelled: %s (%s)", job_id, job["type"])
        return job

    def retry_job(self, job_id: int, user_id: Optional[str] = None) -> dict:
        """Requeue a failed job if its retry budget allows.

        Each retry consumes one unit of the budget: with max_retries=3 the
        fourth retry request is rejected.
        """
        job = self._require(job_id)
        if user_id is not None and job["user_id"] != user_id:
            raise ForbiddenError("Access denied")
        if job["status"] != JobStatus.FAILED.value:
            raise InvalidStateError("Only failed jobs can be retried")
        if job["retry_count"] >= job["max_retries"]:
            raise InvalidStateError("Job has exceeded maximum retry attempts")

        with self.db.transaction():
            changed = self.db.update_job(
                job_id,
                {
                    "status": JobStatus.QUEUED.value,
                    "progress": 0,
                    "current_step": None,
                    "error": None,
                    "completed_at": None,
                    "retry_count": job["retry_count"] + 1,
                    "next_retry_at": utcnow(),
                },
                statuses=(JobStatus.FAILED.value,),
                user_id=user_id,
                condition="retry_count = ? AND retry_count < max_retries",
                condition_params=(job["retry_count"],),
            )
            if not changed:
                raise InvalidStateError("Job was modified concurrently; retry not applied")
            self.notifications.create(
                user_id=job["user_id"],
                job_id=job_id,
                type=NotificationType.JOB_RETRYING.value,
                title="Job Retrying",
                message=f"Your {display_name(job['type'])} job has been queued for retry.",
                action_url="/dashboard",
                action_text="View Progress",
            )
        logger.info(
            "Job %s queued for retry (%d/%d)", job_id, job["retry_count"] + 1, job["max_retries"]
        )
        return self.db.get_job(job_id)

    # --- Maintenance ---

    def fail_stale_jobs(self) -> list[int]:
        """Fail running jobs that have not reported progress recently."""
        minutes = self.config.stale_after_minutes
        cutoff = _later(-timedelta(minutes=minutes))
        failed = []
        for job in self.db.list_stale_jobs(cutoff):
            error = f"Job timed out: no progress for {minutes} minutes"
            with self.db.transaction():
                changed = self.db.update_job(
                    job["id"],
                    {"status": JobStatus.FAILED.value, "error": error, "completed_at": utcnow()},
                    statuses=(JobStatus.RUNNING.value,),
                    condition="updated_at < ?",
                    condition_params=(cutoff,),
                )
                if changed:
                    self._notify_failed(job, error)
            if changed:
                logger.warning("Stale job failed: %s (%s)", job["id"], job["type"])
                failed.append(job["id"])
        return failed

    def cleanup_old_jobs(self) -> dict:
        """Delete old finished jobs and expired auto-dismiss notifications."""
        cutoff = _later(-timedelta(days=self.config.max_job_age_days))
        jobs_deleted = self.db.delete_finished_jobs(cutoff)
        notifications_deleted = self.db.delete_dismissed_notifications()
        logger.info(
            "Cleanup completed: %d jobs, %d notifications removed",
            jobs_deleted, notifications_deleted
        )
        return {"jobs_deleted": jobs_deleted, "notifications_deleted": notifications_deleted}

    def get_statistics(self, user_id: Optional[str] = None) -> dict:
        """Counts by status and type, average duration and success rate."""
        jobs = self.db.list_jobs(user_id=user_id, limit=None)
        by_status = {status.value: 0 for status in JobStatus}
        by_type = {job_type.value: 0 for job_type in JobType}
        for job in jobs:
            by_status[job["status"]] = by_status.get(job["status"], 0) + 1
            by_type[job["type"]] = by_type.get(job["type"], 0) + 1

        durations = [
            _duration_ms(job) for job in jobs
            if job["status"] == JobStatus.COMPLETED.value and _duration_ms(job) is not None
        ]
        completed = by_status[JobStatus.COMPLETED.value]

        return {
            "total": len(jobs),
            **by_status,
            "averageDuration": sum(durations) / len(durations) if durations else 0,
            "successRate": (completed / len(jobs)) * 100 if jobs else 0,
            "jobsByType": by_type,
            "jobsByStatus": by_status,
            "recentJobs": [
                {
                    "id": job["id"],
                    "type": job["type"],
                    "status": job["status"],
                    "createdAt": job["created_at"],
                    "completedAt": job["completed_at"],
                    "duration": _duration_ms(job),
                }
                for job in jobs[:10]
            ],
        }

    # --- Helpers ---

    def _require(self, job_id: int) -> dict:
        job = self.db.get_job(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def _invalid(self, job_id: int, action: str) -> InvalidStateError:
        job = self._require(job_id)
        return InvalidStateError(f"Cannot {action} job in status: {job['status']}")

    def _diagnose(self, job_id: int, user_id: Optional[str], action: str) -> Exception:
        """Explain why a scoped conditional update matched no row."""
        job = self.db.get_job(job_id)
        if job is None:
            return NotFoundError("Job not found")
        if user_id is not None and job["user_id"] != user_id:
            return ForbiddenError("Access denied")
        return InvalidStateError(f"Cannot {action} job in status: {job['status']}")

    def _notify_failed(self, job: dict, error: str):
        self.notifications.create(
            user_id=job["user_id"],
            job_id=job["id"],
            type=NotificationType.JOB_FAILED.value,
            title="Job Failed",
            message=f"Your {display_name(job['type'])} job failed: {error}",
            action_url="/dashboard",
            action_text="View Details",
        )


def _duration_ms(job: dict) -> Optional[float]:
    if not job.get("started_at") or not job.get("completed_at"):
        return None
    started = datetime.fromisoformat(job["started_at"])
    completed = datetime.fromisoformat(job["completed_at"])
    return (completed - started).total_seconds() * 1000
