"""
Job Types

Enumerations and per-type presentation data for background jobs.
"""

from enum import Enum, IntEnum


class JobType(str, Enum):
    WEBSITE_CRAWL = "website_crawl"
    PERFORMANCE_ANALYSIS = "performance_analysis"
    COMPETITOR_MONITORING = "competitor_monitoring"
    CONTENT_PERFORMANCE_TRACKING = "content_performance_tracking"
    SERP_TRACKING = "serp_tracking"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class JobPriority(IntEnum):
    """Lower value runs first."""
    URGENT = 1
    HIGH = 3
    NORMAL = 5
    LOW = 8


class NotificationType(str, Enum):
    JOB_STARTED = "job_started"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_CANCELLED = "job_cancelled"
    JOB_RETRYING = "job_retrying"


CANCELLABLE_STATUSES = (JobStatus.QUEUED, JobStatus.RUNNING)

DISPLAY_NAMES = {
    JobType.WEBSITE_CRAWL: "Website Crawl",
    JobType.PERFORMANCE_ANALYSIS: "Performance Analysis",
    JobType.COMPETITOR_MONITORING: "Competitor Monitoring",
    JobType.CONTENT_PERFORMANCE_TRACKING: "Content Performance Tracking",
    JobType.SERP_TRACKING: "SERP Tracking",
}

RESULT_URLS = {
    JobType.COMPETITOR_MONITORING: "/dashboard/competitors",
}


def display_name(job_type: str) -> str:
    """Human-readable name for a job type; unknown types pass through."""
    try:
        return DISPLAY_NAMES[JobType(job_type)]
    except ValueError:
        return job_type


def result_url(job_type: str) -> str:
    """Dashboard page where a job type's results are shown."""
    try:
        return RESULT_URLS.get(JobType(job_type), "/dashboard/performance")
    except ValueError:
        return "/dashboard"
