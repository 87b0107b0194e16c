"""
StreetWise Jobs Module

Background job lifecycle, notifications and the worker loop.
"""

from streetwise.jobs.errors import (
    ForbiddenError,
    InvalidStateError,
    JobError,
    NotFoundError,
    ValidationError,
)
from streetwise.jobs.manager import JobConfig, JobManager
from streetwise.jobs.notifications import NotificationPage, NotificationStore
from streetwise.jobs.types import JobPriority, JobStatus, JobType, NotificationType
from streetwise.jobs.worker import JobCancelled, JobWorker, demo_handlers

__all__ = [
    # Errors
    'JobError',
    'NotFoundError',
    'ForbiddenError',
    'InvalidStateError',
    'ValidationError',
    # Manager
    'JobConfig',
    'JobManager',
    # Notifications
    'NotificationPage',
    'NotificationStore',
    # Types
    'JobType',
    'JobStatus',
    'JobPriority',
    'NotificationType',
    # Worker
    'JobWorker',
    'JobCancelled',
    'demo_handlers',
]
