"""
Job Errors

Domain exceptions raised by the job manager and notification store.
The web layer maps each class to an HTTP status.
"""

from typing import Optional


class JobError(Exception):
    """Base class for job subsystem errors."""
    pass


class NotFoundError(JobError):
    """Referenced job or notification does not exist."""
    pass


class ForbiddenError(JobError):
    """Entity exists but belongs to another user."""
    pass


class InvalidStateError(JobError):
    """Requested transition is not allowed from the current status."""
    pass


class ValidationError(JobError):
    """Input is missing or malformed.

    `fields` maps each offending field name to a message.
    """

    def __init__(self, message: str, fields: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.fields = fields or {}
