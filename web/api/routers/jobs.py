"""
Jobs Router

Background job listing, creation, cancellation, retry and the live
progress stream.
"""

import asyncio
import json
import logging
import sqlite3
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from streetwise.jobs import JobManager, ValidationError
from streetwise.jobs.notifications import clamp_page
from web.api.deps import get_current_user, get_job_manager

logger = logging.getLogger(__name__)

router = APIRouter()


class JobCreate(BaseModel):
    """Job creation request. Unknown fields become the job input."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Optional[str] = None
    priority: Optional[int] = None
    max_retries: Optional[int] = Field(default=None, alias="maxRetries")


def job_to_response(job: dict) -> dict:
    """Serialize a job row for the browser."""
    return {
        "id": job["id"],
        "type": job["type"],
        "status": job["status"],
        "priority": job["priority"],
        "progress": job["progress"],
        "currentStep": job["current_step"],
        "input": job["input"],
        "result": job["result"],
        "error": job["error"],
        "metadata": job["metadata"],
        "createdAt": job["created_at"],
        "startedAt": job["started_at"],
        "completedAt": job["completed_at"],
        "updatedAt": job["updated_at"],
        "retryCount": job["retry_count"],
        "maxRetries": job["max_retries"],
    }


@router.get("")
async def list_jobs(
    limit: int = 20,
    offset: int = 0,
    active_only: bool = Query(False, alias="activeOnly"),
    include_stats: bool = Query(False, alias="includeStats"),
    user_id: str = Depends(get_current_user),
    manager: JobManager = Depends(get_job_manager),
):
    """List the user's jobs, newest first."""
    limit, offset = clamp_page(limit, offset)

    if active_only:
        jobs = manager.get_user_active_jobs(user_id)
        pagination = None
    else:
        jobs = manager.list_user_jobs(user_id, limit=limit, offset=offset)
        total = manager.count_user_jobs(user_id)
        pagination = {
            "limit": limit,
            "offset": offset,
            "total": total,
            "hasMore": offset + len(jobs) < total,
        }

    data = {"jobs": [job_to_response(job) for job in jobs], "pagination": pagination}
    if include_stats:
        data["statistics"] = manager.get_statistics(user_id)

    logger.debug("Retrieved %d jobs for user %s", len(jobs), user_id)
    return {"success": True, "data": data}


@router.post("")
async def create_job(
    payload: JobCreate,
    user_id: str = Depends(get_current_user),
    manager: JobManager = Depends(get_job_manager),
):
    """Queue a new job."""
    if not payload.type:
        raise ValidationError("Job type is required", {"type": "type is required"})

    job_id = manager.enqueue_job(
        user_id,
        payload.type,
        input=dict(payload.model_extra or {}),
        priority=payload.priority,
        max_retries=payload.max_retries,
    )
    return {
        "success": True,
        "data": {
            "jobId": job_id,
            "status": "queued",
            "message": "Job has been queued for processing",
        },
    }


def format_event(data: dict) -> str:
    """Encode one server-sent event."""
    return f"data: {json.dumps(data)}\n\n"


def job_event(manager: JobManager, user_id: str) -> dict:
    """Snapshot of the user's most recent running job."""
    active = manager.get_user_active_jobs(user_id)
    if not active:
        return {"type": "no_jobs", "data": {"message": "No active jobs"}}

    job = active[0]
    return {
        "type": "job_update",
        "data": {
            "id": job["id"],
            "type": job["type"],
            "status": job["status"],
            "progress": job["progress"],
            "currentStep": job["current_step"],
            "createdAt": job["created_at"],
            "startedAt": job["started_at"],
            "error": job["error"],
        },
    }


async def job_events(request: Request, manager: JobManager, user_id: str, interval: float):
    """Yield job snapshots until the client disconnects."""
    yield format_event({"type": "connected", "message": "Connected to job stream"})

    while not await request.is_disconnected():
        try:
            event = job_event(manager, user_id)
        except sqlite3.Error:
            logger.exception("Error checking jobs for user %s", user_id)
            event = {"type": "error", "data": {"message": "Error checking jobs"}}
        yield format_event(event)
        await asyncio.sleep(interval)

    logger.info("Job stream closed for user %s", user_id)


@router.get("/stream")
async def stream_jobs(
    request: Request,
    user_id: str = Depends(get_current_user),
    manager: JobManager = Depends(get_job_manager),
):
    """Server-sent events with the user's active job progress."""
    logger.info("Starting job stream for user %s", user_id)
    return StreamingResponse(
        job_events(request, manager, user_id, manager.config.stream_interval),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/{job_id}")
async def get_job(
    job_id: int,
    user_id: str = Depends(get_current_user),
    manager: JobManager = Depends(get_job_manager),
):
    """Get a single job."""
    job = manager.get_user_job(job_id, user_id)
    return {"success": True, "data": job_to_response(job)}


@router.delete("/{job_id}")
async def cancel_job(
    job_id: int,
    user_id: str = Depends(get_current_user),
    manager: JobManager = Depends(get_job_manager),
):
    """Cancel a queued or running job."""
    job = manager.cancel_job(job_id, user_id=user_id)
    return {
        "success": True,
        "data": {
            "id": job["id"],
            "status": job["status"],
            "message": "Job has been cancelled successfully",
        },
    }


@router.post("/{job_id}/retry")
async def retry_job(
    job_id: int,
    user_id: str = Depends(get_current_user),
    manager: JobManager = Depends(get_job_manager),
):
    """Requeue a failed job."""
    job = manager.retry_job(job_id, user_id=user_id)
    return {
        "success": True,
        "data": {
            "id": job["id"],
            "status": job["status"],
            "retryCount": job["retry_count"],
            "message": "Job has been queued for retry",
        },
    }
