"""
StreetWise Web API

FastAPI backend for background jobs and job notifications.
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from streetwise.config import setup_logging
from streetwise.jobs import (
    ForbiddenError,
    InvalidStateError,
    JobError,
    NotFoundError,
    ValidationError,
)
from streetwise.migrations import MigrationError, Migrator
from web.api.deps import close_db, get_config, init_db

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: 404,
    ForbiddenError: 403,
    InvalidStateError: 400,
    ValidationError: 400,
}


def run_migrations():
    """Run pending database migrations on startup."""
    migrator = Migrator(get_config()["database"]["path"])
    try:
        pending = migrator.pending()
        if pending:
            logger.info("Running %d pending migration(s)", len(pending))
            migrator.migrate()
    except MigrationError as e:
        logger.warning("Migration check failed: %s", e)
    finally:
        migrator.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    setup_logging(get_config()["logging"]["level"])
    # Run migrations before initializing DB
    run_migrations()
    init_db()
    yield
    close_db()


app = FastAPI(
    title="StreetWise Jobs API",
    description="API for StreetWise background jobs and notifications",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend (development)
cors_origins = os.environ.get(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:3000"
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def error_response(status_code: int, message: str, details: list = None,
                   headers: dict = None) -> JSONResponse:
    """Build the failure envelope."""
    content = {"success": False, "error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = []
    for error in exc.errors():
        # Drop the "body"/"query"/"path" prefix from the location
        loc = [str(part) for part in error["loc"][1:]] or [str(part) for part in error["loc"]]
        details.append({"field": ".".join(loc), "message": error["msg"]})
    return error_response(400, "Invalid request", details)


@app.exception_handler(JobError)
async def job_error_handler(request: Request, exc: JobError):
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400
    )
    details = None
    if isinstance(exc, ValidationError) and exc.fields:
        details = [{"field": field, "message": msg} for field, msg in exc.fields.items()]
    return error_response(status_code, str(exc), details)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error")


# Import and include routers after app is created
from web.api.routers import jobs, notifications  # noqa: E402

# Notifications first so /api/jobs/notifications is not taken for a job ID
app.include_router(notifications.router, prefix="/api/jobs/notifications", tags=["notifications"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["jobs"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"success": True, "data": {"status": "ok", "service": "streetwise-jobs"}}
