"""
API Dependencies

Shared dependencies for API routers.
"""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from streetwise.config import load_config
from streetwise.database import Database
from streetwise.jobs import JobConfig, JobManager, NotificationStore
from web.api.auth import decode_access_token

# Global database instance and config
_db: Database = None
_config: dict = None

# Security scheme
security = HTTPBearer(auto_error=False)


def get_config() -> dict:
    """Get the application config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_db() -> Database:
    """Get database instance."""
    global _db
    if _db is None:
        init_db()
    return _db


def init_db():
    """Initialize database on startup."""
    global _db
    _db = Database(get_config()["database"]["path"], check_same_thread=False)
    _db.init_schema()


def close_db():
    """Close database on shutdown."""
    global _db
    if _db:
        _db.close()
        _db = None


def get_job_config() -> JobConfig:
    return JobConfig.from_config(get_config())


def get_job_manager(
    db: Database = Depends(get_db),
    config: JobConfig = Depends(get_job_config),
) -> JobManager:
    """Job manager bound to the request's database."""
    return JobManager(db, config)


def get_notification_store(db: Database = Depends(get_db)) -> NotificationStore:
    return NotificationStore(db)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Resolve the authenticated user ID from the bearer token.
    Raises 401 if not authenticated.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_data = decode_access_token(credentials.credentials)
    if token_data is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return token_data.user_id
