"""
StreetWise Configuration Module

Load and manage configuration from config.yaml.
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from rich.logging import RichHandler


DEFAULT_CONFIG = {
    "database": {
        "path": "db/streetwise.db"
    },
    "logging": {
        "level": "INFO"
    },
    "jobs": {
        "default_retries": 3,
        "max_concurrent_jobs": 3,
        "stale_after_minutes": 30,
        "max_job_age_days": 7,
        "poll_interval": 2.0,
        "stream_interval": 2.0,
    },
}


def find_config_file() -> Path | None:
    """Find the config file, checking common locations."""
    locations = [
        Path("config.yaml"),
        Path("config.yml"),
        Path.home() / ".config" / "streetwise" / "config.yaml",
    ]

    for path in locations:
        if path.exists():
            return path

    return None


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Optional explicit path to config file.

    Returns:
        Configuration dictionary with defaults applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path:
        path = Path(config_path)
    else:
        path = find_config_file()

    if path and path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
            config = _deep_merge(config, file_config)

    # Override with environment variables
    if os.environ.get("STREETWISE_DB_PATH"):
        config["database"]["path"] = os.environ["STREETWISE_DB_PATH"]

    if os.environ.get("STREETWISE_LOG_LEVEL"):
        config["logging"]["level"] = os.environ["STREETWISE_LOG_LEVEL"]

    return config


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def setup_logging(level: str = "INFO", rich: bool = False) -> None:
    """Configure the root logger.

    The CLI logs through rich; the API uses a plain stream handler so log
    collectors get one line per record.
    """
    if rich:
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        fmt = "%(message)s"
    else:
        handler = logging.StreamHandler()
        fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=fmt,
        handlers=[handler],
        force=True,
    )
