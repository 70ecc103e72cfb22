"""Environment variable loading and validation."""

import os
import re
import socket
from typing import Optional

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/talentmatch.db"

_VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
_WORKER_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:@-]{1,100}$")


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        database_url: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
        worker_id: Optional[str] = None,
    ):
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.log_level = log_level
        self.environment = environment or "local"
        self.worker_id = worker_id or default_worker_id()


def default_worker_id() -> str:
    """Worker identity used when WORKER_ID is not set: ``<hostname>-<pid>``."""
    return f"{socket.gethostname()}-{os.getpid()}"


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional:
    - DATABASE_URL: SQLAlchemy URL (default: sqlite:///./data/talentmatch.db)
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ENVIRONMENT: Label attached to every log record (default: local)
    - WORKER_ID: Identity recorded on claimed queue entries

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If a variable is set to an invalid value
    """
    errors = []

    database_url = os.getenv("DATABASE_URL")
    log_level = os.getenv("LOG_LEVEL")
    environment = os.getenv("ENVIRONMENT")
    worker_id = os.getenv("WORKER_ID")

    if database_url is not None and "://" not in database_url:
        errors.append(
            f"Invalid DATABASE_URL: '{database_url}'. Expected a SQLAlchemy URL such as sqlite:///./data/talentmatch.db"
        )

    if log_level:
        if log_level.upper() not in _VALID_LOG_LEVELS:
            errors.append(
                f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(_VALID_LOG_LEVELS)}"
            )
        else:
            log_level = log_level.upper()

    if worker_id is not None and not _WORKER_ID_PATTERN.match(worker_id):
        errors.append(
            f"Invalid WORKER_ID: '{worker_id}'. Use up to 100 letters, digits or . _ : @ -"
        )

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and adjust the values",
                "Unset variables you do not need; all of them are optional",
            ],
        )

    return EnvironmentConfig(
        database_url=database_url,
        log_level=log_level,
        environment=environment,
        worker_id=worker_id,
    )
