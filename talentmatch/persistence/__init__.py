"""Persistence layer: engine/session management, ORM schema and repositories.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Snapshot repositories (read-only)
    - StudentRepository, ListingRepository, ApplicationRepository,
      InviteRepository, FeedbackRepository

    # Engine-owned state
    - SkillMappingRepository: athletic skill mappings (admin writes)
    - MatchScoreRepository: score store with versioned writes
    - RecomputationQueueRepository: durable recompute queue

    # Exceptions
    - PersistenceError, DatabaseConnectionError, RecordNotFoundError,
      DataIntegrityError

Example usage:
    >>> from talentmatch.persistence import init_database, get_session, MatchScoreRepository
    >>> init_database("sqlite:///./data/talentmatch.db")
    >>> with get_session() as session:
    ...     score = MatchScoreRepository(session).get("stu-1", "lst-1")
"""

from .database import SessionScope, close_database, get_engine, get_session, init_database
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)
from .repositories import (
    ApplicationRepository,
    FeedbackRepository,
    InviteRepository,
    ListingRepository,
    MatchScoreRepository,
    RecomputationQueueRepository,
    SkillMappingRepository,
    StaleKey,
    StudentRepository,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    "SessionScope",
    # Repositories
    "StudentRepository",
    "ListingRepository",
    "ApplicationRepository",
    "InviteRepository",
    "FeedbackRepository",
    "SkillMappingRepository",
    "MatchScoreRepository",
    "RecomputationQueueRepository",
    "StaleKey",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
