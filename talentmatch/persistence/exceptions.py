"""Persistence layer exceptions.

All persistence exceptions inherit from PersistenceError so callers can catch
every database failure with a single except clause.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors."""

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - Session requested before init_database()
    """

    pass


class RecordNotFoundError(PersistenceError):
    """Raised when a required database record is not found.

    Optional lookups return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when a database constraint is violated.

    Examples:
    - Duplicate skill mapping for the same sport, position and skill
    - Second live score row for a pair
    - Check constraint violation (rating, transfer strength)
    """

    pass
