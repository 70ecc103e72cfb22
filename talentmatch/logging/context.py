"""Context propagation for structured logging.

Fields pushed here (worker run id, student id, listing id, queue entry id) are
injected into every log record emitted inside the scope. Backed by
contextvars, so worker threads and the synchronous-recompute executor each
keep their own context.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional


LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge fields into the logging context.

    Args:
        **kwargs: Key-value pairs to add

    Returns:
        Token for pop_log_context()

    Example:
        >>> token = push_log_context(worker_run_id="abc123", entry_id=42)
        >>> pop_log_context(token)
    """
    return LogContextVar.set({**LogContextVar.get(), **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the logging context to the state before the matching push."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Clear all logging context fields (mainly for tests)."""
    LogContextVar.set({})


class log_context:
    """Context manager for scoped logging context.

    Example:
        >>> with log_context(student_id="s-1", listing_id="l-9"):
        ...     logger.info("Score recomputed")  # includes both ids
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False
