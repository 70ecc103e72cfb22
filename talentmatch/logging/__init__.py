"""Structured logging helpers for the match engine."""

import logging
from typing import Optional, Union


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges a default component into each call's extra."""

    def process(self, msg, kwargs):
        """Merge adapter extra with call extra; the call's fields win."""
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(
    name: str, component: Optional[str] = None
) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Get a logger, optionally tagging every record with a component.

    Args:
        name: Logger name (typically __name__)
        component: Optional component identifier (e.g. "queue", "store")

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="worker")
        >>> logger.info("Batch claimed", extra={"event": "worker.batch.claimed"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger
