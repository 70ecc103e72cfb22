"""Additional validation utilities for configuration."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for potential issues and return warnings.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    matching = config_dict.get("matching", {})
    if isinstance(matching, dict):
        marketplace_type = matching.get("marketplace_type")
        if isinstance(marketplace_type, str) and marketplace_type != marketplace_type.strip().lower():
            warning_messages.append(
                f"marketplace_type '{marketplace_type}' should be lower-case (institution or athletic)"
            )

    recommendations = config_dict.get("recommendations", {})
    if isinstance(recommendations, dict):
        pool = recommendations.get("candidate_pool_size")
        limit = recommendations.get("default_listing_limit")
        if isinstance(pool, int) and isinstance(limit, int) and pool < limit:
            warning_messages.append(
                f"candidate_pool_size ({pool}) is smaller than default_listing_limit ({limit}); "
                "recommendations will be truncated"
            )

        min_score = recommendations.get("min_score")
        if isinstance(min_score, int) and min_score >= 80:
            warning_messages.append(
                f"High min_score ({min_score}) will hide most recommendations"
            )

    queue = config_dict.get("queue", {})
    if isinstance(queue, dict):
        batch_size = queue.get("batch_size")
        if isinstance(batch_size, int) and batch_size > 500:
            warning_messages.append(
                f"Large queue batch_size ({batch_size}) keeps entries claimed for a long time"
            )

        # Entries should become eligible again well before the next sweep
        max_delay = queue.get("retry_max_delay")
        sweep_interval = queue.get("sweep_interval")
        if isinstance(max_delay, int) and isinstance(sweep_interval, str):
            try:
                if max_delay > parse_duration(sweep_interval):
                    warning_messages.append(
                        f"retry_max_delay ({max_delay}s) exceeds sweep_interval ({sweep_interval})"
                    )
            except DurationParseError:
                pass

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """
    Emit warning messages using Python's warnings module.

    Args:
        warning_messages: List of warning messages to emit
    """
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
