"""Utility functions for time handling and skill-name normalization."""

from .skills import normalize_skill, normalize_skill_list, normalize_skill_set
from .timestamps import (
    days_between,
    ensure_utc,
    format_timestamp,
    parse_iso_datetime,
    utc_now,
)

__all__ = [
    # Skills
    "normalize_skill",
    "normalize_skill_list",
    "normalize_skill_set",
    # Timestamps
    "utc_now",
    "ensure_utc",
    "parse_iso_datetime",
    "format_timestamp",
    "days_between",
]
