"""Test helper utilities for Talent Match Engine tests."""

from .seed import (
    NOW,
    add_application,
    add_feedback,
    add_invite,
    add_listing,
    add_mapping,
    add_student,
)

__all__ = [
    "NOW",
    "add_student",
    "add_listing",
    "add_application",
    "add_feedback",
    "add_invite",
    "add_mapping",
]
