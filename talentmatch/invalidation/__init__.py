"""Invalidation hooks called after upstream snapshot changes."""

from .models import InvalidationResult
from .service import InvalidationService

__all__ = ["InvalidationService", "InvalidationResult"]
