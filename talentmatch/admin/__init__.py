"""Administrative statistics and skill-mapping management."""

from .models import EngineStatistics
from .service import AdminService

__all__ = ["AdminService", "EngineStatistics"]
