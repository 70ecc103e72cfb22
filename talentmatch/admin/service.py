"""Administrative operations: statistics and athletic skill mappings."""

from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from talentmatch.config.models import QueueConfig
from talentmatch.domain.models import AthleticSkillMapping, QueueStatus
from talentmatch.invalidation.service import InvalidationService
from talentmatch.logging import get_logger
from talentmatch.matching.calculator import ENGINE_VERSION
from talentmatch.persistence.repositories import (
    FeedbackRepository,
    MatchScoreRepository,
    RecomputationQueueRepository,
    SkillMappingRepository,
)
from talentmatch.utils.timestamps import utc_now

from .models import EngineStatistics

logger = get_logger(__name__, component="admin")


def _round(value: Optional[float], digits: int = 2) -> Optional[float]:
    return round(value, digits) if value is not None else None


class AdminService:
    """Read-mostly operations for administrators. The caller owns the session."""

    def __init__(self, session: Session, queue_config: Optional[QueueConfig] = None):
        self.session = session
        self.queue_config = queue_config or QueueConfig()
        self.mappings = SkillMappingRepository(session)

    def get_statistics(self) -> EngineStatistics:
        scores = MatchScoreRepository(self.session, engine_version=ENGINE_VERSION).stats()
        queue = RecomputationQueueRepository(self.session).stats()
        feedback_count, average_rating = FeedbackRepository(self.session).stats()

        return EngineStatistics(
            total_scores=scores["total"],
            stale_scores=scores["stale"],
            average_score=_round(scores["average"]),
            min_score=scores["minimum"],
            max_score=scores["maximum"],
            average_computation_ms=_round(scores["average_computation_ms"]),
            queue_pending=queue[QueueStatus.PENDING.value],
            queue_processing=queue[QueueStatus.PROCESSING.value],
            queue_processed=queue[QueueStatus.PROCESSED.value],
            queue_dead_letter=queue[QueueStatus.DEAD_LETTER.value],
            feedback_count=feedback_count,
            average_rating=_round(average_rating),
        )

    def upsert_skill_mapping(
        self, mapping: AthleticSkillMapping, now: Optional[datetime] = None
    ) -> AthleticSkillMapping:
        """
        Create or update a mapping and invalidate the sport's students.

        Scores of every student playing the mapping's sport go stale, since
        their transfer credit may change.
        """
        now = now or utc_now()
        stored = self.mappings.upsert(mapping, now)
        result = InvalidationService(self.session, self.queue_config).on_skill_mapping_changed(
            stored.sport, now
        )
        logger.info(
            f"Skill mapping saved: {stored.sport}/{stored.position or '*'} -> "
            f"{stored.professional_skill} ({stored.transfer_strength})",
            extra={
                "event": "admin.skill_mapping.upserted",
                "sport": stored.sport,
                "marked_stale": result.marked_stale,
            },
        )
        return stored

    def list_skill_mappings(self, sport: Optional[str] = None) -> List[AthleticSkillMapping]:
        return self.mappings.list_all(sport)
