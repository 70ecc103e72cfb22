"""Athletic skill transfer: sport/position experience as professional skills."""

import logging
from typing import Dict, List, Optional, Protocol

from talentmatch.config.models import MatchingConfig
from talentmatch.domain.models import AthleticSkillMapping, StudentProfile
from talentmatch.utils.skills import normalize_skill

logger = logging.getLogger(__name__)


class MappingSource(Protocol):
    def for_sport(self, sport: str) -> List[AthleticSkillMapping]:
        ...


class SkillTransferMapper:
    """Resolves a student's sport and position into transferable skills.

    Lookup prefers rows for the student's exact position and falls back to
    the sport's all-position rows when none exist.
    """

    def __init__(self, mapping_source: MappingSource):
        """Initialize the mapper.

        Args:
            mapping_source: Provides mappings per sport (usually a
                SkillMappingRepository)
        """
        self.mapping_source = mapping_source

    def mappings_for(
        self, sport: Optional[str], position: Optional[str] = None
    ) -> List[AthleticSkillMapping]:
        """Mappings that apply to a sport and position.

        Args:
            sport: Sport name (None or blank yields no mappings)
            position: Position within the sport (optional)

        Returns:
            Position-specific rows if any exist, otherwise the sport's
            all-position rows
        """
        if not normalize_skill(sport):
            return []

        rows = self.mapping_source.for_sport(sport)
        position_key = normalize_skill(position)
        if position_key:
            specific = [r for r in rows if normalize_skill(r.position) == position_key]
            if specific:
                return specific
        return [r for r in rows if r.position is None]

    def transfers_for(self, student: StudentProfile) -> Dict[str, float]:
        """Professional skill -> best transfer strength for the student."""
        transfers: Dict[str, float] = {}
        for mapping in self.mappings_for(student.sport, student.position):
            strength = min(max(mapping.transfer_strength, 0.0), 1.0)
            key = mapping.skill_key
            if strength > transfers.get(key, 0.0):
                transfers[key] = strength

        if transfers:
            logger.debug(
                f"Resolved {len(transfers)} transferable skills for {student.student_id}",
                extra={"event": "transfer.resolved", "student_id": student.student_id},
            )
        return transfers


class NullSkillTransferMapper:
    """Mapper for marketplaces without athletic translation: never maps anything."""

    def mappings_for(
        self, sport: Optional[str], position: Optional[str] = None
    ) -> List[AthleticSkillMapping]:
        return []

    def transfers_for(self, student: StudentProfile) -> Dict[str, float]:
        return {}


def build_skill_mapper(matching_config: MatchingConfig, mapping_source: MappingSource):
    """Choose the mapper for the configured marketplace type."""
    if matching_config.athletic_transfer_enabled:
        return SkillTransferMapper(mapping_source)
    return NullSkillTransferMapper()
