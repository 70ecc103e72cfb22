"""Score calculator: five weighted factors combined into a 0-100 match score.

Factors (weights):
1. Skill match (0.40): share of required skills the student covers, with
   partial credit for athletic skill transfers
2. Category affinity (0.20): skill-category overlap, learned preference
   and past success in the listing's category
3. Availability (0.15): step function on the weekly-hours gap
4. Recency (0.10): step function on listing age
5. Success history (0.15): required skills seen in accepted/completed work

Every factor is computed in [0, 1]. The composite is rounded once, after
weighting; each breakdown component is rounded on its own.
"""

import logging
import math
from datetime import datetime
from typing import Dict, Mapping, Optional

from talentmatch.domain.models import Listing, ScoreBreakdown, StudentProfile
from talentmatch.utils.timestamps import days_between

from .models import AffinitySignals, ScoreComputation, SkillMatch, category_key

logger = logging.getLogger(__name__)

# Bump when scoring semantics change; cached rows from other versions read as stale
ENGINE_VERSION = "1"

WEIGHTS: Dict[str, float] = {
    "skill_match": 0.40,
    "category_affinity": 0.20,
    "availability": 0.15,
    "recency_boost": 0.10,
    "success_history": 0.15,
}

NO_REQUIREMENTS_BASE = 0.3
CATEGORY_BASE_AFFINITY = 0.3
CATEGORY_SUCCESS_BONUS = 0.3

# (maximum gap in hours, factor)
AVAILABILITY_STEPS = ((5, 1.0), (10, 0.7), (20, 0.4))
AVAILABILITY_FLOOR = 0.2

# (maximum age in days, factor)
RECENCY_STEPS = ((7, 1.0), (14, 0.8), (30, 0.5))
RECENCY_FLOOR = 0.2


def to_percent(raw: float) -> int:
    """Round a [0, 1] value to an integer percentage, half up, clamped to [0, 100]."""
    scaled = round(raw * 100, 9)
    return min(max(int(math.floor(scaled + 0.5)), 0), 100)


def _step(value: float, steps, floor: float) -> float:
    for limit, factor in steps:
        if value <= limit:
            return factor
    return floor


class ScoreCalculator:
    """Pure, deterministic scorer for (student, listing) pairs.

    The calculator never reads the clock or the database: history, transfers
    and "now" are passed in, so identical inputs give identical output.
    """

    def __init__(self, engine_version: str = ENGINE_VERSION):
        self.engine_version = engine_version

    def skill_match(
        self,
        student: StudentProfile,
        listing: Listing,
        transfers: Optional[Mapping[str, float]] = None,
    ) -> SkillMatch:
        """Skill-match factor, also used alone for student rankings per listing.

        A literal match earns full credit for a required skill. Otherwise
        the best transfer strength for that skill is credited, capped at 1.0.
        Listings without requirements score a flat base when the student has
        any skill at all.
        """
        required = listing.required_skills
        if not required:
            return SkillMatch(raw=NO_REQUIREMENTS_BASE if student.skills else 0.0)

        transfers = transfers or {}
        result = SkillMatch(raw=0.0)
        credit = 0.0
        for skill in required:
            if skill in student.skills:
                credit += 1.0
                result.matched_skills.append(skill)
            elif transfers.get(skill, 0.0) > 0.0:
                credit += min(transfers[skill], 1.0)
                result.transfer_skills.append(skill)
            else:
                result.missing_skills.append(skill)

        result.raw = min(credit / len(required), 1.0)
        return result

    def category_affinity(
        self, student: StudentProfile, listing: Listing, signals: AffinitySignals
    ) -> float:
        key = category_key(listing.category)
        student_categories = {category_key(c) for c in student.skill_categories}

        base = CATEGORY_BASE_AFFINITY if key in student_categories else 0.0
        learned = signals.learned_affinity(listing.category)
        bonus = CATEGORY_SUCCESS_BONUS if signals.has_success(listing.category) else 0.0
        return min(base + learned + bonus, 1.0)

    def availability(self, student: StudentProfile, listing: Listing) -> float:
        gap = abs(student.hours_per_week - listing.hours_per_week)
        return _step(gap, AVAILABILITY_STEPS, AVAILABILITY_FLOOR)

    def recency(self, listing: Listing, now: datetime) -> float:
        age_days = days_between(listing.published_at, now)
        return _step(age_days, RECENCY_STEPS, RECENCY_FLOOR)

    def success_history(self, listing: Listing, signals: AffinitySignals) -> float:
        required = listing.required_skills
        if not required or not signals.accepted_skills:
            return 0.0
        overlap = sum(1 for skill in required if skill in signals.accepted_skills)
        return overlap / len(required)

    def compute(
        self,
        student: StudentProfile,
        listing: Listing,
        signals: AffinitySignals,
        transfers: Optional[Mapping[str, float]],
        now: datetime,
    ) -> ScoreComputation:
        """Score one pair.

        Args:
            student: Student snapshot
            listing: Listing snapshot
            signals: Learned affinity signals for the student
            transfers: Professional skill -> transfer strength for the student
            now: Reference time for the recency factor

        Returns:
            ScoreComputation with rounded breakdown and composite
        """
        skills = self.skill_match(student, listing, transfers)
        factors = {
            "skill_match": skills.raw,
            "category_affinity": self.category_affinity(student, listing, signals),
            "availability": self.availability(student, listing),
            "recency_boost": self.recency(listing, now),
            "success_history": self.success_history(listing, signals),
        }

        weighted = sum(WEIGHTS[name] * value for name, value in factors.items())
        breakdown = ScoreBreakdown(**{name: to_percent(value) for name, value in factors.items()})

        return ScoreComputation(
            student_id=student.student_id,
            listing_id=listing.listing_id,
            composite_score=to_percent(weighted),
            breakdown=breakdown,
            factors=factors,
            matched_skills=skills.matched_skills,
            missing_skills=skills.missing_skills,
            transfer_skills=skills.transfer_skills,
            engine_version=self.engine_version,
        )
