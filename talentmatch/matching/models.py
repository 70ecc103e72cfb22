"""Data models for the scoring pipeline.

These are in-process results: the calculator's per-pair computation, the
skill-match detail used by both ranking directions, and the affinity
signals learned from a student's history.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set

from talentmatch.domain.models import MatchScore, ScoreBreakdown
from talentmatch.utils.skills import normalize_skill

# Share of category affinity that learned preferences can contribute
LEARNED_AFFINITY_CAP = 0.4


def category_key(category: Optional[str]) -> str:
    """Comparison key for a category name."""
    return normalize_skill(category)


@dataclass
class SkillMatch:
    """Skill-match factor with the skills behind it.

    Attributes:
        raw: Factor value in [0, 1]
        matched_skills: Required skills the student lists literally
        missing_skills: Required skills with neither a literal nor a transfer match
        transfer_skills: Required skills credited through an athletic transfer
    """

    raw: float
    matched_skills: List[str] = field(default_factory=list)
    missing_skills: List[str] = field(default_factory=list)
    transfer_skills: List[str] = field(default_factory=list)


@dataclass
class AffinitySignals:
    """Per-student aggregates learned from applications and feedback.

    Category dictionaries are keyed by ``category_key``.

    Attributes:
        category_applications: Applications per category
        category_successes: Accepted/completed applications per category
        category_feedback: Sum of feedback signs (+1/0/-1) per category
        total_applications: All applications, any status
        total_feedback: All feedback records
        accepted_skills: Required skills of accepted/completed applications
    """

    category_applications: Dict[str, int] = field(default_factory=dict)
    category_successes: Dict[str, int] = field(default_factory=dict)
    category_feedback: Dict[str, int] = field(default_factory=dict)
    total_applications: int = 0
    total_feedback: int = 0
    accepted_skills: Set[str] = field(default_factory=set)

    def application_share(self, category: str) -> float:
        """Fraction of the student's applications that fall in ``category``."""
        return self.category_applications.get(category_key(category), 0) / max(
            self.total_applications, 1
        )

    def feedback_affinity(self, category: str) -> float:
        """Net feedback for ``category`` smoothed by the total observation count."""
        return self.category_feedback.get(category_key(category), 0) / max(
            self.total_applications + self.total_feedback, 1
        )

    def learned_affinity(self, category: str) -> float:
        """Learned share of category affinity, in [0, LEARNED_AFFINITY_CAP]."""
        combined = self.application_share(category) + self.feedback_affinity(category)
        return min(max(combined, 0.0), 1.0) * LEARNED_AFFINITY_CAP

    def has_success(self, category: str) -> bool:
        return self.category_successes.get(category_key(category), 0) > 0


@dataclass
class ScoreComputation:
    """Output of one calculator run for a (student, listing) pair.

    ``factors`` keeps the unrounded factor values; ``breakdown`` and
    ``composite_score`` are their rounded 0-100 forms.
    """

    student_id: str
    listing_id: str
    composite_score: int
    breakdown: ScoreBreakdown
    factors: Dict[str, float]
    matched_skills: List[str] = field(default_factory=list)
    missing_skills: List[str] = field(default_factory=list)
    transfer_skills: List[str] = field(default_factory=list)
    engine_version: str = "1"

    def to_match_score(
        self,
        computed_at: datetime,
        computation_time_ms: int = 0,
        tenant_id: Optional[str] = None,
    ) -> MatchScore:
        """Package the computation as a cacheable MatchScore."""
        return MatchScore(
            student_id=self.student_id,
            listing_id=self.listing_id,
            tenant_id=tenant_id,
            composite_score=self.composite_score,
            breakdown=self.breakdown,
            matched_skills=list(self.matched_skills),
            missing_skills=list(self.missing_skills),
            transfer_skills=list(self.transfer_skills),
            is_stale=False,
            computed_at=computed_at,
            computation_time_ms=max(int(computation_time_ms), 0),
            engine_version=self.engine_version,
        )
