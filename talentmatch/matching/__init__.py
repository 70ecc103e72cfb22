"""Match scoring: calculator, affinity learning and athletic skill transfer.

PairScorer lives in ``talentmatch.matching.service`` and is imported from
there, since it depends on the persistence layer.
"""

from .affinity import AffinityLearner, feedback_sign
from .calculator import ENGINE_VERSION, WEIGHTS, ScoreCalculator, to_percent
from .exceptions import (
    ComputationTimeout,
    InvalidReference,
    MatchEngineError,
    PersistentComputeFailure,
    QueueClaimConflict,
    QueueOverflow,
)
from .models import AffinitySignals, ScoreComputation, SkillMatch, category_key
from .transfer import NullSkillTransferMapper, SkillTransferMapper, build_skill_mapper

__all__ = [
    "ScoreCalculator",
    "AffinityLearner",
    "SkillTransferMapper",
    "NullSkillTransferMapper",
    "build_skill_mapper",
    "AffinitySignals",
    "ScoreComputation",
    "SkillMatch",
    "ENGINE_VERSION",
    "WEIGHTS",
    "to_percent",
    "feedback_sign",
    "category_key",
    "MatchEngineError",
    "InvalidReference",
    "ComputationTimeout",
    "QueueClaimConflict",
    "QueueOverflow",
    "PersistentComputeFailure",
]
