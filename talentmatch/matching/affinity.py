"""Affinity learning from application outcomes and explicit feedback.

Signals are recomputed from history on every scoring run; nothing is stored.
"""

from typing import Iterable

from talentmatch.domain.models import ApplicationOutcome, MatchFeedback

from .models import AffinitySignals, category_key


def feedback_sign(rating: int) -> int:
    """Map a 1-5 rating to +1 (4-5), 0 (3) or -1 (1-2)."""
    if rating >= 4:
        return 1
    if rating <= 2:
        return -1
    return 0


class AffinityLearner:
    """Aggregates a student's history into AffinitySignals.

    Applications in every status count toward category shares; accepted and
    completed ones also count as successes and contribute their required
    skills to the success-history factor. Feedback is grouped by the rated
    listing's category.
    """

    def learn(
        self,
        outcomes: Iterable[ApplicationOutcome],
        feedback: Iterable[MatchFeedback] = (),
    ) -> AffinitySignals:
        signals = AffinitySignals()

        for outcome in outcomes:
            key = category_key(outcome.category)
            signals.total_applications += 1
            signals.category_applications[key] = signals.category_applications.get(key, 0) + 1
            if outcome.is_success:
                signals.category_successes[key] = signals.category_successes.get(key, 0) + 1
                signals.accepted_skills.update(outcome.required_skills)

        for record in feedback:
            key = category_key(record.category)
            signals.total_feedback += 1
            signals.category_feedback[key] = (
                signals.category_feedback.get(key, 0) + feedback_sign(record.rating)
            )

        return signals
