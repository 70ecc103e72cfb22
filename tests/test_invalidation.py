"""Tests for the invalidation hooks."""

from datetime import timedelta

import pytest

from talentmatch.config.models import MatchingConfig, QueueConfig
from talentmatch.domain.models import RecomputeReason
from talentmatch.invalidation import InvalidationService
from talentmatch.matching.service import PairScorer
from talentmatch.persistence import (
    MatchScoreRepository,
    RecomputationQueueRepository,
    close_database,
    get_session,
    init_database,
)

from tests.helpers import NOW, add_application, add_listing, add_student

LATER = NOW + timedelta(minutes=5)


@pytest.fixture
def database():
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def scored(database):
    """Scores for stu-1 x {lst-1, lst-2} and stu-2 x lst-1."""
    with get_session() as session:
        add_student(session, "stu-1", skills=["python"], sport="Football")
        add_student(session, "stu-2", skills=["sql"], sport="football ")
        add_student(session, "stu-3", sport="Swimming")
        add_listing(session, "lst-1", required_skills=["python"])
        add_listing(session, "lst-2", required_skills=["sql"])
        scorer = PairScorer(session, MatchingConfig())
        for student_id, listing_id in [("stu-1", "lst-1"), ("stu-1", "lst-2"), ("stu-2", "lst-1")]:
            scorer.recompute(student_id, listing_id, now=NOW)


def pending(session, student_id, listing_id):
    return RecomputationQueueRepository(session).pending_for_pair(student_id, listing_id)


class TestProfileChanged:
    def test_marks_student_scores_and_enqueues(self, scored):
        with get_session() as session:
            result = InvalidationService(session).on_profile_changed("stu-1", LATER)

            scores = MatchScoreRepository(session)
            assert scores.get("stu-1", "lst-1").is_stale
            assert scores.get("stu-1", "lst-2").is_stale
            assert not scores.get("stu-2", "lst-1").is_stale

            entry = pending(session, "stu-1", "lst-1")
            assert entry.reason == RecomputeReason.PROFILE_CHANGED.value
            assert entry.priority == 5
            assert entry.version == 1
            assert entry.stale_since == LATER
            assert pending(session, "stu-2", "lst-1") is None

        assert result.reason == RecomputeReason.PROFILE_CHANGED
        assert (result.marked_stale, result.enqueued, result.merged) == (2, 2, 0)

    def test_repeated_change_merges_and_raises_version(self, scored):
        with get_session() as session:
            service = InvalidationService(session)
            service.on_profile_changed("stu-1", NOW)
            result = service.on_profile_changed("stu-1", LATER)

            entry = pending(session, "stu-1", "lst-1")
            score = MatchScoreRepository(session).get("stu-1", "lst-1")

        assert (result.enqueued, result.merged) == (0, 2)
        assert result.affected_pairs == 2
        assert entry.version == 2
        assert entry.stale_since == NOW
        assert score.data_version == 2
        assert score.stale_since == NOW

    def test_student_without_scores(self, scored):
        with get_session() as session:
            result = InvalidationService(session).on_profile_changed("stu-3", NOW)

        assert result.affected_pairs == 0
        assert result.marked_stale == 0

    def test_scores_are_never_deleted(self, scored):
        with get_session() as session:
            InvalidationService(session).on_profile_changed("stu-1", NOW)
            score = MatchScoreRepository(session).get("stu-1", "lst-1")

        assert score is not None
        assert score.breakdown.skill_match == 100


class TestListingChanged:
    def test_fans_out_to_scored_students_and_applicants(self, scored):
        with get_session() as session:
            add_application(session, "stu-3", "lst-1")
            result = InvalidationService(session).on_listing_changed("lst-1", LATER)

            scored_entry = pending(session, "stu-2", "lst-1")
            applicant_entry = pending(session, "stu-3", "lst-1")
            untouched = MatchScoreRepository(session).get("stu-1", "lst-2")

        assert result.marked_stale == 2
        assert result.enqueued == 3
        assert scored_entry.version == 1
        assert scored_entry.priority == 3
        assert scored_entry.reason == RecomputeReason.LISTING_CHANGED.value
        assert applicant_entry.version == 0
        assert applicant_entry.stale_since == LATER
        assert untouched.is_stale is False

    def test_applicant_with_score_is_enqueued_once(self, scored):
        with get_session() as session:
            add_application(session, "stu-1", "lst-1")
            result = InvalidationService(session).on_listing_changed("lst-1", LATER)

        assert result.enqueued == 2


class TestOutcomeAndFeedback:
    def test_outcome_change_invalidates_all_student_scores(self, scored):
        with get_session() as session:
            result = InvalidationService(session).on_application_outcome_changed(
                "stu-1", "lst-9", LATER
            )
            entry = pending(session, "stu-1", "lst-2")

        assert result.reason == RecomputeReason.OUTCOME_CHANGED
        assert result.marked_stale == 2
        assert entry.reason == RecomputeReason.OUTCOME_CHANGED.value
        assert entry.priority == 5

    def test_feedback_invalidates_all_student_scores(self, scored):
        with get_session() as session:
            result = InvalidationService(session).on_feedback_recorded("stu-1", "lst-1", LATER)
            entry = pending(session, "stu-1", "lst-2")

        assert result.reason == RecomputeReason.FEEDBACK_RECORDED
        assert result.enqueued == 2
        assert entry.reason == RecomputeReason.FEEDBACK_RECORDED.value


class TestSkillMappingChanged:
    def test_invalidates_students_of_the_sport(self, scored):
        with get_session() as session:
            result = InvalidationService(session).on_skill_mapping_changed("FOOTBALL", LATER)
            entry = pending(session, "stu-2", "lst-1")

        assert result.reason == RecomputeReason.SKILL_MAPPING_CHANGED
        assert result.marked_stale == 3
        assert entry.priority == 2

    def test_sport_without_scores(self, scored):
        with get_session() as session:
            result = InvalidationService(session).on_skill_mapping_changed("Swimming", LATER)

        assert result.affected_pairs == 0


class TestBacklog:
    def test_overflow_still_enqueues(self, scored):
        with get_session() as session:
            service = InvalidationService(session, QueueConfig(backlog_threshold=1))
            result = service.on_profile_changed("stu-1", LATER)

            assert RecomputationQueueRepository(session).backlog() == 2

        assert result.enqueued == 2
