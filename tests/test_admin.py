"""Tests for administrative statistics and skill-mapping management."""

import pytest

from talentmatch.admin import AdminService
from talentmatch.config.models import MatchingConfig
from talentmatch.domain.models import AthleticSkillMapping
from talentmatch.matching.service import PairScorer
from talentmatch.persistence import (
    MatchScoreRepository,
    RecomputationQueueRepository,
    close_database,
    get_session,
    init_database,
)

from tests.helpers import NOW, add_feedback, add_listing, add_student


@pytest.fixture
def database():
    init_database("sqlite:///:memory:")
    yield
    close_database()


class TestStatistics:
    def test_empty_store(self, database):
        with get_session() as session:
            stats = AdminService(session).get_statistics()

        assert stats.total_scores == 0
        assert stats.average_score is None
        assert stats.stale_ratio == 0.0
        assert stats.queue_pending == 0
        assert stats.feedback_count == 0
        assert stats.average_rating is None

    def test_reports_scores_queue_and_feedback(self, database):
        with get_session() as session:
            add_student(session, "stu-1", skills=["python"])
            add_listing(session, "lst-1", required_skills=["python"])
            add_listing(session, "lst-2", required_skills=["rust"])
            scorer = PairScorer(session, MatchingConfig())
            high = scorer.recompute("stu-1", "lst-1", now=NOW).score
            low = scorer.recompute("stu-1", "lst-2", now=NOW).score
            MatchScoreRepository(session).mark_stale_pair("stu-1", "lst-2", NOW)
            RecomputationQueueRepository(session).enqueue("stu-1", "lst-2", reason="manual", now=NOW)
            add_feedback(session, "stu-1", "lst-1", 5)
            add_feedback(session, "stu-1", "lst-2", 2)

            stats = AdminService(session).get_statistics()

        assert stats.total_scores == 2
        assert stats.stale_scores == 1
        assert stats.stale_ratio == 0.5
        assert stats.max_score == high.composite_score
        assert stats.min_score == low.composite_score
        assert stats.average_score == round((high.composite_score + low.composite_score) / 2, 2)
        assert stats.queue_pending == 1
        assert stats.queue_dead_letter == 0
        assert stats.feedback_count == 2
        assert stats.average_rating == 3.5

    def test_to_dict(self, database):
        with get_session() as session:
            data = AdminService(session).get_statistics().to_dict()

        assert data["stale_ratio"] == 0.0
        assert {"total_scores", "queue_pending", "average_rating"} <= set(data)


class TestSkillMappings:
    def test_upsert_invalidates_students_of_the_sport(self, database):
        with get_session() as session:
            add_student(session, "stu-qb", sport="Football", position="Quarterback")
            add_student(session, "stu-swim", sport="Swimming")
            add_listing(session, "lst-1", required_skills=["leadership"])
            scorer = PairScorer(session, MatchingConfig())
            scorer.recompute("stu-qb", "lst-1", now=NOW)
            scorer.recompute("stu-swim", "lst-1", now=NOW)

            stored = AdminService(session).upsert_skill_mapping(
                AthleticSkillMapping(
                    sport="Football",
                    position="Quarterback",
                    professional_skill="Leadership",
                    transfer_strength=0.8,
                ),
                NOW,
            )

            scores = MatchScoreRepository(session)
            queue = RecomputationQueueRepository(session)
            assert scores.get("stu-qb", "lst-1").is_stale
            assert not scores.get("stu-swim", "lst-1").is_stale
            assert queue.pending_for_pair("stu-qb", "lst-1").reason == "skill_mapping_changed"
            assert queue.pending_for_pair("stu-swim", "lst-1") is None

        assert stored.transfer_strength == 0.8

    def test_upsert_updates_existing_mapping(self, database):
        mapping = AthleticSkillMapping(
            sport="Football", professional_skill="Teamwork", transfer_strength=0.5
        )
        with get_session() as session:
            admin = AdminService(session)
            admin.upsert_skill_mapping(mapping, NOW)
            admin.upsert_skill_mapping(mapping.model_copy(update={"transfer_strength": 0.9}), NOW)

            mappings = admin.list_skill_mappings("football")

        assert len(mappings) == 1
        assert mappings[0].transfer_strength == 0.9

    def test_list_all_mappings(self, database):
        with get_session() as session:
            admin = AdminService(session)
            for sport in ["Swimming", "Basketball"]:
                admin.upsert_skill_mapping(
                    AthleticSkillMapping(sport=sport, professional_skill="Discipline", transfer_strength=0.6),
                    NOW,
                )

            assert [m.sport for m in admin.list_skill_mappings()] == ["Basketball", "Swimming"]
