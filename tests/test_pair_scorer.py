"""Tests for PairScorer, the database-backed scorer."""

import pytest

from talentmatch.config.models import MatchingConfig
from talentmatch.matching import InvalidReference
from talentmatch.matching.service import PairScorer
from talentmatch.persistence import (
    MatchScoreRepository,
    close_database,
    get_session,
    init_database,
)

from tests.helpers import NOW, add_listing, add_student


@pytest.fixture
def database():
    init_database("sqlite:///:memory:")
    yield
    close_database()


@pytest.fixture
def pair(database):
    with get_session() as session:
        add_student(session, "stu-1", skills=["python", "sql"], hours=15)
        add_listing(session, "lst-1", required_skills=["python", "aws"], hours=15)


class TestRecompute:
    """The returned score matches what the store holds."""

    def test_first_write(self, pair):
        with get_session() as session:
            outcome = PairScorer(session, MatchingConfig()).recompute("stu-1", "lst-1", now=NOW)

        assert outcome.written is True
        assert outcome.version == 0
        assert outcome.score.breakdown.skill_match == 50
        assert outcome.score.is_stale is False
        assert (outcome.score.data_version, outcome.score.computed_version) == (0, 0)

    def test_write_for_superseded_version_reports_stale(self, pair):
        with get_session() as session:
            scorer = PairScorer(session, MatchingConfig())
            scorer.recompute("stu-1", "lst-1", now=NOW)
            scores = MatchScoreRepository(session)
            scores.mark_stale_pair("stu-1", "lst-1", NOW)
            scores.mark_stale_pair("stu-1", "lst-1", NOW)

            outcome = scorer.recompute("stu-1", "lst-1", version=1, now=NOW)
            stored = scores.get("stu-1", "lst-1")

        assert outcome.written is True
        assert outcome.score.is_stale is True
        assert outcome.score.stale_since == NOW
        assert (outcome.score.data_version, outcome.score.computed_version) == (2, 1)
        assert outcome.score == stored

    def test_write_for_current_version_reports_fresh(self, pair):
        with get_session() as session:
            scorer = PairScorer(session, MatchingConfig())
            scorer.recompute("stu-1", "lst-1", now=NOW)
            MatchScoreRepository(session).mark_stale_pair("stu-1", "lst-1", NOW)

            outcome = scorer.recompute("stu-1", "lst-1", now=NOW)

        assert outcome.version == 1
        assert outcome.score.is_stale is False
        assert outcome.score.stale_since is None
        assert (outcome.score.data_version, outcome.score.computed_version) == (1, 1)

    def test_rejected_write(self, pair):
        with get_session() as session:
            scorer = PairScorer(session, MatchingConfig())
            scorer.recompute("stu-1", "lst-1", version=3, now=NOW)

            outcome = scorer.recompute("stu-1", "lst-1", version=2, now=NOW)

        assert outcome.written is False

    def test_unknown_listing(self, pair):
        with get_session() as session:
            with pytest.raises(InvalidReference):
                PairScorer(session, MatchingConfig()).recompute("stu-1", "lst-404", now=NOW)
