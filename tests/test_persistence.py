"""Unit tests for the persistence layer."""

from datetime import timedelta

import pytest
from sqlalchemy import text

from talentmatch.domain.models import (
    AthleticSkillMapping,
    MatchScore,
    ScoreBreakdown,
)
from talentmatch.persistence import (
    ApplicationRepository,
    DatabaseConnectionError,
    FeedbackRepository,
    InviteRepository,
    ListingRepository,
    MatchScoreRepository,
    SkillMappingRepository,
    StudentRepository,
    close_database,
    get_session,
    init_database,
)
from talentmatch.persistence.schema import MatchScoreModel, StudentModel

from tests.helpers import (
    NOW,
    add_application,
    add_feedback,
    add_invite,
    add_listing,
    add_mapping,
    add_student,
)


def make_score(student_id="stu-1", listing_id="lst-1", composite=60, computed_at=NOW, engine_version="1"):
    return MatchScore(
        student_id=student_id,
        listing_id=listing_id,
        composite_score=composite,
        breakdown=ScoreBreakdown(skill_match=composite),
        matched_skills=["python"],
        missing_skills=["aws"],
        computed_at=computed_at,
        computation_time_ms=2,
        engine_version=engine_version,
    )


@pytest.fixture
def database():
    init_database("sqlite:///:memory:")
    yield
    close_database()


class TestDatabaseInitialization:
    """Tests for database initialization."""

    def test_init_database_file(self, tmp_path):
        """Test a file database is created along with missing parent directories."""
        db_file = tmp_path / "nested" / "engine.db"

        init_database(f"sqlite:///{db_file}")
        try:
            assert db_file.exists()
            with get_session() as session:
                tables = {
                    row[0]
                    for row in session.execute(
                        text("SELECT name FROM sqlite_master WHERE type='table'")
                    )
                }
        finally:
            close_database()

        assert {
            "students",
            "student_skills",
            "listings",
            "applications",
            "corporate_invites",
            "match_feedback",
            "athletic_skill_mappings",
            "match_scores",
            "match_score_history",
            "recomputation_queue",
        } <= tables

    def test_schema_creation_is_idempotent(self, tmp_path):
        db_url = f"sqlite:///{tmp_path / 'engine.db'}"

        init_database(db_url)
        close_database()
        init_database(db_url)
        close_database()

    def test_invalid_url_raises_error(self):
        with pytest.raises(DatabaseConnectionError):
            init_database("")

    def test_get_session_without_init_raises_error(self):
        close_database()

        with pytest.raises(DatabaseConnectionError, match="not initialized"):
            with get_session():
                pass


class TestSessionManagement:
    """Tests for session management."""

    def test_session_commits_on_success(self, database):
        with get_session() as session:
            add_student(session, "stu-1", skills=["python"])

        with get_session() as session:
            assert session.get(StudentModel, "stu-1") is not None

    def test_session_rolls_back_on_exception(self, database):
        with pytest.raises(ValueError):
            with get_session() as session:
                add_student(session, "stu-1")
                raise ValueError("abort")

        with get_session() as session:
            assert session.get(StudentModel, "stu-1") is None


class TestSnapshotRepositories:
    """Tests for the read-only snapshot repositories."""

    def test_student_snapshot(self, database):
        with get_session() as session:
            add_student(
                session,
                "stu-1",
                skills=[("Python", "Technology"), ("Public Speaking", None)],
                hours=None,
                sport="Football",
                position="Quarterback",
            )
            student = StudentRepository(session).get("stu-1")

        assert student.skills == {"python", "public speaking"}
        assert student.skill_categories == {"Technology"}
        assert student.hours_per_week == 20
        assert student.sport == "Football"

    def test_unknown_student(self, database):
        with get_session() as session:
            assert StudentRepository(session).get("nobody") is None

    def test_list_students_excludes(self, database):
        with get_session() as session:
            for student_id in ("stu-3", "stu-1", "stu-2"):
                add_student(session, student_id)
            students = StudentRepository(session).list_students(10, exclude={"stu-2"})

        assert [s.student_id for s in students] == ["stu-1", "stu-3"]

    def test_ids_for_sport_is_case_insensitive(self, database):
        with get_session() as session:
            add_student(session, "stu-1", sport="Football")
            add_student(session, "stu-2", sport=" football")
            add_student(session, "stu-3", sport="Swimming")

            assert StudentRepository(session).ids_for_sport("FOOTBALL") == ["stu-1", "stu-2"]

    def test_list_published_order_and_filters(self, database):
        with get_session() as session:
            add_listing(session, "old", published_at=NOW - timedelta(days=10))
            add_listing(session, "new", published_at=NOW)
            add_listing(session, "undated", published_at=None)
            add_listing(session, "hidden", status="unpublished")
            add_listing(session, "applied", published_at=NOW)

            listings = ListingRepository(session).list_published(10, exclude={"applied"})

        assert [l.listing_id for l in listings] == ["new", "old", "undated"]

    def test_listing_round_trip(self, database):
        with get_session() as session:
            add_listing(session, "lst-1", required_skills=["Python", "SQL"], category=None, hours=None)
            listing = ListingRepository(session).get("lst-1")

        assert listing.required_skills == ["python", "sql"]
        assert listing.category == "General"
        assert listing.hours_per_week == 15
        assert listing.published_at == NOW

    def test_applications_use_snapshot_or_current_listing(self, database):
        with get_session() as session:
            add_listing(session, "lst-1", required_skills=["python"], category="Technology")
            add_listing(session, "lst-2", required_skills=["figma"], category="Design")
            add_application(session, "stu-1", "lst-1", status="accepted")
            add_application(
                session, "stu-1", "lst-2", status="completed", category="Marketing", required_skills=["SEO"]
            )

            outcomes = ApplicationRepository(session).for_student("stu-1")

        assert [(o.category, o.required_skills) for o in outcomes] == [
            ("Technology", ["python"]),
            ("Marketing", ["seo"]),
        ]

    def test_applied_listing_ids_ignore_withdrawn(self, database):
        with get_session() as session:
            add_application(session, "stu-1", "lst-1", status="pending")
            add_application(session, "stu-1", "lst-2", status="withdrawn")
            add_application(session, "stu-2", "lst-1", status="rejected")
            repo = ApplicationRepository(session)

            assert repo.applied_listing_ids("stu-1") == {"lst-1"}
            assert repo.applicant_ids("lst-1") == {"stu-1", "stu-2"}

    def test_settled_invites(self, database):
        with get_session() as session:
            add_invite(session, "stu-1", "lst-1", "accepted")
            add_invite(session, "stu-1", "lst-2", "declined")
            add_invite(session, "stu-1", "lst-3", "pending")

            assert InviteRepository(session).settled_listing_ids("stu-1") == {"lst-1", "lst-2"}

    def test_feedback_carries_listing_category(self, database):
        with get_session() as session:
            add_listing(session, "lst-1", category="Design")
            add_feedback(session, "stu-1", "lst-1", 5)
            add_feedback(session, "stu-1", "gone", 2)
            repo = FeedbackRepository(session)

            records = repo.for_student("stu-1")
            count, average = repo.stats()

        assert [(r.category, r.rating) for r in records] == [("Design", 5), ("General", 2)]
        assert records[0].created_at == NOW
        assert (count, average) == (2, 3.5)


class TestSkillMappingRepository:
    """Tests for the athletic skill mapping store."""

    def test_upsert_inserts_then_updates(self, database):
        with get_session() as session:
            add_mapping(session, "Football", "Decision Making", 0.9, position="Quarterback")
            add_mapping(session, "football", "decision making", 0.7, position="QUARTERBACK")
            rows = SkillMappingRepository(session).for_sport("Football")

        assert len(rows) == 1
        assert rows[0].transfer_strength == 0.7

    def test_all_positions_row_is_distinct(self, database):
        with get_session() as session:
            add_mapping(session, "Football", "Teamwork", 0.8)
            add_mapping(session, "Football", "Teamwork", 0.6, position="Lineman")
            repo = SkillMappingRepository(session)

            rows = repo.for_sport("football")
            assert [(r.position, r.transfer_strength) for r in rows] == [(None, 0.8), ("Lineman", 0.6)]
            assert repo.for_sport("  ") == []

    def test_list_all_sorted_by_sport(self, database):
        with get_session() as session:
            add_mapping(session, "Swimming", "Discipline", 0.7)
            add_mapping(session, "Basketball", "Communication", 0.6)
            repo = SkillMappingRepository(session)

            assert [m.sport for m in repo.list_all()] == ["Basketball", "Swimming"]
            assert [m.sport for m in repo.list_all("swimming")] == ["Swimming"]


class TestMatchScoreRepository:
    """Tests for the score store."""

    def test_get_missing_pair(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, engine_version="1")

            assert repo.get("stu-1", "lst-1") is None
            assert repo.current_version("stu-1", "lst-1") == 0

    def test_insert_and_read(self, database):
        with get_session() as session:
            assert MatchScoreRepository(session, "1").upsert(make_score(composite=67), version=0, now=NOW)

        with get_session() as session:
            score = MatchScoreRepository(session, "1").get("stu-1", "lst-1")

        assert score.composite_score == 67
        assert score.matched_skills == ["python"]
        assert score.missing_skills == ["aws"]
        assert score.is_stale is False
        assert score.computed_at == NOW
        assert (score.data_version, score.computed_version) == (0, 0)

    def test_mark_stale_only_touches_listing(self, database):
        """Invalidating one listing leaves the same student's other scores fresh."""
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score("stu-1", "lst-1"), 0, now=NOW)
            repo.upsert(make_score("stu-1", "lst-2"), 0, now=NOW)
            repo.upsert(make_score("stu-2", "lst-1"), 0, now=NOW)

            keys = repo.mark_stale_for_listing("lst-1", NOW)

            assert [(k.student_id, k.listing_id, k.data_version) for k in keys] == [
                ("stu-1", "lst-1", 1),
                ("stu-2", "lst-1", 1),
            ]
            assert keys[0].stale_since == NOW
            assert repo.get("stu-1", "lst-1").is_stale
            assert not repo.get("stu-1", "lst-2").is_stale

    def test_mark_stale_for_student(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score("stu-1", "lst-1"), 0, now=NOW)
            repo.upsert(make_score("stu-2", "lst-1"), 0, now=NOW)

            keys = repo.mark_stale_for_student("stu-1", NOW)

            assert [k.student_id for k in keys] == ["stu-1"]
            assert not repo.get("stu-2", "lst-1").is_stale

    def test_repeated_invalidation_keeps_first_stale_since(self, database):
        later = NOW + timedelta(minutes=5)
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score(), 0, now=NOW)

            repo.mark_stale_pair("stu-1", "lst-1", NOW)
            keys = repo.mark_stale_pair("stu-1", "lst-1", later)

        assert keys[0].data_version == 2
        assert keys[0].stale_since == NOW

    def test_stale_since_is_reported_until_refreshed(self, database):
        later = NOW + timedelta(minutes=5)
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score(), 0, now=NOW)
            assert repo.get("stu-1", "lst-1").stale_since is None

            repo.mark_stale_pair("stu-1", "lst-1", NOW)
            repo.mark_stale_pair("stu-1", "lst-1", later)
            assert repo.get("stu-1", "lst-1").stale_since == NOW

            assert repo.upsert(make_score(), version=2, now=later)
            assert repo.get("stu-1", "lst-1").stale_since is None

    def test_write_for_current_version_clears_stale(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score(composite=60), 0, now=NOW)
            repo.mark_stale_for_student("stu-1", NOW)

            assert repo.upsert(make_score(composite=70), version=1, now=NOW)

            score = repo.get("stu-1", "lst-1")
            assert score.composite_score == 70
            assert score.is_stale is False
            assert (score.data_version, score.computed_version) == (1, 1)

    def test_write_for_superseded_version_stays_stale(self, database):
        """A computation that started before the latest invalidation lands but stays stale."""
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score(), 0, now=NOW)
            repo.mark_stale_for_student("stu-1", NOW)
            repo.mark_stale_for_student("stu-1", NOW)

            assert repo.upsert(make_score(composite=65), version=1, now=NOW)

            score = repo.get("stu-1", "lst-1")
            assert score.composite_score == 65
            assert score.is_stale is True
            assert score.data_version == 2

    def test_out_of_order_write_is_rejected(self, database):
        """An older computation never overwrites a newer one."""
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score(composite=60), 0, now=NOW)
            repo.mark_stale_for_student("stu-1", NOW)
            repo.mark_stale_for_student("stu-1", NOW)
            assert repo.upsert(make_score(composite=80), version=2, now=NOW)

            assert repo.upsert(make_score(composite=40), version=1, now=NOW) is False

            score = repo.get("stu-1", "lst-1")
            assert score.composite_score == 80
            assert score.computed_version == 2
            assert score.is_stale is False

    def test_history_records_initial_and_significant_changes(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score(composite=60), 0, now=NOW)
            repo.upsert(make_score(composite=60), 0, reason="profile_changed", now=NOW)
            repo.upsert(make_score(composite=61), 0, reason="listing_changed", now=NOW)

            history = repo.history("stu-1", "lst-1")

        assert [(h.old_score, h.new_score, h.change_reason) for h in history] == [
            (None, 60, "initial"),
            (60, 61, "listing_changed"),
        ]

    def test_other_engine_version_reads_stale(self, database):
        with get_session() as session:
            MatchScoreRepository(session).upsert(make_score(engine_version="0"), 0, now=NOW)
            repo = MatchScoreRepository(session, engine_version="1")

            assert repo.get("stu-1", "lst-1").is_stale is True
            assert [k.listing_id for k in repo.stale_keys(10)] == ["lst-1"]
            assert MatchScoreRepository(session, engine_version="0").stale_keys(10) == []

    def test_stale_keys_oldest_first(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            for listing_id in ("lst-a", "lst-b", "lst-c"):
                repo.upsert(make_score(listing_id=listing_id), 0, now=NOW)
            repo.mark_stale_pair("stu-1", "lst-b", NOW)
            repo.mark_stale_pair("stu-1", "lst-a", NOW + timedelta(minutes=1))

            keys = repo.stale_keys(10)

            assert [k.listing_id for k in keys] == ["lst-b", "lst-a"]
            assert len(repo.stale_keys(1)) == 1

    def test_list_for_student_and_listing(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score("stu-1", "lst-2"), 0, now=NOW)
            repo.upsert(make_score("stu-1", "lst-1"), 0, now=NOW)
            repo.upsert(make_score("stu-2", "lst-1"), 0, now=NOW)

            assert [s.listing_id for s in repo.list_for_student("stu-1")] == ["lst-1", "lst-2"]
            assert [s.student_id for s in repo.list_for_listing("lst-1")] == ["stu-1", "stu-2"]
            assert repo.students_with_scores_for_listing("lst-2") == ["stu-1"]

    def test_stats(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            assert repo.stats()["total"] == 0

            repo.upsert(make_score("stu-1", "lst-1", composite=40), 0, now=NOW)
            repo.upsert(make_score("stu-1", "lst-2", composite=80), 0, now=NOW)
            repo.mark_stale_pair("stu-1", "lst-1", NOW)

            stats = repo.stats()

        assert stats["total"] == 2
        assert stats["stale"] == 1
        assert stats["average"] == 60.0
        assert (stats["minimum"], stats["maximum"]) == (40, 80)
        assert stats["average_computation_ms"] == 2.0

    def test_rows_are_never_deleted_by_invalidation(self, database):
        with get_session() as session:
            repo = MatchScoreRepository(session, "1")
            repo.upsert(make_score(), 0, now=NOW)
            repo.mark_stale_for_student("stu-1", NOW)
            repo.mark_stale_for_listing("lst-1", NOW)

            assert session.query(MatchScoreModel).count() == 1
