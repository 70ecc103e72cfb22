"""Unit tests for domain models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from talentmatch.domain.models import (
    DEFAULT_CATEGORY,
    DEFAULT_LISTING_HOURS,
    DEFAULT_STUDENT_HOURS,
    ApplicationOutcome,
    ApplicationStatus,
    AthleticSkillMapping,
    CorporateInvite,
    Listing,
    ListingStatus,
    MatchFeedback,
    MatchScore,
    RecomputeReason,
    ScoreBreakdown,
    StudentProfile,
)


class TestStudentProfile:
    """Tests for StudentProfile snapshots."""

    def test_skills_are_normalized(self):
        student = StudentProfile(student_id="stu-1", skills=["Python", " SQL ", "python"])

        assert student.skills == {"python", "sql"}

    def test_missing_hours_default(self):
        """Test NULL and zero weekly hours fall back to the default."""
        assert StudentProfile(student_id="stu-1", hours_per_week=None).hours_per_week == DEFAULT_STUDENT_HOURS
        assert StudentProfile(student_id="stu-1", hours_per_week=0).hours_per_week == DEFAULT_STUDENT_HOURS
        assert StudentProfile(student_id="stu-1", hours_per_week=12).hours_per_week == 12

    def test_blank_sport_and_position_become_none(self):
        student = StudentProfile(student_id="stu-1", sport="  ", position="")

        assert student.sport is None
        assert student.position is None

    def test_id_is_required(self):
        with pytest.raises(ValidationError):
            StudentProfile(student_id="   ")

    def test_negative_hours_rejected(self):
        with pytest.raises(ValidationError):
            StudentProfile(student_id="stu-1", hours_per_week=-5)


class TestListing:
    """Tests for Listing snapshots."""

    def test_defaults(self):
        listing = Listing(listing_id="lst-1", category=None, hours_per_week=None)

        assert listing.category == DEFAULT_CATEGORY
        assert listing.hours_per_week == DEFAULT_LISTING_HOURS
        assert listing.required_skills == []
        assert listing.is_published

    def test_required_skills_deduplicated_in_order(self):
        listing = Listing(listing_id="lst-1", required_skills=["SQL", "Python", "sql", ""])

        assert listing.required_skills == ["sql", "python"]

    def test_published_at_converted_to_utc(self):
        local = timezone(timedelta(hours=2))
        listing = Listing(listing_id="lst-1", published_at=datetime(2025, 11, 4, 14, tzinfo=local))

        assert listing.published_at == datetime(2025, 11, 4, 12, tzinfo=timezone.utc)

    def test_unpublished(self):
        listing = Listing(listing_id="lst-1", status="unpublished")

        assert listing.status == ListingStatus.UNPUBLISHED
        assert not listing.is_published


class TestOutcomes:
    """Tests for applications, invites and feedback."""

    @pytest.mark.parametrize(
        "status,success",
        [
            ("accepted", True),
            ("completed", True),
            ("pending", False),
            ("rejected", False),
            ("withdrawn", False),
        ],
    )
    def test_application_success(self, status, success):
        outcome = ApplicationOutcome(student_id="s", listing_id="l", status=status)

        assert outcome.is_success is success
        assert ApplicationStatus(status).is_success is success

    def test_application_category_default(self):
        outcome = ApplicationOutcome(student_id="s", listing_id="l", status="pending", category="")

        assert outcome.category == DEFAULT_CATEGORY

    @pytest.mark.parametrize("status,settled", [("pending", False), ("accepted", True), ("declined", True)])
    def test_invite_settled(self, status, settled):
        assert CorporateInvite(student_id="s", listing_id="l", status=status).is_settled is settled

    @pytest.mark.parametrize("rating", [0, 6])
    def test_feedback_rating_bounds(self, rating):
        with pytest.raises(ValidationError):
            MatchFeedback(student_id="s", listing_id="l", rating=rating)


class TestAthleticSkillMapping:
    """Tests for AthleticSkillMapping."""

    def test_skill_key_is_normalized(self):
        mapping = AthleticSkillMapping(
            sport="Football",
            position="Quarterback",
            professional_skill="  Decision   Making ",
            transfer_strength=0.9,
        )

        assert mapping.professional_skill == "Decision   Making"
        assert mapping.skill_key == "decision making"

    def test_blank_position_means_all_positions(self):
        mapping = AthleticSkillMapping(sport="Swimming", position=" ", professional_skill="Discipline")

        assert mapping.position is None

    @pytest.mark.parametrize("strength", [-0.1, 1.1])
    def test_transfer_strength_bounds(self, strength):
        with pytest.raises(ValidationError):
            AthleticSkillMapping(sport="Football", professional_skill="Teamwork", transfer_strength=strength)

    def test_required_fields_not_blank(self):
        with pytest.raises(ValidationError):
            AthleticSkillMapping(sport="", professional_skill="Teamwork")


class TestMatchScore:
    """Tests for MatchScore and ScoreBreakdown."""

    def test_composite_bounds(self):
        with pytest.raises(ValidationError):
            MatchScore(
                student_id="s",
                listing_id="l",
                composite_score=101,
                breakdown=ScoreBreakdown(),
                computed_at=datetime(2025, 11, 4, tzinfo=timezone.utc),
            )

    def test_naive_computed_at_becomes_utc(self):
        score = MatchScore(
            student_id="s",
            listing_id="l",
            composite_score=50,
            breakdown=ScoreBreakdown(skill_match=50),
            computed_at=datetime(2025, 11, 4, 12),
        )

        assert score.computed_at.tzinfo == timezone.utc
        assert score.is_stale is False


class TestRecomputeReason:
    """Tests for reason priorities."""

    def test_priorities(self):
        assert RecomputeReason.MANUAL.default_priority == 10
        assert RecomputeReason.STALE_READ.default_priority == 8
        assert RecomputeReason.PROFILE_CHANGED.default_priority == 5
        assert RecomputeReason.LISTING_CHANGED.default_priority == 3
        assert RecomputeReason.SKILL_MAPPING_CHANGED.default_priority == 2
        assert RecomputeReason.SWEEP.default_priority == 1

    def test_every_reason_has_a_priority(self):
        for reason in RecomputeReason:
            assert 1 <= reason.default_priority <= 10
