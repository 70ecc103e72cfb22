"""Builders that populate the snapshot tables owned by other services."""

import json
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence, Tuple, Union

from talentmatch.domain.models import AthleticSkillMapping, Listing
from talentmatch.persistence.repositories import SkillMappingRepository
from talentmatch.persistence.schema import (
    ApplicationModel,
    CorporateInviteModel,
    ListingModel,
    MatchFeedbackModel,
    StudentModel,
    StudentSkillModel,
)
from talentmatch.utils.timestamps import format_timestamp

NOW = datetime(2025, 11, 4, 12, 0, 0, tzinfo=timezone.utc)

SkillSpec = Union[str, Tuple[str, Optional[str]]]


def add_student(
    session,
    student_id: str,
    skills: Iterable[SkillSpec] = (),
    hours: Optional[float] = None,
    sport: Optional[str] = None,
    position: Optional[str] = None,
    tenant_id: Optional[str] = None,
) -> StudentModel:
    """Insert a student; each skill is a name or a (name, category) pair."""
    student = StudentModel(
        student_id=student_id,
        tenant_id=tenant_id,
        hours_per_week=hours,
        sport=sport,
        position=position,
    )
    for skill in skills:
        name, category = (skill, None) if isinstance(skill, str) else skill
        student.skills.append(StudentSkillModel(name=name, category=category))
    session.add(student)
    session.flush()
    return student


def add_listing(
    session,
    listing_id: str,
    required_skills: Sequence[str] = (),
    category: Optional[str] = None,
    hours: Optional[float] = None,
    published_at: Optional[datetime] = NOW,
    status: str = "published",
    title: str = "",
    tenant_id: Optional[str] = None,
) -> ListingModel:
    model = ListingModel.from_domain(
        Listing(
            listing_id=listing_id,
            tenant_id=tenant_id,
            title=title or f"Listing {listing_id}",
            category=category,
            required_skills=list(required_skills),
            hours_per_week=hours,
            published_at=published_at,
            status=status,
        )
    )
    session.add(model)
    session.flush()
    return model


def add_application(
    session,
    student_id: str,
    listing_id: str,
    status: str = "pending",
    category: Optional[str] = None,
    required_skills: Optional[Sequence[str]] = None,
) -> ApplicationModel:
    """Insert an application; snapshot columns stay NULL unless given."""
    model = ApplicationModel(
        student_id=student_id,
        listing_id=listing_id,
        status=status,
        category_snapshot=category,
        required_skills_snapshot=(
            json.dumps(list(required_skills)) if required_skills is not None else None
        ),
        created_at=format_timestamp(NOW),
        updated_at=format_timestamp(NOW),
    )
    session.add(model)
    session.flush()
    return model


def add_feedback(
    session, student_id: str, listing_id: str, rating: int, created_at: datetime = NOW
) -> MatchFeedbackModel:
    model = MatchFeedbackModel(
        student_id=student_id,
        listing_id=listing_id,
        rating=rating,
        created_at=format_timestamp(created_at),
    )
    session.add(model)
    session.flush()
    return model


def add_invite(session, student_id: str, listing_id: str, status: str) -> CorporateInviteModel:
    model = CorporateInviteModel(
        student_id=student_id,
        listing_id=listing_id,
        status=status,
        created_at=format_timestamp(NOW),
    )
    session.add(model)
    session.flush()
    return model


def add_mapping(
    session,
    sport: str,
    professional_skill: str,
    transfer_strength: float,
    position: Optional[str] = None,
    skill_category: str = "General",
) -> AthleticSkillMapping:
    return SkillMappingRepository(session).upsert(
        AthleticSkillMapping(
            sport=sport,
            position=position,
            professional_skill=professional_skill,
            transfer_strength=transfer_strength,
            skill_category=skill_category,
        ),
        NOW,
    )
