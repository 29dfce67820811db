"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Deleting a `User` or a `University` removes its dependent rows through
the ORM cascades declared on the relationships.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_CASCADE = {"cascade": "all, delete"}


class Role(str, Enum):
    STUDENT = "STUDENT"
    ADMIN = "ADMIN"
    COUNSELOR = "COUNSELOR"


class TestTaken(str, Enum):
    IELTS = "IELTS"
    TOEFL = "TOEFL"
    GRE = "GRE"
    GMAT = "GMAT"
    NONE = "NONE"


class ApplicationStatus(str, Enum):
    RESEARCHING = "RESEARCHING"
    PREPARING = "PREPARING"
    APPLIED = "APPLIED"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class DegreeType(str, Enum):
    BACHELORS = "BACHELORS"
    MASTERS = "MASTERS"
    PHD = "PHD"
    DIPLOMA = "DIPLOMA"
    CERTIFICATE = "CERTIFICATE"


class CampusType(str, Enum):
    URBAN = "URBAN"
    SUBURBAN = "SUBURBAN"
    RURAL = "RURAL"


class LeadFeedback(str, Enum):
    CONNECTED = "connected"
    NO_RESPONSE = "no_response"


class User(SQLModel, table=True):
    """A platform user mirrored from the identity provider.

    Fields:
    - `clerk_id`: the identity provider's user id (unique)
    - `onboarding_step`: progress marker through the signup form (0..5)
    """
    id: str = Field(default_factory=_new_id, primary_key=True)
    clerk_id: str = Field(index=True, unique=True, nullable=False)
    email: str = Field(index=True, unique=True, nullable=False)
    role: Role = Field(default=Role.STUDENT)
    onboarding_step: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, sa_column_kwargs={"onupdate": _utcnow})

    student_profile: Optional["StudentProfile"] = Relationship(
        back_populates="user", sa_relationship_kwargs={**_CASCADE, "uselist": False}
    )
    saved_universities: List["SavedUniversity"] = Relationship(back_populates="user", sa_relationship_kwargs=_CASCADE)
    applications: List["Application"] = Relationship(back_populates="user", sa_relationship_kwargs=_CASCADE)


class StudentProfile(SQLModel, table=True):
    """Study preferences captured during onboarding. One per user."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", unique=True, ondelete="CASCADE")
    country: str
    custom_destination: Optional[str] = None
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    target_field: str
    intake: Optional[str] = None
    test_taken: TestTaken = Field(default=TestTaken.NONE)
    gre_score: Optional[int] = None
    gmat_score: Optional[int] = None
    ielts_score: Optional[float] = None
    toefl_score: Optional[int] = None
    post_whatsapp_status: Optional[str] = None
    whatsapp_redirect_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, sa_column_kwargs={"onupdate": _utcnow})

    user: Optional[User] = Relationship(back_populates="student_profile")


class University(SQLModel, table=True):
    """A university listing. `tuition_fee` is the yearly fee in USD."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    name: str = Field(index=True)
    country: str = Field(index=True)
    city: str
    tuition_fee: int = Field(index=True)
    public_private: str
    logo_url: Optional[str] = None
    website_url: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    qs_ranking: Optional[int] = None
    times_ranking: Optional[int] = None
    us_news_ranking: Optional[int] = None
    acceptance_rate: Optional[float] = None
    application_fee: Optional[float] = None
    campus_type: Optional[CampusType] = None
    total_students: Optional[int] = None
    international_student_percent: Optional[float] = None
    food_housing_cost: Optional[float] = None
    avg_scholarship_amount: Optional[float] = None
    employment_rate: Optional[float] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, sa_column_kwargs={"onupdate": _utcnow})

    programs: List["Program"] = Relationship(back_populates="university", sa_relationship_kwargs=_CASCADE)
    saved_by: List["SavedUniversity"] = Relationship(back_populates="university", sa_relationship_kwargs=_CASCADE)
    applications: List["Application"] = Relationship(back_populates="university", sa_relationship_kwargs=_CASCADE)


class Program(SQLModel, table=True):
    """A degree program offered by a `University`."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    university_id: str = Field(foreign_key="university.id", index=True, ondelete="CASCADE")
    name: str
    degree_type: DegreeType
    department: Optional[str] = None
    duration: Optional[str] = None
    tuition_fee: Optional[float] = None
    description: Optional[str] = None
    application_deadline: Optional[datetime] = None
    intakes: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    gre_required: bool = False
    gre_min_score: Optional[float] = None
    gmat_required: bool = False
    gmat_min_score: Optional[float] = None
    ielts_min_score: Optional[float] = None
    toefl_min_score: Optional[float] = None
    gpa_min_score: Optional[float] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, sa_column_kwargs={"onupdate": _utcnow})

    university: Optional[University] = Relationship(back_populates="programs")


class SavedUniversity(SQLModel, table=True):
    """A user-to-university bookmark."""
    __table_args__ = (UniqueConstraint("user_id", "university_id"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    university_id: str = Field(foreign_key="university.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=_utcnow)

    user: Optional[User] = Relationship(back_populates="saved_universities")
    university: Optional[University] = Relationship(back_populates="saved_by")


class Application(SQLModel, table=True):
    """Tracks a user's application to one university.

    `applied_at` is stamped the first time the status moves to APPLIED.
    """
    __table_args__ = (UniqueConstraint("user_id", "university_id"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    user_id: str = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    university_id: str = Field(foreign_key="university.id", index=True, ondelete="CASCADE")
    status: ApplicationStatus = Field(default=ApplicationStatus.RESEARCHING)
    program: Optional[str] = None
    intake: Optional[str] = None
    notes: Optional[str] = None
    deadline: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow, sa_column_kwargs={"onupdate": _utcnow})

    user: Optional[User] = Relationship(back_populates="applications")
    university: Optional[University] = Relationship(back_populates="applications")


class WhatsAppLead(SQLModel, table=True):
    """A contact captured right before redirecting a user to WhatsApp."""
    id: str = Field(default_factory=_new_id, primary_key=True)
    clerk_id: str = Field(index=True)
    email: str
    name: Optional[str] = None
    country: Optional[str] = Field(default=None, index=True)
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    target_field: Optional[str] = None
    message_text: str
    redirected_at: datetime = Field(default_factory=_utcnow, index=True)
    feedback: Optional[LeadFeedback] = None
    feedback_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
