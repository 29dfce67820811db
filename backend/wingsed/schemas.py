"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. The wire format is camelCase; Python code
works with the snake_case attribute names. Request bodies reject unknown
fields so clients cannot mass-assign ids, roles or ownership columns.
"""

from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, HttpUrl, TypeAdapter
from pydantic.alias_generators import to_camel

from .models import ApplicationStatus, CampusType, DegreeType, LeadFeedback, Role, TestTaken

MAX_BUDGET = 100_000_000
MAX_FEE = 500_000

_http_url = TypeAdapter(HttpUrl)


def _http_url_str(value: str) -> str:
    # keep the caller's string untouched; only the scheme/host shape is checked
    _http_url.validate_python(value)
    return value


UrlStr = Annotated[str, Field(max_length=500), AfterValidator(_http_url_str)]
Budget = Annotated[int, Field(ge=0, le=MAX_BUDGET)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RequestModel(CamelModel):
    """Base for request bodies: unknown fields are rejected."""
    model_config = ConfigDict(extra="forbid")


# ---- requests ----

class UpdateOnboardingStepIn(RequestModel):
    step: int = Field(ge=0, le=5)


class ProfileFields(RequestModel):
    custom_destination: Optional[str] = Field(default=None, max_length=200)
    budget_min: Optional[Budget] = None
    budget_max: Optional[Budget] = None
    intake: Optional[str] = Field(default=None, max_length=100)
    gre_score: Optional[int] = Field(default=None, ge=0, le=340)
    gmat_score: Optional[int] = Field(default=None, ge=0, le=800)
    ielts_score: Optional[float] = Field(default=None, ge=0, le=9)
    toefl_score: Optional[int] = Field(default=None, ge=0, le=120)


class CreateProfileIn(ProfileFields):
    country: str = Field(max_length=100)
    target_field: str = Field(max_length=255)
    test_taken: TestTaken


class UpdateProfileIn(ProfileFields):
    country: Optional[str] = Field(default=None, max_length=100)
    target_field: Optional[str] = Field(default=None, max_length=255)
    test_taken: Optional[TestTaken] = None
    post_whatsapp_status: Optional[str] = Field(default=None, max_length=100, alias="postWhatsAppStatus")


class UpdateWhatsAppStatusIn(RequestModel):
    status: LeadFeedback


class CreateApplicationIn(RequestModel):
    university_id: str = Field(max_length=100)
    program: Optional[str] = Field(default=None, max_length=255)
    intake: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)
    deadline: Optional[datetime] = None


class UpdateApplicationIn(RequestModel):
    status: Optional[ApplicationStatus] = None
    program: Optional[str] = Field(default=None, max_length=255)
    intake: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=2000)
    deadline: Optional[datetime] = None
    applied_at: Optional[datetime] = None


class CreateWhatsAppLeadIn(RequestModel):
    name: Optional[str] = Field(default=None, max_length=255)
    country: Optional[str] = Field(default=None, max_length=100)
    budget_min: Optional[Budget] = None
    budget_max: Optional[Budget] = None
    target_field: Optional[str] = Field(default=None, max_length=255)


class UpdateFeedbackIn(RequestModel):
    feedback: LeadFeedback


class UpdateLeadNotesIn(RequestModel):
    notes: str = Field(max_length=2000)


class UpdateUserRoleIn(RequestModel):
    role: Role


class UniversityFields(RequestModel):
    logo_url: Optional[UrlStr] = None
    website_url: Optional[UrlStr] = None
    image_url: Optional[UrlStr] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    address: Optional[str] = Field(default=None, max_length=500)
    qs_ranking: Optional[int] = Field(default=None, ge=1, le=2000)
    times_ranking: Optional[int] = Field(default=None, ge=1, le=2000)
    us_news_ranking: Optional[int] = Field(default=None, ge=1, le=2000)
    acceptance_rate: Optional[float] = Field(default=None, ge=0, le=100)
    application_fee: Optional[float] = Field(default=None, ge=0, le=MAX_FEE)
    campus_type: Optional[CampusType] = None
    total_students: Optional[int] = Field(default=None, ge=0, le=MAX_FEE)
    international_student_percent: Optional[float] = Field(default=None, ge=0, le=100)
    food_housing_cost: Optional[float] = Field(default=None, ge=0, le=MAX_FEE)
    avg_scholarship_amount: Optional[float] = Field(default=None, ge=0, le=MAX_FEE)
    employment_rate: Optional[float] = Field(default=None, ge=0, le=100)


class CreateUniversityIn(UniversityFields):
    name: str = Field(max_length=255)
    country: str = Field(max_length=100)
    city: str = Field(max_length=100)
    tuition_fee: int = Field(ge=0, le=MAX_FEE)
    public_private: str = Field(max_length=50)


class UpdateUniversityIn(UniversityFields):
    name: Optional[str] = Field(default=None, max_length=255)
    country: Optional[str] = Field(default=None, max_length=100)
    city: Optional[str] = Field(default=None, max_length=100)
    tuition_fee: Optional[int] = Field(default=None, ge=0, le=MAX_FEE)
    public_private: Optional[str] = Field(default=None, max_length=50)


class ProgramFields(RequestModel):
    department: Optional[str] = Field(default=None, max_length=255)
    duration: Optional[str] = Field(default=None, max_length=100)
    tuition_fee: Optional[float] = Field(default=None, ge=0, le=MAX_FEE)
    description: Optional[str] = Field(default=None, max_length=5000)
    application_deadline: Optional[datetime] = None
    intakes: Optional[List[Annotated[str, Field(max_length=50)]]] = None
    gre_required: Optional[bool] = None
    gre_min_score: Optional[float] = Field(default=None, ge=0, le=340)
    gmat_required: Optional[bool] = None
    gmat_min_score: Optional[float] = Field(default=None, ge=0, le=800)
    ielts_min_score: Optional[float] = Field(default=None, ge=0, le=9)
    toefl_min_score: Optional[float] = Field(default=None, ge=0, le=120)
    gpa_min_score: Optional[float] = Field(default=None, ge=0, le=4)


class CreateProgramIn(ProgramFields):
    name: str = Field(max_length=255)
    degree_type: DegreeType


class UpdateProgramIn(ProgramFields):
    name: Optional[str] = Field(default=None, max_length=255)
    degree_type: Optional[DegreeType] = None


# ---- responses ----

class ProgramOut(CamelModel):
    id: str
    university_id: str
    name: str
    degree_type: DegreeType
    department: Optional[str] = None
    duration: Optional[str] = None
    tuition_fee: Optional[float] = None
    description: Optional[str] = None
    application_deadline: Optional[datetime] = None
    intakes: List[str] = []
    gre_required: bool = False
    gre_min_score: Optional[float] = None
    gmat_required: bool = False
    gmat_min_score: Optional[float] = None
    ielts_min_score: Optional[float] = None
    toefl_min_score: Optional[float] = None
    gpa_min_score: Optional[float] = None
    created_at: datetime
    updated_at: datetime


class UniversityOut(CamelModel):
    id: str
    name: str
    country: str
    city: str
    tuition_fee: int
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
    created_at: datetime
    updated_at: datetime


class UniversityDetailOut(UniversityOut):
    programs: List[ProgramOut] = []


class ProfileOut(CamelModel):
    id: str
    user_id: str
    country: str
    custom_destination: Optional[str] = None
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    target_field: str
    intake: Optional[str] = None
    test_taken: TestTaken
    gre_score: Optional[int] = None
    gmat_score: Optional[int] = None
    ielts_score: Optional[float] = None
    toefl_score: Optional[int] = None
    post_whatsapp_status: Optional[str] = Field(default=None, alias="postWhatsAppStatus")
    whatsapp_redirect_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class UserOut(CamelModel):
    id: str
    clerk_id: str
    email: str
    role: Role
    onboarding_step: int
    created_at: datetime
    updated_at: datetime


class AdminUserOut(UserOut):
    student_profile: Optional[ProfileOut] = None


class SavedUniversityOut(CamelModel):
    id: str
    user_id: str
    university_id: str
    created_at: datetime
    university: Optional[UniversityOut] = None


class ApplicationOut(CamelModel):
    id: str
    user_id: str
    university_id: str
    status: ApplicationStatus
    program: Optional[str] = None
    intake: Optional[str] = None
    notes: Optional[str] = None
    deadline: Optional[datetime] = None
    applied_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    university: Optional[UniversityOut] = None


class LeadOut(CamelModel):
    id: str
    clerk_id: str
    email: str
    name: Optional[str] = None
    country: Optional[str] = None
    budget_min: Optional[int] = None
    budget_max: Optional[int] = None
    target_field: Optional[str] = None
    message_text: str
    redirected_at: datetime
    feedback: Optional[LeadFeedback] = None
    feedback_at: Optional[datetime] = None
    admin_notes: Optional[str] = None


class SearchHit(CamelModel):
    id: str
    name: str
    country: str
    city: str
    tuition_fee: int
    public_private: str
    description: Optional[str] = None
