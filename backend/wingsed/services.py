"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories.
Services are intentionally thin: they resolve the caller's local user,
enforce ownership and uniqueness rules, and persist aggregates via
repositories. Failures are raised as `errors.ServiceError` subclasses
which the global handlers translate into HTTP responses.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from . import models, repositories, schemas
from .config import settings
from .errors import ConflictError, NotFoundError

logger = logging.getLogger("wingsed.services")

INR_PER_USD = 83
ADMIN_DEFAULT_LIMIT = 20
ADMIN_MAX_LIMIT = 100
PENDING_FEEDBACK_AFTER = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


def inr_to_usd_range(budget_min: Optional[int], budget_max: Optional[int]) -> Tuple[Optional[int], Optional[int]]:
    """Convert an INR budget range into a USD tuition range.

    The lower bound rounds down and the upper bound rounds up so that the
    conversion never excludes a borderline university.
    """
    fee_min = math.floor(budget_min / INR_PER_USD) if budget_min is not None else None
    fee_max = math.ceil(budget_max / INR_PER_USD) if budget_max is not None else None
    return fee_min, fee_max


def admin_page(page: int, limit: Optional[int]) -> Tuple[int, int]:
    """Normalise admin pagination: page >= 1, limit defaults to 20 and is capped at 100."""
    page = max(1, page)
    limit = ADMIN_DEFAULT_LIMIT if not limit else min(max(1, limit), ADMIN_MAX_LIMIT)
    return page, limit


def _apply(obj, data: schemas.RequestModel):
    """Copy the fields a client actually sent onto `obj`.

    An explicit null clears nullable columns and is ignored for the rest.
    """
    columns = type(obj).__table__.c
    for key, value in data.model_dump(exclude_unset=True).items():
        if value is None and not columns[key].nullable:
            continue
        setattr(obj, key, value)
    return obj


class UserService:
    """Local user rows mirrored from the identity provider."""

    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    def require(self, clerk_id: str) -> models.User:
        user = self.user_repo.get_by_clerk_id(clerk_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_or_create(self, clerk_id: str, email: str) -> models.User:
        """Return the local user for `clerk_id`, creating it on first sight."""
        user = self.user_repo.get_by_clerk_id(clerk_id)
        if user:
            return user
        try:
            return self.user_repo.save(models.User(clerk_id=clerk_id, email=email))
        except IntegrityError:
            # a concurrent request or the webhook created it first
            self.session.rollback()
            user = self.user_repo.get_by_clerk_id(clerk_id)
            if not user:
                raise ConflictError("Email already registered to another account")
            return user

    def update_onboarding_step(self, clerk_id: str, step: int) -> models.User:
        user = self.require(clerk_id)
        user.onboarding_step = step
        return self.user_repo.save(user)

    def create_from_webhook(self, clerk_id: str, email: Optional[str]) -> Optional[models.User]:
        """Create a user announced by the provider; returns None when skipped."""
        if not email:
            logger.warning("user.created for %s has no email address; skipping", clerk_id)
            return None
        if self.user_repo.get_by_clerk_id(clerk_id):
            logger.info("user %s already exists; skipping", clerk_id)
            return None
        try:
            user = self.user_repo.save(models.User(clerk_id=clerk_id, email=email))
        except IntegrityError:
            self.session.rollback()
            logger.info("user %s could not be created (duplicate); skipping", clerk_id)
            return None
        logger.info("created user %s from webhook", clerk_id)
        return user

    def delete_by_clerk_id(self, clerk_id: str) -> bool:
        user = self.user_repo.get_by_clerk_id(clerk_id)
        if not user:
            logger.info("user.deleted for unknown user %s", clerk_id)
            return False
        self.user_repo.delete(user)
        logger.info("deleted user %s", clerk_id)
        return True


class ProfileService:
    """Student onboarding profile, one per user."""

    def __init__(self, session: Session):
        self.session = session
        self.users = UserService(session)
        self.profile_repo = repositories.ProfileRepository(session)

    def get_profile(self, clerk_id: str) -> Optional[models.StudentProfile]:
        user = self.users.user_repo.get_by_clerk_id(clerk_id)
        if not user:
            return None
        return self.profile_repo.get_by_user_id(user.id)

    def create_profile(self, clerk_id: str, data: schemas.CreateProfileIn) -> models.StudentProfile:
        user = self.users.require(clerk_id)
        if self.profile_repo.get_by_user_id(user.id):
            raise ConflictError("Profile already exists")
        profile = models.StudentProfile(user_id=user.id, **data.model_dump())
        return self.profile_repo.save(profile)

    def update_profile(self, clerk_id: str, data: schemas.UpdateProfileIn) -> models.StudentProfile:
        """Partially update the profile, creating a placeholder one if needed."""
        user = self.users.require(clerk_id)
        profile = self.profile_repo.get_by_user_id(user.id)
        if not profile:
            profile = models.StudentProfile(
                user_id=user.id,
                country="Undecided",
                target_field="Undecided",
                test_taken=models.TestTaken.NONE,
            )
        _apply(profile, data)
        return self.profile_repo.save(profile)

    def update_whatsapp_status(self, clerk_id: str, status: models.LeadFeedback) -> models.StudentProfile:
        profile = self.get_profile(clerk_id)
        if not profile:
            raise NotFoundError("Profile not found")
        profile.post_whatsapp_status = status.value
        return self.profile_repo.save(profile)


class UniversityService:
    """Public catalogue queries."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.UniversityRepository(session)

    def find_many(self, country: Optional[str] = None, budget_min: Optional[int] = None,
                  budget_max: Optional[int] = None, search: Optional[str] = None,
                  page: int = 1, page_size: int = 12) -> dict:
        """Filter universities by country, INR budget and free text.

        Returns `{data, total, page, pageSize, totalPages}` where `data`
        holds `University` rows with their programs loaded.
        """
        fee_min, fee_max = inr_to_usd_range(budget_min, budget_max)
        clauses = self.repo.filters(country, fee_min, fee_max, (search or "").strip() or None)
        rows, total = self.repo.list_page(clauses, (page - 1) * page_size, page_size, with_programs=True)
        return {
            "data": rows,
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": total_pages(total, page_size),
        }

    def find_by_id(self, university_id: str) -> models.University:
        university = self.repo.get(university_id, with_programs=True)
        if not university:
            raise NotFoundError("University not found")
        return university

    def get_countries(self) -> List[str]:
        return self.repo.countries()

    def get_count(self) -> int:
        return self.repo.count()

    def get_recommendations(self, country: Optional[str] = None, budget_min: Optional[int] = None,
                            budget_max: Optional[int] = None, limit: int = 6) -> List[models.University]:
        """Universities matching the preferences, topped up with the cheapest others."""
        fee_min, fee_max = inr_to_usd_range(budget_min, budget_max)
        rows, _ = self.repo.list_page(self.repo.filters(country, fee_min, fee_max), 0, limit)
        rows = list(rows)
        if len(rows) < limit:
            rows.extend(self.repo.list_cheapest_excluding([u.id for u in rows], limit - len(rows)))
        return rows

    def search_fallback(self, query: Optional[str] = None, country: Optional[str] = None,
                        budget_min: Optional[int] = None, budget_max: Optional[int] = None,
                        page: int = 1, page_size: int = 12) -> dict:
        """Database answer for the search endpoint, shaped like the index result.

        Budget bounds are compared with `tuition_fee` as-is, matching the
        index filter.
        """
        clauses = self.repo.filters(country, budget_min, budget_max, (query or "").strip() or None)
        rows, total = self.repo.list_page(clauses, (page - 1) * page_size, page_size)
        return {
            "hits": [schemas.SearchHit.model_validate(u).model_dump(by_alias=True) for u in rows],
            "total": total,
            "page": page,
            "totalPages": total_pages(total, page_size),
        }


class SavedUniversityService:
    """Per-user university bookmarks."""

    def __init__(self, session: Session):
        self.session = session
        self.users = UserService(session)
        self.repo = repositories.SavedUniversityRepository(session)
        self.university_repo = repositories.UniversityRepository(session)

    def get_saved(self, clerk_id: str) -> List[models.SavedUniversity]:
        user = self.users.require(clerk_id)
        return self.repo.list_for_user(user.id)

    def get_saved_ids(self, clerk_id: str) -> List[str]:
        user = self.users.user_repo.get_by_clerk_id(clerk_id)
        return self.repo.university_ids_for_user(user.id) if user else []

    def is_saved(self, clerk_id: str, university_id: str) -> bool:
        user = self.users.user_repo.get_by_clerk_id(clerk_id)
        return bool(user and self.repo.get_for(user.id, university_id))

    def save(self, clerk_id: str, university_id: str) -> models.SavedUniversity:
        user = self.users.require(clerk_id)
        if not self.university_repo.get(university_id):
            raise NotFoundError("University not found")
        if self.repo.get_for(user.id, university_id):
            raise ConflictError("University already saved")
        try:
            return self.repo.save(models.SavedUniversity(user_id=user.id, university_id=university_id))
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("University already saved")

    def unsave(self, clerk_id: str, university_id: str) -> None:
        user = self.users.require(clerk_id)
        saved = self.repo.get_for(user.id, university_id)
        if not saved:
            raise NotFoundError("Saved university not found")
        self.repo.delete(saved)


class ApplicationService:
    """Application tracking scoped to the calling user."""

    def __init__(self, session: Session):
        self.session = session
        self.users = UserService(session)
        self.repo = repositories.ApplicationRepository(session)
        self.university_repo = repositories.UniversityRepository(session)

    def get_applications(self, clerk_id: str) -> List[models.Application]:
        user = self.users.require(clerk_id)
        return self.repo.list_for_user(user.id)

    def get_grouped(self, clerk_id: str) -> Dict[str, List[models.Application]]:
        """Applications keyed by every status (empty lists included)."""
        grouped = {status.value: [] for status in models.ApplicationStatus}
        for application in self.get_applications(clerk_id):
            grouped[application.status.value].append(application)
        return grouped

    def get_stats(self, clerk_id: str) -> dict:
        by_status = {status.value: 0 for status in models.ApplicationStatus}
        user = self.users.user_repo.get_by_clerk_id(clerk_id)
        statuses = self.repo.statuses_for_user(user.id) if user else []
        for status in statuses:
            by_status[models.ApplicationStatus(status).value] += 1
        return {"total": len(statuses), "byStatus": by_status}

    def create(self, clerk_id: str, data: schemas.CreateApplicationIn) -> models.Application:
        user = self.users.require(clerk_id)
        if not self.university_repo.get(data.university_id):
            raise NotFoundError("University not found")
        if self.repo.get_for(user.id, data.university_id):
            raise ConflictError("Application already exists for this university")
        application = models.Application(user_id=user.id, **data.model_dump())
        try:
            application = self.repo.save(application)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("Application already exists for this university")
        return application

    def update(self, clerk_id: str, application_id: str, data: schemas.UpdateApplicationIn) -> models.Application:
        """Apply a partial update; any status may move to any other.

        Moving to APPLIED stamps `applied_at` unless it is already set.
        """
        application = self._get_owned(clerk_id, application_id)
        _apply(application, data)
        if application.status == models.ApplicationStatus.APPLIED and application.applied_at is None:
            application.applied_at = _utcnow()
        return self.repo.save(application)

    def delete(self, clerk_id: str, application_id: str) -> None:
        self.repo.delete(self._get_owned(clerk_id, application_id))

    def _get_owned(self, clerk_id: str, application_id: str) -> models.Application:
        user = self.users.require(clerk_id)
        application = self.repo.get_for_user(application_id, user.id)
        if not application:
            raise NotFoundError("Application not found")
        return application


class LeadService:
    """WhatsApp counselling leads."""

    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.LeadRepository(session)
        self.users = UserService(session)
        self.profile_repo = repositories.ProfileRepository(session)

    @staticmethod
    def build_message(data: schemas.CreateWhatsAppLeadIn) -> str:
        """Compose the pre-filled WhatsApp message from the lead's preferences."""
        parts = [f"Hi I am {data.name}" if data.name else "Hi"]
        if data.country:
            parts.append(f"I want to study in {data.country}")
        if data.budget_min and data.budget_max:
            parts.append(f"within a budget of ₹{data.budget_min:,} - ₹{data.budget_max:,}")
        elif data.budget_max:
            parts.append(f"within a budget of up to ₹{data.budget_max:,}")
        if data.target_field:
            parts.append(f"I'm interested in {data.target_field}")
        return ". ".join(parts) + "."

    @staticmethod
    def redirect_url(message: str, number: Optional[str] = None) -> str:
        number = number or settings.WHATSAPP_PHONE_NUMBER
        text = quote(message, safe="!~*'()")
        return f"https://wa.me/{number}?text={text}"

    def create_lead(self, clerk_id: str, email: str, data: schemas.CreateWhatsAppLeadIn) -> Tuple[models.WhatsAppLead, str]:
        """Store the lead, stamp the caller's profile and return `(lead, redirect_url)`."""
        message = self.build_message(data)
        lead = self.repo.save(models.WhatsAppLead(
            clerk_id=clerk_id,
            email=email,
            message_text=message,
            **data.model_dump(),
        ))
        user = self.users.user_repo.get_by_clerk_id(clerk_id)
        profile = self.profile_repo.get_by_user_id(user.id) if user else None
        if profile:
            profile.whatsapp_redirect_at = _utcnow()
            self.profile_repo.save(profile)
        logger.info("lead %s captured for %s", lead.id, clerk_id)
        return lead, self.redirect_url(message)

    def update_feedback(self, clerk_id: str, lead_id: str, feedback: models.LeadFeedback) -> models.WhatsAppLead:
        lead = self.repo.get_for_clerk(lead_id, clerk_id)
        if not lead:
            raise NotFoundError("Lead not found")
        lead.feedback = feedback
        lead.feedback_at = _utcnow()
        return self.repo.save(lead)

    def get_leads_by_user(self, clerk_id: str) -> List[models.WhatsAppLead]:
        return self.repo.list_for_clerk(clerk_id)

    def pending_feedback(self, now: Optional[datetime] = None) -> List[models.WhatsAppLead]:
        """Leads redirected more than 24 hours ago that still have no feedback."""
        return self.repo.list_pending_before((now or _utcnow()) - PENDING_FEEDBACK_AFTER)


def _dashboard_query(engine, fn):
    with Session(engine) as session:
        return fn(session)


class AdminService:
    """Back-office operations over leads, universities, programs and users."""

    def __init__(self, session: Session):
        self.session = session
        self.lead_repo = repositories.LeadRepository(session)
        self.university_repo = repositories.UniversityRepository(session)
        self.program_repo = repositories.ProgramRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def dashboard_stats(self, now: Optional[datetime] = None) -> dict:
        """Aggregate counters for the admin dashboard.

        Each query runs on its own session in a worker thread so the
        counters are gathered concurrently.
        """
        now = now or _utcnow()
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_ago = now - timedelta(days=7)
        queries = {
            "totalLeads": lambda s: repositories.LeadRepository(s).count(),
            "leadsToday": lambda s: repositories.LeadRepository(s).count(since=start_of_day),
            "leadsThisWeek": lambda s: repositories.LeadRepository(s).count(since=week_ago),
            "totalUsers": lambda s: repositories.UserRepository(s).count(),
            "usersToday": lambda s: repositories.UserRepository(s).count(since=start_of_day),
            "totalUniversities": lambda s: repositories.UniversityRepository(s).count(),
            "leadsByCountry": lambda s: [
                {"country": country or "Unknown", "count": count}
                for country, count in repositories.LeadRepository(s).count_by_country(10)
            ],
            "recentLeads": lambda s: [
                schemas.LeadOut.model_validate(lead).model_dump(mode="json", by_alias=True)
                for lead in repositories.LeadRepository(s).recent(10)
            ],
        }
        engine = self.session.get_bind()
        with ThreadPoolExecutor(max_workers=len(queries)) as pool:
            futures = {key: pool.submit(_dashboard_query, engine, fn) for key, fn in queries.items()}
            return {key: future.result() for key, future in futures.items()}

    # ---- leads ----

    def list_leads(self, page: int = 1, limit: Optional[int] = None, country: Optional[str] = None,
                   feedback: Optional[str] = None, search: Optional[str] = None) -> dict:
        page, limit = admin_page(page, limit)
        leads, total = self.lead_repo.list_page((page - 1) * limit, limit, country, feedback, search)
        return {"leads": leads, "total": total, "page": page, "totalPages": total_pages(total, limit)}

    def get_lead(self, lead_id: str) -> models.WhatsAppLead:
        lead = self.lead_repo.get(lead_id)
        if not lead:
            raise NotFoundError("Lead not found")
        return lead

    def update_lead_notes(self, lead_id: str, notes: str) -> models.WhatsAppLead:
        lead = self.get_lead(lead_id)
        lead.admin_notes = notes
        return self.lead_repo.save(lead)

    def delete_lead(self, lead_id: str) -> None:
        self.lead_repo.delete(self.get_lead(lead_id))

    # ---- universities ----

    def list_universities(self, page: int = 1, limit: Optional[int] = None,
                          search: Optional[str] = None, country: Optional[str] = None) -> dict:
        page, limit = admin_page(page, limit)
        clauses = self.university_repo.filters(country=country, search=search, search_description=False)
        rows, total = self.university_repo.list_page(clauses, (page - 1) * limit, limit)
        return {"universities": rows, "total": total, "page": page, "totalPages": total_pages(total, limit)}

    def get_university(self, university_id: str) -> models.University:
        university = self.university_repo.get(university_id, with_programs=True)
        if not university:
            raise NotFoundError("University not found")
        return university

    def create_university(self, data: schemas.CreateUniversityIn) -> models.University:
        university = self.university_repo.save(models.University(**data.model_dump()))
        logger.info("university %s created", university.id)
        return university

    def update_university(self, university_id: str, data: schemas.UpdateUniversityIn) -> models.University:
        university = self.get_university(university_id)
        return self.university_repo.save(_apply(university, data))

    def delete_university(self, university_id: str) -> None:
        university = self.get_university(university_id)
        self.university_repo.delete(university)
        logger.info("university %s deleted", university_id)

    # ---- programs ----

    def create_program(self, university_id: str, data: schemas.CreateProgramIn) -> models.Program:
        self.get_university(university_id)
        values = data.model_dump(exclude_none=True)
        return self.program_repo.save(models.Program(university_id=university_id, **values))

    def update_program(self, program_id: str, data: schemas.UpdateProgramIn) -> models.Program:
        program = self._get_program(program_id)
        return self.program_repo.save(_apply(program, data))

    def delete_program(self, program_id: str) -> None:
        self.program_repo.delete(self._get_program(program_id))

    def _get_program(self, program_id: str) -> models.Program:
        program = self.program_repo.get(program_id)
        if not program:
            raise NotFoundError("Program not found")
        return program

    # ---- users ----

    def list_users(self, page: int = 1, limit: Optional[int] = None, search: Optional[str] = None,
                   role: Optional[models.Role] = None) -> dict:
        page, limit = admin_page(page, limit)
        users, total = self.user_repo.list_page((page - 1) * limit, limit, search, role)
        return {"users": users, "total": total, "page": page, "totalPages": total_pages(total, limit)}

    def update_user_role(self, user_id: str, role: models.Role) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        user.role = role
        user = self.user_repo.save(user)
        logger.info("user %s role set to %s", user_id, role.value)
        return user
