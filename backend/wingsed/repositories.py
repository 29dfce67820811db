"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
profiles, universities, programs, bookmarks, applications, leads).
Repositories return SQLModel objects and perform commits/refreshes where
appropriate; they never raise HTTP errors.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import selectinload
from sqlmodel import Session, col, select

from . import models


def _count(session: Session, model, clauses: Sequence) -> int:
    stmt = select(func.count()).select_from(model)
    if clauses:
        stmt = stmt.where(*clauses)
    return session.exec(stmt).one()


def _contains(column, term: str):
    """Case-insensitive substring match."""
    return col(column).ilike(f"%{term}%")


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def save(self, obj):
        """Persist `obj` (insert or update) and return the refreshed instance."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.commit()


class UserRepository(_Repository):
    """CRUD operations for `User` objects."""

    def get(self, user_id: str) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_clerk_id(self, clerk_id: str) -> Optional[models.User]:
        """Return a `User` by identity provider id or `None` if not found."""
        stmt = select(models.User).where(models.User.clerk_id == clerk_id)
        return self.session.exec(stmt).first()

    def count(self, since: Optional[datetime] = None) -> int:
        clauses = [models.User.created_at >= since] if since else []
        return _count(self.session, models.User, clauses)

    def list_page(self, offset: int, limit: int, search: Optional[str] = None,
                  role: Optional[models.Role] = None) -> Tuple[List[models.User], int]:
        """Return one page of users (newest first) with their profiles, plus the total."""
        clauses = []
        if search:
            clauses.append(_contains(models.User.email, search))
        if role:
            clauses.append(models.User.role == role)
        stmt = (
            select(models.User)
            .options(selectinload(models.User.student_profile))
            .order_by(col(models.User.created_at).desc())
            .offset(offset)
            .limit(limit)
        )
        if clauses:
            stmt = stmt.where(*clauses)
        return self.session.exec(stmt).all(), _count(self.session, models.User, clauses)


class ProfileRepository(_Repository):
    """Lookups for `StudentProfile` rows."""

    def get_by_user_id(self, user_id: str) -> Optional[models.StudentProfile]:
        stmt = select(models.StudentProfile).where(models.StudentProfile.user_id == user_id)
        return self.session.exec(stmt).first()


class UniversityRepository(_Repository):
    """Queries over the university catalogue."""

    @staticmethod
    def filters(country: Optional[str] = None, fee_min: Optional[int] = None,
                fee_max: Optional[int] = None, search: Optional[str] = None,
                search_description: bool = True) -> list:
        """Build the WHERE clauses shared by listing, search fallback and recommendations."""
        clauses = []
        if country:
            clauses.append(models.University.country == country)
        if fee_min is not None:
            clauses.append(models.University.tuition_fee >= fee_min)
        if fee_max is not None:
            clauses.append(models.University.tuition_fee <= fee_max)
        if search:
            columns = [models.University.name, models.University.city]
            if search_description:
                columns.append(models.University.description)
            clauses.append(or_(*(_contains(c, search) for c in columns)))
        return clauses

    def get(self, university_id: str, with_programs: bool = False) -> Optional[models.University]:
        if not with_programs:
            return self.session.get(models.University, university_id)
        stmt = (
            select(models.University)
            .options(selectinload(models.University.programs))
            .where(models.University.id == university_id)
        )
        return self.session.exec(stmt).first()

    def list_page(self, clauses: list, offset: int, limit: int,
                  with_programs: bool = False) -> Tuple[List[models.University], int]:
        """Return one page of universities ordered by name, plus the total match count."""
        stmt = select(models.University).order_by(models.University.name).offset(offset).limit(limit)
        if clauses:
            stmt = stmt.where(*clauses)
        if with_programs:
            stmt = stmt.options(selectinload(models.University.programs))
        return self.session.exec(stmt).all(), _count(self.session, models.University, clauses)

    def list_cheapest_excluding(self, exclude_ids: List[str], limit: int) -> List[models.University]:
        stmt = select(models.University).order_by(models.University.tuition_fee).limit(limit)
        if exclude_ids:
            stmt = stmt.where(col(models.University.id).notin_(exclude_ids))
        return self.session.exec(stmt).all()

    def list_all(self) -> List[models.University]:
        return self.session.exec(select(models.University).order_by(models.University.name)).all()

    def countries(self) -> List[str]:
        """Distinct countries in ascending order."""
        stmt = select(models.University.country).distinct().order_by(models.University.country)
        return self.session.exec(stmt).all()

    def count(self) -> int:
        return _count(self.session, models.University, [])


class ProgramRepository(_Repository):
    def get(self, program_id: str) -> Optional[models.Program]:
        return self.session.get(models.Program, program_id)


class SavedUniversityRepository(_Repository):
    """Bookmark lookups keyed by (user, university)."""

    def get_for(self, user_id: str, university_id: str) -> Optional[models.SavedUniversity]:
        stmt = select(models.SavedUniversity).where(
            models.SavedUniversity.user_id == user_id,
            models.SavedUniversity.university_id == university_id,
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: str) -> List[models.SavedUniversity]:
        """Bookmarks with their university, newest first."""
        stmt = (
            select(models.SavedUniversity)
            .options(selectinload(models.SavedUniversity.university))
            .where(models.SavedUniversity.user_id == user_id)
            .order_by(col(models.SavedUniversity.created_at).desc())
        )
        return self.session.exec(stmt).all()

    def university_ids_for_user(self, user_id: str) -> List[str]:
        stmt = select(models.SavedUniversity.university_id).where(models.SavedUniversity.user_id == user_id)
        return self.session.exec(stmt).all()


class ApplicationRepository(_Repository):
    """Application lookups; every query is scoped to a user."""

    def get_for_user(self, application_id: str, user_id: str) -> Optional[models.Application]:
        stmt = select(models.Application).where(
            models.Application.id == application_id,
            models.Application.user_id == user_id,
        )
        return self.session.exec(stmt).first()

    def get_for(self, user_id: str, university_id: str) -> Optional[models.Application]:
        stmt = select(models.Application).where(
            models.Application.user_id == user_id,
            models.Application.university_id == university_id,
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: str) -> List[models.Application]:
        """Applications with their university, most recently updated first."""
        stmt = (
            select(models.Application)
            .options(selectinload(models.Application.university))
            .where(models.Application.user_id == user_id)
            .order_by(col(models.Application.updated_at).desc())
        )
        return self.session.exec(stmt).all()

    def statuses_for_user(self, user_id: str) -> List[models.ApplicationStatus]:
        stmt = select(models.Application.status).where(models.Application.user_id == user_id)
        return self.session.exec(stmt).all()


class LeadRepository(_Repository):
    """Queries over captured WhatsApp leads."""

    def get(self, lead_id: str) -> Optional[models.WhatsAppLead]:
        return self.session.get(models.WhatsAppLead, lead_id)

    def get_for_clerk(self, lead_id: str, clerk_id: str) -> Optional[models.WhatsAppLead]:
        stmt = select(models.WhatsAppLead).where(
            models.WhatsAppLead.id == lead_id,
            models.WhatsAppLead.clerk_id == clerk_id,
        )
        return self.session.exec(stmt).first()

    def list_for_clerk(self, clerk_id: str) -> List[models.WhatsAppLead]:
        stmt = (
            select(models.WhatsAppLead)
            .where(models.WhatsAppLead.clerk_id == clerk_id)
            .order_by(col(models.WhatsAppLead.redirected_at).desc())
        )
        return self.session.exec(stmt).all()

    def list_page(self, offset: int, limit: int, country: Optional[str] = None,
                  feedback: Optional[str] = None,
                  search: Optional[str] = None) -> Tuple[List[models.WhatsAppLead], int]:
        """One page of leads, newest first. `feedback="pending"` selects leads without feedback."""
        clauses = []
        if country:
            clauses.append(models.WhatsAppLead.country == country)
        if feedback == "pending":
            clauses.append(col(models.WhatsAppLead.feedback).is_(None))
        elif feedback:
            clauses.append(models.WhatsAppLead.feedback == models.LeadFeedback(feedback))
        if search:
            clauses.append(or_(
                _contains(models.WhatsAppLead.name, search),
                _contains(models.WhatsAppLead.email, search),
            ))
        stmt = (
            select(models.WhatsAppLead)
            .order_by(col(models.WhatsAppLead.redirected_at).desc())
            .offset(offset)
            .limit(limit)
        )
        if clauses:
            stmt = stmt.where(*clauses)
        return self.session.exec(stmt).all(), _count(self.session, models.WhatsAppLead, clauses)

    def list_pending_before(self, cutoff: datetime) -> List[models.WhatsAppLead]:
        stmt = select(models.WhatsAppLead).where(
            models.WhatsAppLead.redirected_at <= cutoff,
            col(models.WhatsAppLead.feedback).is_(None),
        ).order_by(models.WhatsAppLead.redirected_at)
        return self.session.exec(stmt).all()

    def count(self, since: Optional[datetime] = None) -> int:
        clauses = [models.WhatsAppLead.redirected_at >= since] if since else []
        return _count(self.session, models.WhatsAppLead, clauses)

    def count_by_country(self, limit: int = 10) -> List[Tuple[Optional[str], int]]:
        """(country, lead count) pairs, busiest first."""
        n = func.count(models.WhatsAppLead.id)
        stmt = (
            select(models.WhatsAppLead.country, n)
            .group_by(models.WhatsAppLead.country)
            .order_by(n.desc())
            .limit(limit)
        )
        return self.session.exec(stmt).all()

    def recent(self, limit: int = 10) -> List[models.WhatsAppLead]:
        stmt = select(models.WhatsAppLead).order_by(col(models.WhatsAppLead.redirected_at).desc()).limit(limit)
        return self.session.exec(stmt).all()
