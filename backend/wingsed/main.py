"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the WingsEd backend. Controllers
are intentionally thin: they accept requests, delegate to services, and
return JSON responses. Every route lives under `/api`.

Endpoints implemented:
- /api/users: GET /me, PATCH /onboarding-step
- /api/profile: GET, POST, PATCH, PATCH /whatsapp-status
- /api/universities: GET, GET /countries, GET /count,
  GET /recommendations, GET /{id}
- /api/search/universities
- /api/saved-universities: GET, GET /ids, POST /{id}, DELETE /{id},
  GET /{id}/status
- /api/applications: GET, GET /by-status, GET /stats, POST, PATCH /{id},
  DELETE /{id}
- /api/leads: POST /whatsapp-redirect, PATCH /{id}/feedback, GET /my-leads
- /api/admin/...: dashboard stats, leads, universities, programs, users
- /api/webhooks/clerk
"""

import json
import logging
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlmodel import Session
from svix.webhooks import Webhook, WebhookVerificationError

from . import models, schemas, services
from .auth import ClerkUser, first_email, get_current_user, require_admin
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import error_response, register_exception_handlers
from .search import TypesenseService, get_search_service
from .utils.rate_limit import InMemoryRateLimiter

app = FastAPI(title="WingsEd API")
logger = logging.getLogger("wingsed.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

register_exception_handlers(app)
rate_limiter = InMemoryRateLimiter(settings.THROTTLE_LIMIT, settings.THROTTLE_TTL)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "Cross-Origin-Opener-Policy": "same-origin",
}
THROTTLE_EXEMPT_PREFIX = "/api/webhooks"

create_db_and_tables()


def _out(schema, obj) -> dict:
    return schema.model_validate(obj).model_dump(mode="json", by_alias=True)


def _out_list(schema, rows) -> list:
    return [_out(schema, row) for row in rows]


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _request_log(request: Request, started: float, **extra) -> str:
    return json.dumps(
        {
            "request_id": getattr(request.state, "request_id", None),
            "path": request.url.path,
            "method": request.method,
            **extra,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
            "client": _client_host(request),
        },
        ensure_ascii=True,
    )


# Innermost: a crashed route still answers through the header middlewares below.
@app.middleware("http")
async def unhandled_error_middleware(request: Request, call_next):
    started = time.perf_counter()
    try:
        return await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _request_log(request, started))
        return error_response(request, 500, "Internal server error", "Internal Server Error")


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    if request.url.path.startswith(THROTTLE_EXEMPT_PREFIX):
        return await call_next(request)
    allowed, retry_after = rate_limiter.allow(_client_host(request))
    if not allowed:
        response = error_response(
            request, 429, "Too many requests, please try again later.", "Too Many Requests"
        )
        response.headers["Retry-After"] = str(retry_after)
        return response
    return await call_next(request)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    for key, value in SECURITY_HEADERS.items():
        response.headers.setdefault(key, value)
    return response


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", _request_log(request, started, status_code=response.status_code))
    return response


# Added last so it wraps everything above, including 429 responses.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


# ---- users ----

@app.get("/api/users/me")
def get_me(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    """Return the caller's local user, creating it on first sign-in."""
    local = services.UserService(db).get_or_create(user.id, user.email)
    profile = local.student_profile
    return {
        **_out(schemas.UserOut, local),
        "name": user.full_name,
        "studentProfile": _out(schemas.ProfileOut, profile) if profile else None,
    }


@app.patch("/api/users/onboarding-step")
def update_onboarding_step(payload: schemas.UpdateOnboardingStepIn, user: ClerkUser = Depends(get_current_user),
                           db: Session = Depends(get_session)):
    local = services.UserService(db).update_onboarding_step(user.id, payload.step)
    return {"id": local.id, "onboardingStep": local.onboarding_step}


# ---- profile ----

@app.get("/api/profile")
def get_profile(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    profile = services.ProfileService(db).get_profile(user.id)
    return {"profile": _out(schemas.ProfileOut, profile) if profile else None}


@app.post("/api/profile", status_code=201)
def create_profile(payload: schemas.CreateProfileIn, user: ClerkUser = Depends(get_current_user),
                   db: Session = Depends(get_session)):
    profile = services.ProfileService(db).create_profile(user.id, payload)
    return {"profile": _out(schemas.ProfileOut, profile)}


@app.patch("/api/profile")
def update_profile(payload: schemas.UpdateProfileIn, user: ClerkUser = Depends(get_current_user),
                   db: Session = Depends(get_session)):
    profile = services.ProfileService(db).update_profile(user.id, payload)
    return {"profile": _out(schemas.ProfileOut, profile)}


@app.patch("/api/profile/whatsapp-status")
def update_whatsapp_status(payload: schemas.UpdateWhatsAppStatusIn, user: ClerkUser = Depends(get_current_user),
                           db: Session = Depends(get_session)):
    profile = services.ProfileService(db).update_whatsapp_status(user.id, payload.status)
    return {"profile": _out(schemas.ProfileOut, profile)}


# ---- universities (public) ----

@app.get("/api/universities")
def list_universities(
    country: Optional[str] = Query(None, max_length=100),
    budget_min: Optional[int] = Query(None, alias="budgetMin", ge=0),
    budget_max: Optional[int] = Query(None, alias="budgetMax", ge=0),
    search: Optional[str] = Query(None, max_length=255),
    page: int = Query(1, ge=1),
    page_size: int = Query(12, alias="pageSize", ge=1, le=50),
    db: Session = Depends(get_session),
):
    """List universities with INR budget filters and pagination."""
    result = services.UniversityService(db).find_many(country, budget_min, budget_max, search, page, page_size)
    result["data"] = _out_list(schemas.UniversityDetailOut, result["data"])
    return result


@app.get("/api/universities/countries")
def list_countries(db: Session = Depends(get_session)):
    return {"countries": services.UniversityService(db).get_countries()}


@app.get("/api/universities/count")
def count_universities(db: Session = Depends(get_session)):
    return {"count": services.UniversityService(db).get_count()}


@app.get("/api/universities/recommendations")
def get_recommendations(
    country: Optional[str] = Query(None, max_length=100),
    budget_min: Optional[int] = Query(None, alias="budgetMin", ge=0),
    budget_max: Optional[int] = Query(None, alias="budgetMax", ge=0),
    limit: int = Query(6, ge=1, le=50),
    db: Session = Depends(get_session),
):
    rows = services.UniversityService(db).get_recommendations(country, budget_min, budget_max, limit)
    return {"recommendations": _out_list(schemas.UniversityOut, rows)}


@app.get("/api/universities/{university_id}")
def get_university(university_id: str, db: Session = Depends(get_session)):
    university = services.UniversityService(db).find_by_id(university_id)
    return {"university": _out(schemas.UniversityDetailOut, university)}


# ---- search (public) ----

@app.get("/api/search/universities")
def search_universities(
    q: Optional[str] = Query(None, max_length=255),
    country: Optional[str] = Query(None, max_length=100),
    budget_min: Optional[int] = Query(None, alias="budgetMin", ge=0),
    budget_max: Optional[int] = Query(None, alias="budgetMax", ge=0),
    page: int = Query(1, ge=1),
    page_size: int = Query(12, alias="pageSize", ge=1, le=50),
    search: TypesenseService = Depends(get_search_service),
    db: Session = Depends(get_session),
):
    """Full-text search; answers from the database when the index is unavailable."""
    try:
        return search.search(q, country, budget_min, budget_max, page, page_size)
    except Exception as exc:
        logger.warning("typesense search failed, using database fallback: %s", exc)
    return services.UniversityService(db).search_fallback(q, country, budget_min, budget_max, page, page_size)


# ---- saved universities ----

@app.get("/api/saved-universities")
def list_saved(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    rows = services.SavedUniversityService(db).get_saved(user.id)
    return {"savedUniversities": _out_list(schemas.SavedUniversityOut, rows)}


@app.get("/api/saved-universities/ids")
def list_saved_ids(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    return {"ids": services.SavedUniversityService(db).get_saved_ids(user.id)}


@app.post("/api/saved-universities/{university_id}", status_code=201)
def save_university(university_id: str, user: ClerkUser = Depends(get_current_user),
                    db: Session = Depends(get_session)):
    saved = services.SavedUniversityService(db).save(user.id, university_id)
    return {"saved": _out(schemas.SavedUniversityOut, saved)}


@app.delete("/api/saved-universities/{university_id}", status_code=204)
def unsave_university(university_id: str, user: ClerkUser = Depends(get_current_user),
                      db: Session = Depends(get_session)):
    services.SavedUniversityService(db).unsave(user.id, university_id)
    return Response(status_code=204)


@app.get("/api/saved-universities/{university_id}/status")
def saved_status(university_id: str, user: ClerkUser = Depends(get_current_user),
                 db: Session = Depends(get_session)):
    return {"isSaved": services.SavedUniversityService(db).is_saved(user.id, university_id)}


# ---- applications ----

@app.get("/api/applications")
def list_applications(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    rows = services.ApplicationService(db).get_applications(user.id)
    return {"applications": _out_list(schemas.ApplicationOut, rows)}


@app.get("/api/applications/by-status")
def applications_by_status(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    grouped = services.ApplicationService(db).get_grouped(user.id)
    return {"grouped": {status: _out_list(schemas.ApplicationOut, rows) for status, rows in grouped.items()}}


@app.get("/api/applications/stats")
def application_stats(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    return {"stats": services.ApplicationService(db).get_stats(user.id)}


@app.post("/api/applications", status_code=201)
def create_application(payload: schemas.CreateApplicationIn, user: ClerkUser = Depends(get_current_user),
                       db: Session = Depends(get_session)):
    application = services.ApplicationService(db).create(user.id, payload)
    return {"application": _out(schemas.ApplicationOut, application)}


@app.patch("/api/applications/{application_id}")
def update_application(application_id: str, payload: schemas.UpdateApplicationIn,
                       user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    application = services.ApplicationService(db).update(user.id, application_id, payload)
    return {"application": _out(schemas.ApplicationOut, application)}


@app.delete("/api/applications/{application_id}", status_code=204)
def delete_application(application_id: str, user: ClerkUser = Depends(get_current_user),
                       db: Session = Depends(get_session)):
    services.ApplicationService(db).delete(user.id, application_id)
    return Response(status_code=204)


# ---- leads ----

@app.post("/api/leads/whatsapp-redirect", status_code=201)
def create_whatsapp_lead(payload: schemas.CreateWhatsAppLeadIn, user: ClerkUser = Depends(get_current_user),
                         db: Session = Depends(get_session)):
    """Record a lead and hand back the pre-filled WhatsApp link."""
    lead, redirect_url = services.LeadService(db).create_lead(user.id, user.email, payload)
    return {"leadId": lead.id, "redirectUrl": redirect_url}


@app.patch("/api/leads/{lead_id}/feedback")
def update_lead_feedback(lead_id: str, payload: schemas.UpdateFeedbackIn,
                         user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    lead = services.LeadService(db).update_feedback(user.id, lead_id, payload.feedback)
    return {"lead": _out(schemas.LeadOut, lead)}


@app.get("/api/leads/my-leads")
def my_leads(user: ClerkUser = Depends(get_current_user), db: Session = Depends(get_session)):
    return {"leads": _out_list(schemas.LeadOut, services.LeadService(db).get_leads_by_user(user.id))}


# ---- admin ----

@app.get("/api/admin/stats")
def admin_stats(_: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    return {"stats": services.AdminService(db).dashboard_stats()}


@app.get("/api/admin/leads")
def admin_list_leads(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=0),
    country: Optional[str] = Query(None, max_length=100),
    feedback: Optional[str] = Query(None, pattern="^(connected|no_response|pending)$"),
    search: Optional[str] = Query(None, max_length=255),
    _: ClerkUser = Depends(require_admin),
    db: Session = Depends(get_session),
):
    result = services.AdminService(db).list_leads(page, limit, country, feedback, search)
    result["leads"] = _out_list(schemas.LeadOut, result["leads"])
    return result


@app.get("/api/admin/leads/pending-feedback")
def admin_pending_feedback(_: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    return {"leads": _out_list(schemas.LeadOut, services.LeadService(db).pending_feedback())}


@app.get("/api/admin/leads/{lead_id}")
def admin_get_lead(lead_id: str, _: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    return {"lead": _out(schemas.LeadOut, services.AdminService(db).get_lead(lead_id))}


@app.patch("/api/admin/leads/{lead_id}/notes")
def admin_update_lead_notes(lead_id: str, payload: schemas.UpdateLeadNotesIn,
                            _: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    lead = services.AdminService(db).update_lead_notes(lead_id, payload.notes)
    return {"lead": _out(schemas.LeadOut, lead)}


@app.delete("/api/admin/leads/{lead_id}", status_code=204)
def admin_delete_lead(lead_id: str, _: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    services.AdminService(db).delete_lead(lead_id)
    return Response(status_code=204)


@app.get("/api/admin/universities")
def admin_list_universities(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=0),
    search: Optional[str] = Query(None, max_length=255),
    country: Optional[str] = Query(None, max_length=100),
    _: ClerkUser = Depends(require_admin),
    db: Session = Depends(get_session),
):
    result = services.AdminService(db).list_universities(page, limit, search, country)
    result["universities"] = _out_list(schemas.UniversityOut, result["universities"])
    return result


@app.get("/api/admin/universities/{university_id}")
def admin_get_university(university_id: str, _: ClerkUser = Depends(require_admin),
                         db: Session = Depends(get_session)):
    university = services.AdminService(db).get_university(university_id)
    return {"university": _out(schemas.UniversityDetailOut, university)}


@app.post("/api/admin/universities", status_code=201)
def admin_create_university(payload: schemas.CreateUniversityIn, _: ClerkUser = Depends(require_admin),
                            db: Session = Depends(get_session)):
    university = services.AdminService(db).create_university(payload)
    return {"university": _out(schemas.UniversityOut, university)}


@app.patch("/api/admin/universities/{university_id}")
def admin_update_university(university_id: str, payload: schemas.UpdateUniversityIn,
                            _: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    university = services.AdminService(db).update_university(university_id, payload)
    return {"university": _out(schemas.UniversityOut, university)}


@app.delete("/api/admin/universities/{university_id}", status_code=204)
def admin_delete_university(university_id: str, _: ClerkUser = Depends(require_admin),
                            db: Session = Depends(get_session)):
    services.AdminService(db).delete_university(university_id)
    return Response(status_code=204)


@app.post("/api/admin/universities/{university_id}/programs", status_code=201)
def admin_create_program(university_id: str, payload: schemas.CreateProgramIn,
                         _: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    program = services.AdminService(db).create_program(university_id, payload)
    return {"program": _out(schemas.ProgramOut, program)}


@app.patch("/api/admin/programs/{program_id}")
def admin_update_program(program_id: str, payload: schemas.UpdateProgramIn,
                         _: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    program = services.AdminService(db).update_program(program_id, payload)
    return {"program": _out(schemas.ProgramOut, program)}


@app.delete("/api/admin/programs/{program_id}", status_code=204)
def admin_delete_program(program_id: str, _: ClerkUser = Depends(require_admin),
                         db: Session = Depends(get_session)):
    services.AdminService(db).delete_program(program_id)
    return Response(status_code=204)


@app.get("/api/admin/users")
def admin_list_users(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=0),
    search: Optional[str] = Query(None, max_length=255),
    role: Optional[models.Role] = None,
    _: ClerkUser = Depends(require_admin),
    db: Session = Depends(get_session),
):
    result = services.AdminService(db).list_users(page, limit, search, role)
    result["users"] = _out_list(schemas.AdminUserOut, result["users"])
    return result


@app.patch("/api/admin/users/{user_id}/role")
def admin_update_user_role(user_id: str, payload: schemas.UpdateUserRoleIn,
                           _: ClerkUser = Depends(require_admin), db: Session = Depends(get_session)):
    user = services.AdminService(db).update_user_role(user_id, payload.role)
    return {"user": _out(schemas.UserOut, user)}


# ---- webhooks ----

@app.post("/api/webhooks/clerk")
async def clerk_webhook(request: Request, db: Session = Depends(get_session)):
    """Receive Clerk user lifecycle events signed with the shared svix secret."""
    if not settings.CLERK_WEBHOOK_SECRET:
        logger.error("CLERK_WEBHOOK_SECRET is not configured; rejecting webhook")
        raise HTTPException(status_code=400, detail="Webhook verification failed")
    body = await request.body()
    try:
        Webhook(settings.CLERK_WEBHOOK_SECRET).verify(body, dict(request.headers))
    except WebhookVerificationError:
        raise HTTPException(status_code=400, detail="Invalid webhook signature")
    try:
        event = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    event_type = event.get("type")
    data = event.get("data") or {}
    users = services.UserService(db)
    if event_type == "user.created":
        users.create_from_webhook(data.get("id"), first_email(data))
    elif event_type == "user.updated":
        logger.info("user.updated received for %s", data.get("id"))
    elif event_type == "user.deleted":
        if data.get("id"):
            users.delete_by_clerk_id(data["id"])
    else:
        logger.info("ignoring webhook event %s", event_type)
    return {"received": True}
