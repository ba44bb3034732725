"""FastAPI application for Philia Hub."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from importlib.metadata import PackageNotFoundError, version as pkg_version
from pathlib import Path
import tomllib

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import comments, crud, moderation, rsvp
from .config import settings
from .database import SessionLocal
from .errors import (
    Forbidden,
    NotFound,
    PhiliaError,
    RateLimited,
    Unauthenticated,
    ValidationError,
)
from .ics import generate_calendar, generate_ics
from .integrations import GoogleGeocoder, TurnstileVerifier, build_email_sender
from .models import Comment, ContactTicket, Event, Organization, Report, User
from .permissions import Principal
from .ratelimit import RateLimiter
from .scheduler import start_scheduler, stop_scheduler
from .storage import init_db

# Use uvicorn's error logger so messages get the level prefix in the default log
# format.
logger = logging.getLogger("uvicorn.error")

limiter = RateLimiter()
email_sender = build_email_sender()
bot_verifier = TurnstileVerifier()
geocoder = GoogleGeocoder()


def _load_app_version() -> str:
    """Return the current package version, falling back to pyproject for dev runs."""
    try:
        return pkg_version("philiahub")
    except PackageNotFoundError:
        pyproject_path = Path(__file__).resolve().parent.parent / "pyproject.toml"
        if pyproject_path.exists():
            data = tomllib.loads(pyproject_path.read_text())
            project = data.get("project") or {}
            return str(project.get("version") or "dev")
    return "dev"


APP_VERSION = _load_app_version()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    if settings.enable_scheduler:
        start_scheduler(limiter)
    try:
        yield
    finally:
        stop_scheduler()


app = FastAPI(title="Philia Hub", version=APP_VERSION, lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# -------- Error handling --------


@app.exception_handler(PhiliaError)
async def domain_error_handler(request: Request, exc: PhiliaError):
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(
            "Dependency failure on %s %s: %s",
            request.method,
            request.url.path,
            exc.reason,
        )
    return JSONResponse(
        {"detail": exc.reason}, status_code=exc.status_code, headers=headers
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(OperationalError)
async def operational_error_handler(request: Request, exc: OperationalError):
    raw = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    if "database is locked" in raw.lower():
        logger.error(
            "SQLite database is locked while handling %s %s",
            request.method,
            request.url.path,
        )
        detail = "The database is busy at the moment. Please wait a few seconds and try again."
        status = 503
    else:
        logger.error(
            "Operational database error on %s %s: %s",
            request.method,
            request.url.path,
            raw,
        )
        detail = "We hit a database issue. Please try again."
        status = 500
    return JSONResponse({"detail": detail}, status_code=status)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse({"detail": exc.errors()}, status_code=422)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Gracefully handle unexpected errors."""
    logger.exception(
        "Unhandled error while processing %s %s", request.method, request.url.path
    )
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


# -------- Identity --------


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("authorization") or ""
    if not auth_header.lower().startswith("bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    user = crud.get_user_by_api_token(db, _get_bearer_token(request))
    if user is None:
        raise Unauthenticated("Authentication required")
    return user


def get_principal(user: User = Depends(get_current_user)) -> Principal:
    return Principal.from_user(user)


def _require_human(token: str | None, request: Request) -> None:
    if not bot_verifier.verify(token, _client_ip(request)):
        raise Forbidden("Bot verification failed")


# -------- Serialization --------


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize_user(user: User, *, include_private: bool = False) -> dict:
    payload = {
        "id": user.id,
        "name": user.name,
        "display_name": user.display_name,
        "pronouns": user.pronouns,
        "role": user.role,
        "organization_ids": sorted(org.id for org in user.owned_organizations),
    }
    if include_private:
        payload.update(
            {
                "email": user.email,
                "email_verified": user.is_verified,
                "settings": {
                    "email_opt_in": user.email_opt_in,
                    "profile_visibility": user.profile_visibility,
                },
            }
        )
    return payload


def _serialize_event(event: Event) -> dict:
    return {
        "id": event.id,
        "title": event.title,
        "slug": event.slug,
        "organizer": {"type": event.organizer_type, "id": event.organizer_id},
        "starts_at": _iso(event.starts_at),
        "ends_at": _iso(event.ends_at),
        "timezone": event.timezone,
        "location": {
            "place_id": event.place_id,
            "formatted_address": event.formatted_address,
            "latitude": event.latitude,
            "longitude": event.longitude,
            "room_notes": event.room_notes,
        },
        "types": event.types,
        "tags": event.tags,
        "short_description": event.short_description,
        "long_description": event.long_description,
        "accessibility": {
            "asl": event.asl,
            "step_free": event.step_free,
            "quiet_room": event.quiet_room,
            "notes": event.accessibility_notes,
        },
        "cover_image_url": event.cover_image_url,
        "capacity": event.capacity,
        "rsvp_mode": event.rsvp_mode,
        "rsvp_url": event.rsvp_url,
        "visibility": event.visibility,
        "status": event.status,
        "metrics": {
            "views": event.view_count,
            "rsvps": event.rsvp_count,
            "saves": event.save_count,
        },
        "created_at": _iso(event.created_at),
        "updated_at": _iso(event.updated_at),
    }


def _serialize_comment(comment: Comment, reactions: dict[str, list[dict]]) -> dict:
    author = comment.author
    return {
        "id": comment.id,
        "event_id": comment.event_id,
        "parent_id": comment.parent_id,
        "author": {
            "id": comment.author_id,
            "name": (author.display_name or author.name) if author else None,
        },
        "body": comment.body,
        "status": comment.status,
        "created_at": _iso(comment.created_at),
        "edited_at": _iso(comment.edited_at),
        "reactions": reactions.get(comment.id, []),
    }


def _serialize_report(report: Report) -> dict:
    return {
        "id": report.id,
        "target_type": report.target_type,
        "target_id": report.target_id,
        "reporter_id": report.reporter_id,
        "reason": report.reason,
        "status": report.status,
        "moderator_notes": report.moderator_notes,
        "reviewed_by_id": report.reviewed_by_id,
        "reviewed_at": _iso(report.reviewed_at),
        "created_at": _iso(report.created_at),
    }


def _serialize_organization(organization: Organization) -> dict:
    return {
        "id": organization.id,
        "name": organization.name,
        "slug": organization.slug,
        "description": organization.description,
        "tags": list(organization.tags or []),
        "verified": organization.verified,
        "owner_ids": sorted(user.id for user in organization.owners),
        "member_ids": sorted(user.id for user in organization.members),
    }


def _serialize_ticket(ticket: ContactTicket) -> dict:
    return {
        "id": ticket.id,
        "name": ticket.name,
        "email": ticket.email,
        "subject": ticket.subject,
        "message": ticket.message,
        "status": ticket.status,
        "created_at": _iso(ticket.created_at),
    }


# -------- Payloads --------


class SignupPayload(BaseModel):
    name: str
    email: str
    password: str
    pronouns: str | None = None
    age_confirmed: bool = False
    terms_accepted: bool = False
    privacy_accepted: bool = False


class LoginPayload(BaseModel):
    email: str
    password: str


class TokenPayload(BaseModel):
    token: str


class EmailPayload(BaseModel):
    email: str


class PasswordResetPayload(BaseModel):
    token: str
    password: str
    confirm_password: str


class SettingsPayload(BaseModel):
    display_name: str | None = None
    pronouns: str | None = None
    email_opt_in: bool | None = None
    profile_visibility: str | None = None


class LocationPayload(BaseModel):
    place_id: str
    formatted_address: str
    latitude: float
    longitude: float
    room_notes: str | None = None


class AccessibilityPayload(BaseModel):
    asl: bool = False
    step_free: bool = False
    quiet_room: bool = False
    notes: str | None = None


class EventCreatePayload(BaseModel):
    title: str
    starts_at: datetime = Field(..., description="ISO datetime; naive values are UTC")
    ends_at: datetime = Field(..., description="ISO datetime after starts_at")
    timezone: str | None = None
    location: LocationPayload | None = None
    place_query: str | None = Field(
        None, description="Address to geocode when no location is supplied"
    )
    types: list[str]
    tags: list[str] = []
    short_description: str
    long_description: str | None = None
    accessibility: AccessibilityPayload = AccessibilityPayload()
    cover_image_url: str | None = None
    capacity: int | None = Field(None, ge=1)
    rsvp_mode: str = "on_platform"
    rsvp_url: str | None = None
    visibility: str = "public"
    organizer_type: str = "individual"
    organizer_id: str | None = None
    turnstile_token: str | None = None


class EventUpdatePayload(BaseModel):
    title: str | None = None
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    timezone: str | None = None
    location: LocationPayload | None = None
    types: list[str] | None = None
    tags: list[str] | None = None
    short_description: str | None = None
    long_description: str | None = None
    accessibility: AccessibilityPayload | None = None
    cover_image_url: str | None = None
    capacity: int | None = Field(None, ge=1)
    rsvp_mode: str | None = None
    rsvp_url: str | None = None
    visibility: str | None = None


class RSVPPayload(BaseModel):
    status: str


class CommentCreatePayload(BaseModel):
    body: str
    parent_id: str | None = None
    turnstile_token: str | None = None


class CommentEditPayload(BaseModel):
    body: str


class ReactionPayload(BaseModel):
    emoji: str


class ReportPayload(BaseModel):
    target_type: str
    target_id: str
    reason: str


class ReportResolvePayload(BaseModel):
    status: str
    notes: str | None = None


class ModerationPayload(BaseModel):
    target_type: str
    target_id: str
    action: str


class OrganizationPayload(BaseModel):
    name: str
    description: str
    tags: list[str] = []


class ContactPayload(BaseModel):
    name: str
    email: str
    subject: str
    message: str
    turnstile_token: str | None = None


class TicketStatusPayload(BaseModel):
    status: str


def _event_fields(data: dict) -> dict:
    """Flatten nested payload sections into ``crud`` event field names."""
    fields = {
        key: value
        for key, value in data.items()
        if key not in {"location", "accessibility", "place_query", "turnstile_token"}
    }
    location = data.get("location")
    if location:
        fields.update(location)
    # Only keys present in the payload are copied, so partial updates keep the
    # stored flags.
    accessibility = data.get("accessibility") or {}
    for key, value in accessibility.items():
        fields["accessibility_notes" if key == "notes" else key] = value
    return fields


# -------- JSON API (v1): accounts --------


@app.post("/api/v1/auth/signup", status_code=201)
def api_signup(payload: SignupPayload, request: Request, db: Session = Depends(get_db)):
    limiter.hit("auth", f"signup:{_client_ip(request)}")
    user = crud.signup(db, email_sender=email_sender, **payload.model_dump())
    return {"user": _serialize_user(user, include_private=True)}


@app.post("/api/v1/auth/login")
def api_login(payload: LoginPayload, request: Request, db: Session = Depends(get_db)):
    limiter.hit("auth", f"login:{_client_ip(request)}")
    user = crud.authenticate(db, payload.email, payload.password)
    if user is None:
        raise Unauthenticated("Invalid email or password")
    token = user.api_token or crud.issue_api_token(user)
    return {"token": token, "user": _serialize_user(user, include_private=True)}


@app.post("/api/v1/auth/logout", status_code=204)
def api_logout(user: User = Depends(get_current_user)):
    user.api_token = None
    return Response(status_code=204)


@app.post("/api/v1/auth/verify-email")
def api_verify_email(payload: TokenPayload, db: Session = Depends(get_db)):
    user = crud.verify_email(db, payload.token)
    return {"user": _serialize_user(user, include_private=True)}


@app.post("/api/v1/auth/resend-verification", status_code=202)
def api_resend_verification(
    payload: EmailPayload, request: Request, db: Session = Depends(get_db)
):
    limiter.hit("auth", f"resend:{_client_ip(request)}")
    crud.resend_verification(db, payload.email, email_sender=email_sender)
    return {"message": "If that account exists, a verification email is on its way."}


@app.post("/api/v1/auth/forgot-password", status_code=202)
def api_forgot_password(
    payload: EmailPayload, request: Request, db: Session = Depends(get_db)
):
    limiter.hit("auth", f"reset:{_client_ip(request)}")
    crud.request_password_reset(db, payload.email, email_sender=email_sender)
    return {"message": "If that account exists, a reset link is on its way."}


@app.post("/api/v1/auth/reset-password")
def api_reset_password(payload: PasswordResetPayload, db: Session = Depends(get_db)):
    crud.reset_password(
        db,
        payload.token,
        password=payload.password,
        confirm_password=payload.confirm_password,
    )
    return {"message": "Password updated. Please sign in again."}


@app.get("/api/v1/me")
def api_me(user: User = Depends(get_current_user)):
    return {"user": _serialize_user(user, include_private=True)}


@app.patch("/api/v1/me/settings")
def api_update_settings(
    payload: SettingsPayload, user: User = Depends(get_current_user)
):
    crud.update_settings(user, payload.model_dump(exclude_unset=True))
    return {"user": _serialize_user(user, include_private=True)}


@app.get("/api/v1/me/rsvps")
def api_my_rsvps(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    records = rsvp.list_for_user(db, user.id)
    return {
        "rsvps": [
            {"status": record.status, "event": _serialize_event(record.event)}
            for record in records
        ]
    }


@app.get("/api/v1/me/calendar.ics")
def api_my_calendar(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    records = rsvp.list_for_user(db, user.id)
    ics_text = generate_calendar(
        [record.event for record in records],
        base_url=settings.base_url,
        name="My Philia Hub events",
    )
    headers = {"Content-Disposition": 'attachment; filename="philiahub.ics"'}
    return Response(content=ics_text, media_type="text/calendar", headers=headers)


# -------- JSON API (v1): events --------


@app.get("/api/v1/events")
def api_search_events(
    q: str | None = Query(None),
    starts_from: datetime | None = Query(None),
    starts_to: datetime | None = Query(None),
    types: list[str] = Query([]),
    tags: list[str] = Query([]),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.events_per_page, ge=1, le=crud.MAX_EVENTS_PER_PAGE),
    db: Session = Depends(get_db),
):
    events, pagination = crud.search_events(
        db,
        query=q,
        starts_from=starts_from,
        starts_to=starts_to,
        types=types,
        tags=tags,
        page=page,
        limit=limit,
    )
    return {
        "events": [_serialize_event(event) for event in events],
        "pagination": pagination,
    }


@app.post("/api/v1/events", status_code=201)
def api_create_event(
    payload: EventCreatePayload,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    limiter.hit("create_event", f"{principal.id}:{_client_ip(request)}")
    _require_human(payload.turnstile_token, request)
    data = payload.model_dump()
    if payload.location is None:
        if not payload.place_query:
            raise ValidationError("Location is required")
        place = geocoder.lookup(payload.place_query)
        data["location"] = {
            "place_id": place.place_id,
            "formatted_address": place.formatted_address,
            "latitude": place.latitude,
            "longitude": place.longitude,
        }
    event = crud.create_event(db, principal, **_event_fields(data))
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/slug/{slug}")
def api_get_event_by_slug(slug: str, db: Session = Depends(get_db)):
    event = crud.get_event_by_slug(db, slug)
    crud.record_view(db, event)
    return {"event": _serialize_event(event)}


@app.get("/api/v1/events/{event_id}")
def api_get_event(event_id: str, db: Session = Depends(get_db)):
    event = crud.get_event(db, event_id)
    crud.record_view(db, event)
    return {"event": _serialize_event(event)}


@app.patch("/api/v1/events/{event_id}")
def api_update_event(
    event_id: str,
    payload: EventUpdatePayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    event = crud.get_event(db, event_id)
    changes = _event_fields(payload.model_dump(exclude_unset=True))
    event = crud.update_event(db, principal, event, **changes)
    return {"event": _serialize_event(event)}


@app.delete("/api/v1/events/{event_id}", status_code=204)
def api_delete_event(
    event_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    event = crud.get_event(db, event_id)
    crud.delete_event(db, principal, event)
    return Response(status_code=204)


@app.get("/api/v1/events/{event_id}/event.ics")
def api_get_event_ics(event_id: str, db: Session = Depends(get_db)):
    """Serve an event as a downloadable ICS file."""

    event = crud.get_event(db, event_id)
    ics_text = generate_ics(event, base_url=settings.base_url)
    filename = f"{event.slug}.ics"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return Response(content=ics_text, media_type="text/calendar", headers=headers)


# -------- JSON API (v1): RSVPs --------


@app.get("/api/v1/events/{event_id}/rsvp")
def api_get_rsvp(
    event_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    event = crud.get_event(db, event_id)
    return {
        "status": rsvp.status_of(db, event.id, principal.id),
        "rsvps": event.rsvp_count,
    }


@app.put("/api/v1/events/{event_id}/rsvp")
def api_upsert_rsvp(
    event_id: str,
    payload: RSVPPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    record = rsvp.upsert(db, event_id, principal, payload.status)
    return {"status": record.status, "rsvps": record.event.rsvp_count}


@app.delete("/api/v1/events/{event_id}/rsvp", status_code=204)
def api_cancel_rsvp(
    event_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    rsvp.cancel(db, event_id, principal)
    return Response(status_code=204)


# -------- JSON API (v1): comments --------


@app.get("/api/v1/events/{event_id}/comments")
def api_list_comments(event_id: str, db: Session = Depends(get_db)):
    event = crud.get_event(db, event_id)
    threads = comments.list_threaded(db, event.id)
    reactions = comments.reaction_summary(
        db, [comment.id for comment in comments.flatten(threads)]
    )
    return {
        "comments": [
            {
                **_serialize_comment(thread.comment, reactions),
                "replies": [
                    _serialize_comment(reply, reactions) for reply in thread.replies
                ],
            }
            for thread in threads
        ]
    }


@app.post("/api/v1/events/{event_id}/comments", status_code=201)
def api_create_comment(
    event_id: str,
    payload: CommentCreatePayload,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    limiter.hit("comment", f"{principal.id}:{_client_ip(request)}")
    _require_human(payload.turnstile_token, request)
    comment = comments.create(
        db, event_id, principal, payload.body, parent_id=payload.parent_id
    )
    return {"comment": _serialize_comment(comment, {})}


@app.patch("/api/v1/comments/{comment_id}")
def api_edit_comment(
    comment_id: str,
    payload: CommentEditPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    comment = comments.edit(db, comment_id, principal, payload.body)
    reactions = comments.reaction_summary(db, [comment.id])
    return {"comment": _serialize_comment(comment, reactions)}


@app.delete("/api/v1/comments/{comment_id}", status_code=204)
def api_delete_comment(
    comment_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    comments.soft_delete(db, comment_id, principal)
    return Response(status_code=204)


@app.post("/api/v1/comments/{comment_id}/reactions", status_code=201)
def api_add_reaction(
    comment_id: str,
    payload: ReactionPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    comments.add_reaction(db, comment_id, principal, payload.emoji)
    return {"reactions": comments.reaction_summary(db, [comment_id]).get(comment_id, [])}


@app.delete("/api/v1/comments/{comment_id}/reactions", status_code=204)
def api_remove_reaction(
    comment_id: str,
    emoji: str = Query(...),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    comments.remove_reaction(db, comment_id, principal, emoji)
    return Response(status_code=204)


# -------- JSON API (v1): reports & moderation --------


@app.post("/api/v1/reports", status_code=201)
def api_file_report(
    payload: ReportPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    limiter.hit("report", principal.id)
    report = moderation.file_report(
        db,
        principal,
        payload.target_type,
        payload.target_id,
        payload.reason,
        email_sender=email_sender,
    )
    return {"report": _serialize_report(report)}


@app.get("/api/v1/admin/reports")
def api_list_reports(
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    reports = moderation.list_reports(db, principal, status=status, limit=limit)
    return {"reports": [_serialize_report(report) for report in reports]}


@app.post("/api/v1/admin/reports/{report_id}/resolve")
def api_resolve_report(
    report_id: str,
    payload: ReportResolvePayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    report = moderation.resolve_report(
        db, principal, report_id, payload.status, payload.notes
    )
    return {"report": _serialize_report(report)}


@app.post("/api/v1/admin/moderate")
def api_moderate(
    payload: ModerationPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    outcome = moderation.moderate(
        db, principal, payload.target_type, payload.target_id, payload.action
    )
    return {
        "target_type": outcome.target_type,
        "target_id": outcome.target_id,
        "previous_status": outcome.previous_status,
        "status": outcome.new_status,
    }


@app.get("/api/v1/admin/stats")
def api_admin_stats(
    principal: Principal = Depends(get_principal), db: Session = Depends(get_db)
):
    stats = moderation.dashboard_stats(db, principal)
    stats["recent_reports"] = [
        _serialize_report(report) for report in stats["recent_reports"]
    ]
    return stats


@app.patch("/api/v1/admin/contact/{ticket_id}")
def api_update_ticket(
    ticket_id: str,
    payload: TicketStatusPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    ticket = crud.update_ticket_status(db, principal, ticket_id, payload.status)
    return {"ticket": _serialize_ticket(ticket)}


# -------- JSON API (v1): organizations & contact --------


@app.post("/api/v1/organizations", status_code=201)
def api_create_organization(
    payload: OrganizationPayload,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    organization = crud.create_organization(
        db,
        principal,
        name=payload.name,
        description=payload.description,
        tags=payload.tags,
    )
    return {"organization": _serialize_organization(organization)}


@app.get("/api/v1/organizations/{slug}")
def api_get_organization(slug: str, db: Session = Depends(get_db)):
    organization = crud.get_organization_by_slug(db, slug)
    if organization is None:
        raise NotFound("Organization not found")
    return {"organization": _serialize_organization(organization)}


@app.post("/api/v1/contact", status_code=201)
def api_contact(payload: ContactPayload, request: Request, db: Session = Depends(get_db)):
    limiter.hit("contact", _client_ip(request))
    _require_human(payload.turnstile_token, request)
    ticket = crud.create_contact_ticket(
        db,
        name=payload.name,
        email=payload.email,
        subject=payload.subject,
        message=payload.message,
        email_sender=email_sender,
    )
    return {"ticket": {"id": ticket.id, "status": ticket.status}}
