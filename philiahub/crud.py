"""CRUD helpers for users, organizations, events and contact tickets."""

from __future__ import annotations

import logging
import math
import secrets
from datetime import datetime
from typing import Any, Iterable, Sequence

import bcrypt
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from .config import settings
from .content import require_clean
from .errors import Conflict, Forbidden, NotFound, ValidationError
from .integrations import EmailSender, send_notification
from .models import (
    ContactTicket,
    Event,
    EventLabel,
    Organization,
    User,
    VerificationToken,
)
from .permissions import (
    Principal,
    can_delete_event,
    can_edit_event,
    require,
    require_verified,
)
from .utils import (
    normalize_email,
    require_choice,
    require_email,
    require_text,
    require_url,
    slugify,
    to_naive_utc,
    utcnow,
)

logger = logging.getLogger("uvicorn.error")

PROFILE_VISIBILITIES = {"public", "members", "private"}
EVENT_VISIBILITIES = {"public", "unlisted"}
EVENT_STATUSES = {"active", "flagged", "removed"}
RSVP_MODES = {"on_platform", "external"}
ORGANIZER_TYPES = {"individual", "organization"}
TICKET_STATUSES = {"open", "in_progress", "resolved", "closed"}
TOKEN_KINDS = {"email", "password"}
SLUG_MAX_LENGTH = 50
MAX_EVENTS_PER_PAGE = 50


def _now() -> datetime:
    return utcnow()


# -------- Users --------


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def _require_password(password: str | None) -> str:
    value = password or ""
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if len(value) > 100:
        raise ValidationError("Password must be at most 100 characters")
    return value


def get_user_by_email(session: Session, email: str | None) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    stmt = select(User).where(func.lower(User.email) == normalized)
    return session.scalars(stmt).first()


def get_user_by_api_token(session: Session, token: str | None) -> User | None:
    if not token:
        return None
    return session.scalars(select(User).where(User.api_token == token)).first()


def issue_api_token(user: User) -> str:
    user.api_token = secrets.token_urlsafe(32)
    return user.api_token


def _issue_token(
    session: Session, *, email: str, kind: str, now: datetime
) -> VerificationToken:
    """Create a fresh token of ``kind``, dropping any earlier ones."""
    session.execute(
        delete(VerificationToken).where(
            VerificationToken.email == email, VerificationToken.kind == kind
        )
    )
    ttl = settings.email_token_ttl if kind == "email" else settings.password_token_ttl
    token = VerificationToken(
        email=email,
        token=secrets.token_urlsafe(32),
        kind=kind,
        expires_at=now + ttl,
        created_at=now,
    )
    session.add(token)
    session.flush()
    return token


def _consume_token(
    session: Session, token: str | None, *, kind: str, now: datetime
) -> VerificationToken:
    stmt = select(VerificationToken).where(
        VerificationToken.token == (token or ""), VerificationToken.kind == kind
    )
    record = session.scalars(stmt).first()
    # Expired rows are left for the scheduled purge.
    if record is None or record.expires_at < now:
        raise ValidationError("Invalid or expired token")
    return record


def signup(
    session: Session,
    *,
    name: str,
    email: str,
    password: str,
    pronouns: str | None = None,
    age_confirmed: bool = False,
    terms_accepted: bool = False,
    privacy_accepted: bool = False,
    email_sender: EmailSender | None = None,
    now: datetime | None = None,
) -> User:
    """Create an unverified account and email a verification link."""
    now = now or _now()
    cleaned_name = require_text(name, "Name", min_length=2, max_length=100)
    normalized_email = require_email(email)
    cleaned_password = _require_password(password)
    cleaned_pronouns = require_text(pronouns, "Pronouns", max_length=50, optional=True)
    if not age_confirmed:
        raise ValidationError("You must confirm you are 18 or older")
    if not terms_accepted:
        raise ValidationError("You must accept the terms of service")
    if not privacy_accepted:
        raise ValidationError("You must accept the privacy policy")
    if get_user_by_email(session, normalized_email):
        raise Conflict("An account with this email already exists")

    user = User(
        name=cleaned_name,
        email=normalized_email,
        password_hash=hash_password(cleaned_password),
        pronouns=cleaned_pronouns,
        role="member",
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    session.flush()

    token = _issue_token(session, email=normalized_email, kind="email", now=now)
    send_notification(
        email_sender,
        normalized_email,
        "Verify your Philia Hub email",
        "verify_email.html",
        name=cleaned_name,
        token=token.token,
        hours=settings.email_token_hours,
    )
    logger.info("Created account %s", user.id)
    return user


def verify_email(session: Session, token: str, *, now: datetime | None = None) -> User:
    """Mark the token's account verified. Already-verified accounts succeed."""
    now = now or _now()
    record = _consume_token(session, token, kind="email", now=now)
    user = get_user_by_email(session, record.email)
    if user is None:
        raise NotFound("User not found")
    if user.email_verified_at is None:
        user.email_verified_at = now
    session.delete(record)
    session.flush()
    return user


def resend_verification(
    session: Session,
    email: str,
    *,
    email_sender: EmailSender | None = None,
    now: datetime | None = None,
) -> None:
    """Send a new verification link; unknown or verified emails are ignored."""
    now = now or _now()
    user = get_user_by_email(session, email)
    if user is None or user.is_verified:
        return
    token = _issue_token(session, email=user.email, kind="email", now=now)
    send_notification(
        email_sender,
        user.email,
        "Verify your Philia Hub email",
        "verify_email.html",
        name=user.name,
        token=token.token,
        hours=settings.email_token_hours,
    )


def request_password_reset(
    session: Session,
    email: str,
    *,
    email_sender: EmailSender | None = None,
    now: datetime | None = None,
) -> None:
    now = now or _now()
    user = get_user_by_email(session, email)
    if user is None:
        return
    token = _issue_token(session, email=user.email, kind="password", now=now)
    send_notification(
        email_sender,
        user.email,
        "Reset your Philia Hub password",
        "password_reset.html",
        name=user.name,
        token=token.token,
        hours=settings.password_token_hours,
    )


def reset_password(
    session: Session,
    token: str,
    *,
    password: str,
    confirm_password: str,
    now: datetime | None = None,
) -> User:
    now = now or _now()
    cleaned_password = _require_password(password)
    if cleaned_password != confirm_password:
        raise ValidationError("Passwords do not match")
    record = _consume_token(session, token, kind="password", now=now)
    user = get_user_by_email(session, record.email)
    if user is None:
        raise NotFound("User not found")
    user.password_hash = hash_password(cleaned_password)
    user.api_token = None
    session.delete(record)
    session.flush()
    return user


def purge_expired_tokens(session: Session, *, now: datetime | None = None) -> int:
    now = now or _now()
    result = session.execute(
        delete(VerificationToken).where(VerificationToken.expires_at < now)
    )
    return result.rowcount or 0


def authenticate(session: Session, email: str, password: str) -> User | None:
    user = get_user_by_email(session, email)
    if user is None or not verify_password(password or "", user.password_hash):
        return None
    return user


def ensure_oauth_user(session: Session, *, email: str, name: str | None = None) -> User:
    """Return the account for an OAuth login, creating a verified one if new."""
    normalized_email = require_email(email)
    user = get_user_by_email(session, normalized_email)
    if user:
        if user.email_verified_at is None:
            user.email_verified_at = _now()
        return user
    fallback_name = normalized_email.split("@", 1)[0]
    user = User(
        name=(name or "").strip()[:100] or fallback_name,
        email=normalized_email,
        password_hash=None,
        role="member",
        email_verified_at=_now(),
    )
    session.add(user)
    session.flush()
    return user


def update_settings(user: User, changes: dict[str, Any]) -> User:
    if "display_name" in changes:
        user.display_name = require_text(
            changes["display_name"], "Display name", max_length=100, optional=True
        )
    if "pronouns" in changes:
        user.pronouns = require_text(
            changes["pronouns"], "Pronouns", max_length=50, optional=True
        )
    if "email_opt_in" in changes and changes["email_opt_in"] is not None:
        user.email_opt_in = bool(changes["email_opt_in"])
    if "profile_visibility" in changes and changes["profile_visibility"] is not None:
        user.profile_visibility = require_choice(
            changes["profile_visibility"], "Profile visibility", PROFILE_VISIBILITIES
        )
    user.updated_at = _now()
    return user


# -------- Organizations --------


def _clean_labels(values: Iterable[str] | None) -> list[str]:
    cleaned = []
    for value in values or ():
        normalized = (value or "").strip().lower()
        if not normalized:
            continue
        if len(normalized) > 64:
            raise ValidationError("Labels must be at most 64 characters")
        cleaned.append(normalized)
    return sorted(set(cleaned))


def get_organization(session: Session, organization_id: str) -> Organization:
    organization = session.get(Organization, organization_id)
    if organization is None:
        raise NotFound("Organization not found")
    return organization


def get_organization_by_slug(session: Session, slug: str) -> Organization | None:
    normalized = (slug or "").strip().lower()
    if not normalized:
        return None
    stmt = select(Organization).where(Organization.slug == normalized)
    return session.scalars(stmt).first()


def create_organization(
    session: Session,
    principal: Principal,
    *,
    name: str,
    description: str,
    tags: Iterable[str] | None = None,
) -> Organization:
    require_verified(principal, "Please verify your email before creating organizations")
    cleaned_name = require_text(name, "Name", min_length=2, max_length=100)
    cleaned_description = require_text(
        description, "Description", min_length=10, max_length=1000
    )
    slug = slugify(cleaned_name)
    if not slug:
        raise ValidationError("Organization name must contain letters or numbers")
    if get_organization_by_slug(session, slug):
        raise Conflict("An organization with this name already exists")

    user = session.get(User, principal.id)
    if user is None:
        raise NotFound("User not found")
    organization = Organization(
        name=cleaned_name,
        slug=slug,
        description=cleaned_description,
        tags=_clean_labels(tags),
    )
    organization.owners.append(user)
    organization.members.append(user)
    if user.role == "member":
        user.role = "org_admin"
    session.add(organization)
    session.flush()
    logger.info("User %s created organization %s", user.id, organization.slug)
    return organization


# -------- Events --------


ORGANIZER_MODELS = {"individual": User, "organization": Organization}


def resolve_organizer(session: Session, event: Event) -> User | Organization | None:
    model = ORGANIZER_MODELS[event.organizer_type]
    return session.get(model, event.organizer_id)


def unique_event_slug(
    session: Session, title: str, *, exclude_id: str | None = None
) -> str:
    base = slugify(title, max_length=SLUG_MAX_LENGTH) or "event"
    stmt = select(Event.slug).where(
        or_(Event.slug == base, Event.slug.like(f"{base}-%"))
    )
    if exclude_id:
        stmt = stmt.where(Event.id != exclude_id)
    taken = set(session.scalars(stmt).all())
    if base not in taken:
        return base
    suffix = 1
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"


def _clean_event_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize whichever event fields are present."""
    cleaned: dict[str, Any] = {}
    if "title" in data:
        cleaned["title"] = require_text(
            data["title"], "Title", min_length=3, max_length=200
        )
    if "short_description" in data:
        cleaned["short_description"] = require_text(
            data["short_description"],
            "Short description",
            min_length=10,
            max_length=280,
        )
    if "long_description" in data:
        cleaned["long_description"] = require_text(
            data["long_description"],
            "Long description",
            max_length=5000,
            optional=True,
        )
    for key in ("starts_at", "ends_at"):
        if key in data:
            if not isinstance(data[key], datetime):
                raise ValidationError(f"{key} must be a datetime")
            cleaned[key] = to_naive_utc(data[key])
    if "timezone" in data:
        cleaned["timezone"] = (
            require_text(data["timezone"], "Timezone", max_length=64, optional=True)
            or settings.default_timezone
        )
    if "place_id" in data:
        cleaned["place_id"] = require_text(data["place_id"], "Place", max_length=255)
    if "formatted_address" in data:
        cleaned["formatted_address"] = require_text(
            data["formatted_address"], "Address", max_length=500
        )
    if "latitude" in data:
        latitude = float(data["latitude"])
        if not -90 <= latitude <= 90:
            raise ValidationError("Latitude must be between -90 and 90")
        cleaned["latitude"] = latitude
    if "longitude" in data:
        longitude = float(data["longitude"])
        if not -180 <= longitude <= 180:
            raise ValidationError("Longitude must be between -180 and 180")
        cleaned["longitude"] = longitude
    if "room_notes" in data:
        cleaned["room_notes"] = require_text(
            data["room_notes"], "Room notes", max_length=200, optional=True
        )
    if "types" in data:
        types = _clean_labels(data["types"])
        if not types:
            raise ValidationError("At least one event type is required")
        cleaned["types"] = types
    if "tags" in data:
        cleaned["tags"] = _clean_labels(data["tags"])
    for flag in ("asl", "step_free", "quiet_room"):
        if flag in data:
            cleaned[flag] = bool(data[flag])
    if "accessibility_notes" in data:
        cleaned["accessibility_notes"] = require_text(
            data["accessibility_notes"],
            "Accessibility notes",
            max_length=500,
            optional=True,
        )
    if "cover_image_url" in data:
        cover = (data["cover_image_url"] or "").strip()
        cleaned["cover_image_url"] = require_url(cover, "Cover image") if cover else None
    if "capacity" in data:
        capacity = data["capacity"]
        if capacity is not None:
            capacity = int(capacity)
            if capacity < 1:
                raise ValidationError("Capacity must be at least 1")
        cleaned["capacity"] = capacity
    if "rsvp_mode" in data:
        cleaned["rsvp_mode"] = require_choice(data["rsvp_mode"], "RSVP mode", RSVP_MODES)
    if "rsvp_url" in data:
        url = (data["rsvp_url"] or "").strip()
        cleaned["rsvp_url"] = require_url(url, "RSVP URL") if url else None
    if "visibility" in data:
        cleaned["visibility"] = require_choice(
            data["visibility"], "Visibility", EVENT_VISIBILITIES
        )
    return cleaned


def _check_event_consistency(event: Event) -> None:
    if event.ends_at <= event.starts_at:
        raise ValidationError("End date must be after start date")
    if event.rsvp_mode == "external" and not event.rsvp_url:
        raise ValidationError("External RSVP URL is required")
    if event.capacity is not None and event.capacity < (event.rsvp_count or 0):
        raise ValidationError("Capacity cannot be lower than the current RSVP count")


def _apply_event_fields(event: Event, cleaned: dict[str, Any]) -> None:
    for key, value in cleaned.items():
        if key in {"types", "tags"}:
            event.set_labels(key[:-1], value)
        else:
            setattr(event, key, value)


REQUIRED_EVENT_FIELDS = (
    "title",
    "starts_at",
    "ends_at",
    "place_id",
    "formatted_address",
    "latitude",
    "longitude",
    "short_description",
    "types",
)


def create_event(
    session: Session,
    principal: Principal,
    *,
    organizer_type: str = "individual",
    organizer_id: str | None = None,
    **fields: Any,
) -> Event:
    """Create an active event organized by the principal or one of their orgs."""
    require_verified(principal, "Please verify your email before creating events")
    missing = [name for name in REQUIRED_EVENT_FIELDS if fields.get(name) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    cleaned = _clean_event_fields(fields)
    require_clean(cleaned["title"], "Title")
    require_clean(cleaned["short_description"], "Short description")

    organizer_type = require_choice(organizer_type, "Organizer type", ORGANIZER_TYPES)
    if organizer_type == "organization":
        if not organizer_id:
            raise ValidationError("Organization is required")
        get_organization(session, organizer_id)
        require(
            organizer_id in principal.organization_ids,
            "You can only create events for organizations you own",
        )
    else:
        organizer_id = principal.id

    now = _now()
    event = Event(
        slug=unique_event_slug(session, cleaned["title"]),
        organizer_type=organizer_type,
        organizer_id=organizer_id,
        created_by_id=principal.id,
        timezone=settings.default_timezone,
        rsvp_mode="on_platform",
        visibility="public",
        status="active",
        view_count=0,
        rsvp_count=0,
        save_count=0,
        created_at=now,
        updated_at=now,
    )
    _apply_event_fields(event, cleaned)
    _check_event_consistency(event)
    session.add(event)
    session.flush()
    logger.info("Event %s created by %s", event.slug, principal.id)
    return event


def update_event(
    session: Session, principal: Principal, event: Event, **changes: Any
) -> Event:
    require(can_edit_event(principal, event), "You can only edit your own events")
    if event.status == "removed":
        raise NotFound("Event not found")
    cleaned = _clean_event_fields(changes)
    if "title" in cleaned:
        require_clean(cleaned["title"], "Title")
    if "short_description" in cleaned:
        require_clean(cleaned["short_description"], "Short description")
    _apply_event_fields(event, cleaned)
    _check_event_consistency(event)
    event.updated_at = _now()
    session.flush()
    return event


def delete_event(session: Session, principal: Principal, event: Event) -> Event:
    require(can_delete_event(principal, event), "You can only delete your own events")
    event.status = "removed"
    event.updated_at = _now()
    session.flush()
    logger.info("Event %s removed by %s", event.id, principal.id)
    return event


def get_event(session: Session, event_id: str) -> Event:
    """Return a non-removed event or raise ``NotFound``."""
    event = session.get(Event, event_id)
    if event is None or event.status == "removed":
        raise NotFound("Event not found")
    return event


def get_event_by_slug(session: Session, slug: str) -> Event:
    stmt = select(Event).where(Event.slug == (slug or "").strip().lower())
    event = session.scalars(stmt).first()
    if event is None or event.status == "removed":
        raise NotFound("Event not found")
    return event


def record_view(session: Session, event: Event) -> None:
    session.execute(
        update(Event)
        .where(Event.id == event.id)
        .values(view_count=Event.view_count + 1)
        .execution_options(synchronize_session=False)
    )
    session.refresh(event, attribute_names=["view_count"])


def _label_filter(kind: str, values: Sequence[str]):
    return Event.id.in_(
        select(EventLabel.event_id).where(
            EventLabel.kind == kind, EventLabel.value.in_(values)
        )
    )


def search_events(
    session: Session,
    *,
    query: str | None = None,
    starts_from: datetime | None = None,
    starts_to: datetime | None = None,
    types: Iterable[str] | None = None,
    tags: Iterable[str] | None = None,
    page: int = 1,
    limit: int | None = None,
) -> tuple[Sequence[Event], dict[str, int]]:
    """Search active public events, soonest first."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or settings.events_per_page), 1), MAX_EVENTS_PER_PAGE)
    filters = [Event.status == "active", Event.visibility == "public"]
    text = (query or "").strip()
    if text:
        pattern = f"%{text}%"
        filters.append(
            or_(
                Event.title.ilike(pattern),
                Event.short_description.ilike(pattern),
                Event.long_description.ilike(pattern),
            )
        )
    if starts_from:
        filters.append(Event.starts_at >= to_naive_utc(starts_from))
    if starts_to:
        filters.append(Event.starts_at <= to_naive_utc(starts_to))
    type_values = _clean_labels(types)
    if type_values:
        filters.append(_label_filter("type", type_values))
    tag_values = _clean_labels(tags)
    if tag_values:
        filters.append(_label_filter("tag", tag_values))

    total = session.scalar(select(func.count()).select_from(Event).where(*filters)) or 0
    stmt = (
        select(Event)
        .where(*filters)
        .order_by(Event.starts_at.asc(), Event.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    events = session.scalars(stmt).all()
    pagination = {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if total else 0,
    }
    return events, pagination


# -------- Contact tickets --------


def create_contact_ticket(
    session: Session,
    *,
    name: str,
    email: str,
    subject: str,
    message: str,
    email_sender: EmailSender | None = None,
) -> ContactTicket:
    ticket = ContactTicket(
        name=require_text(name, "Name", min_length=2, max_length=100),
        email=require_email(email),
        subject=require_text(subject, "Subject", min_length=5, max_length=200),
        message=require_text(message, "Message", min_length=20, max_length=5000),
        status="open",
    )
    session.add(ticket)
    session.flush()
    send_notification(
        email_sender,
        settings.support_inbox,
        f"[Contact] {ticket.subject}",
        "contact_ticket.html",
        ticket=ticket,
    )
    return ticket


def update_ticket_status(
    session: Session, principal: Principal, ticket_id: str, status: str
) -> ContactTicket:
    require(principal.role == "admin", "Only admins can manage contact tickets")
    ticket = session.get(ContactTicket, ticket_id)
    if ticket is None:
        raise NotFound("Ticket not found")
    ticket.status = require_choice(status, "Status", TICKET_STATUSES)
    session.flush()
    return ticket
