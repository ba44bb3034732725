from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from conftest import event_fields
from philiahub import crud
from philiahub.errors import Conflict, Forbidden, NotFound, ValidationError
from philiahub.integrations import LogEmailSender
from philiahub.models import ContactTicket, User, VerificationToken
from philiahub.permissions import Principal
from philiahub.utils import utcnow

PASSWORD = "correct horse battery"


def _principal(user):
    return Principal.from_user(user)


def _signup(session, **overrides):
    data = {
        "name": "Robin Example",
        "email": "Robin@Example.com",
        "password": PASSWORD,
        "age_confirmed": True,
        "terms_accepted": True,
        "privacy_accepted": True,
    }
    data.update(overrides)
    return crud.signup(session, **data)


def _token(session, email, kind):
    stmt = select(VerificationToken).where(
        VerificationToken.email == email, VerificationToken.kind == kind
    )
    return session.scalars(stmt).one()


def test_signup_creates_unverified_member_and_sends_link(session):
    outbox = LogEmailSender()
    user = _signup(session, email_sender=outbox)
    session.commit()

    assert user.email == "robin@example.com"
    assert user.role == "member"
    assert not user.is_verified
    assert crud.verify_password(PASSWORD, user.password_hash)

    token = _token(session, user.email, "email")
    to, subject, html = outbox.outbox[0]
    assert to == "robin@example.com"
    assert "Verify" in subject
    assert token.token in html


def test_signup_rejects_duplicate_email_case_insensitively(session):
    _signup(session)
    session.commit()
    with pytest.raises(Conflict, match="already exists"):
        _signup(session, email="ROBIN@example.com")


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"password": "short"}, "at least 8"),
        ({"email": "not-an-email"}, "Invalid email"),
        ({"name": "R"}, "Name"),
        ({"age_confirmed": False}, "18 or older"),
        ({"terms_accepted": False}, "terms of service"),
        ({"privacy_accepted": False}, "privacy policy"),
    ],
)
def test_signup_validation(session, overrides, message):
    with pytest.raises(ValidationError, match=message):
        _signup(session, **overrides)


def test_verify_email_consumes_token(session):
    user = _signup(session)
    token = _token(session, user.email, "email").token
    verified = crud.verify_email(session, token)
    session.commit()
    assert verified.is_verified
    with pytest.raises(ValidationError, match="Invalid or expired token"):
        crud.verify_email(session, token)


def test_expired_verification_token_is_rejected(session):
    user = _signup(session)
    token = _token(session, user.email, "email").token
    later = utcnow() + timedelta(hours=25)
    with pytest.raises(ValidationError):
        crud.verify_email(session, token, now=later)
    assert crud.purge_expired_tokens(session, now=later) == 1


def test_resend_verification_replaces_token(session):
    user = _signup(session)
    first = _token(session, user.email, "email").token
    crud.resend_verification(session, user.email)
    session.commit()
    second = _token(session, user.email, "email").token
    assert second != first


def test_resend_and_reset_ignore_unknown_email(session):
    outbox = LogEmailSender()
    crud.resend_verification(session, "ghost@example.com", email_sender=outbox)
    crud.request_password_reset(session, "ghost@example.com", email_sender=outbox)
    assert outbox.outbox == []


def test_password_reset_flow_revokes_api_token(session, make_user):
    user = make_user(email="reset@example.com", password="old password 1")
    outbox = LogEmailSender()
    crud.request_password_reset(session, user.email, email_sender=outbox)
    token = _token(session, user.email, "password").token
    assert "Reset" in outbox.outbox[0][1]

    with pytest.raises(ValidationError, match="do not match"):
        crud.reset_password(
            session, token, password="new password 1", confirm_password="other one 1"
        )
    crud.reset_password(
        session, token, password="new password 1", confirm_password="new password 1"
    )
    session.commit()
    assert user.api_token is None
    assert crud.authenticate(session, user.email, "new password 1") is not None
    assert crud.authenticate(session, user.email, "old password 1") is None


def test_password_reset_token_expires_after_an_hour(session, make_user):
    user = make_user(password="old password 1")
    crud.request_password_reset(session, user.email)
    token = _token(session, user.email, "password").token
    with pytest.raises(ValidationError):
        crud.reset_password(
            session,
            token,
            password="new password 1",
            confirm_password="new password 1",
            now=utcnow() + timedelta(hours=1, minutes=1),
        )


def test_ensure_oauth_user_creates_verified_account(session, make_user):
    created = crud.ensure_oauth_user(session, email="New@Example.com", name="Sam")
    assert created.is_verified
    assert created.password_hash is None

    existing = make_user(email="old@example.com", verified=False)
    reused = crud.ensure_oauth_user(session, email="old@example.com")
    assert reused.id == existing.id
    assert reused.is_verified


def test_update_settings(session, make_user):
    user = make_user()
    crud.update_settings(
        user,
        {"display_name": "  Sam  ", "pronouns": "they/them", "profile_visibility": "Private"},
    )
    assert user.display_name == "Sam"
    assert user.pronouns == "they/them"
    assert user.profile_visibility == "private"
    with pytest.raises(ValidationError):
        crud.update_settings(user, {"profile_visibility": "everyone"})


def test_create_organization_promotes_creator(session, make_user):
    user = make_user()
    organization = crud.create_organization(
        session,
        _principal(user),
        name="Detroit Queer Hikers",
        description="Monthly hikes around the metro area.",
        tags=["Outdoors", "outdoors", "hiking"],
    )
    session.commit()
    assert organization.slug == "detroit-queer-hikers"
    assert organization.tags == ["hiking", "outdoors"]
    assert user in organization.owners
    assert user in organization.members
    assert user.role == "org_admin"

    with pytest.raises(Conflict):
        crud.create_organization(
            session,
            _principal(user),
            name="Detroit Queer Hikers",
            description="A second group with the same name.",
        )


def test_create_organization_requires_verified_email(session, make_user):
    with pytest.raises(Forbidden):
        crud.create_organization(
            session,
            _principal(make_user(verified=False)),
            name="Unverified Org",
            description="Should not be created at all.",
        )


def test_create_event_defaults(session, make_user):
    organizer = make_user()
    event = crud.create_event(session, _principal(organizer), **event_fields())
    session.commit()
    assert event.slug == "queer-book-club"
    assert event.organizer_type == "individual"
    assert event.organizer_id == organizer.id
    assert event.status == "active"
    assert event.rsvp_count == 0
    assert event.types == ["social"]
    assert event.tags == ["books"]
    assert crud.resolve_organizer(session, event).id == organizer.id


def test_event_slugs_get_numeric_suffixes(session, make_user):
    principal = _principal(make_user())
    slugs = [
        crud.create_event(session, principal, **event_fields()).slug for _ in range(3)
    ]
    assert slugs == ["queer-book-club", "queer-book-club-1", "queer-book-club-2"]
    assert crud.unique_event_slug(session, "!!!") == "event"


def test_create_event_reports_missing_fields(session, make_user):
    fields = event_fields()
    del fields["place_id"]
    del fields["types"]
    with pytest.raises(ValidationError, match="place_id, types"):
        crud.create_event(session, _principal(make_user()), **fields)


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"title": "Hi"}, "Title"),
        ({"short_description": "short"}, "Short description"),
        ({"latitude": 91}, "Latitude"),
        ({"types": ["  "]}, "event type"),
        ({"capacity": 0}, "Capacity"),
        ({"rsvp_mode": "external"}, "External RSVP URL"),
        ({"cover_image_url": "ftp://nope"}, "Cover image"),
        ({"title": "Free crypto giveaway scam"}, "prohibited terms"),
    ],
)
def test_create_event_validation(session, make_user, overrides, message):
    with pytest.raises(ValidationError, match=message):
        crud.create_event(session, _principal(make_user()), **event_fields(**overrides))


def test_end_must_follow_start(session, make_user):
    fields = event_fields()
    fields["ends_at"] = fields["starts_at"]
    with pytest.raises(ValidationError, match="End date must be after start date"):
        crud.create_event(session, _principal(make_user()), **fields)


def test_create_event_for_owned_organization(session, make_user):
    owner = make_user()
    organization = crud.create_organization(
        session,
        _principal(owner),
        name="Trans Book Swap",
        description="Swap books with your neighbors.",
    )
    session.commit()

    event = crud.create_event(
        session,
        _principal(owner),
        organizer_type="organization",
        organizer_id=organization.id,
        **event_fields(),
    )
    assert event.organizer_id == organization.id
    assert event.created_by_id == owner.id

    with pytest.raises(Forbidden):
        crud.create_event(
            session,
            _principal(make_user()),
            organizer_type="organization",
            organizer_id=organization.id,
            **event_fields(),
        )


def test_update_event_permissions_and_fields(session, make_user, make_event):
    organizer = make_user()
    event = make_event(organizer)
    crud.update_event(
        session,
        _principal(organizer),
        event,
        title="Queer Book Club: June",
        tags=["books", "fiction"],
        asl=True,
    )
    assert event.title == "Queer Book Club: June"
    assert event.tags == ["books", "fiction"]
    assert event.asl is True
    # The slug is stable across edits.
    assert event.slug == "queer-book-club"

    with pytest.raises(Forbidden):
        crud.update_event(session, _principal(make_user()), event, title="Hijacked")

    crud.update_event(session, _principal(make_user(role="moderator")), event, capacity=50)
    assert event.capacity == 50


def test_capacity_cannot_drop_below_rsvp_count(session, make_user, make_event):
    organizer = make_user()
    event = make_event(organizer)
    event.rsvp_count = 3
    with pytest.raises(ValidationError, match="current RSVP count"):
        crud.update_event(session, _principal(organizer), event, capacity=2)


def test_update_rejects_end_before_start(session, make_user, make_event):
    organizer = make_user()
    event = make_event(organizer)
    starts_at, ends_at = event.starts_at, event.ends_at
    with pytest.raises(ValidationError, match="End date must be after start date"):
        crud.update_event(
            session, _principal(organizer), event, ends_at=starts_at - timedelta(hours=1)
        )
    with pytest.raises(ValidationError, match="End date must be after start date"):
        crud.update_event(
            session, _principal(organizer), event, starts_at=ends_at + timedelta(days=1)
        )


def test_delete_event_is_soft(session, make_user, make_event):
    organizer = make_user()
    event = make_event(organizer)
    with pytest.raises(Forbidden):
        crud.delete_event(session, _principal(make_user(role="moderator")), event)
    crud.delete_event(session, _principal(organizer), event)
    session.commit()
    assert event.status == "removed"
    with pytest.raises(NotFound):
        crud.get_event(session, event.id)
    with pytest.raises(NotFound):
        crud.get_event_by_slug(session, event.slug)


def test_record_view_increments(session, make_event):
    event = make_event()
    crud.record_view(session, event)
    crud.record_view(session, event)
    assert event.view_count == 2


def test_search_filters_and_ordering(session, make_user, make_event):
    organizer = make_user()
    soon = utcnow().replace(microsecond=0) + timedelta(days=2)
    later = soon + timedelta(days=10)
    hike = make_event(
        organizer,
        title="Sunrise Hike",
        starts_at=later,
        ends_at=later + timedelta(hours=3),
        types=["outdoors"],
        tags=["hiking"],
    )
    book = make_event(
        organizer, title="Book Swap", starts_at=soon, ends_at=soon + timedelta(hours=1)
    )
    hidden = make_event(organizer, title="Private Book Party", visibility="unlisted")
    flagged = make_event(organizer, title="Flagged Book Night")
    flagged.status = "flagged"
    session.commit()

    events, pagination = crud.search_events(session)
    assert [e.id for e in events] == [book.id, hike.id]
    assert pagination == {"page": 1, "limit": 20, "total": 2, "pages": 1}
    assert hidden.id not in [e.id for e in events]

    events, _ = crud.search_events(session, query="HIKE")
    assert [e.id for e in events] == [hike.id]
    events, _ = crud.search_events(session, types=["Outdoors"])
    assert [e.id for e in events] == [hike.id]
    events, _ = crud.search_events(session, tags=["books"])
    assert [e.id for e in events] == [book.id]
    events, _ = crud.search_events(session, starts_from=soon + timedelta(days=1))
    assert [e.id for e in events] == [hike.id]


def test_search_pagination(session, make_user, make_event):
    organizer = make_user()
    start = utcnow().replace(microsecond=0) + timedelta(days=1)
    for offset in range(5):
        starts_at = start + timedelta(hours=offset)
        make_event(organizer, starts_at=starts_at, ends_at=starts_at + timedelta(hours=1))

    events, pagination = crud.search_events(session, page=2, limit=2)
    assert len(events) == 2
    assert pagination == {"page": 2, "limit": 2, "total": 5, "pages": 3}
    _, capped = crud.search_events(session, limit=500)
    assert capped["limit"] == crud.MAX_EVENTS_PER_PAGE


def test_contact_ticket_emails_support_inbox(session, make_user):
    outbox = LogEmailSender()
    ticket = crud.create_contact_ticket(
        session,
        name="Jo",
        email="jo@example.com",
        subject="Accessibility question",
        message="Is the venue for the book club step-free?",
        email_sender=outbox,
    )
    session.commit()
    assert ticket.status == "open"
    assert outbox.outbox[0][1] == "[Contact] Accessibility question"

    with pytest.raises(Forbidden):
        crud.update_ticket_status(
            session, _principal(make_user(role="moderator")), ticket.id, "resolved"
        )
    updated = crud.update_ticket_status(
        session, _principal(make_user(role="admin")), ticket.id, "resolved"
    )
    assert updated.status == "resolved"
    assert session.get(ContactTicket, ticket.id).status == "resolved"


def test_contact_ticket_validation(session):
    with pytest.raises(ValidationError, match="Message"):
        crud.create_contact_ticket(
            session,
            name="Jo",
            email="jo@example.com",
            subject="Hello there",
            message="too short",
        )


def test_user_lookup_helpers(session, make_user):
    user = make_user(email="lookup@example.com")
    assert crud.get_user_by_email(session, " LOOKUP@example.com ").id == user.id
    assert crud.get_user_by_api_token(session, user.api_token).id == user.id
    assert crud.get_user_by_api_token(session, None) is None
    assert session.query(User).count() == 1
