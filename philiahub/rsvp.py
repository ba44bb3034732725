"""RSVP ledger.

``Event.rsvp_count`` always equals the number of ``going`` RSVPs for the event.
Every change to that counter is a single conditional UPDATE, so two requests
racing for the last seat cannot both succeed.
"""

from __future__ import annotations

import logging
from typing import Sequence

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .crud import get_event
from .errors import CapacityExceeded, Conflict, NotFound, ValidationError
from .models import RSVP, Event
from .permissions import Principal, require_verified
from .utils import require_choice, utcnow

logger = logging.getLogger("uvicorn.error")

RSVP_STATUSES = {"going", "interested"}


def _find(session: Session, event_id: str, user_id: str) -> RSVP | None:
    stmt = select(RSVP).where(RSVP.event_id == event_id, RSVP.user_id == user_id)
    return session.scalars(stmt).first()


def _take_seat(session: Session, event: Event) -> None:
    result = session.execute(
        update(Event)
        .where(
            Event.id == event.id,
            or_(Event.capacity.is_(None), Event.rsvp_count < Event.capacity),
        )
        .values(rsvp_count=Event.rsvp_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise CapacityExceeded()


def _release_seat(session: Session, event: Event) -> None:
    session.execute(
        update(Event)
        .where(Event.id == event.id, Event.rsvp_count > 0)
        .values(rsvp_count=Event.rsvp_count - 1)
        .execution_options(synchronize_session=False)
    )


def _sync_count(session: Session, event: Event) -> None:
    session.refresh(event, attribute_names=["rsvp_count"])


def upsert(session: Session, event_id: str, principal: Principal, status: str) -> RSVP:
    """Create or change the principal's RSVP for an event."""
    require_verified(principal, "Please verify your email before RSVPing")
    status = require_choice(status, "Status", RSVP_STATUSES)
    event = get_event(session, event_id)
    if event.rsvp_mode != "on_platform":
        raise ValidationError("RSVPs for this event are handled externally")

    rsvp = _find(session, event.id, principal.id)
    if rsvp is None:
        if status == "going":
            _take_seat(session, event)
        rsvp = RSVP(event_id=event.id, user_id=principal.id, status=status)
        session.add(rsvp)
        try:
            session.flush()
        except IntegrityError as exc:
            # A concurrent request created the row first; the caller rolls back.
            raise Conflict("RSVP changed concurrently, please retry") from exc
        logger.info("RSVP %s for event %s by %s", status, event.id, principal.id)
    elif rsvp.status != status:
        if status == "going":
            _take_seat(session, event)
        elif rsvp.status == "going":
            _release_seat(session, event)
        rsvp.status = status
        rsvp.updated_at = utcnow()
        session.flush()

    _sync_count(session, event)
    return rsvp


def cancel(session: Session, event_id: str, principal: Principal) -> None:
    rsvp = _find(session, event_id, principal.id)
    if rsvp is None:
        raise NotFound("RSVP not found")
    event = session.get(Event, event_id)
    if rsvp.status == "going":
        _release_seat(session, event)
    session.delete(rsvp)
    session.flush()
    _sync_count(session, event)


def status_of(session: Session, event_id: str, user_id: str) -> str | None:
    rsvp = _find(session, event_id, user_id)
    return rsvp.status if rsvp else None


def recount(session: Session, event_id: str) -> int:
    """Recompute the going counter from the RSVP rows."""
    event = session.get(Event, event_id)
    if event is None:
        raise NotFound("Event not found")
    going = session.scalar(
        select(func.count())
        .select_from(RSVP)
        .where(RSVP.event_id == event_id, RSVP.status == "going")
    )
    event.rsvp_count = going or 0
    session.flush()
    return event.rsvp_count


def list_for_user(session: Session, user_id: str) -> Sequence[RSVP]:
    stmt = (
        select(RSVP)
        .join(Event, RSVP.event_id == Event.id)
        .where(RSVP.user_id == user_id, Event.status != "removed")
        .order_by(Event.starts_at.asc())
    )
    return session.scalars(stmt).all()
