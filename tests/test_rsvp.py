from __future__ import annotations

import pytest

from philiahub import rsvp
from philiahub.errors import CapacityExceeded, Forbidden, NotFound, ValidationError
from philiahub.models import RSVP
from philiahub.permissions import Principal


def _principal(user):
    return Principal.from_user(user)


def test_going_increments_counter(session, make_user, make_event):
    event = make_event()
    guest = make_user()
    record = rsvp.upsert(session, event.id, _principal(guest), "going")
    session.commit()
    assert record.status == "going"
    assert event.rsvp_count == 1
    assert rsvp.status_of(session, event.id, guest.id) == "going"


def test_interested_does_not_touch_counter(session, make_user, make_event):
    event = make_event()
    rsvp.upsert(session, event.id, _principal(make_user()), "interested")
    session.commit()
    assert event.rsvp_count == 0


def test_capacity_blocks_second_going(session, make_user, make_event):
    event = make_event(capacity=1)
    first, second = make_user(), make_user()
    rsvp.upsert(session, event.id, _principal(first), "going")
    session.commit()

    with pytest.raises(CapacityExceeded):
        rsvp.upsert(session, event.id, _principal(second), "going")
    session.rollback()

    session.refresh(event)
    assert event.rsvp_count == 1
    assert rsvp.status_of(session, event.id, second.id) is None


def test_interested_allowed_when_full(session, make_user, make_event):
    event = make_event(capacity=1)
    rsvp.upsert(session, event.id, _principal(make_user()), "going")
    record = rsvp.upsert(session, event.id, _principal(make_user()), "interested")
    session.commit()
    assert record.status == "interested"
    assert event.rsvp_count == 1


def test_interested_to_going_respects_capacity(session, make_user, make_event):
    event = make_event(capacity=1)
    waiting = make_user()
    rsvp.upsert(session, event.id, _principal(waiting), "interested")
    rsvp.upsert(session, event.id, _principal(make_user()), "going")
    session.commit()
    with pytest.raises(CapacityExceeded):
        rsvp.upsert(session, event.id, _principal(waiting), "going")
    session.rollback()
    assert rsvp.status_of(session, event.id, waiting.id) == "interested"


def test_going_cancel_going_keeps_counter_consistent(session, make_user, make_event):
    event = make_event()
    guest = _principal(make_user())
    rsvp.upsert(session, event.id, guest, "going")
    rsvp.cancel(session, event.id, guest)
    rsvp.upsert(session, event.id, guest, "going")
    session.commit()
    assert event.rsvp_count == 1
    assert rsvp.recount(session, event.id) == 1


def test_going_to_interested_releases_seat(session, make_user, make_event):
    event = make_event(capacity=1)
    first, second = _principal(make_user()), _principal(make_user())
    rsvp.upsert(session, event.id, first, "going")
    rsvp.upsert(session, event.id, first, "interested")
    rsvp.upsert(session, event.id, second, "going")
    session.commit()
    assert event.rsvp_count == 1


def test_repeat_going_is_idempotent(session, make_user, make_event):
    event = make_event()
    guest = _principal(make_user())
    rsvp.upsert(session, event.id, guest, "going")
    rsvp.upsert(session, event.id, guest, "going")
    session.commit()
    assert event.rsvp_count == 1
    assert session.query(RSVP).filter_by(event_id=event.id).count() == 1


def test_cancel_without_rsvp_is_not_found(session, make_user, make_event):
    event = make_event()
    with pytest.raises(NotFound):
        rsvp.cancel(session, event.id, _principal(make_user()))


def test_unverified_user_cannot_rsvp(session, make_user, make_event):
    event = make_event()
    with pytest.raises(Forbidden):
        rsvp.upsert(session, event.id, _principal(make_user(verified=False)), "going")


def test_invalid_status_is_rejected(session, make_user, make_event):
    event = make_event()
    with pytest.raises(ValidationError):
        rsvp.upsert(session, event.id, _principal(make_user()), "maybe")


def test_external_events_do_not_take_rsvps(session, make_user, make_event):
    event = make_event(rsvp_mode="external", rsvp_url="https://tickets.example.com/e/1")
    with pytest.raises(ValidationError):
        rsvp.upsert(session, event.id, _principal(make_user()), "going")


def test_removed_event_is_not_found(session, make_user, make_event):
    event = make_event()
    event.status = "removed"
    session.commit()
    with pytest.raises(NotFound):
        rsvp.upsert(session, event.id, _principal(make_user()), "going")


def test_counter_matches_going_rows_after_mixed_activity(session, make_user, make_event):
    event = make_event(capacity=3)
    guests = [_principal(make_user()) for _ in range(4)]
    for guest in guests:
        try:
            rsvp.upsert(session, event.id, guest, "going")
            session.commit()
        except CapacityExceeded:
            session.rollback()
    rsvp.upsert(session, event.id, guests[0], "interested")
    rsvp.cancel(session, event.id, guests[1])
    session.commit()

    going = session.query(RSVP).filter_by(event_id=event.id, status="going").count()
    session.refresh(event)
    assert event.rsvp_count == going == 1


def test_list_for_user_skips_removed_events(session, make_user, make_event):
    guest = make_user()
    kept = make_event(title="Kept Event")
    dropped = make_event(title="Dropped Event")
    rsvp.upsert(session, kept.id, _principal(guest), "going")
    rsvp.upsert(session, dropped.id, _principal(guest), "interested")
    dropped.status = "removed"
    session.commit()
    records = rsvp.list_for_user(session, guest.id)
    assert [record.event_id for record in records] == [kept.id]
