from __future__ import annotations

from datetime import timedelta

import pytest

from philiahub import comments, moderation
from philiahub.errors import Forbidden, NotFound, ValidationError
from philiahub.models import Comment
from philiahub.permissions import Principal

HEART = comments.ALLOWED_REACTIONS[0]
PARTY = comments.ALLOWED_REACTIONS[2]


def _principal(user):
    return Principal.from_user(user)


@pytest.fixture()
def thread_setup(session, make_user, make_event):
    event = make_event()
    author = make_user(name="Author")
    return event, author


def test_create_top_level_and_reply(session, thread_setup, make_user):
    event, author = thread_setup
    top = comments.create(session, event.id, _principal(author), "Excited for this!")
    reply = comments.create(
        session, event.id, _principal(make_user()), "Me too", parent_id=top.id
    )
    session.commit()
    assert top.parent_id is None
    assert reply.parent_id == top.id
    assert reply.status == "visible"


def test_reply_to_reply_is_rejected(session, thread_setup):
    event, author = thread_setup
    principal = _principal(author)
    top = comments.create(session, event.id, principal, "Top")
    reply = comments.create(session, event.id, principal, "Reply", parent_id=top.id)
    with pytest.raises(ValidationError, match="Maximum comment depth"):
        comments.create(session, event.id, principal, "Too deep", parent_id=reply.id)


def test_parent_must_belong_to_same_event(session, thread_setup, make_event):
    event, author = thread_setup
    other = make_event(title="Other Event")
    foreign = comments.create(session, other.id, _principal(author), "Elsewhere")
    with pytest.raises(NotFound, match="Parent comment not found"):
        comments.create(
            session, event.id, _principal(author), "Hi", parent_id=foreign.id
        )


def test_body_length_bounds(session, thread_setup):
    event, author = thread_setup
    principal = _principal(author)
    with pytest.raises(ValidationError):
        comments.create(session, event.id, principal, "   ")
    with pytest.raises(ValidationError):
        comments.create(session, event.id, principal, "x" * 2001)
    assert comments.create(session, event.id, principal, "x" * 2000).body == "x" * 2000


def test_content_gate_blocks_banned_terms(session, thread_setup):
    event, author = thread_setup
    with pytest.raises(ValidationError, match="prohibited terms"):
        comments.create(session, event.id, _principal(author), "this is a scam")


def test_unverified_user_cannot_comment(session, thread_setup, make_user):
    event, _ = thread_setup
    with pytest.raises(Forbidden, match="verify your email"):
        comments.create(
            session, event.id, _principal(make_user(verified=False)), "Hello"
        )


def test_comment_on_removed_event_is_not_found(session, thread_setup):
    event, author = thread_setup
    event.status = "removed"
    session.commit()
    with pytest.raises(NotFound):
        comments.create(session, event.id, _principal(author), "Hello")


def test_edit_within_window_sets_edited_at(session, thread_setup):
    event, author = thread_setup
    comment = comments.create(session, event.id, _principal(author), "Original")
    session.commit()
    now = comment.created_at + timedelta(minutes=14, seconds=59)
    edited = comments.edit(session, comment.id, _principal(author), "Updated", now=now)
    assert edited.body == "Updated"
    assert edited.edited_at == now


def test_edit_after_window_is_rejected(session, thread_setup):
    event, author = thread_setup
    comment = comments.create(session, event.id, _principal(author), "Original")
    session.commit()
    now = comment.created_at + timedelta(minutes=15, seconds=1)
    with pytest.raises(Forbidden, match="Edit window has expired"):
        comments.edit(session, comment.id, _principal(author), "Late", now=now)
    assert comment.edited_at is None


def test_only_author_can_edit(session, thread_setup, make_user):
    event, author = thread_setup
    comment = comments.create(session, event.id, _principal(author), "Original")
    admin = make_user(role="admin")
    with pytest.raises(Forbidden, match="your own comments"):
        comments.edit(session, comment.id, _principal(admin), "Hijacked")


def test_soft_delete_by_author_and_moderator(session, thread_setup, make_user):
    event, author = thread_setup
    mine = comments.create(session, event.id, _principal(author), "Mine")
    theirs = comments.create(session, event.id, _principal(author), "Also mine")
    session.commit()

    comments.soft_delete(session, mine.id, _principal(author))
    comments.soft_delete(session, theirs.id, _principal(make_user(role="moderator")))
    session.commit()
    assert mine.status == "removed"
    assert theirs.status == "removed"
    assert session.get(Comment, mine.id) is not None


def test_soft_delete_forbidden_for_other_members(session, thread_setup, make_user):
    event, author = thread_setup
    comment = comments.create(session, event.id, _principal(author), "Mine")
    with pytest.raises(Forbidden):
        comments.soft_delete(session, comment.id, _principal(make_user()))


def test_list_threaded_ordering(session, thread_setup):
    event, author = thread_setup
    principal = _principal(author)
    older = comments.create(session, event.id, principal, "Older top")
    newer = comments.create(session, event.id, principal, "Newer top")
    newer.created_at = older.created_at + timedelta(minutes=5)
    first_reply = comments.create(session, event.id, principal, "R1", parent_id=older.id)
    second_reply = comments.create(session, event.id, principal, "R2", parent_id=older.id)
    first_reply.created_at = older.created_at + timedelta(minutes=1)
    second_reply.created_at = older.created_at + timedelta(minutes=2)
    session.commit()

    threads = comments.list_threaded(session, event.id)
    assert [t.comment.id for t in threads] == [newer.id, older.id]
    assert [r.id for r in threads[1].replies] == [first_reply.id, second_reply.id]
    assert threads[0].replies == []


def test_list_threaded_hides_flagged_and_removed(session, thread_setup, make_user):
    event, author = thread_setup
    principal = _principal(author)
    kept = comments.create(session, event.id, principal, "Kept")
    removed = comments.create(session, event.id, principal, "Removed")
    flagged_reply = comments.create(session, event.id, principal, "Flag", parent_id=kept.id)
    session.commit()
    moderator = _principal(make_user(role="moderator"))
    comments.soft_delete(session, removed.id, principal)
    moderation.moderate(session, moderator, "comment", flagged_reply.id, "flag")
    session.commit()

    threads = comments.list_threaded(session, event.id)
    assert [t.comment.id for t in threads] == [kept.id]
    assert threads[0].replies == []


def test_replies_follow_parent_visibility(session, thread_setup, make_user):
    event, author = thread_setup
    principal = _principal(author)
    parent = comments.create(session, event.id, principal, "Parent")
    reply = comments.create(session, event.id, principal, "Reply", parent_id=parent.id)
    session.commit()
    moderator = _principal(make_user(role="moderator"))

    moderation.moderate(session, moderator, "comment", parent.id, "remove")
    session.commit()
    assert comments.list_threaded(session, event.id) == []
    assert reply.status == "visible"

    moderation.moderate(session, moderator, "comment", parent.id, "restore")
    session.commit()
    threads = comments.list_threaded(session, event.id)
    assert [r.id for r in threads[0].replies] == [reply.id]


def test_reply_to_hidden_parent_is_rejected(session, thread_setup, make_user):
    event, author = thread_setup
    flagged = comments.create(session, event.id, _principal(author), "Flag me")
    deleted = comments.create(session, event.id, _principal(author), "Delete me")
    session.commit()
    moderator = _principal(make_user(role="moderator"))
    moderation.moderate(session, moderator, "comment", flagged.id, "flag")
    comments.soft_delete(session, deleted.id, _principal(author))
    session.commit()

    for parent in (flagged, deleted):
        with pytest.raises(NotFound, match="Parent comment not found"):
            comments.create(
                session, event.id, _principal(make_user()), "Reply", parent_id=parent.id
            )


def test_reactions_are_idempotent_and_grouped(session, thread_setup, make_user):
    event, author = thread_setup
    comment = comments.create(session, event.id, _principal(author), "React to me")
    fan = _principal(make_user())
    first = comments.add_reaction(session, comment.id, fan, PARTY)
    again = comments.add_reaction(session, comment.id, fan, PARTY)
    comments.add_reaction(session, comment.id, _principal(author), PARTY)
    comments.add_reaction(session, comment.id, fan, HEART)
    session.commit()

    assert first.id == again.id
    summary = comments.reaction_summary(session, [comment.id])[comment.id]
    assert [item["emoji"] for item in summary] == [HEART, PARTY]
    assert summary[1]["count"] == 2

    comments.remove_reaction(session, comment.id, fan, PARTY)
    session.commit()
    summary = comments.reaction_summary(session, [comment.id])[comment.id]
    assert summary[1]["count"] == 1


def test_unsupported_reaction_is_rejected(session, thread_setup):
    event, author = thread_setup
    comment = comments.create(session, event.id, _principal(author), "Hi there")
    with pytest.raises(ValidationError):
        comments.add_reaction(session, comment.id, _principal(author), "💩")
