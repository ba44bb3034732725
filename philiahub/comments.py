"""Threaded event comments and emoji reactions.

Threads are at most two levels deep: a reply's parent must be a top-level
comment. Comments are never physically deleted; removal flips ``status``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from .config import settings
from .content import require_clean
from .crud import get_event
from .errors import Forbidden, NotFound, ValidationError
from .models import Comment, Reaction
from .permissions import (
    Principal,
    can_delete_comment,
    can_edit_comment,
    require,
    require_verified,
)
from .utils import require_text, utcnow

logger = logging.getLogger("uvicorn.error")

COMMENT_STATUSES = {"visible", "flagged", "removed"}
ALLOWED_REACTIONS = ("❤️", "👍", "🎉", "😊", "🏳️‍🌈", "🏳️‍⚧️", "💪", "🙌")
MAX_BODY_LENGTH = 2000


@dataclass
class CommentThread:
    comment: Comment
    replies: list[Comment] = field(default_factory=list)


def _clean_body(body: str | None) -> str:
    cleaned = require_text(body, "Comment", min_length=1, max_length=MAX_BODY_LENGTH)
    require_clean(cleaned)
    return cleaned


def get_comment(session: Session, comment_id: str) -> Comment:
    comment = session.get(Comment, comment_id)
    if comment is None or comment.status == "removed":
        raise NotFound("Comment not found")
    return comment


def create(
    session: Session,
    event_id: str,
    principal: Principal,
    body: str,
    parent_id: str | None = None,
) -> Comment:
    require_verified(principal, "Please verify your email before commenting")
    cleaned = require_text(body, "Comment", min_length=1, max_length=MAX_BODY_LENGTH)
    event = get_event(session, event_id)
    if parent_id:
        parent = session.get(Comment, parent_id)
        if parent is None or parent.event_id != event.id or parent.status != "visible":
            raise NotFound("Parent comment not found")
        if parent.parent_id is not None:
            raise ValidationError("Maximum comment depth reached (2 levels)")
    require_clean(cleaned)

    comment = Comment(
        event_id=event.id,
        author_id=principal.id,
        parent_id=parent_id or None,
        body=cleaned,
        status="visible",
        created_at=utcnow(),
    )
    session.add(comment)
    session.flush()
    return comment


def edit(
    session: Session,
    comment_id: str,
    principal: Principal,
    new_body: str,
    *,
    now: datetime | None = None,
) -> Comment:
    now = now or utcnow()
    comment = get_comment(session, comment_id)
    if comment.author_id != principal.id:
        raise Forbidden("You can only edit your own comments")
    window = settings.comment_edit_window
    if not can_edit_comment(principal, comment, now, window):
        minutes = int(window.total_seconds() // 60)
        raise Forbidden(f"Edit window has expired ({minutes} minutes)")
    comment.body = _clean_body(new_body)
    comment.edited_at = now
    session.flush()
    return comment


def soft_delete(session: Session, comment_id: str, principal: Principal) -> Comment:
    comment = get_comment(session, comment_id)
    require(
        can_delete_comment(principal, comment), "You can only delete your own comments"
    )
    comment.status = "removed"
    session.flush()
    logger.info("Comment %s removed by %s", comment.id, principal.id)
    return comment


def list_threaded(session: Session, event_id: str) -> list[CommentThread]:
    """Visible top-level comments newest first, each with visible replies oldest first.

    Replies are only reached through a visible parent, so hiding a parent hides
    its replies without touching their own status.
    """
    stmt = select(Comment).where(
        Comment.event_id == event_id, Comment.status == "visible"
    )
    visible = session.scalars(stmt).all()
    replies_by_parent: dict[str, list[Comment]] = defaultdict(list)
    top_level: list[Comment] = []
    for comment in visible:
        if comment.parent_id is None:
            top_level.append(comment)
        else:
            replies_by_parent[comment.parent_id].append(comment)

    top_level.sort(key=lambda c: (c.created_at, c.id), reverse=True)
    threads = []
    for comment in top_level:
        replies = sorted(
            replies_by_parent.get(comment.id, []), key=lambda c: (c.created_at, c.id)
        )
        threads.append(CommentThread(comment=comment, replies=replies))
    return threads


# -------- Reactions --------


def _require_emoji(emoji: str | None) -> str:
    value = (emoji or "").strip()
    if value not in ALLOWED_REACTIONS:
        raise ValidationError("Unsupported reaction")
    return value


def add_reaction(
    session: Session, comment_id: str, principal: Principal, emoji: str
) -> Reaction:
    """Add a reaction; repeating the same reaction returns the existing one."""
    value = _require_emoji(emoji)
    comment = get_comment(session, comment_id)
    stmt = select(Reaction).where(
        Reaction.comment_id == comment.id,
        Reaction.user_id == principal.id,
        Reaction.emoji == value,
    )
    existing = session.scalars(stmt).first()
    if existing:
        return existing
    reaction = Reaction(comment_id=comment.id, user_id=principal.id, emoji=value)
    session.add(reaction)
    session.flush()
    return reaction


def remove_reaction(
    session: Session, comment_id: str, principal: Principal, emoji: str
) -> None:
    value = _require_emoji(emoji)
    stmt = select(Reaction).where(
        Reaction.comment_id == comment_id,
        Reaction.user_id == principal.id,
        Reaction.emoji == value,
    )
    reaction = session.scalars(stmt).first()
    if reaction is None:
        raise NotFound("Reaction not found")
    session.delete(reaction)
    session.flush()


def reaction_summary(
    session: Session, comment_ids: Iterable[str]
) -> dict[str, list[dict]]:
    """Group reactions per comment by emoji, in the allowed-emoji order."""
    ids = list(comment_ids)
    if not ids:
        return {}
    stmt = select(Reaction).where(Reaction.comment_id.in_(ids))
    grouped: dict[str, dict[str, list[str]]] = defaultdict(lambda: defaultdict(list))
    for reaction in session.scalars(stmt).all():
        grouped[reaction.comment_id][reaction.emoji].append(reaction.user_id)
    summary: dict[str, list[dict]] = {}
    for comment_id, by_emoji in grouped.items():
        summary[comment_id] = [
            {"emoji": emoji, "count": len(by_emoji[emoji]), "user_ids": by_emoji[emoji]}
            for emoji in ALLOWED_REACTIONS
            if emoji in by_emoji
        ]
    return summary


def flatten(threads: Sequence[CommentThread]) -> list[Comment]:
    flat: list[Comment] = []
    for thread in threads:
        flat.append(thread.comment)
        flat.extend(thread.replies)
    return flat
