"""Access control predicates.

Every capability is an explicit membership test over a role set, so adding a
role never silently grants anything.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from .errors import Forbidden

if TYPE_CHECKING:
    from .models import Comment, Event, User

ROLES = {"member", "org_admin", "moderator", "admin"}
EVENT_EDITOR_ROLES = frozenset({"admin", "moderator"})
EVENT_DELETER_ROLES = frozenset({"admin"})
COMMENT_MODERATOR_ROLES = frozenset({"moderator", "admin"})
MODERATOR_ROLES = frozenset({"moderator", "admin"})


@dataclass(frozen=True)
class Principal:
    id: str
    role: str = "member"
    email_verified: bool = False
    organization_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(
            id=user.id,
            role=user.role,
            email_verified=user.is_verified,
            organization_ids=frozenset(org.id for org in user.owned_organizations),
        )


def is_organizer(principal: Principal, event: Event) -> bool:
    if event.organizer_type == "organization":
        return event.organizer_id in principal.organization_ids
    return event.organizer_id == principal.id


def can_edit_event(principal: Principal, event: Event) -> bool:
    return is_organizer(principal, event) or principal.role in EVENT_EDITOR_ROLES


def can_delete_event(principal: Principal, event: Event) -> bool:
    return is_organizer(principal, event) or principal.role in EVENT_DELETER_ROLES


def can_edit_comment(
    principal: Principal, comment: Comment, now: datetime, window: timedelta
) -> bool:
    return comment.author_id == principal.id and now - comment.created_at <= window


def can_delete_comment(principal: Principal, comment: Comment) -> bool:
    return (
        comment.author_id == principal.id or principal.role in COMMENT_MODERATOR_ROLES
    )


def can_moderate(principal: Principal) -> bool:
    return principal.role in MODERATOR_ROLES


def can_resolve_report(principal: Principal) -> bool:
    return principal.role in MODERATOR_ROLES


def require(allowed: bool, message: str = "Forbidden") -> None:
    if not allowed:
        raise Forbidden(message)


def require_verified(principal: Principal, message: str) -> None:
    require(principal.email_verified, message)
