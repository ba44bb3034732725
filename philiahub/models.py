"""SQLAlchemy models for Philia Hub."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


organization_owners = Table(
    "organization_owners",
    Base.metadata,
    Column(
        "organization_id",
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "user_id",
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)

organization_members = Table(
    "organization_members",
    Base.metadata,
    Column(
        "organization_id",
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "user_id",
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)
    name = Column(String(100), nullable=False)
    display_name = Column(String(100), nullable=True)
    pronouns = Column(String(50), nullable=True)
    role = Column(String(16), nullable=False, default="member")
    email_verified_at = Column(DateTime, nullable=True)
    api_token = Column(String(128), nullable=True, unique=True)
    email_opt_in = Column(Boolean, nullable=False, default=True)
    profile_visibility = Column(String(16), nullable=False, default="public")
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    owned_organizations = relationship(
        "Organization", secondary=organization_owners, back_populates="owners"
    )
    member_organizations = relationship(
        "Organization", secondary=organization_members, back_populates="members"
    )

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at is not None


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    slug = Column(String(128), nullable=False, unique=True)
    description = Column(Text, nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    owners = relationship(
        "User", secondary=organization_owners, back_populates="owned_organizations"
    )
    members = relationship(
        "User", secondary=organization_members, back_populates="member_organizations"
    )


class Event(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(200), nullable=False)
    slug = Column(String(64), nullable=False, unique=True)
    organizer_type = Column(String(16), nullable=False, default="individual")
    organizer_id = Column(String(36), nullable=False, index=True)
    created_by_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    starts_at = Column(DateTime, nullable=False, index=True)
    ends_at = Column(DateTime, nullable=False)
    timezone = Column(String(64), nullable=False, default="America/Detroit")
    place_id = Column(String(255), nullable=False)
    formatted_address = Column(String(500), nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    room_notes = Column(String(200), nullable=True)
    short_description = Column(String(280), nullable=False)
    long_description = Column(Text, nullable=True)
    asl = Column(Boolean, nullable=False, default=False)
    step_free = Column(Boolean, nullable=False, default=False)
    quiet_room = Column(Boolean, nullable=False, default=False)
    accessibility_notes = Column(String(500), nullable=True)
    cover_image_url = Column(String(1000), nullable=True)
    capacity = Column(Integer, nullable=True)
    rsvp_mode = Column(String(16), nullable=False, default="on_platform")
    rsvp_url = Column(String(1000), nullable=True)
    visibility = Column(String(16), nullable=False, default="public")
    status = Column(String(16), nullable=False, default="active", index=True)
    view_count = Column(Integer, nullable=False, default=0)
    rsvp_count = Column(Integer, nullable=False, default=0)
    save_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    labels = relationship(
        "EventLabel", back_populates="event", cascade="all, delete-orphan"
    )
    rsvps = relationship("RSVP", back_populates="event", cascade="all, delete-orphan")
    comments = relationship(
        "Comment", back_populates="event", cascade="all, delete-orphan"
    )

    @property
    def types(self) -> list[str]:
        return sorted(label.value for label in self.labels if label.kind == "type")

    @property
    def tags(self) -> list[str]:
        return sorted(label.value for label in self.labels if label.kind == "tag")

    def set_labels(self, kind: str, values) -> None:
        """Replace all labels of ``kind`` with ``values``."""
        existing = {label.value: label for label in self.labels if label.kind == kind}
        kept = [label for label in self.labels if label.kind != kind]
        self.labels = kept + [
            existing.get(value) or EventLabel(kind=kind, value=value)
            for value in sorted(set(values))
        ]


class EventLabel(Base):
    __tablename__ = "event_labels"
    __table_args__ = (UniqueConstraint("event_id", "kind", "value"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    kind = Column(String(8), nullable=False)
    value = Column(String(64), nullable=False, index=True)

    event = relationship("Event", back_populates="labels")


class RSVP(Base):
    __tablename__ = "rsvps"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_rsvp_event_user"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(String(16), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    event = relationship("Event", back_populates="rsvps")
    user = relationship("User")


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=_uuid)
    event_id = Column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    author_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    parent_id = Column(
        String(36), ForeignKey("comments.id", ondelete="CASCADE"), nullable=True
    )
    body = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="visible")
    created_at = Column(DateTime, default=_now, nullable=False)
    edited_at = Column(DateTime, nullable=True)

    event = relationship("Event", back_populates="comments")
    author = relationship("User")
    reactions = relationship(
        "Reaction", back_populates="comment", cascade="all, delete-orphan"
    )


class Reaction(Base):
    __tablename__ = "reactions"
    __table_args__ = (
        UniqueConstraint("comment_id", "user_id", "emoji", name="uq_reaction"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    comment_id = Column(
        String(36), ForeignKey("comments.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    emoji = Column(String(32), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)

    comment = relationship("Comment", back_populates="reactions")


class Report(Base):
    __tablename__ = "reports"
    __table_args__ = (
        Index(
            "uq_reports_open_target",
            "reporter_id",
            "target_type",
            "target_id",
            unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    target_type = Column(String(16), nullable=False)
    target_id = Column(String(36), nullable=False)
    reporter_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="open", index=True)
    moderator_notes = Column(Text, nullable=True)
    reviewed_by_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    reporter = relationship("User", foreign_keys=[reporter_id])


class ModerationAction(Base):
    __tablename__ = "moderation_actions"

    id = Column(String(36), primary_key=True, default=_uuid)
    target_type = Column(String(16), nullable=False)
    target_id = Column(String(36), nullable=False, index=True)
    action = Column(String(16), nullable=False)
    moderator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    previous_status = Column(String(16), nullable=False)
    new_status = Column(String(16), nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)


class VerificationToken(Base):
    __tablename__ = "verification_tokens"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), nullable=False, index=True)
    token = Column(String(128), nullable=False, unique=True)
    kind = Column(String(16), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=_now, nullable=False)


class ContactTicket(Base):
    __tablename__ = "contact_tickets"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    subject = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    status = Column(String(16), nullable=False, default="open")
    created_at = Column(DateTime, default=_now, nullable=False)
