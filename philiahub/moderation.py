"""Reports, moderator actions and the moderation dashboard."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .config import settings
from .errors import Conflict, DuplicateReport, NotFound, ValidationError
from .integrations import EmailSender, send_notification
from .models import Comment, Event, ModerationAction, Report, User
from .permissions import Principal, can_moderate, can_resolve_report, require
from .utils import require_choice, require_text, utcnow

logger = logging.getLogger("uvicorn.error")

# Heterogeneous targets are stored as (kind, id) and resolved through these tables.
TARGET_MODELS = {"event": Event, "comment": Comment, "user": User}
MODERATABLE_MODELS = {"event": Event, "comment": Comment}
BASELINE_STATUS = {"event": "active", "comment": "visible"}
ACTION_STATUS = {"flag": "flagged", "remove": "removed"}
MODERATION_ACTIONS = {"flag", "remove", "restore"}
REPORT_RESOLUTIONS = {"reviewed", "dismissed"}
REPORT_STATUSES = {"open"} | REPORT_RESOLUTIONS


@dataclass(frozen=True)
class ModerationOutcome:
    target_type: str
    target_id: str
    previous_status: str
    new_status: str

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


def _resolve_target(session: Session, models: dict, target_type: str, target_id: str):
    target_type = require_choice(target_type, "Target type", set(models))
    target = session.get(models[target_type], target_id)
    if target is None:
        raise NotFound(f"{target_type.capitalize()} not found")
    return target_type, target


def _open_report(
    session: Session, reporter_id: str, target_type: str, target_id: str
) -> Report | None:
    stmt = select(Report).where(
        Report.reporter_id == reporter_id,
        Report.target_type == target_type,
        Report.target_id == target_id,
        Report.status == "open",
    )
    return session.scalars(stmt).first()


def file_report(
    session: Session,
    principal: Principal,
    target_type: str,
    target_id: str,
    reason: str,
    *,
    email_sender: EmailSender | None = None,
) -> Report:
    """File an open report and notify the support inbox."""
    target_type, target = _resolve_target(
        session, TARGET_MODELS, target_type, target_id
    )
    cleaned_reason = require_text(reason, "Reason", min_length=10, max_length=1000)
    if _open_report(session, principal.id, target_type, target.id):
        raise DuplicateReport()

    report = Report(
        target_type=target_type,
        target_id=target.id,
        reporter_id=principal.id,
        reason=cleaned_reason,
        status="open",
        created_at=utcnow(),
    )
    session.add(report)
    try:
        session.flush()
    except IntegrityError as exc:
        # Lost a race with a concurrent report; the caller rolls back.
        raise DuplicateReport() from exc

    reporter = session.get(User, principal.id)
    send_notification(
        email_sender,
        settings.support_inbox,
        f"[Report] New {target_type} report",
        "report_filed.html",
        report=report,
        reporter_email=reporter.email if reporter else principal.id,
    )
    logger.info(
        "Report %s filed by %s against %s %s",
        report.id,
        principal.id,
        target_type,
        target.id,
    )
    return report


def resolve_report(
    session: Session,
    principal: Principal,
    report_id: str,
    status: str,
    notes: str | None = None,
) -> Report:
    require(can_resolve_report(principal), "Moderator access required")
    status = require_choice(status, "Status", REPORT_RESOLUTIONS)
    cleaned_notes = require_text(notes, "Notes", max_length=2000, optional=True)
    report = session.get(Report, report_id)
    if report is None:
        raise NotFound("Report not found")
    if report.status != "open":
        raise Conflict("Report already resolved")
    report.status = status
    report.moderator_notes = cleaned_notes
    report.reviewed_by_id = principal.id
    report.reviewed_at = utcnow()
    session.flush()
    logger.info("Report %s marked %s by %s", report.id, status, principal.id)
    return report


def moderate(
    session: Session,
    principal: Principal,
    target_type: str,
    target_id: str,
    action: str,
) -> ModerationOutcome:
    """Flag, remove or restore an event or comment. Repeating an action is a no-op."""
    require(can_moderate(principal), "Moderator access required")
    action = require_choice(action, "Action", MODERATION_ACTIONS)
    target_type, target = _resolve_target(
        session, MODERATABLE_MODELS, target_type, target_id
    )
    previous = target.status
    new_status = (
        BASELINE_STATUS[target_type] if action == "restore" else ACTION_STATUS[action]
    )
    target.status = new_status
    session.add(
        ModerationAction(
            target_type=target_type,
            target_id=target.id,
            action=action,
            moderator_id=principal.id,
            previous_status=previous,
            new_status=new_status,
            created_at=utcnow(),
        )
    )
    session.flush()
    logger.info(
        "Moderator %s %s %s %s (%s -> %s)",
        principal.id,
        action,
        target_type,
        target.id,
        previous,
        new_status,
    )
    return ModerationOutcome(target_type, target.id, previous, new_status)


def list_reports(
    session: Session,
    principal: Principal,
    *,
    status: str | None = None,
    limit: int = 50,
) -> Sequence[Report]:
    require(can_resolve_report(principal), "Moderator access required")
    stmt = select(Report).order_by(Report.created_at.desc())
    if status:
        if status not in REPORT_STATUSES:
            raise ValidationError("Unknown report status")
        stmt = stmt.where(Report.status == status)
    return session.scalars(stmt.limit(max(1, min(limit, 200)))).all()


def dashboard_stats(session: Session, principal: Principal) -> dict:
    require(can_moderate(principal), "Moderator access required")

    def _count(model, *criteria) -> int:
        return session.scalar(select(func.count()).select_from(model).where(*criteria)) or 0

    return {
        "open_reports": _count(Report, Report.status == "open"),
        "flagged_events": _count(Event, Event.status == "flagged"),
        "flagged_comments": _count(Comment, Comment.status == "flagged"),
        "total_users": _count(User),
        "recent_reports": list_reports(session, principal, status="open", limit=10),
    }
