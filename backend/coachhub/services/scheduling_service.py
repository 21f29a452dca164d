# Overview: Service-layer operations for coaching sessions; conflict-checked scheduling and session lifecycle.

"""
Scheduling Service

================================================================================
PURPOSE: Schedule coach/entrepreneur sessions without double-booking a coach
================================================================================

CONFLICT RULE:
    Two sessions of the same coach conflict when both are active
    (scheduled / rescheduled) and their half-open intervals overlap:

        existing.scheduled_at < new_end AND existing.end_time > new_start

    A session ending at 10:00 and another starting at 10:00 do NOT conflict.

SERIALIZATION:
    Every write that can change a coach's active calendar (create, reschedule,
    reassign, status change) first locks the coach's User row and bumps its
    schedule_revision. On databases with row locks the second writer waits; on
    SQLite the optimistic version_id check fails with StaleDataError and
    run_with_retry replays the operation, which then sees the first writer's
    session and reports the conflict.

STATE MACHINE:
    scheduled, rescheduled -> completed | cancelled | no_show | rescheduled
    completed, cancelled, no_show are terminal.

BILLING:
    Once an invoice references a session (payment_id set), its time, duration
    and coach can no longer change; the invoice's line items were priced from
    them.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from .. import repositories
from ..errors import ConflictError, ForbiddenError, ValidationError
from ..extensions import db
from ..models import CoachingSession, SessionAgendaItem, SessionNote, SessionRating, User
from ..models.scheduling import NOTE_ROLES
from ..models.tenancy import ROLE_ADMIN, ROLE_COACH, ROLE_ENTREPRENEUR, ROLE_MANAGER
from ..time_utils import session_end_time, utcnow
from ..validation import (
    ModelValidationPolicy,
    coerce_datetime,
    coerce_int,
    require_choice,
    require_positive_int,
    require_text,
    validate_payload,
)
from .concurrency import lock_for_update, run_with_retry
from .tenant_service import ActorContext, require_participant, require_user_in_org

logger = logging.getLogger(__name__)


STATUS_SCHEDULED = "scheduled"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"
STATUS_NO_SHOW = "no_show"
STATUS_RESCHEDULED = "rescheduled"

VALID_STATUSES = {
    STATUS_SCHEDULED,
    STATUS_COMPLETED,
    STATUS_CANCELLED,
    STATUS_NO_SHOW,
    STATUS_RESCHEDULED,
}

# Sessions in these statuses occupy the coach's calendar
ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_RESCHEDULED)

_ALLOWED_TRANSITIONS = {
    STATUS_SCHEDULED: {STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW, STATUS_RESCHEDULED},
    STATUS_RESCHEDULED: {STATUS_COMPLETED, STATUS_CANCELLED, STATUS_NO_SHOW, STATUS_RESCHEDULED},
}

SCHEDULER_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH)

MAX_DURATION_MINUTES = 24 * 60

SESSION_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "coach_id",
        "entrepreneur_id",
        "manager_id",
        "scheduled_at",
        "duration",
        "location",
        "video_url",
        "summary",
    },
    aliases={"duration": "duration_minutes"},
)

# Patch keys that move the session on the coach's calendar
_SCHEDULE_FIELDS = ("coach_id", "scheduled_at", "duration_minutes")


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check whether a session may move from from_status to to_status.

    Terminal statuses (completed, cancelled, no_show) allow nothing.
    """
    require_choice("status", from_status, VALID_STATUSES)
    require_choice("status", to_status, VALID_STATUSES)
    return to_status in _ALLOWED_TRANSITIONS.get(from_status, set())


def _require_scheduler(actor: ActorContext, coach_id: int | None = None) -> None:
    if actor.role not in SCHEDULER_ROLES:
        raise ForbiddenError("Only admins, managers and coaches can schedule sessions")
    # Coaches manage their own calendar only
    if actor.role == ROLE_COACH and coach_id is not None and coach_id != actor.user_id:
        raise ForbiddenError("Coaches can only manage their own sessions")


def _serialize_coach_schedule(org_id: int, coach_ids) -> None:
    """
    Lock the coaches' rows (ascending id) and bump schedule_revision.

    The flush issues the version-checked UPDATE; a concurrent writer for the
    same coach raises StaleDataError here.
    """
    for coach_id in sorted(set(coach_ids)):
        coach = lock_for_update(
            db.session.query(User).filter(User.id == coach_id, User.org_id == org_id)
        ).first()
        if coach is None:
            continue
        coach.schedule_revision = (coach.schedule_revision or 0) + 1
    db.session.flush()


def find_conflicts(
    org_id: int,
    coach_id: int,
    start: datetime,
    end: datetime,
    exclude_session_id: int | None = None,
) -> list[CoachingSession]:
    """Active sessions of the coach whose interval overlaps [start, end)."""
    query = db.session.query(CoachingSession).filter(
        CoachingSession.org_id == org_id,
        CoachingSession.coach_id == coach_id,
        CoachingSession.status.in_(ACTIVE_STATUSES),
        CoachingSession.scheduled_at < end,
        CoachingSession.end_time > start,
    )
    if exclude_session_id is not None:
        query = query.filter(CoachingSession.id != exclude_session_id)
    return query.order_by(CoachingSession.scheduled_at.asc(), CoachingSession.id.asc()).all()


def check_conflict(
    org_id: int,
    coach_id: int,
    start: datetime,
    end: datetime,
    exclude_session_id: int | None = None,
) -> bool:
    return bool(find_conflicts(org_id, coach_id, start, end, exclude_session_id))


def _raise_conflict(coach_id: int, conflicts: list[CoachingSession]) -> None:
    logger.info(
        "Scheduling conflict",
        extra={"coach_id": coach_id, "conflicting_session_ids": [s.id for s in conflicts]},
    )
    raise ConflictError(
        "Coach has a conflicting session at this time",
        code="SCHEDULING_CONFLICT",
        details={"conflicting_session_ids": [s.id for s in conflicts]},
    )


def _build_agenda(items) -> list[SessionAgendaItem]:
    if items is None:
        return []
    if not isinstance(items, list):
        raise ValidationError("agenda_items must be a list")

    agenda = []
    for position, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError("agenda_items entries must be objects")
        duration = item.get("duration")
        agenda.append(
            SessionAgendaItem(
                position=position,
                title=require_text("agenda_items.title", item.get("title"), max_length=255),
                description=item.get("description"),
                duration_minutes=require_positive_int("agenda_items.duration", duration) if duration is not None else None,
            )
        )
    return agenda


def _validate_duration(value) -> int:
    duration = require_positive_int("duration", value)
    if duration > MAX_DURATION_MINUTES:
        raise ValidationError(f"duration cannot exceed {MAX_DURATION_MINUTES} minutes")
    return duration


def get_session(org_id: int, session_id: int, actor: ActorContext | None = None) -> CoachingSession:
    """Load a session of the organization; with an actor, only staff and participants."""
    session = repositories.sessions.get(org_id, session_id)
    if actor is not None:
        require_participant(
            actor, session.coach_id, session.entrepreneur_id, session.manager_id,
            action="view this session",
        )
    return session


def create_session(
    actor: ActorContext,
    *,
    coach_id: int,
    entrepreneur_id: int,
    manager_id: int,
    scheduled_at,
    duration,
    agenda_items: list | None = None,
    location: str | None = None,
    video_url: str | None = None,
) -> CoachingSession:
    """
    Schedule a new session for a coach.

    Raises:
        ForbiddenError: actor cannot schedule (or coach scheduling for someone else)
        ValidationError: bad input, or a participant is not an active org member with the right role
        ConflictError: the coach already has an active session overlapping the slot
    """
    coach_id = coerce_int("coach_id", coach_id) if coach_id is not None else None
    entrepreneur_id = coerce_int("entrepreneur_id", entrepreneur_id) if entrepreneur_id is not None else None
    manager_id = coerce_int("manager_id", manager_id) if manager_id is not None else None
    _require_scheduler(actor, coach_id)

    start = coerce_datetime("scheduled_at", scheduled_at)
    duration_minutes = _validate_duration(duration)
    end = session_end_time(start, duration_minutes)

    def _op() -> CoachingSession:
        require_user_in_org(coach_id, actor.org_id, role=ROLE_COACH, field="coach_id")
        require_user_in_org(entrepreneur_id, actor.org_id, role=ROLE_ENTREPRENEUR, field="entrepreneur_id")
        require_user_in_org(manager_id, actor.org_id, role=ROLE_MANAGER, field="manager_id")

        _serialize_coach_schedule(actor.org_id, [coach_id])

        conflicts = find_conflicts(actor.org_id, coach_id, start, end)
        if conflicts:
            _raise_conflict(coach_id, conflicts)

        session = CoachingSession(
            org_id=actor.org_id,
            coach_id=coach_id,
            entrepreneur_id=entrepreneur_id,
            manager_id=manager_id,
            status=STATUS_SCHEDULED,
            location=location,
            video_url=video_url,
            created_by_user_id=actor.user_id,
        )
        session.set_schedule(start, duration_minutes)
        session.agenda_items = _build_agenda(agenda_items)
        repositories.sessions.insert(session)

        db.session.commit()
        logger.info(
            "Session scheduled",
            extra={"session_id": session.id, "coach_id": coach_id, "org_id": actor.org_id},
        )
        return session

    return run_with_retry(_op)


def update_session(actor: ActorContext, session_id: int, patch: dict) -> CoachingSession:
    """
    Partially update a session.

    Moving the session (scheduled_at, duration) or reassigning the coach
    re-runs the conflict check against the target coach's calendar, excluding
    the session itself. end_time is recomputed from the new values.
    """
    patch = dict(patch or {})
    agenda_items = patch.pop("agenda_items", None)
    has_agenda = agenda_items is not None
    values = validate_payload(
        model=CoachingSession,
        payload=patch,
        policy=SESSION_UPDATE_POLICY,
    )
    if "duration_minutes" in values:
        values["duration_minutes"] = _validate_duration(values["duration_minutes"])

    def _op() -> CoachingSession:
        session = repositories.sessions.get(actor.org_id, session_id)
        _require_scheduler(actor, session.coach_id)

        new_coach_id = values.get("coach_id", session.coach_id)
        new_start = values.get("scheduled_at", session.scheduled_at)
        new_duration = values.get("duration_minutes", session.duration_minutes)
        moves = (
            new_coach_id != session.coach_id
            or new_start != session.scheduled_at
            or new_duration != session.duration_minutes
        )

        if moves and session.payment_id is not None:
            raise ValidationError(
                "Cannot reschedule or reassign a session that has been invoiced",
                code="SESSION_INVOICED",
                details={"payment_id": session.payment_id},
            )

        if "coach_id" in values:
            _require_scheduler(actor, new_coach_id)
            require_user_in_org(new_coach_id, actor.org_id, role=ROLE_COACH, field="coach_id")
        if "entrepreneur_id" in values:
            require_user_in_org(values["entrepreneur_id"], actor.org_id, role=ROLE_ENTREPRENEUR, field="entrepreneur_id")
        if "manager_id" in values:
            require_user_in_org(values["manager_id"], actor.org_id, role=ROLE_MANAGER, field="manager_id")

        if moves:
            _serialize_coach_schedule(actor.org_id, [session.coach_id, new_coach_id])
            if session.status in ACTIVE_STATUSES:
                new_end = session_end_time(new_start, new_duration)
                conflicts = find_conflicts(
                    actor.org_id, new_coach_id, new_start, new_end, exclude_session_id=session.id
                )
                if conflicts:
                    _raise_conflict(new_coach_id, conflicts)

        for key, value in values.items():
            if key not in _SCHEDULE_FIELDS:
                setattr(session, key, value)
        session.coach_id = new_coach_id
        session.set_schedule(new_start, new_duration)
        if has_agenda:
            session.agenda_items = _build_agenda(agenda_items)

        db.session.commit()
        return session

    return run_with_retry(_op)


def transition_status(actor: ActorContext, session_id: int, new_status: str) -> CoachingSession:
    """
    Move a session to new_status.

    Same-status requests are a no-op. Completing a session without an end_time
    stamps end_time=now.

    Raises:
        ValidationError(INVALID_STATUS_TRANSITION): terminal session or disallowed target
    """
    require_choice("status", new_status, VALID_STATUSES)

    def _op() -> CoachingSession:
        session = repositories.sessions.get(actor.org_id, session_id)
        _require_scheduler(actor, session.coach_id)

        old_status = session.status
        if old_status == new_status:
            return session

        if not can_transition(old_status, new_status):
            raise ValidationError(
                f"Cannot change session status from '{old_status}' to '{new_status}'",
                code="INVALID_STATUS_TRANSITION",
                details={"from": old_status, "to": new_status},
            )

        _serialize_coach_schedule(actor.org_id, [session.coach_id])

        if new_status in ACTIVE_STATUSES and old_status not in ACTIVE_STATUSES:
            conflicts = find_conflicts(
                actor.org_id, session.coach_id, session.scheduled_at, session.end_time,
                exclude_session_id=session.id,
            )
            if conflicts:
                _raise_conflict(session.coach_id, conflicts)

        session.status = new_status
        if new_status == STATUS_COMPLETED and session.end_time is None:
            session.end_time = utcnow()

        db.session.commit()
        logger.info(
            "Session status changed",
            extra={"session_id": session.id, "from_status": old_status, "to_status": new_status},
        )
        return session

    return run_with_retry(_op)


def add_rating(actor: ActorContext, session_id: int, score, comment: str | None = None) -> CoachingSession:
    """
    Rate a completed session (score 1-5). Only the session's entrepreneur
    or staff may rate.

    The new rating becomes the session's current rating; earlier ratings stay
    in its rating history.
    """
    score = coerce_int("score", score)
    if score < 1 or score > 5:
        raise ValidationError("score must be between 1 and 5")
    if comment is not None and not isinstance(comment, str):
        raise ValidationError("comment must be a string")

    def _op() -> CoachingSession:
        session = repositories.sessions.get(actor.org_id, session_id)
        require_participant(actor, session.entrepreneur_id, action="rate this session")

        if session.status != STATUS_COMPLETED:
            raise ValidationError("Can only rate completed sessions", code="SESSION_NOT_COMPLETED")

        session.ratings.append(
            SessionRating(
                score=score,
                comment=comment.strip() if comment else None,
                submitted_by_user_id=actor.user_id,
                submitted_at=utcnow(),
            )
        )
        # Bumps version_id so concurrent raters serialize
        session.updated_at = utcnow()
        db.session.commit()
        return session

    return run_with_retry(_op)


def set_role_note(actor: ActorContext, session_id: int, role: str, text) -> CoachingSession:
    """
    Write the note for one participant role (last write wins).

    Only the session's participant holding that role, or an admin, may write it.
    """
    require_choice("role", role, set(NOTE_ROLES))
    if text is not None and not isinstance(text, str):
        raise ValidationError("notes must be a string")

    def _op() -> CoachingSession:
        session = repositories.sessions.get(actor.org_id, session_id)

        owner_id = {
            ROLE_COACH: session.coach_id,
            ROLE_ENTREPRENEUR: session.entrepreneur_id,
            ROLE_MANAGER: session.manager_id,
        }[role]
        if not actor.is_admin and actor.user_id != owner_id:
            raise ForbiddenError(f"Cannot add {role} notes", code="INSUFFICIENT_PERMISSIONS")

        note = next((n for n in session.role_notes if n.role == role), None)
        if note is None:
            note = SessionNote(role=role)
            session.role_notes.append(note)
        note.text = text
        note.updated_by_user_id = actor.user_id
        note.updated_at = utcnow()

        try:
            db.session.flush()
        except IntegrityError as exc:
            # Another writer created this role's note first; replay as an update
            raise StaleDataError(f"note for role {role} created concurrently") from exc

        db.session.commit()
        return session

    return run_with_retry(_op)
