# Overview: Service-layer operations for goals; milestone-driven progress and the append-only update log.

"""
Goal Progress Service

PROGRESS RULES:
- progress is always clamped to [0, 100]
- with milestones: progress = round(100 * completed / total), half up
- progress >= 100 forces status = completed
- not_started with progress > 0 moves to in_progress
- a goal completed by reaching 100 returns to in_progress when progress drops

AUDIT TRAIL:
Every mutation appends exactly ONE GoalUpdateLog entry whose changes map
({field: {"from": old, "to": new}}) is never empty. Derived progress/status
changes are folded into the entry of the mutation that caused them. A request
that changes nothing appends nothing. Entries are never edited or removed.

OWNERSHIP:
Admins and managers bypass ownership. Coaches act on goals they coach,
entrepreneurs on their own goals.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy.exc import IntegrityError

from .. import repositories
from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Goal, GoalCollaborator, GoalComment, GoalSessionLink, GoalUpdateLog, Milestone
from ..models.tenancy import ROLE_ADMIN, ROLE_COACH, ROLE_ENTREPRENEUR, ROLE_MANAGER
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    ModelValidationPolicy,
    coerce_datetime,
    coerce_int,
    require_choice,
    require_text,
    validate_payload,
)
from .concurrency import run_with_retry
from .tenant_service import ActorContext, require_user_in_org

logger = logging.getLogger(__name__)


STATUS_NOT_STARTED = "not_started"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_BLOCKED = "blocked"

VALID_STATUSES = {STATUS_NOT_STARTED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_BLOCKED}
VALID_PRIORITIES = {"low", "medium", "high"}

DEFAULT_COLLABORATOR_ROLE = "contributor"

GOAL_CREATOR_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH)

GOAL_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"title", "description", "status", "priority", "target_date", "coach_id"},
)

# Fields whose old -> new values go into the "created"/"updated" entries
_TRACKED_FIELDS = ("title", "description", "status", "priority", "target_date", "coach_id")


# =============================================================================
# HELPERS
# =============================================================================

def _jsonable(value):
    if isinstance(value, datetime):
        return to_utc_z(value)
    return value


def _record(changes: dict, field: str, old, new) -> None:
    """Record old -> new in the changes map when the value actually changed."""
    if old == new:
        return
    changes[field] = {"from": _jsonable(old), "to": _jsonable(new)}


def _append_log(goal: Goal, actor: ActorContext | None, update_type: str, message: str, changes: dict) -> GoalUpdateLog:
    if not changes:
        raise ValueError("update log entries require a non-empty changes map")
    entry = GoalUpdateLog(
        updated_by_user_id=actor.user_id if actor else None,
        update_type=update_type,
        message=message,
        changes=changes,
        updated_at=utcnow(),
    )
    goal.update_log.append(entry)
    # Bumps version_id so concurrent writers to the same goal serialize
    goal.updated_at = utcnow()
    return entry


def clamp_progress(value) -> int:
    """Numeric progress -> int in [0, 100], half up."""
    if isinstance(value, bool):
        raise ValidationError("progress must be a number")
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError("progress must be a number")
    if not number.is_finite():
        raise ValidationError("progress must be a finite number")
    rounded = int(number.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, rounded))


def milestone_progress(completed: int, total: int) -> int:
    """round(100 * completed / total), half up, in integer arithmetic."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def _apply_progress(goal: Goal, new_progress: int, changes: dict) -> None:
    """Set progress and derive status; both recorded in changes."""
    old_progress = goal.progress or 0
    old_status = goal.status
    new_progress = max(0, min(100, new_progress))

    status = old_status
    if new_progress >= 100:
        status = STATUS_COMPLETED
    elif old_status == STATUS_COMPLETED and old_progress >= 100:
        status = STATUS_IN_PROGRESS
    elif old_status == STATUS_NOT_STARTED and new_progress > 0:
        status = STATUS_IN_PROGRESS

    goal.progress = new_progress
    goal.status = status
    _record(changes, "progress", old_progress, new_progress)
    _record(changes, "status", old_status, status)


def _recompute(goal: Goal, changes: dict) -> None:
    milestones = goal.milestones
    if not milestones:
        return
    completed = sum(1 for m in milestones if m.status == STATUS_COMPLETED)
    _apply_progress(goal, milestone_progress(completed, len(milestones)), changes)


def _can_access(actor: ActorContext, goal: Goal) -> bool:
    if actor.is_staff:
        return True
    if actor.role == ROLE_COACH:
        return goal.coach_id == actor.user_id
    if actor.role == ROLE_ENTREPRENEUR:
        return goal.entrepreneur_id == actor.user_id
    return False


def _require_access(actor: ActorContext, goal: Goal, *, allow_entrepreneur: bool = True) -> None:
    if not _can_access(actor, goal):
        raise ForbiddenError("Access denied", code="INSUFFICIENT_PERMISSIONS")
    if actor.role == ROLE_ENTREPRENEUR and not allow_entrepreneur:
        raise ForbiddenError("Entrepreneurs cannot perform this change", code="INSUFFICIENT_PERMISSIONS")


def _load_goal(actor: ActorContext, goal_id: int, *, allow_entrepreneur: bool = True, allow_archived: bool = False) -> Goal:
    goal = repositories.goals.get(actor.org_id, goal_id)
    _require_access(actor, goal, allow_entrepreneur=allow_entrepreneur)
    if goal.is_archived and not allow_archived:
        raise ValidationError("Goal is archived", code="GOAL_ARCHIVED")
    return goal


def _build_milestone(item: dict, position: int) -> Milestone:
    if not isinstance(item, dict):
        raise ValidationError("milestones entries must be objects")
    status = item.get("status") or STATUS_NOT_STARTED
    require_choice("milestone status", status, VALID_STATUSES)
    target_date = item.get("target_date")
    return Milestone(
        position=position,
        title=require_text("milestone title", item.get("title"), max_length=255),
        status=status,
        target_date=coerce_datetime("target_date", target_date) if target_date else None,
        completed_at=utcnow() if status == STATUS_COMPLETED else None,
        notes=item.get("notes"),
    )


# =============================================================================
# QUERIES
# =============================================================================

def get_goal(actor: ActorContext, goal_id: int) -> Goal:
    goal = repositories.goals.get(actor.org_id, goal_id)
    _require_access(actor, goal)
    return goal


# =============================================================================
# GOAL LIFECYCLE
# =============================================================================

def create_goal(
    actor: ActorContext,
    *,
    entrepreneur_id,
    coach_id,
    title,
    description: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    progress=None,
    target_date=None,
    milestones: list | None = None,
) -> Goal:
    """
    Create a goal, optionally seeded with milestones.

    With milestones, progress is derived from them and any supplied progress
    is ignored. Appends the "created" entry.
    """
    if actor.role not in GOAL_CREATOR_ROLES:
        raise ForbiddenError("Only admins, managers and coaches can create goals")

    entrepreneur_id = coerce_int("entrepreneur_id", entrepreneur_id) if entrepreneur_id is not None else None
    coach_id = coerce_int("coach_id", coach_id) if coach_id is not None else None
    if actor.role == ROLE_COACH and coach_id != actor.user_id:
        raise ForbiddenError("Coaches can only create goals they coach", code="INSUFFICIENT_PERMISSIONS")

    title = require_text("title", title, max_length=255)
    status = status or STATUS_NOT_STARTED
    require_choice("status", status, VALID_STATUSES)
    priority = priority or "medium"
    require_choice("priority", priority, VALID_PRIORITIES)
    initial_progress = clamp_progress(progress) if progress is not None else 0
    target = coerce_datetime("target_date", target_date) if target_date else None

    if milestones is not None and not isinstance(milestones, list):
        raise ValidationError("milestones must be a list")

    def _op() -> Goal:
        require_user_in_org(entrepreneur_id, actor.org_id, role=ROLE_ENTREPRENEUR, field="entrepreneur_id")
        require_user_in_org(coach_id, actor.org_id, role=ROLE_COACH, field="coach_id")

        goal = Goal(
            org_id=actor.org_id,
            entrepreneur_id=entrepreneur_id,
            coach_id=coach_id,
            title=title,
            description=description,
            status=status,
            priority=priority,
            progress=0,
            target_date=target,
            is_archived=False,
            created_by_user_id=actor.user_id,
        )
        goal.milestones = [_build_milestone(item, i) for i, item in enumerate(milestones or [])]

        derived: dict = {}
        if goal.milestones:
            _recompute(goal, derived)
        else:
            _apply_progress(goal, initial_progress, derived)

        changes = {
            "title": {"from": None, "to": goal.title},
            "status": {"from": None, "to": goal.status},
            "priority": {"from": None, "to": goal.priority},
            "progress": {"from": None, "to": goal.progress},
        }
        if goal.milestones:
            changes["milestones"] = {"from": 0, "to": len(goal.milestones)}
        _append_log(goal, actor, "created", "Goal created", changes)

        repositories.goals.insert(goal)
        db.session.commit()
        logger.info("Goal created", extra={"goal_id": goal.id, "org_id": actor.org_id})
        return goal

    return run_with_retry(_op)


def update_goal(actor: ActorContext, goal_id: int, patch: dict) -> Goal:
    """
    Patch goal fields (title, description, status, priority, target_date, coach_id).

    Entrepreneurs cannot use this; they report progress through
    set_progress_directly. A status other than completed is rejected while
    progress is 100.
    """
    values = validate_payload(model=Goal, payload=patch, policy=GOAL_UPDATE_POLICY)
    if "status" in values:
        require_choice("status", values["status"], VALID_STATUSES)
    if "priority" in values:
        require_choice("priority", values["priority"], VALID_PRIORITIES)

    def _op() -> Goal:
        goal = _load_goal(actor, goal_id, allow_entrepreneur=False)

        if "coach_id" in values and values["coach_id"] != goal.coach_id:
            if actor.role == ROLE_COACH:
                raise ForbiddenError("Coaches cannot reassign goals", code="INSUFFICIENT_PERMISSIONS")
            require_user_in_org(values["coach_id"], actor.org_id, role=ROLE_COACH, field="coach_id")

        new_status = values.get("status", goal.status)
        if (goal.progress or 0) >= 100 and new_status != STATUS_COMPLETED:
            raise ValidationError(
                "A goal at 100% progress must stay completed",
                code="PROGRESS_COMPLETE",
            )

        changes: dict = {}
        for field in _TRACKED_FIELDS:
            if field in values:
                _record(changes, field, getattr(goal, field), values[field])
                setattr(goal, field, values[field])

        if not changes:
            return goal

        _append_log(goal, actor, "updated", "Goal updated", changes)
        db.session.commit()
        return goal

    return run_with_retry(_op)


def archive_goal(actor: ActorContext, goal_id: int) -> Goal:
    """Retire a goal. Archiving twice is a no-op."""
    def _op() -> Goal:
        goal = _load_goal(actor, goal_id, allow_entrepreneur=False, allow_archived=True)
        if goal.is_archived:
            return goal
        goal.is_archived = True
        _append_log(goal, actor, "archived", "Goal archived", {"is_archived": {"from": False, "to": True}})
        db.session.commit()
        return goal

    return run_with_retry(_op)


# =============================================================================
# MILESTONES & PROGRESS
# =============================================================================

def add_milestone(
    actor: ActorContext,
    goal_id: int,
    *,
    title,
    status: str | None = None,
    target_date=None,
    notes: str | None = None,
) -> Goal:
    item = {"title": title, "status": status, "target_date": target_date, "notes": notes}

    def _op() -> Goal:
        goal = _load_goal(actor, goal_id, allow_entrepreneur=False)
        count = len(goal.milestones)
        next_position = max((m.position for m in goal.milestones), default=-1) + 1
        milestone = _build_milestone(item, next_position)
        goal.milestones.append(milestone)

        changes = {"milestones": {"from": count, "to": count + 1}}
        _recompute(goal, changes)
        _append_log(goal, actor, "milestone_added", f'Milestone "{milestone.title}" added', changes)
        db.session.commit()
        return goal

    return run_with_retry(_op)


def update_milestone_status(
    actor: ActorContext,
    goal_id: int,
    milestone_id: int,
    status: str,
    notes: str | None = None,
) -> Goal:
    """
    Change one milestone's status (and optionally its notes).

    completed stamps completed_at when unset; leaving completed clears it.
    The goal's progress is recomputed and the derived changes land in the
    same "milestone_updated" entry.
    """
    require_choice("status", status, VALID_STATUSES)
    milestone_id = coerce_int("milestone_id", milestone_id)

    def _op() -> Goal:
        goal = _load_goal(actor, goal_id)
        milestone = next((m for m in goal.milestones if m.id == milestone_id), None)
        if milestone is None:
            raise NotFoundError("Milestone not found", code="MILESTONE_NOT_FOUND")

        old_status = milestone.status
        changes: dict = {}
        _record(changes, "milestone_status", old_status, status)
        milestone.status = status
        if status == STATUS_COMPLETED and milestone.completed_at is None:
            milestone.completed_at = utcnow()
        elif status != STATUS_COMPLETED:
            milestone.completed_at = None

        if notes is not None:
            _record(changes, "milestone_notes", milestone.notes, notes)
            milestone.notes = notes

        if not changes:
            return goal

        _recompute(goal, changes)
        _append_log(
            goal,
            actor,
            "milestone_updated",
            f'Milestone "{milestone.title}" status changed from {old_status} to {status}',
            changes,
        )
        db.session.commit()
        return goal

    return run_with_retry(_op)


def recompute_progress(actor: ActorContext | None, org_id: int, goal_id: int) -> Goal:
    """
    Re-derive progress from milestones.

    No-op without milestones or when nothing changes; otherwise appends a
    "progress_recomputed" entry.
    """
    def _op() -> Goal:
        goal = repositories.goals.get(org_id, goal_id)
        changes: dict = {}
        _recompute(goal, changes)
        if not changes:
            return goal
        _append_log(
            goal,
            actor,
            "progress_recomputed",
            f"Progress recomputed to {goal.progress}%",
            changes,
        )
        db.session.commit()
        return goal

    return run_with_retry(_op)


def set_progress_directly(actor: ActorContext, goal_id: int, progress) -> Goal:
    """
    Report progress on a goal without milestones (clamped to [0, 100]).

    Goals with milestones derive progress and reject direct writes.
    """
    if progress is None:
        raise ValidationError("progress is required")
    new_progress = clamp_progress(progress)

    def _op() -> Goal:
        goal = _load_goal(actor, goal_id)
        if goal.milestones:
            raise ValidationError(
                "Progress is derived from milestones for this goal",
                code="GOAL_HAS_MILESTONES",
            )
        old_progress = goal.progress
        changes: dict = {}
        _apply_progress(goal, new_progress, changes)
        if not changes:
            return goal
        _append_log(
            goal,
            actor,
            "progress_updated",
            f"Progress updated from {old_progress}% to {goal.progress}%",
            changes,
        )
        db.session.commit()
        return goal

    return run_with_retry(_op)


# =============================================================================
# COMMENTS, COLLABORATORS, SESSION LINKS
# =============================================================================

def add_comment(actor: ActorContext, goal_id: int, text) -> Goal:
    text = require_text("text", text, max_length=5000)

    def _op() -> Goal:
        goal = repositories.goals.get(actor.org_id, goal_id)
        is_collaborator = any(c.user_id == actor.user_id for c in goal.collaborators)
        if not is_collaborator:
            _require_access(actor, goal)
        if goal.is_archived:
            raise ValidationError("Goal is archived", code="GOAL_ARCHIVED")

        count = len(goal.comments)
        goal.comments.append(GoalComment(user_id=actor.user_id, text=text, created_at=utcnow()))
        _append_log(goal, actor, "comment_added", "Comment added", {"comments": {"from": count, "to": count + 1}})
        db.session.commit()
        return goal

    return run_with_retry(_op)


def add_collaborator(actor: ActorContext, goal_id: int, user_id, role: str | None = None) -> Goal:
    """
    Add a collaborator (default role "contributor").

    Raises:
        ValidationError(INVALID_USER): user is not an active member of the org
        ConflictError(ALREADY_COLLABORATOR): user already collaborates on the goal
    """
    user_id = coerce_int("user_id", user_id) if user_id is not None else None
    role = role or DEFAULT_COLLABORATOR_ROLE
    if not isinstance(role, str) or len(role) > 32:
        raise ValidationError("role must be a string of at most 32 characters")

    def _op() -> Goal:
        goal = _load_goal(actor, goal_id, allow_entrepreneur=False)
        try:
            require_user_in_org(user_id, actor.org_id, field="user_id")
        except ValidationError as exc:
            raise ValidationError(exc.message, code="INVALID_USER") from exc

        before = [c.user_id for c in goal.collaborators]
        if user_id in before:
            raise ConflictError("User is already a collaborator", code="ALREADY_COLLABORATOR")

        goal.collaborators.append(GoalCollaborator(user_id=user_id, role=role, added_at=utcnow()))
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError("User is already a collaborator", code="ALREADY_COLLABORATOR") from exc

        _append_log(
            goal,
            actor,
            "collaborator_added",
            f"Collaborator {user_id} added as {role}",
            {"collaborators": {"from": before, "to": before + [user_id]}},
        )
        db.session.commit()
        return goal

    return run_with_retry(_op)


def link_session(actor: ActorContext, goal_id: int, session_id) -> Goal:
    """
    Link a coaching session of the same organization to the goal.

    Raises:
        NotFoundError(SESSION_NOT_FOUND): session missing or in another organization
        ConflictError(ALREADY_LINKED): session already linked
    """
    session_id = coerce_int("session_id", session_id)

    def _op() -> Goal:
        goal = _load_goal(actor, goal_id)
        if repositories.sessions.find_by_id(actor.org_id, session_id) is None:
            raise NotFoundError("Session not found", code="SESSION_NOT_FOUND")

        before = goal.linked_session_ids
        if session_id in before:
            raise ConflictError("Session already linked to goal", code="ALREADY_LINKED")

        goal.session_links.append(
            GoalSessionLink(session_id=session_id, linked_by_user_id=actor.user_id, linked_at=utcnow())
        )
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError("Session already linked to goal", code="ALREADY_LINKED") from exc

        _append_log(
            goal,
            actor,
            "session_linked",
            f"Session {session_id} linked",
            {"linked_sessions": {"from": before, "to": before + [session_id]}},
        )
        db.session.commit()
        return goal

    return run_with_retry(_op)
