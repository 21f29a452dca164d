# Overview: Flask API routes for coaching sessions; parses input and returns JSON responses.

"""
Coaching Session API Routes

DESIGN:
- Scheduling (create / reschedule / reassign) is conflict-checked per coach
- Status changes follow the session state machine
- Ratings only on completed sessions; notes are written per participant role

SECURITY:
- admin, manager, coach: create, update, change status, check conflicts
- every role: read, rate (participants), write own role's notes
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import DomainError, ValidationError
from ..models.tenancy import ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH, ROLE_ENTREPRENEUR
from ..services import scheduling_service
from ..time_utils import session_end_time
from ..validation import coerce_datetime, coerce_int, require_positive_int


sessions_bp = Blueprint("sessions", __name__, url_prefix="/api/sessions")

SCHEDULER_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH)
ALL_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH, ROLE_ENTREPRENEUR)
RATER_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_ENTREPRENEUR)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


@sessions_bp.post("")
@require_actor
@require_role(*SCHEDULER_ROLES)
def create_session_route():
    """
    Schedule a session.

    Request body:
    {
        "coach_id": 3,
        "entrepreneur_id": 5,
        "manager_id": 2,
        "scheduled_at": "2026-03-02T09:00:00Z",
        "duration": 60,
        "agenda_items": [{"title": "Pitch review", "duration": 20}],  (optional)
        "location": "Room 4",  (optional)
        "video_url": "https://meet.example/abc"  (optional)
    }

    Returns:
        201: Session created
        400: Invalid input or participants
        409: Coach has a conflicting session
    """
    try:
        data = _json_body()
        session = scheduling_service.create_session(
            g.actor,
            coach_id=data.get("coach_id"),
            entrepreneur_id=data.get("entrepreneur_id"),
            manager_id=data.get("manager_id"),
            scheduled_at=data.get("scheduled_at"),
            duration=data.get("duration"),
            agenda_items=data.get("agenda_items"),
            location=data.get("location"),
            video_url=data.get("video_url"),
        )
        return jsonify({"session": session.to_dict()}), 201
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create session")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@sessions_bp.post("/check-conflict")
@require_actor
@require_role(*SCHEDULER_ROLES)
def check_conflict_route():
    """
    Check whether a coach is free for a slot.

    Request body:
    {
        "coach_id": 3,
        "scheduled_at": "2026-03-02T09:30:00Z",
        "duration": 60,
        "exclude_session_id": 12  (optional)
    }

    Returns:
        200: {"has_conflict": bool, "conflicting_session": {...} | null}
    """
    try:
        data = _json_body()
        coach_id = coerce_int("coach_id", data.get("coach_id")) if data.get("coach_id") is not None else None
        if coach_id is None:
            raise ValidationError("coach_id is required")
        start = coerce_datetime("scheduled_at", data.get("scheduled_at"))
        duration = require_positive_int("duration", data.get("duration"))
        exclude = data.get("exclude_session_id")
        exclude = coerce_int("exclude_session_id", exclude) if exclude is not None else None

        conflicts = scheduling_service.find_conflicts(
            g.actor.org_id, coach_id, start, session_end_time(start, duration), exclude
        )
        return jsonify({
            "has_conflict": bool(conflicts),
            "conflicting_session": conflicts[0].to_dict() if conflicts else None,
        }), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to check session conflict")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@sessions_bp.get("/<int:session_id>")
@require_actor
@require_role(*ALL_ROLES)
def get_session_route(session_id: int):
    try:
        session = scheduling_service.get_session(g.actor.org_id, session_id, g.actor)
        return jsonify({"session": session.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to fetch session")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@sessions_bp.patch("/<int:session_id>")
@require_actor
@require_role(*SCHEDULER_ROLES)
def update_session_route(session_id: int):
    """
    Partially update a session.

    Writable: coach_id, entrepreneur_id, manager_id, scheduled_at, duration,
    agenda_items, location, video_url, summary. Moving the session re-runs
    the conflict check.
    """
    try:
        session = scheduling_service.update_session(g.actor, session_id, _json_body())
        return jsonify({"session": session.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update session")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@sessions_bp.patch("/<int:session_id>/status")
@require_actor
@require_role(*SCHEDULER_ROLES)
def update_session_status_route(session_id: int):
    """
    Request body: {"status": "completed"}

    Returns:
        200: Session with new status
        400: Invalid status or transition from a terminal status
    """
    try:
        data = _json_body()
        status = data.get("status")
        if not status:
            raise ValidationError("status is required")
        session = scheduling_service.transition_status(g.actor, session_id, status)
        return jsonify({"session": session.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update session status")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@sessions_bp.post("/<int:session_id>/rating")
@require_actor
@require_role(*RATER_ROLES)
def rate_session_route(session_id: int):
    """
    Request body: {"score": 5, "comment": "Very helpful"}

    Returns:
        200: Session with its current rating
        400: Session not completed (SESSION_NOT_COMPLETED) or bad score
    """
    try:
        data = _json_body()
        if data.get("score") is None:
            raise ValidationError("score is required")
        session = scheduling_service.add_rating(g.actor, session_id, data.get("score"), data.get("comment"))
        return jsonify({"session": session.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to rate session")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@sessions_bp.patch("/<int:session_id>/notes")
@require_actor
@require_role(*ALL_ROLES)
def update_session_notes_route(session_id: int):
    """
    Request body: {"role": "coach", "notes": "Follow up on hiring plan"}

    Returns:
        200: Session with notes
        403: Actor is not the session's participant for that role
    """
    try:
        data = _json_body()
        session = scheduling_service.set_role_note(g.actor, session_id, data.get("role"), data.get("notes"))
        return jsonify({"session": session.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update session notes")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500
