# Overview: Flask API routes for goals; parses input and returns JSON responses.

"""
Goal API Routes

Every mutation appends one entry to the goal's update log (returned in the
goal payload). Ownership is enforced in goal_service: coaches act on the
goals they coach, entrepreneurs on their own goals, admins and managers on
all goals of the organization.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import DomainError, ValidationError
from ..models.tenancy import ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH, ROLE_ENTREPRENEUR
from ..services import goal_service


goals_bp = Blueprint("goals", __name__, url_prefix="/api/goals")

STAFF_AND_COACH = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH)
ALL_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH, ROLE_ENTREPRENEUR)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def _internal_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@goals_bp.post("")
@require_actor
@require_role(*STAFF_AND_COACH)
def create_goal_route():
    """
    Create a goal.

    Request body:
    {
        "entrepreneur_id": 5,
        "coach_id": 3,
        "title": "Close seed round",
        "description": "...",  (optional)
        "priority": "high",  (optional, default medium)
        "progress": 10,  (optional, ignored with milestones)
        "target_date": "2026-06-30",  (optional)
        "milestones": [{"title": "Deck ready"}, {"title": "10 investor calls"}]  (optional)
    }
    """
    try:
        data = _json_body()
        goal = goal_service.create_goal(
            g.actor,
            entrepreneur_id=data.get("entrepreneur_id"),
            coach_id=data.get("coach_id"),
            title=data.get("title"),
            description=data.get("description"),
            status=data.get("status"),
            priority=data.get("priority"),
            progress=data.get("progress"),
            target_date=data.get("target_date"),
            milestones=data.get("milestones"),
        )
        return jsonify({"goal": goal.to_dict()}), 201
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to create goal")


@goals_bp.get("/<int:goal_id>")
@require_actor
@require_role(*ALL_ROLES)
def get_goal_route(goal_id: int):
    try:
        goal = goal_service.get_goal(g.actor, goal_id)
        return jsonify({"goal": goal.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to fetch goal")


@goals_bp.patch("/<int:goal_id>")
@require_actor
@require_role(*STAFF_AND_COACH)
def update_goal_route(goal_id: int):
    """Writable: title, description, status, priority, target_date, coach_id."""
    try:
        goal = goal_service.update_goal(g.actor, goal_id, _json_body())
        return jsonify({"goal": goal.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to update goal")


@goals_bp.post("/<int:goal_id>/archive")
@require_actor
@require_role(*STAFF_AND_COACH)
def archive_goal_route(goal_id: int):
    try:
        goal = goal_service.archive_goal(g.actor, goal_id)
        return jsonify({"goal": goal.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to archive goal")


@goals_bp.patch("/<int:goal_id>/progress")
@require_actor
@require_role(*ALL_ROLES)
def update_goal_progress_route(goal_id: int):
    """
    Request body: {"progress": 40}

    Returns:
        200: Goal with clamped progress
        400: Goal has milestones (GOAL_HAS_MILESTONES)
    """
    try:
        data = _json_body()
        goal = goal_service.set_progress_directly(g.actor, goal_id, data.get("progress"))
        return jsonify({"goal": goal.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to update goal progress")


@goals_bp.post("/<int:goal_id>/milestones")
@require_actor
@require_role(*STAFF_AND_COACH)
def add_milestone_route(goal_id: int):
    """Request body: {"title": "...", "status": "not_started", "target_date": "...", "notes": "..."}"""
    try:
        data = _json_body()
        goal = goal_service.add_milestone(
            g.actor,
            goal_id,
            title=data.get("title"),
            status=data.get("status"),
            target_date=data.get("target_date"),
            notes=data.get("notes"),
        )
        return jsonify({"goal": goal.to_dict()}), 201
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to add milestone")


@goals_bp.patch("/<int:goal_id>/milestones/<int:milestone_id>")
@require_actor
@require_role(*ALL_ROLES)
def update_milestone_route(goal_id: int, milestone_id: int):
    """
    Request body: {"status": "completed", "notes": "..."}

    The goal's progress is recomputed from its milestones.
    """
    try:
        data = _json_body()
        if not data.get("status"):
            raise ValidationError("status is required")
        goal = goal_service.update_milestone_status(
            g.actor, goal_id, milestone_id, data.get("status"), data.get("notes")
        )
        return jsonify({"goal": goal.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to update milestone")


@goals_bp.post("/<int:goal_id>/comments")
@require_actor
@require_role(*ALL_ROLES)
def add_comment_route(goal_id: int):
    """Request body: {"text": "..."}"""
    try:
        data = _json_body()
        goal = goal_service.add_comment(g.actor, goal_id, data.get("text"))
        return jsonify({"goal": goal.to_dict()}), 201
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to add comment")


@goals_bp.post("/<int:goal_id>/collaborators")
@require_actor
@require_role(*STAFF_AND_COACH)
def add_collaborator_route(goal_id: int):
    """
    Request body: {"user_id": 9, "role": "mentor"}  (role optional, default contributor)

    Returns:
        201: Goal with the new collaborator
        409: User already a collaborator (ALREADY_COLLABORATOR)
    """
    try:
        data = _json_body()
        goal = goal_service.add_collaborator(g.actor, goal_id, data.get("user_id"), data.get("role"))
        return jsonify({"goal": goal.to_dict()}), 201
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to add collaborator")


@goals_bp.post("/<int:goal_id>/sessions/<int:session_id>")
@require_actor
@require_role(*ALL_ROLES)
def link_session_route(goal_id: int, session_id: int):
    """
    Returns:
        201: Goal with the linked session
        404: Session not in this organization (SESSION_NOT_FOUND)
        409: Session already linked (ALREADY_LINKED)
    """
    try:
        goal = goal_service.link_session(g.actor, goal_id, session_id)
        return jsonify({"goal": goal.to_dict()}), 201
    except DomainError as e:
        return e.to_response()
    except Exception:
        return _internal_error("Failed to link session")
