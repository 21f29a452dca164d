# Overview: Tests for milestone-driven goal progress and the goal update log.

"""
Goal service tests.

Progress must always be derivable from milestones when they exist, stay
within [0, 100], and every mutation must leave exactly one log entry with a
non-empty changes map.
"""

import pytest

from conftest import actor_for, at
from coachhub.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from coachhub.extensions import db
from coachhub.models import Goal, GoalUpdateLog
from coachhub.services import goal_service, scheduling_service


@pytest.fixture
def new_goal(coach_a, entrepreneur_a):
    """new_goal(milestones=None, **kwargs) -> Goal, created by the coach."""
    def factory(milestones=None, **kwargs):
        return goal_service.create_goal(
            actor_for(coach_a),
            entrepreneur_id=entrepreneur_a.id,
            coach_id=coach_a.id,
            title=kwargs.pop("title", "Close seed round"),
            milestones=milestones,
            **kwargs,
        )
    return factory


def _log_types(goal):
    return [entry.update_type for entry in goal.update_log]


class TestMilestoneProgress:
    def test_one_of_three_completed_is_33_percent(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "Deck"}, {"title": "Data room"}, {"title": "Term sheet"}])
        first = goal.milestones[0]

        goal = goal_service.update_milestone_status(actor_for(coach_a), goal.id, first.id, "completed")

        assert goal.progress == 33
        assert goal.status == "in_progress"
        assert goal.milestones[0].completed_at is not None

    def test_all_completed_forces_completed_status(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "Deck"}, {"title": "Data room"}])

        for milestone in list(goal.milestones):
            goal = goal_service.update_milestone_status(actor_for(coach_a), goal.id, milestone.id, "completed")

        assert goal.progress == 100
        assert goal.status == "completed"

    def test_two_of_three_rounds_half_up(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "A"}, {"title": "B"}, {"title": "C"}])
        for milestone in list(goal.milestones)[:2]:
            goal = goal_service.update_milestone_status(actor_for(coach_a), goal.id, milestone.id, "completed")
        assert goal.progress == 67

    def test_blocked_milestone_leaves_progress_unchanged(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "Deck"}, {"title": "Data room"}])
        goal = goal_service.update_milestone_status(actor_for(coach_a), goal.id, goal.milestones[0].id, "completed")

        goal = goal_service.update_milestone_status(
            actor_for(coach_a), goal.id, goal.milestones[1].id, "blocked", notes="Waiting on auditor"
        )

        assert goal.milestones[1].status == "blocked"
        assert goal.milestones[1].completed_at is None
        assert goal.progress == 50
        assert goal.status == "in_progress"
        assert goal.update_log[-1].changes["milestone_status"] == {"from": "not_started", "to": "blocked"}
        assert "progress" not in goal.update_log[-1].changes

    def test_reopening_milestone_leaves_completed_status(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "A", "status": "completed"}, {"title": "B", "status": "completed"}])
        assert goal.status == "completed"

        goal = goal_service.update_milestone_status(actor_for(coach_a), goal.id, goal.milestones[1].id, "in_progress")

        assert goal.progress == 50
        assert goal.status == "in_progress"
        assert goal.milestones[1].completed_at is None

    def test_milestone_update_logs_one_entry_with_derived_changes(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "Deck"}, {"title": "Data room"}])
        entries_before = len(goal.update_log)

        goal = goal_service.update_milestone_status(actor_for(coach_a), goal.id, goal.milestones[0].id, "completed")

        assert len(goal.update_log) == entries_before + 1
        entry = goal.update_log[-1]
        assert entry.update_type == "milestone_updated"
        assert entry.message == 'Milestone "Deck" status changed from not_started to completed'
        assert entry.changes["milestone_status"] == {"from": "not_started", "to": "completed"}
        assert entry.changes["progress"] == {"from": 0, "to": 50}
        assert entry.changes["status"] == {"from": "not_started", "to": "in_progress"}

    def test_unchanged_milestone_appends_nothing(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "Deck"}])
        entries_before = len(goal.update_log)

        goal = goal_service.update_milestone_status(actor_for(coach_a), goal.id, goal.milestones[0].id, "not_started")

        assert len(goal.update_log) == entries_before

    def test_unknown_milestone(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "Deck"}])
        with pytest.raises(NotFoundError) as exc_info:
            goal_service.update_milestone_status(actor_for(coach_a), goal.id, 99999, "completed")
        assert exc_info.value.code == "MILESTONE_NOT_FOUND"

    def test_adding_milestone_recomputes_progress(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "A", "status": "completed"}])
        assert goal.progress == 100

        goal = goal_service.add_milestone(actor_for(coach_a), goal.id, title="B")

        assert goal.progress == 50
        assert goal.status == "in_progress"
        assert _log_types(goal)[-1] == "milestone_added"
        assert [m.title for m in goal.milestones] == ["A", "B"]


class TestRecomputeProgress:
    def test_noop_without_milestones(self, new_goal, coach_a):
        goal = new_goal(progress=40)
        entries_before = len(goal.update_log)

        goal = goal_service.recompute_progress(actor_for(coach_a), goal.org_id, goal.id)

        assert goal.progress == 40
        assert len(goal.update_log) == entries_before

    def test_repairs_drifted_progress(self, new_goal, coach_a, db_session):
        goal = new_goal(milestones=[{"title": "A", "status": "completed"}, {"title": "B"}])
        goal.progress = 10
        db_session.commit()

        goal = goal_service.recompute_progress(None, goal.org_id, goal.id)

        assert goal.progress == 50
        entry = goal.update_log[-1]
        assert entry.update_type == "progress_recomputed"
        assert entry.changes["progress"] == {"from": 10, "to": 50}
        assert entry.to_dict()["updated_by"] is None

    def test_consistent_goal_logs_nothing(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "A", "status": "completed"}, {"title": "B"}])
        entries_before = len(goal.update_log)

        goal = goal_service.recompute_progress(actor_for(coach_a), goal.org_id, goal.id)

        assert len(goal.update_log) == entries_before

    def test_milestone_progress_rounding(self):
        assert goal_service.milestone_progress(1, 3) == 33
        assert goal_service.milestone_progress(2, 3) == 67
        assert goal_service.milestone_progress(1, 8) == 13
        assert goal_service.milestone_progress(0, 0) == 0


class TestDirectProgress:
    def test_direct_progress_is_clamped(self, new_goal, entrepreneur_a):
        goal = new_goal()

        goal = goal_service.set_progress_directly(actor_for(entrepreneur_a), goal.id, 150)

        assert goal.progress == 100
        assert goal.status == "completed"

    def test_negative_progress_clamps_to_zero(self, new_goal, coach_a):
        goal = new_goal(progress=30)
        goal = goal_service.set_progress_directly(actor_for(coach_a), goal.id, -5)
        assert goal.progress == 0

    def test_progress_logs_before_and_after(self, new_goal, coach_a):
        goal = new_goal()

        goal = goal_service.set_progress_directly(actor_for(coach_a), goal.id, 40)

        entry = goal.update_log[-1]
        assert entry.update_type == "progress_updated"
        assert entry.message == "Progress updated from 0% to 40%"
        assert entry.changes["progress"] == {"from": 0, "to": 40}
        assert entry.changes["status"] == {"from": "not_started", "to": "in_progress"}

    def test_rejected_when_goal_has_milestones(self, new_goal, coach_a):
        goal = new_goal(milestones=[{"title": "Deck"}])
        with pytest.raises(ValidationError) as exc_info:
            goal_service.set_progress_directly(actor_for(coach_a), goal.id, 50)
        assert exc_info.value.code == "GOAL_HAS_MILESTONES"

    def test_dropping_below_100_reopens_goal(self, new_goal, coach_a):
        goal = new_goal()
        goal_service.set_progress_directly(actor_for(coach_a), goal.id, 100)

        goal = goal_service.set_progress_directly(actor_for(coach_a), goal.id, 80)

        assert goal.status == "in_progress"

    @pytest.mark.parametrize("value", ["lots", True, "nan"])
    def test_non_numeric_progress_is_rejected(self, new_goal, coach_a, value):
        goal = new_goal()
        with pytest.raises(ValidationError):
            goal_service.set_progress_directly(actor_for(coach_a), goal.id, value)


class TestGoalLifecycle:
    def test_create_logs_initial_values(self, new_goal):
        goal = new_goal(priority="high")

        assert goal.status == "not_started"
        assert goal.progress == 0
        assert _log_types(goal) == ["created"]
        changes = goal.update_log[0].changes
        assert changes["title"] == {"from": None, "to": "Close seed round"}
        assert changes["priority"] == {"from": None, "to": "high"}

    def test_create_with_milestones_ignores_supplied_progress(self, new_goal):
        goal = new_goal(progress=90, milestones=[{"title": "A"}, {"title": "B"}])
        assert goal.progress == 0
        assert goal.update_log[0].changes["milestones"] == {"from": 0, "to": 2}

    def test_coach_can_only_create_own_goals(self, coach_a2, coach_a, entrepreneur_a):
        with pytest.raises(ForbiddenError):
            goal_service.create_goal(
                actor_for(coach_a2),
                entrepreneur_id=entrepreneur_a.id,
                coach_id=coach_a.id,
                title="Not mine",
            )

    def test_update_logs_changed_fields_only(self, new_goal, coach_a):
        goal = new_goal()

        goal = goal_service.update_goal(
            actor_for(coach_a), goal.id, {"title": "Close seed round", "priority": "high"}
        )

        entry = goal.update_log[-1]
        assert entry.update_type == "updated"
        assert entry.changes == {"priority": {"from": "medium", "to": "high"}}

    def test_update_without_changes_logs_nothing(self, new_goal, coach_a):
        goal = new_goal()
        goal = goal_service.update_goal(actor_for(coach_a), goal.id, {"priority": "medium"})
        assert _log_types(goal) == ["created"]

    def test_completed_goal_cannot_leave_completed(self, new_goal, coach_a):
        goal = new_goal()
        goal_service.set_progress_directly(actor_for(coach_a), goal.id, 100)

        with pytest.raises(ValidationError) as exc_info:
            goal_service.update_goal(actor_for(coach_a), goal.id, {"status": "blocked"})
        assert exc_info.value.code == "PROGRESS_COMPLETE"

    def test_entrepreneur_cannot_patch_goal(self, new_goal, entrepreneur_a):
        goal = new_goal()
        with pytest.raises(ForbiddenError):
            goal_service.update_goal(actor_for(entrepreneur_a), goal.id, {"title": "Mine now"})

    def test_archived_goal_rejects_changes(self, new_goal, coach_a):
        goal = new_goal()
        goal = goal_service.archive_goal(actor_for(coach_a), goal.id)
        assert goal.is_archived is True
        assert _log_types(goal) == ["created", "archived"]

        with pytest.raises(ValidationError) as exc_info:
            goal_service.set_progress_directly(actor_for(coach_a), goal.id, 10)
        assert exc_info.value.code == "GOAL_ARCHIVED"

    def test_archive_twice_is_noop(self, new_goal, coach_a):
        goal = new_goal()
        goal_service.archive_goal(actor_for(coach_a), goal.id)
        goal = goal_service.archive_goal(actor_for(coach_a), goal.id)
        assert _log_types(goal) == ["created", "archived"]


class TestUpdateLogInvariant:
    def test_every_entry_has_changes(self, new_goal, coach_a, manager_a):
        goal = new_goal(milestones=[{"title": "Deck"}, {"title": "Data room"}])
        goal_service.update_milestone_status(actor_for(coach_a), goal.id, goal.milestones[0].id, "completed")
        goal_service.add_comment(actor_for(coach_a), goal.id, "Nice progress")
        goal_service.add_collaborator(actor_for(coach_a), goal.id, manager_a.id)
        goal_service.update_goal(actor_for(coach_a), goal.id, {"priority": "low"})

        entries = (
            db.session.query(GoalUpdateLog)
            .filter_by(goal_id=goal.id)
            .order_by(GoalUpdateLog.id)
            .all()
        )

        assert [e.update_type for e in entries] == [
            "created",
            "milestone_updated",
            "comment_added",
            "collaborator_added",
            "updated",
        ]
        assert all(entry.changes for entry in entries)

    def test_progress_stays_in_bounds(self, new_goal, coach_a):
        goal = new_goal()
        for value in (-20, 35, 250, 99.5):
            goal = goal_service.set_progress_directly(actor_for(coach_a), goal.id, value)
            assert 0 <= goal.progress <= 100
            if goal.progress >= 100:
                assert goal.status == "completed"


class TestCollaboratorsCommentsLinks:
    def test_duplicate_collaborator_conflicts(self, new_goal, coach_a, manager_a):
        goal = new_goal()
        goal = goal_service.add_collaborator(actor_for(coach_a), goal.id, manager_a.id, "mentor")
        assert goal.collaborators[0].role == "mentor"

        with pytest.raises(ConflictError) as exc_info:
            goal_service.add_collaborator(actor_for(coach_a), goal.id, manager_a.id)
        assert exc_info.value.code == "ALREADY_COLLABORATOR"

    def test_collaborator_from_other_org_is_invalid(self, new_goal, coach_a, manager_b):
        goal = new_goal()
        with pytest.raises(ValidationError) as exc_info:
            goal_service.add_collaborator(actor_for(coach_a), goal.id, manager_b.id)
        assert exc_info.value.code == "INVALID_USER"

    def test_collaborator_can_comment(self, new_goal, coach_a, make_user, org_a):
        mentor = make_user(org_a, "coach", "mentor@acme.test")
        goal = new_goal()
        goal_service.add_collaborator(actor_for(coach_a), goal.id, mentor.id)

        goal = goal_service.add_comment(actor_for(mentor), goal.id, "  Try warm intros  ")

        assert goal.comments[-1].text == "Try warm intros"

    def test_stranger_cannot_comment(self, new_goal, coach_a2):
        goal = new_goal()
        with pytest.raises(ForbiddenError):
            goal_service.add_comment(actor_for(coach_a2), goal.id, "Hi")

    def test_link_session_once(self, new_goal, coach_a, manager_a, entrepreneur_a):
        session = scheduling_service.create_session(
            actor_for(manager_a),
            coach_id=coach_a.id,
            entrepreneur_id=entrepreneur_a.id,
            manager_id=manager_a.id,
            scheduled_at=at(9),
            duration=60,
        )
        goal = new_goal()

        goal = goal_service.link_session(actor_for(entrepreneur_a), goal.id, session.id)
        assert goal.linked_session_ids == [session.id]
        assert goal.update_log[-1].changes["linked_sessions"] == {"from": [], "to": [session.id]}

        with pytest.raises(ConflictError) as exc_info:
            goal_service.link_session(actor_for(coach_a), goal.id, session.id)
        assert exc_info.value.code == "ALREADY_LINKED"

    def test_link_unknown_session(self, new_goal, coach_a):
        goal = new_goal()
        with pytest.raises(NotFoundError) as exc_info:
            goal_service.link_session(actor_for(coach_a), goal.id, 424242)
        assert exc_info.value.code == "SESSION_NOT_FOUND"


class TestOwnership:
    def test_other_entrepreneur_is_forbidden(self, new_goal, make_user, org_a):
        other = make_user(org_a, "entrepreneur", "other@acme.test")
        goal = new_goal()
        with pytest.raises(ForbiddenError):
            goal_service.get_goal(actor_for(other), goal.id)

    def test_manager_bypasses_ownership(self, new_goal, manager_a):
        goal = new_goal()
        assert goal_service.get_goal(actor_for(manager_a), goal.id).id == goal.id

    def test_goal_of_other_org_is_not_found(self, new_goal, manager_b):
        goal = new_goal()
        with pytest.raises(NotFoundError):
            goal_service.get_goal(actor_for(manager_b), goal.id)
        assert db.session.get(Goal, goal.id) is not None
