from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Goal(db.Model):
    """
    A tracked objective for an entrepreneur, optionally split into milestones.

    INVARIANTS:
    - 0 <= progress <= 100
    - progress >= 100 implies status == "completed"
    - with milestones, progress == round(100 * completed / total)

    update_log is append-only: entries are added by goal_service and never
    edited or removed. Goals are archived, not deleted.
    """
    __tablename__ = "goals"
    __table_args__ = (
        db.CheckConstraint("progress >= 0 AND progress <= 100", name="progress_range"),
        db.Index("ix_goals_org_archived", "org_id", "is_archived"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    entrepreneur_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    coach_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # not_started, in_progress, completed, blocked
    status = db.Column(db.String(16), nullable=False, default="not_started", index=True)
    # low, medium, high
    priority = db.Column(db.String(8), nullable=False, default="medium")
    progress = db.Column(db.Integer, nullable=False, default=0)
    target_date = db.Column(db.DateTime(timezone=True), nullable=True)
    is_archived = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    milestones = db.relationship(
        "Milestone",
        order_by="Milestone.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    collaborators = db.relationship(
        "GoalCollaborator",
        order_by="GoalCollaborator.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    comments = db.relationship(
        "GoalComment",
        order_by="GoalComment.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    session_links = db.relationship(
        "GoalSessionLink",
        order_by="GoalSessionLink.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    # No delete-orphan: the audit trail is never pruned.
    update_log = db.relationship(
        "GoalUpdateLog",
        order_by="GoalUpdateLog.id",
        cascade="save-update, merge",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Goal id={self.id} status={self.status!r} progress={self.progress}>"

    @property
    def linked_session_ids(self) -> list[int]:
        return [link.session_id for link in self.session_links]

    def to_dict(self, include_log: bool = True) -> dict:
        data = {
            "id": self.id,
            "org_id": self.org_id,
            "entrepreneur_id": self.entrepreneur_id,
            "coach_id": self.coach_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "progress": self.progress,
            "target_date": to_utc_z(self.target_date),
            "is_archived": self.is_archived,
            "milestones": [m.to_dict() for m in self.milestones],
            "collaborators": [c.to_dict() for c in self.collaborators],
            "comments": [c.to_dict() for c in self.comments],
            "linked_sessions": self.linked_session_ids,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_log:
            data["update_log"] = [entry.to_dict() for entry in self.update_log]
        return data


class Milestone(db.Model):
    __tablename__ = "goal_milestones"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    goal_id = db.Column(db.Integer, db.ForeignKey("goals.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="not_started")
    target_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "target_date": to_utc_z(self.target_date),
            "completed_at": to_utc_z(self.completed_at),
            "notes": self.notes,
        }


class GoalCollaborator(db.Model):
    __tablename__ = "goal_collaborators"
    __table_args__ = (
        db.UniqueConstraint("goal_id", "user_id", name="uq_goal_collaborators_goal_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    goal_id = db.Column(db.Integer, db.ForeignKey("goals.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    role = db.Column(db.String(32), nullable=False, default="contributor")
    added_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "added_at": to_utc_z(self.added_at),
        }


class GoalComment(db.Model):
    __tablename__ = "goal_comments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    goal_id = db.Column(db.Integer, db.ForeignKey("goals.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    text = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "text": self.text,
            "created_at": to_utc_z(self.created_at),
        }


class GoalSessionLink(db.Model):
    __tablename__ = "goal_session_links"
    __table_args__ = (
        db.UniqueConstraint("goal_id", "session_id", name="uq_goal_session_links_goal_session"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    goal_id = db.Column(db.Integer, db.ForeignKey("goals.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("coaching_sessions.id"), nullable=False, index=True)
    linked_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    linked_at = db.Column(db.DateTime(timezone=True), nullable=False)


class GoalUpdateLog(db.Model):
    """
    Append-only audit entry for a goal mutation.

    changes: {field: {"from": old, "to": new}}. Never empty.
    """
    __tablename__ = "goal_update_log"
    __table_args__ = (
        db.Index("ix_goal_update_log_goal_updated", "goal_id", "updated_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    goal_id = db.Column(db.Integer, db.ForeignKey("goals.id"), nullable=False, index=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    update_type = db.Column(db.String(32), nullable=False)  # created, updated, milestone_updated, ...
    message = db.Column(db.String(255), nullable=False)
    changes = db.Column(db.JSON, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "updated_by": self.updated_by_user_id,
            "update_type": self.update_type,
            "message": self.message,
            "changes": self.changes,
            "updated_at": to_utc_z(self.updated_at),
        }
