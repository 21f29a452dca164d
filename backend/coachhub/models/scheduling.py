from __future__ import annotations

from ..extensions import db
from ..time_utils import session_end_time, to_utc_z

NOTE_ROLES = ("coach", "entrepreneur", "manager")


class CoachingSession(db.Model):
    """
    A scheduled meeting between a coach and an entrepreneur, supervised by a
    manager.

    INVARIANT: end_time == scheduled_at + duration_minutes. Always go through
    set_schedule() when either side changes.

    payment_id is a cache of the invoice that bills this session. The invoice's
    line items own the relation; the cache is written in the same transaction.
    """
    __tablename__ = "coaching_sessions"
    __table_args__ = (
        # Conflict lookups: coach + status + time window
        db.Index("ix_coaching_sessions_coach_status_start", "coach_id", "status", "scheduled_at"),
        db.Index("ix_coaching_sessions_org_status", "org_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    coach_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    entrepreneur_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=False)

    # scheduled, completed, cancelled, no_show, rescheduled
    status = db.Column(db.String(16), nullable=False, default="scheduled", index=True)

    summary = db.Column(db.Text, nullable=True)
    location = db.Column(db.String(255), nullable=True)
    video_url = db.Column(db.String(512), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    coach = db.relationship("User", foreign_keys=[coach_id])
    entrepreneur = db.relationship("User", foreign_keys=[entrepreneur_id])
    manager = db.relationship("User", foreign_keys=[manager_id])

    agenda_items = db.relationship(
        "SessionAgendaItem",
        order_by="SessionAgendaItem.position",
        cascade="all, delete-orphan",
        lazy=True,
    )
    role_notes = db.relationship("SessionNote", cascade="all, delete-orphan", lazy=True)
    ratings = db.relationship(
        "SessionRating",
        order_by="SessionRating.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<CoachingSession id={self.id} coach_id={self.coach_id} status={self.status!r}>"

    def set_schedule(self, scheduled_at, duration_minutes: int) -> None:
        self.scheduled_at = scheduled_at
        self.duration_minutes = duration_minutes
        self.end_time = session_end_time(scheduled_at, duration_minutes)

    @property
    def rating(self) -> "SessionRating | None":
        """The current rating; earlier submissions stay in `ratings`."""
        return self.ratings[-1] if self.ratings else None

    def notes_by_role(self) -> dict:
        notes = {role: None for role in NOTE_ROLES}
        for note in self.role_notes:
            notes[note.role] = note.text
        notes["summary"] = self.summary
        return notes

    def to_dict(self) -> dict:
        rating = self.rating
        return {
            "id": self.id,
            "org_id": self.org_id,
            "coach_id": self.coach_id,
            "entrepreneur_id": self.entrepreneur_id,
            "manager_id": self.manager_id,
            "payment_id": self.payment_id,
            "scheduled_at": to_utc_z(self.scheduled_at),
            "end_time": to_utc_z(self.end_time),
            "duration": self.duration_minutes,
            "status": self.status,
            "agenda_items": [item.to_dict() for item in self.agenda_items],
            "notes": self.notes_by_role(),
            "rating": rating.to_dict() if rating else None,
            "rating_history": [r.to_dict() for r in self.ratings[:-1]],
            "location": self.location,
            "video_url": self.video_url,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SessionAgendaItem(db.Model):
    __tablename__ = "session_agenda_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("coaching_sessions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "duration": self.duration_minutes,
        }


class SessionNote(db.Model):
    """One text per (session, role). Last write wins."""
    __tablename__ = "session_notes"
    __table_args__ = (
        db.UniqueConstraint("session_id", "role", name="uq_session_notes_session_role"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("coaching_sessions.id"), nullable=False, index=True)
    role = db.Column(db.String(16), nullable=False)
    text = db.Column(db.Text, nullable=True)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "text": self.text,
            "updated_by": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class SessionRating(db.Model):
    """Rating submissions; the newest row is the session's current rating."""
    __tablename__ = "session_ratings"
    __table_args__ = (
        db.CheckConstraint("score >= 1 AND score <= 5", name="score_range"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("coaching_sessions.id"), nullable=False, index=True)
    score = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=True)
    submitted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=False)

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "comment": self.comment,
            "submitted_by": self.submitted_by_user_id,
            "submitted_at": to_utc_z(self.submitted_at),
        }
