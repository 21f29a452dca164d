from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


def cents_to_amount(cents: int | None) -> float | None:
    """Render integer cents as a JSON decimal number (2 places)."""
    if cents is None:
        return None
    return round(cents / 100, 2)


class Payment(db.Model):
    """
    Invoice billing one or more completed sessions of a single coach.

    INVARIANT: total_amount_cents == amount_cents + tax_amount_cents.
    Call set_amounts() whenever either side changes.

    STATUSES: pending, paid, failed, refunded, void (void is immutable).

    A session is billed by at most one payment in status pending/paid. The line
    items own the payment <-> session relation; CoachingSession.payment_id is a
    cache kept in the same transaction.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("org_id", "invoice_number", name="uq_payments_org_invoice_number"),
        db.Index("ix_payments_org_status", "org_id", "status"),
        db.CheckConstraint(
            "total_amount_cents = amount_cents + tax_amount_cents",
            name="total_matches_parts",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    coach_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Human-readable invoice number (e.g., "INV-004"), unique per organization
    invoice_number = db.Column(db.String(64), nullable=False)

    # All amounts in cents
    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="USD")

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    invoice_url = db.Column(db.String(512), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    coach = db.relationship("User", foreign_keys=[coach_id])
    line_items = db.relationship(
        "PaymentLineItem",
        back_populates="payment",
        order_by="PaymentLineItem.id",
        cascade="all, delete-orphan",
        lazy=True,
    )
    reminders = db.relationship(
        "PaymentReminder",
        order_by="PaymentReminder.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Payment id={self.id} invoice_number={self.invoice_number!r} status={self.status!r}>"

    def set_amounts(self, amount_cents: int, tax_amount_cents: int) -> None:
        self.amount_cents = amount_cents
        self.tax_amount_cents = tax_amount_cents
        self.total_amount_cents = amount_cents + tax_amount_cents

    @property
    def session_ids(self) -> list[int]:
        return [item.session_id for item in self.line_items]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "coach_id": self.coach_id,
            "invoice_number": self.invoice_number,
            "session_ids": self.session_ids,
            "line_items": [item.to_dict() for item in self.line_items],
            "amount": cents_to_amount(self.amount_cents),
            "tax_amount": cents_to_amount(self.tax_amount_cents),
            "total_amount": cents_to_amount(self.total_amount_cents),
            "amount_cents": self.amount_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "currency": self.currency,
            "status": self.status,
            "invoice_url": self.invoice_url,
            "due_date": to_utc_z(self.due_date),
            "paid_at": to_utc_z(self.paid_at),
            "period": {
                "start": to_utc_z(self.period_start),
                "end": to_utc_z(self.period_end),
            } if self.period_start or self.period_end else None,
            "reminders_sent": [r.to_dict() for r in self.reminders],
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentLineItem(db.Model):
    """One billed session: amount = rate * duration / 60."""
    __tablename__ = "payment_line_items"
    __table_args__ = (
        db.UniqueConstraint("payment_id", "session_id", name="uq_payment_line_items_payment_session"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    session_id = db.Column(db.Integer, db.ForeignKey("coaching_sessions.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    rate_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment = db.relationship("Payment", back_populates="line_items")

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "description": self.description,
            "duration": self.duration_minutes,
            "rate": cents_to_amount(self.rate_cents),
            "amount": cents_to_amount(self.amount_cents),
        }


class PaymentReminder(db.Model):
    """Append-only record of reminders sent for an invoice."""
    __tablename__ = "payment_reminders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    reminder_type = db.Column(db.String(16), nullable=False, default="email")  # email, sms, in_app
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False)
    sent_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "sent_at": to_utc_z(self.sent_at),
            "type": self.reminder_type,
        }
