# Overview: Service-layer operations for invoices; builds payments from completed sessions with at-most-once billing.

"""
Invoice Service

WHY: Coaches are paid per completed session. An invoice (Payment) bundles
completed sessions of ONE coach, prices them from the coach's hourly rate and
tracks payment status and reminders.

AT-MOST-ONCE BILLING:
- A session is "held" by a payment whose status is pending or paid.
- Creating an invoice (or moving a failed/refunded invoice back to
  pending/paid) fails with ConflictError when any of its sessions is held by
  another payment.
- Line items own the payment <-> session relation. CoachingSession.payment_id
  is a cache written in the SAME transaction as the invoice; leaving
  pending/paid clears it, re-entering sets it again.

MONEY:
- All amounts are integer cents; total_amount_cents = amount_cents + tax_amount_cents
- Line item amount = rate * duration / 60, rounded half up to the cent

IMMUTABILITY:
- void invoices cannot be changed in any way
- amount/tax can only change while pending
"""

from __future__ import annotations

import logging
import re

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from .. import repositories
from ..errors import AlreadyPaidError, ConflictError, ForbiddenError, ValidationError
from ..extensions import db
from ..models import CoachingSession, Payment, PaymentLineItem, PaymentReminder
from ..models.tenancy import ROLE_ADMIN, ROLE_COACH, ROLE_MANAGER
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    coerce_datetime,
    coerce_int,
    parse_money_cents,
    require_choice,
)
from .concurrency import run_with_retry
from .notifier import notify_safely
from .scheduling_service import STATUS_COMPLETED as SESSION_COMPLETED
from .sequence_service import next_invoice_number
from .tenant_service import ActorContext, require_user_in_org

logger = logging.getLogger(__name__)


# =============================================================================
# STATUSES & CONSTANTS
# =============================================================================

STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_FAILED = "failed"
STATUS_REFUNDED = "refunded"
STATUS_VOID = "void"

VALID_STATUSES = {STATUS_PENDING, STATUS_PAID, STATUS_FAILED, STATUS_REFUNDED, STATUS_VOID}

# Payments in these statuses hold their sessions
HOLDING_STATUSES = (STATUS_PENDING, STATUS_PAID)

REMINDER_EMAIL = "email"
REMINDER_SMS = "sms"
REMINDER_IN_APP = "in_app"
VALID_REMINDER_TYPES = {REMINDER_EMAIL, REMINDER_SMS, REMINDER_IN_APP}

BILLING_ROLES = (ROLE_ADMIN, ROLE_MANAGER)

EVENT_INVOICE_CREATED = "invoice.created"
EVENT_INVOICE_PAID = "invoice.paid"
EVENT_REMINDER_SENT = "invoice.reminder_sent"

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")

_UPDATABLE_FIELDS = {
    "status",
    "invoice_url",
    "paid_at",
    "notes",
    "amount",
    "tax_amount",
    "due_date",
    "reminders_sent",
}


# =============================================================================
# HELPERS
# =============================================================================

def _require_billing_role(actor: ActorContext) -> None:
    if actor.role not in BILLING_ROLES:
        raise ForbiddenError("Only admins and managers can manage invoices", code="INSUFFICIENT_PERMISSIONS")


def line_amount_cents(rate_cents: int, duration_minutes: int) -> int:
    """rate * duration / 60 in cents, rounded half up."""
    return (2 * rate_cents * duration_minutes + 60) // 120


def _line_description(session: CoachingSession) -> str:
    return f"Session on {session.scheduled_at.date().isoformat()}"


def _default_currency() -> str:
    return current_app.config.get("DEFAULT_CURRENCY", "USD")


def _parse_currency(value) -> str:
    if not isinstance(value, str) or not _CURRENCY_CODE.match(value.strip().upper()):
        raise ValidationError("currency must be an ISO 4217 code (e.g. USD)")
    return value.strip().upper()


def _parse_period(period) -> tuple:
    if period is None:
        return None, None
    if not isinstance(period, dict):
        raise ValidationError("period must be an object with start and end")
    start = period.get("start", period.get("start_date"))
    end = period.get("end", period.get("end_date"))
    start = coerce_datetime("period.start", start) if start else None
    end = coerce_datetime("period.end", end) if end else None
    if start and end and end < start:
        raise ValidationError("period.end must not be before period.start")
    return start, end


def _parse_session_ids(session_ids) -> list[int]:
    if not isinstance(session_ids, list) or not session_ids:
        raise ValidationError("session_ids must be a non-empty list")
    ids = [coerce_int("session_ids", sid) for sid in session_ids]
    if len(set(ids)) != len(ids):
        raise ValidationError("session_ids must not contain duplicates")
    return ids


def _holding_payments(org_id: int, session_ids: list[int], exclude_payment_id: int | None = None) -> dict[int, str]:
    """session_id -> invoice_number for sessions held by a pending/paid payment."""
    query = (
        db.session.query(PaymentLineItem.session_id, Payment.invoice_number)
        .join(Payment, Payment.id == PaymentLineItem.payment_id)
        .filter(
            Payment.org_id == org_id,
            Payment.status.in_(HOLDING_STATUSES),
            PaymentLineItem.session_id.in_(session_ids),
        )
    )
    if exclude_payment_id is not None:
        query = query.filter(Payment.id != exclude_payment_id)
    return {session_id: invoice_number for session_id, invoice_number in query.all()}


def _raise_if_billed(org_id: int, session_ids: list[int], exclude_payment_id: int | None = None) -> None:
    held = _holding_payments(org_id, session_ids, exclude_payment_id)
    if held:
        logger.info(
            "Double billing rejected",
            extra={"org_id": org_id, "session_ids": sorted(held)},
        )
        raise ConflictError(
            "Some sessions are already included in a payment",
            code="SESSIONS_ALREADY_BILLED",
            details={"sessions": {str(sid): number for sid, number in sorted(held.items())}},
        )


def _link_sessions(payment: Payment) -> None:
    """Point each billed session's payment_id cache at the payment."""
    for session in _billed_sessions(payment):
        session.payment_id = payment.id


def _release_sessions(payment: Payment) -> None:
    for session in _billed_sessions(payment):
        if session.payment_id == payment.id:
            session.payment_id = None


def _billed_sessions(payment: Payment) -> list[CoachingSession]:
    ids = payment.session_ids
    if not ids:
        return []
    return repositories.sessions.find_many(payment.org_id, {"id": ids}, order_by=[CoachingSession.id])


def _change_status(payment: Payment, new_status: str) -> None:
    """Apply a status change and keep the session back-references in step."""
    old_status = payment.status
    if old_status == new_status:
        return

    was_holding = old_status in HOLDING_STATUSES
    will_hold = new_status in HOLDING_STATUSES

    if will_hold and not was_holding:
        _raise_if_billed(payment.org_id, payment.session_ids, exclude_payment_id=payment.id)
        payment.status = new_status
        _link_sessions(payment)
    elif was_holding and not will_hold:
        payment.status = new_status
        _release_sessions(payment)
    else:
        payment.status = new_status


def _event_payload(payment: Payment) -> dict:
    return {
        "payment_id": payment.id,
        "org_id": payment.org_id,
        "coach_id": payment.coach_id,
        "invoice_number": payment.invoice_number,
        "total_amount_cents": payment.total_amount_cents,
        "currency": payment.currency,
        "status": payment.status,
    }


def _load_mutable(actor: ActorContext, payment_id: int) -> Payment:
    payment = repositories.payments.lock_by_id(actor.org_id, payment_id)
    if payment.status == STATUS_VOID:
        raise ValidationError("Void payments cannot be changed", code="PAYMENT_VOID")
    return payment


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(actor: ActorContext, payment_id: int) -> Payment:
    """Staff see every invoice of the org; coaches only their own."""
    payment = repositories.payments.get(actor.org_id, payment_id)
    if actor.role == ROLE_COACH and payment.coach_id == actor.user_id:
        return payment
    _require_billing_role(actor)
    return payment


def find_dangling_session_links(org_id: int | None = None) -> list[dict]:
    """
    Sessions whose payment_id cache disagrees with the line items.

    Reports sessions pointing at a payment that does not bill them or is no
    longer pending/paid, and sessions billed by a holding payment whose cache
    is missing.
    """
    problems = []

    query = db.session.query(CoachingSession).filter(CoachingSession.payment_id.isnot(None))
    if org_id is not None:
        query = query.filter(CoachingSession.org_id == org_id)
    for session in query.order_by(CoachingSession.id).all():
        payment = db.session.get(Payment, session.payment_id)
        if payment is None or session.id not in payment.session_ids:
            problems.append({"session_id": session.id, "payment_id": session.payment_id, "problem": "not_billed_by_payment"})
        elif payment.status not in HOLDING_STATUSES:
            problems.append({"session_id": session.id, "payment_id": payment.id, "problem": "payment_not_holding"})

    held = (
        db.session.query(PaymentLineItem.session_id, Payment.id)
        .join(Payment, Payment.id == PaymentLineItem.payment_id)
        .filter(Payment.status.in_(HOLDING_STATUSES))
    )
    if org_id is not None:
        held = held.filter(Payment.org_id == org_id)
    for session_id, payment_id in held.order_by(PaymentLineItem.session_id).all():
        session = db.session.get(CoachingSession, session_id)
        if session is not None and session.payment_id != payment_id:
            problems.append({"session_id": session_id, "payment_id": payment_id, "problem": "missing_back_reference"})

    return problems


# =============================================================================
# INVOICE CREATION
# =============================================================================

def create_invoice(
    actor: ActorContext,
    *,
    coach_id,
    session_ids,
    amount=None,
    tax_amount=None,
    currency: str | None = None,
    due_date=None,
    period: dict | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Invoice a batch of completed sessions for one coach.

    The batch is all-or-nothing: a single invalid session fails the whole
    request and nothing is written.

    Raises:
        ValidationError: coach not a coach of the org, or any session missing,
            another coach's, or not completed
        ConflictError: any session already held by a pending/paid invoice
    """
    _require_billing_role(actor)

    coach_id = coerce_int("coach_id", coach_id) if coach_id is not None else None
    ids = _parse_session_ids(session_ids)
    amount_cents = parse_money_cents("amount", amount, allow_none=True)
    tax_cents = parse_money_cents("tax_amount", tax_amount, allow_none=True) or 0
    due = coerce_datetime("due_date", due_date) if due_date else None
    period_start, period_end = _parse_period(period)

    def _op() -> Payment:
        try:
            coach = require_user_in_org(coach_id, actor.org_id, role=ROLE_COACH, field="coach_id")
        except ValidationError as exc:
            raise ValidationError(exc.message, code="INVALID_COACH") from exc

        sessions = repositories.sessions.find_many(
            actor.org_id,
            {"id": ids, "coach_id": coach_id, "status": SESSION_COMPLETED},
        )
        if len(sessions) != len(ids):
            found = {s.id for s in sessions}
            raise ValidationError(
                "Some sessions are invalid, not completed, or not assigned to this coach",
                code="INVALID_SESSIONS",
                details={"invalid_session_ids": [sid for sid in ids if sid not in found]},
            )

        _raise_if_billed(actor.org_id, ids)

        # Line items follow the caller's order
        by_id = {s.id: s for s in sessions}
        rate_cents = coach.hourly_rate_cents or 0
        line_items = [
            PaymentLineItem(
                session_id=sid,
                description=_line_description(by_id[sid]),
                duration_minutes=by_id[sid].duration_minutes,
                rate_cents=rate_cents,
                amount_cents=line_amount_cents(rate_cents, by_id[sid].duration_minutes),
            )
            for sid in ids
        ]

        payment = Payment(
            org_id=actor.org_id,
            coach_id=coach_id,
            invoice_number=next_invoice_number(actor.org_id),
            currency=_parse_currency(currency) if currency else _default_currency(),
            status=STATUS_PENDING,
            due_date=due,
            period_start=period_start,
            period_end=period_end,
            notes=notes,
            created_by_user_id=actor.user_id,
        )
        payment.line_items = line_items
        computed = sum(item.amount_cents for item in line_items)
        payment.set_amounts(amount_cents if amount_cents is not None else computed, tax_cents)

        try:
            repositories.payments.insert(payment)
        except IntegrityError as exc:
            # invoice_number taken by a concurrent writer; replay with a fresh number
            raise StaleDataError(f"invoice number {payment.invoice_number} already used") from exc

        _link_sessions(payment)
        db.session.commit()

        logger.info(
            "Invoice created",
            extra={
                "payment_id": payment.id,
                "invoice_number": payment.invoice_number,
                "org_id": actor.org_id,
                "session_count": len(ids),
            },
        )
        return payment

    payment = run_with_retry(_op)
    notify_safely(EVENT_INVOICE_CREATED, _event_payload(payment))
    return payment


# =============================================================================
# PAYMENT STATUS
# =============================================================================

def mark_paid(
    actor: ActorContext,
    payment_id: int,
    *,
    paid_at=None,
    method: str | None = None,
    reference: str | None = None,
) -> Payment:
    """
    Mark an invoice paid.

    Raises:
        AlreadyPaidError: already paid (paid_at is left untouched)
        ValidationError(PAYMENT_VOID): void invoices are immutable
    """
    _require_billing_role(actor)
    paid_when = coerce_datetime("paid_at", paid_at) if paid_at else None

    def _op() -> Payment:
        payment = repositories.payments.lock_by_id(actor.org_id, payment_id)
        if payment.status == STATUS_PAID:
            raise AlreadyPaidError("Payment is already marked as paid", details={"paid_at": to_utc_z(payment.paid_at)})
        if payment.status == STATUS_VOID:
            raise ValidationError("Void payments cannot be changed", code="PAYMENT_VOID")

        _change_status(payment, STATUS_PAID)
        payment.paid_at = paid_when or utcnow()

        if method or reference:
            payment.notes = "\n".join(filter(None, [
                payment.notes,
                f"Payment Method: {method}" if method else None,
                f"Payment Reference: {reference}" if reference else None,
            ]))

        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    notify_safely(EVENT_INVOICE_PAID, _event_payload(payment))
    return payment


def update_payment(actor: ActorContext, payment_id: int, patch: dict) -> Payment:
    """
    Patch an invoice: status, invoice_url, paid_at, notes, due_date,
    amount/tax_amount (pending only) and reminders_sent (appended).

    Moving to paid stamps paid_at when absent; a paid invoice keeps its paid_at.
    """
    _require_billing_role(actor)
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")
    unknown = sorted(set(patch) - _UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    new_status = patch.get("status")
    if new_status is not None:
        require_choice("status", new_status, VALID_STATUSES)
    amount_cents = parse_money_cents("amount", patch["amount"]) if "amount" in patch else None
    tax_cents = parse_money_cents("tax_amount", patch["tax_amount"]) if "tax_amount" in patch else None
    paid_at = coerce_datetime("paid_at", patch["paid_at"]) if patch.get("paid_at") else None
    due_date = coerce_datetime("due_date", patch["due_date"]) if patch.get("due_date") else None
    reminders = _parse_reminders(patch.get("reminders_sent"))

    def _op() -> Payment:
        payment = _load_mutable(actor, payment_id)

        if amount_cents is not None or tax_cents is not None:
            if payment.status != STATUS_PENDING:
                raise ValidationError("Amounts can only change while the invoice is pending", code="PAYMENT_NOT_PENDING")
            payment.set_amounts(
                amount_cents if amount_cents is not None else payment.amount_cents,
                tax_cents if tax_cents is not None else payment.tax_amount_cents,
            )

        if new_status is not None:
            _change_status(payment, new_status)
            if new_status == STATUS_PAID and payment.paid_at is None:
                payment.paid_at = paid_at or utcnow()

        if "invoice_url" in patch:
            payment.invoice_url = patch["invoice_url"] or None
        if "paid_at" in patch:
            if paid_at is None and payment.status == STATUS_PAID:
                raise ValidationError("paid_at cannot be cleared on a paid invoice", code="PAID_AT_REQUIRED")
            payment.paid_at = paid_at
        if "due_date" in patch:
            payment.due_date = due_date
        if "notes" in patch:
            payment.notes = patch["notes"]

        for sent_at, reminder_type in reminders:
            payment.reminders.append(
                PaymentReminder(sent_at=sent_at, reminder_type=reminder_type, sent_by_user_id=actor.user_id)
            )

        # Bumps version_id even for child-only changes
        payment.updated_at = utcnow()
        db.session.commit()
        return payment

    return run_with_retry(_op)


def _parse_reminders(entries) -> list[tuple]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValidationError("reminders_sent must be a list")
    parsed = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ValidationError("reminders_sent entries must be objects")
        reminder_type = entry.get("type") or REMINDER_EMAIL
        require_choice("reminder type", reminder_type, VALID_REMINDER_TYPES)
        sent_at = coerce_datetime("sent_at", entry["sent_at"]) if entry.get("sent_at") else utcnow()
        parsed.append((sent_at, reminder_type))
    return parsed


# =============================================================================
# REMINDERS
# =============================================================================

def send_reminder(actor: ActorContext, payment_id: int, reminder_type: str | None = None) -> Payment:
    """
    Record a reminder and hand delivery to the notifier.

    The notifier is fire-and-forget: its failures are logged and the reminder
    stays recorded.
    """
    _require_billing_role(actor)
    reminder_type = reminder_type or REMINDER_EMAIL
    require_choice("type", reminder_type, VALID_REMINDER_TYPES)

    def _op() -> Payment:
        payment = _load_mutable(actor, payment_id)
        payment.reminders.append(
            PaymentReminder(sent_at=utcnow(), reminder_type=reminder_type, sent_by_user_id=actor.user_id)
        )
        payment.updated_at = utcnow()
        db.session.commit()
        return payment

    payment = run_with_retry(_op)

    payload = _event_payload(payment)
    payload["reminder_type"] = reminder_type
    payload["recipient_email"] = payment.coach.email if payment.coach else None
    notify_safely(EVENT_REMINDER_SENT, payload)
    return payment
