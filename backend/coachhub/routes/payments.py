# Overview: Flask API routes for invoices (payments); parses input and returns JSON responses.

"""
Invoice API Routes

DESIGN:
- Invoices are generated from completed sessions of one coach
- A session is billed by at most one pending/paid invoice (409 otherwise)
- Amounts in JSON are decimals; the *_cents fields carry exact integers

SECURITY:
- admin, manager: create, update, mark paid, send reminders
- coach: read own invoices
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import DomainError, ValidationError
from ..models.tenancy import ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH
from ..services import invoice_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

BILLING_ROLES = (ROLE_ADMIN, ROLE_MANAGER)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


# =============================================================================
# INVOICE CREATION
# =============================================================================

@payments_bp.post("")
@require_actor
@require_role(*BILLING_ROLES)
def create_invoice_route():
    """
    Create an invoice from completed sessions.

    Request body:
    {
        "coach_id": 3,
        "session_ids": [11, 12],
        "amount": 150.00,  (optional, defaults to the sum of line items)
        "tax_amount": 0,  (optional)
        "currency": "USD",  (optional)
        "due_date": "2026-04-01",  (optional)
        "period": {"start": "2026-03-01", "end": "2026-03-31"},  (optional)
        "notes": "March sessions"  (optional)
    }

    Returns:
        201: Invoice created (invoice_number continues the org sequence)
        400: Invalid coach or sessions (INVALID_COACH / INVALID_SESSIONS)
        409: A session is already on a pending/paid invoice
    """
    try:
        data = _json_body()
        payment = invoice_service.create_invoice(
            g.actor,
            coach_id=data.get("coach_id"),
            session_ids=data.get("session_ids"),
            amount=data.get("amount"),
            tax_amount=data.get("tax_amount"),
            currency=data.get("currency"),
            due_date=data.get("due_date"),
            period=data.get("period"),
            notes=data.get("notes"),
        )
        return jsonify({"payment": payment.to_dict()}), 201
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


# =============================================================================
# INVOICE QUERIES & UPDATES
# =============================================================================

@payments_bp.get("/<int:payment_id>")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_COACH)
def get_payment_route(payment_id: int):
    try:
        payment = invoice_service.get_payment(g.actor, payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to fetch payment")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@payments_bp.patch("/<int:payment_id>")
@require_actor
@require_role(*BILLING_ROLES)
def update_payment_route(payment_id: int):
    """
    Patch an invoice.

    Writable: status, invoice_url, paid_at, notes, due_date, amount and
    tax_amount (pending only), reminders_sent (appended, never replaced).
    Void invoices are immutable.
    """
    try:
        payment = invoice_service.update_payment(g.actor, payment_id, _json_body())
        return jsonify({"payment": payment.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@payments_bp.post("/<int:payment_id>/mark-paid")
@require_actor
@require_role(*BILLING_ROLES)
def mark_paid_route(payment_id: int):
    """
    Request body (all optional):
    {
        "paid_at": "2026-04-02T10:00:00Z",
        "payment_method": "bank_transfer",
        "payment_reference": "TX-8812"
    }

    Returns:
        200: Invoice marked paid
        409: Already paid (ALREADY_PAID)
    """
    try:
        data = _json_body()
        payment = invoice_service.mark_paid(
            g.actor,
            payment_id,
            paid_at=data.get("paid_at"),
            method=data.get("payment_method"),
            reference=data.get("payment_reference"),
        )
        return jsonify({"payment": payment.to_dict()}), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to mark payment paid")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500


@payments_bp.post("/<int:payment_id>/send")
@require_actor
@require_role(*BILLING_ROLES)
def send_invoice_route(payment_id: int):
    """
    Send (or re-send) the invoice to the coach.

    Request body (optional): {"type": "email" | "sms" | "in_app"}
    """
    try:
        data = _json_body()
        payment = invoice_service.send_reminder(g.actor, payment_id, data.get("type"))
        reminder = payment.reminders[-1]
        recipient = payment.coach.email if payment.coach else None
        return jsonify({
            "message": f"Invoice sent to {recipient}",
            "reminder": reminder.to_dict(),
            "payment": payment.to_dict(),
        }), 200
    except DomainError as e:
        return e.to_response()
    except Exception:
        current_app.logger.exception("Failed to send invoice")
        return jsonify({"error": {"code": "INTERNAL_ERROR", "message": "Internal server error", "details": None}}), 500
