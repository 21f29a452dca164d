# Overview: Tests for invoice generation, numbering, payment status and reminders.

"""
Invoice service tests.

Invariants under test:
- a session is billed by at most one pending/paid invoice
- total_amount_cents == amount_cents + tax_amount_cents after every save
- invoice numbers continue the organization's sequence
- marking an invoice paid twice fails and leaves paid_at untouched
"""

from datetime import datetime

import pytest

from conftest import FailingNotifier, actor_for, at, run_in_threads
from coachhub.errors import AlreadyPaidError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from coachhub.extensions import db
from coachhub.models import CoachingSession, Payment
from coachhub.services import invoice_service, scheduling_service
from coachhub.services.notifier import EXTENSION_KEY


@pytest.fixture
def completed_session(manager_a, coach_a, entrepreneur_a):
    """completed_session(start, duration=60, coach=coach_a) -> completed CoachingSession."""
    def factory(start, duration=60, coach=None):
        session = scheduling_service.create_session(
            actor_for(manager_a),
            coach_id=(coach or coach_a).id,
            entrepreneur_id=entrepreneur_a.id,
            manager_id=manager_a.id,
            scheduled_at=start,
            duration=duration,
        )
        return scheduling_service.transition_status(actor_for(manager_a), session.id, "completed")
    return factory


@pytest.fixture
def invoice(manager_a, coach_a):
    """invoice(sessions, **kwargs) -> Payment for coach_a, created by the manager."""
    def factory(sessions, **kwargs):
        return invoice_service.create_invoice(
            actor_for(manager_a),
            coach_id=kwargs.pop("coach_id", coach_a.id),
            session_ids=[s.id for s in sessions],
            **kwargs,
        )
    return factory


def _seed_invoice_numbers(db_session, org, coach, *numbers):
    for number in numbers:
        payment = Payment(org_id=org.id, coach_id=coach.id, invoice_number=number, status="void")
        payment.set_amounts(0, 0)
        db_session.add(payment)
    db_session.commit()


class TestCreateInvoice:
    def test_line_items_and_totals(self, completed_session, invoice, org_a, coach_a, db_session):
        _seed_invoice_numbers(db_session, org_a, coach_a, "INV-001", "INV-002", "INV-003")
        long_session = completed_session(at(9), duration=60)
        short_session = completed_session(at(11), duration=30)

        payment = invoice([long_session, short_session])

        assert payment.invoice_number == "INV-004"
        assert [item.amount_cents for item in payment.line_items] == [10000, 5000]
        assert payment.line_items[0].description == "Session on 2026-03-02"
        assert payment.amount_cents == 15000
        assert payment.tax_amount_cents == 0
        assert payment.total_amount_cents == 15000
        assert payment.status == "pending"

        data = payment.to_dict()
        assert data["amount"] == 150.0
        assert data["total_amount"] == 150.0
        assert data["session_ids"] == [long_session.id, short_session.id]

    def test_sessions_point_back_at_invoice(self, completed_session, invoice):
        session = completed_session(at(9))
        payment = invoice([session])
        assert db.session.get(CoachingSession, session.id).payment_id == payment.id

    def test_fresh_organization_starts_at_001(self, completed_session, invoice):
        first = invoice([completed_session(at(9))])
        second = invoice([completed_session(at(11))])
        assert (first.invoice_number, second.invoice_number) == ("INV-001", "INV-002")

    def test_numbering_is_per_organization(self, completed_session, invoice, org_b, coach_b, db_session):
        _seed_invoice_numbers(db_session, org_b, coach_b, "INV-041")
        payment = invoice([completed_session(at(9))])
        assert payment.invoice_number == "INV-001"

    def test_caller_amount_and_tax(self, completed_session, invoice):
        payment = invoice([completed_session(at(9))], amount="120.50", tax_amount=12.05, currency="eur")

        assert payment.amount_cents == 12050
        assert payment.tax_amount_cents == 1205
        assert payment.total_amount_cents == 13255
        assert payment.currency == "EUR"

    def test_fractional_cents_round_half_up(self, completed_session, invoice, make_user, org_a):
        odd_rate = make_user(org_a, "coach", "odd@acme.test", hourly_rate_cents=3333)
        session = completed_session(at(9), duration=45, coach=odd_rate)

        payment = invoice([session], coach_id=odd_rate.id)

        # 33.33 * 45 / 60 = 24.9975 -> 25.00
        assert payment.line_items[0].amount_cents == 2500

    def test_coach_without_rate_bills_zero(self, completed_session, invoice, make_user, org_a):
        volunteer = make_user(org_a, "coach", "volunteer@acme.test")
        payment = invoice([completed_session(at(9), coach=volunteer)], coach_id=volunteer.id)
        assert payment.total_amount_cents == 0

    def test_period_is_recorded(self, completed_session, invoice):
        payment = invoice(
            [completed_session(at(9))],
            period={"start_date": "2026-03-01", "end_date": "2026-03-31"},
        )
        assert payment.to_dict()["period"] == {"start": "2026-03-01T00:00:00Z", "end": "2026-03-31T00:00:00Z"}

    def test_emits_invoice_created(self, completed_session, invoice, notifier):
        payment = invoice([completed_session(at(9))])

        events = notifier.of_type("invoice.created")
        assert len(events) == 1
        assert events[0]["invoice_number"] == payment.invoice_number
        assert events[0]["total_amount_cents"] == 10000


class TestInvoiceValidation:
    def test_non_completed_session_fails_whole_batch(self, completed_session, invoice, manager_a, coach_a, entrepreneur_a):
        done = completed_session(at(9))
        upcoming = scheduling_service.create_session(
            actor_for(manager_a),
            coach_id=coach_a.id,
            entrepreneur_id=entrepreneur_a.id,
            manager_id=manager_a.id,
            scheduled_at=at(13),
            duration=60,
        )

        with pytest.raises(ValidationError) as exc_info:
            invoice([done, upcoming])

        assert exc_info.value.code == "INVALID_SESSIONS"
        assert exc_info.value.details == {"invalid_session_ids": [upcoming.id]}
        assert Payment.query.count() == 0
        assert db.session.get(CoachingSession, done.id).payment_id is None

    def test_other_coach_session_is_invalid(self, completed_session, invoice, coach_a2):
        foreign = completed_session(at(9), coach=coach_a2)
        with pytest.raises(ValidationError) as exc_info:
            invoice([foreign])
        assert exc_info.value.code == "INVALID_SESSIONS"

    def test_invalid_coach(self, completed_session, invoice, entrepreneur_a):
        session = completed_session(at(9))
        with pytest.raises(ValidationError) as exc_info:
            invoice([session], coach_id=entrepreneur_a.id)
        assert exc_info.value.code == "INVALID_COACH"

    def test_duplicate_and_empty_ids(self, manager_a, coach_a, completed_session):
        session = completed_session(at(9))
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(actor_for(manager_a), coach_id=coach_a.id, session_ids=[session.id, session.id])
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(actor_for(manager_a), coach_id=coach_a.id, session_ids=[])

    @pytest.mark.parametrize("amount", ["-1", "abc", "10000000.00"])
    def test_bad_amounts(self, completed_session, invoice, amount):
        with pytest.raises(ValidationError):
            invoice([completed_session(at(9))], amount=amount)

    def test_coach_cannot_create_invoices(self, completed_session, coach_a):
        session = completed_session(at(9))
        with pytest.raises(ForbiddenError):
            invoice_service.create_invoice(actor_for(coach_a), coach_id=coach_a.id, session_ids=[session.id])


class TestAtMostOnceBilling:
    def test_reinvoicing_pending_session_conflicts(self, completed_session, invoice, org_a, coach_a, db_session):
        _seed_invoice_numbers(db_session, org_a, coach_a, "INV-001", "INV-002", "INV-003")
        session = completed_session(at(9))
        first = invoice([session])
        assert first.invoice_number == "INV-004"

        with pytest.raises(ConflictError) as exc_info:
            invoice([session])

        assert exc_info.value.code == "SESSIONS_ALREADY_BILLED"
        assert exc_info.value.details == {"sessions": {str(session.id): "INV-004"}}
        assert Payment.query.filter_by(invoice_number="INV-005").count() == 0

    def test_paid_invoice_still_holds_sessions(self, completed_session, invoice, manager_a):
        session = completed_session(at(9))
        first = invoice([session])
        invoice_service.mark_paid(actor_for(manager_a), first.id)

        with pytest.raises(ConflictError):
            invoice([session])

    def test_failed_invoice_releases_sessions(self, completed_session, invoice, manager_a):
        session = completed_session(at(9))
        first = invoice([session])

        invoice_service.update_payment(actor_for(manager_a), first.id, {"status": "failed"})
        assert db.session.get(CoachingSession, session.id).payment_id is None

        second = invoice([session])
        assert db.session.get(CoachingSession, session.id).payment_id == second.id

    def test_reactivating_released_invoice_rechecks_conflicts(self, completed_session, invoice, manager_a):
        session = completed_session(at(9))
        first = invoice([session])
        invoice_service.update_payment(actor_for(manager_a), first.id, {"status": "failed"})
        invoice([session])

        with pytest.raises(ConflictError):
            invoice_service.update_payment(actor_for(manager_a), first.id, {"status": "pending"})

        assert db.session.get(Payment, first.id).status == "failed"

    def test_invoiced_session_cannot_be_moved(self, completed_session, invoice, manager_a):
        session = completed_session(at(9))
        invoice([session])

        with pytest.raises(ValidationError) as exc_info:
            scheduling_service.update_session(actor_for(manager_a), session.id, {"duration": 90})
        assert exc_info.value.code == "SESSION_INVOICED"

    def test_back_references_are_consistent(self, completed_session, invoice, manager_a):
        first = invoice([completed_session(at(9)), completed_session(at(11))])
        invoice_service.update_payment(actor_for(manager_a), first.id, {"status": "refunded"})
        invoice([completed_session(at(13))])

        assert invoice_service.find_dangling_session_links() == []

    def test_dangling_reference_is_reported(self, completed_session, invoice, db_session):
        session = completed_session(at(9))
        payment = invoice([session])
        db.session.get(CoachingSession, session.id).payment_id = None
        db_session.commit()

        assert invoice_service.find_dangling_session_links(payment.org_id) == [
            {"session_id": session.id, "payment_id": payment.id, "problem": "missing_back_reference"}
        ]


class TestMarkPaid:
    def test_mark_paid_appends_method_and_reference(self, completed_session, invoice, manager_a, notifier):
        payment = invoice([completed_session(at(9))], notes="March")

        paid = invoice_service.mark_paid(
            actor_for(manager_a), payment.id, paid_at="2026-04-02T10:00:00Z", method="bank_transfer", reference="TX-8812"
        )

        assert paid.status == "paid"
        assert paid.paid_at == datetime(2026, 4, 2, 10, 0)
        assert paid.notes == "March\nPayment Method: bank_transfer\nPayment Reference: TX-8812"
        assert len(notifier.of_type("invoice.paid")) == 1

    def test_mark_paid_without_prior_notes(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])

        paid = invoice_service.mark_paid(actor_for(manager_a), payment.id, method="card")

        assert paid.notes == "Payment Method: card"

    def test_mark_paid_twice_keeps_first_paid_at(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        first = invoice_service.mark_paid(actor_for(manager_a), payment.id)
        first_paid_at = first.paid_at

        with pytest.raises(AlreadyPaidError) as exc_info:
            invoice_service.mark_paid(actor_for(manager_a), payment.id, paid_at="2030-01-01T00:00:00Z")

        assert exc_info.value.status_code == 409
        assert db.session.get(Payment, payment.id).paid_at == first_paid_at

    def test_void_invoice_cannot_be_paid(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        invoice_service.update_payment(actor_for(manager_a), payment.id, {"status": "void"})

        with pytest.raises(ValidationError) as exc_info:
            invoice_service.mark_paid(actor_for(manager_a), payment.id)
        assert exc_info.value.code == "PAYMENT_VOID"

    def test_payment_of_other_org_is_not_found(self, completed_session, invoice, manager_b):
        payment = invoice([completed_session(at(9))])
        with pytest.raises(NotFoundError):
            invoice_service.mark_paid(actor_for(manager_b), payment.id)


class TestUpdatePayment:
    def test_amount_change_recomputes_total(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])

        updated = invoice_service.update_payment(actor_for(manager_a), payment.id, {"tax_amount": "8.25"})

        assert updated.amount_cents == 10000
        assert updated.tax_amount_cents == 825
        assert updated.total_amount_cents == 10825

    def test_amounts_frozen_once_paid(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        invoice_service.mark_paid(actor_for(manager_a), payment.id)

        with pytest.raises(ValidationError) as exc_info:
            invoice_service.update_payment(actor_for(manager_a), payment.id, {"amount": 1})
        assert exc_info.value.code == "PAYMENT_NOT_PENDING"

    def test_status_paid_stamps_paid_at(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        updated = invoice_service.update_payment(actor_for(manager_a), payment.id, {"status": "paid"})
        assert updated.paid_at is not None

    def test_paid_at_cannot_be_cleared_once_paid(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        paid_at = invoice_service.mark_paid(actor_for(manager_a), payment.id).paid_at

        with pytest.raises(ValidationError) as exc_info:
            invoice_service.update_payment(actor_for(manager_a), payment.id, {"paid_at": None})

        assert exc_info.value.code == "PAID_AT_REQUIRED"
        assert db.session.get(Payment, payment.id).paid_at == paid_at

    def test_reminders_are_appended(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        invoice_service.update_payment(
            actor_for(manager_a), payment.id, {"reminders_sent": [{"sent_at": "2026-03-05T09:00:00Z", "type": "sms"}]}
        )
        updated = invoice_service.update_payment(
            actor_for(manager_a), payment.id, {"reminders_sent": [{"type": "email"}]}
        )

        assert [r["type"] for r in updated.to_dict()["reminders_sent"]] == ["sms", "email"]

    def test_void_invoice_is_immutable(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        invoice_service.update_payment(actor_for(manager_a), payment.id, {"status": "void"})

        with pytest.raises(ValidationError) as exc_info:
            invoice_service.update_payment(actor_for(manager_a), payment.id, {"notes": "late edit"})
        assert exc_info.value.code == "PAYMENT_VOID"

    def test_unknown_field_is_rejected(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        with pytest.raises(ValidationError):
            invoice_service.update_payment(actor_for(manager_a), payment.id, {"invoice_number": "INV-999"})


class TestReminders:
    def test_send_reminder_records_and_notifies(self, completed_session, invoice, manager_a, coach_a, notifier):
        payment = invoice([completed_session(at(9))])

        updated = invoice_service.send_reminder(actor_for(manager_a), payment.id)

        assert [r.reminder_type for r in updated.reminders] == ["email"]
        events = notifier.of_type("invoice.reminder_sent")
        assert events[0]["recipient_email"] == coach_a.email
        assert events[0]["reminder_type"] == "email"

    def test_notifier_failure_does_not_fail_reminder(self, app, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        previous = app.extensions.get(EXTENSION_KEY)
        app.extensions[EXTENSION_KEY] = FailingNotifier()
        try:
            updated = invoice_service.send_reminder(actor_for(manager_a), payment.id, "in_app")
        finally:
            app.extensions[EXTENSION_KEY] = previous

        assert [r.reminder_type for r in updated.reminders] == ["in_app"]

    def test_unknown_reminder_type(self, completed_session, invoice, manager_a):
        payment = invoice([completed_session(at(9))])
        with pytest.raises(ValidationError):
            invoice_service.send_reminder(actor_for(manager_a), payment.id, "pigeon")


class TestCoachAccess:
    def test_coach_reads_own_invoice(self, completed_session, invoice, coach_a):
        payment = invoice([completed_session(at(9))])
        assert invoice_service.get_payment(actor_for(coach_a), payment.id).id == payment.id

    def test_other_coach_cannot_read(self, completed_session, invoice, coach_a2):
        payment = invoice([completed_session(at(9))])
        with pytest.raises(ForbiddenError):
            invoice_service.get_payment(actor_for(coach_a2), payment.id)


class TestConcurrency:
    def test_simultaneous_invoices_for_one_session(self, file_app, file_tenant):
        manager = file_tenant["manager"]
        coach_id = file_tenant["coach"].user_id
        with file_app.app_context():
            session = scheduling_service.create_session(
                manager,
                coach_id=coach_id,
                entrepreneur_id=file_tenant["entrepreneur"].user_id,
                manager_id=manager.user_id,
                scheduled_at=at(9),
                duration=60,
            )
            session_id = scheduling_service.transition_status(manager, session.id, "completed").id

        def bill(index):
            invoice_service.create_invoice(manager, coach_id=coach_id, session_ids=[session_id])

        outcomes = run_in_threads(file_app, 6, bill)

        assert sorted(outcomes) == ["ConflictError"] * 5 + ["ok"]
        with file_app.app_context():
            assert db.session.query(Payment).count() == 1
            assert db.session.get(CoachingSession, session_id).payment_id is not None
