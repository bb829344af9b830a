# Overview: Pytest coverage for invoice generation, editing and payment.

"""
Invoice generator tests

Verifies:
- Only jobs at (or past) their invoicing stage can be invoiced
- At most one invoice per job card (AlreadyInvoiced on the second call)
- INV-<year>-NNNN numbering, sequential per tenant
- total = subtotal - discount + tax after every edit; negative totals rejected
- Payment is recorded once and freezes the invoice
"""

import pytest

from washbay.models import Booking, ChangeEvent, Invoice, Service
from washbay.services import booking_service, invoice_service, job_card_service
from washbay.services.document_service import next_document_number, reserve_through
from washbay.services.invoice_service import AlreadyInvoiced, ConstraintViolation
from washbay.services.lifecycle_service import InvalidTransition
from washbay.time_utils import utcnow
from washbay.validation import ConflictError, NotFoundError, ValidationError

from conftest import make_booking


def _finished_job(org, booking, stage="delivered"):
    job = booking_service.confirm_booking(org.id, booking.id)
    return job_card_service.set_stage(org.id, job.id, stage)


def _walk_in_job(org, customer, vehicle, services, stage="completed"):
    job = job_card_service.open_job_card(
        org.id,
        customer_id=customer.id,
        vehicle_id=vehicle.id,
        services=services,
    )
    return job_card_service.set_stage(org.id, job.id, stage)


# =============================================================================
# ELIGIBILITY AND IDEMPOTENCY
# =============================================================================


class TestGenerateInvoice:

    def test_full_walkthrough(self, db_session, org_a, booking_a):
        """Advance through every default stage, invoice once, then edit."""
        job = booking_service.confirm_booking(org_a.id, booking_a.id)
        while True:
            try:
                job = job_card_service.advance(org_a.id, job.id)
            except InvalidTransition:
                break
        assert job.stage == "delivered"

        invoice = invoice_service.generate_invoice(org_a.id, job.id)
        assert invoice.subtotal_cents == 30000
        assert invoice.tax_cents == 0
        assert invoice.discount_cents == 0
        assert invoice.total_cents == 30000
        assert invoice.payment_status == "unpaid"
        assert invoice.items == [{"name": "Foam Wash", "price_cents": 30000, "service_id": job.services[0]["id"]}]
        assert invoice.booking_id == booking_a.id
        assert invoice.customer_id == booking_a.customer_id

        with pytest.raises(AlreadyInvoiced):
            invoice_service.generate_invoice(org_a.id, job.id)
        assert db_session.query(Invoice).filter_by(job_card_id=job.id).count() == 1

        invoice = invoice_service.add_invoice_item(org_a.id, invoice.id, {"name": "Wax", "price": 150})
        assert invoice.subtotal_cents == 45000
        assert invoice.total_cents == 45000

    @pytest.mark.parametrize("stage", ["check_in", "polishing", "qc"])
    def test_not_eligible_before_completed(self, db_session, org_a, booking_a, stage):
        job = _finished_job(org_a, booking_a, stage=stage)
        with pytest.raises(InvalidTransition):
            invoice_service.generate_invoice(org_a.id, job.id)
        assert db_session.query(Invoice).count() == 0

    def test_not_started_job_not_eligible(self, db_session, org_a, booking_a):
        job = booking_service.confirm_booking(org_a.id, booking_a.id, check_in=False)
        with pytest.raises(InvalidTransition):
            invoice_service.generate_invoice(org_a.id, job.id)

    def test_eligible_at_completed(self, db_session, org_a, booking_a):
        job = _finished_job(org_a, booking_a, stage="completed")
        invoice = invoice_service.generate_invoice(org_a.id, job.id)
        assert invoice.job_card_id == job.id

    def test_custom_lifecycle_without_completed_gates_on_last_stage(
        self, db_session, org_a, customer_a, vehicle_a
    ):
        svc = Service(
            org_id=org_a.id,
            name="Quick Rinse",
            base_price_cents=10000,
            lifecycle_stages=["check_in", "rinse", "handover"],
        )
        db_session.add(svc)
        db_session.commit()

        booking = make_booking(org_a, customer_a, vehicle_a, [svc])
        job = _finished_job(org_a, booking, stage="rinse")
        with pytest.raises(InvalidTransition):
            invoice_service.generate_invoice(org_a.id, job.id)

        job_card_service.advance(org_a.id, job.id)
        invoice = invoice_service.generate_invoice(org_a.id, job.id)
        assert invoice.total_cents == 10000

    def test_tax_and_discount_applied(self, db_session, org_a, booking_a):
        job = _finished_job(org_a, booking_a)
        invoice = invoice_service.generate_invoice(org_a.id, job.id, tax_cents=5400, discount_cents=2000)
        assert invoice.subtotal_cents == 30000
        assert invoice.total_cents == 30000 - 2000 + 5400

    def test_negative_total_rejected(self, db_session, org_a, booking_a):
        job = _finished_job(org_a, booking_a)
        with pytest.raises(ValidationError):
            invoice_service.generate_invoice(org_a.id, job.id, discount_cents=40000)
        assert db_session.query(Invoice).count() == 0

    def test_created_event_emitted(self, db_session, org_a, booking_a, staff_a):
        job = _finished_job(org_a, booking_a)
        invoice = invoice_service.generate_invoice(org_a.id, job.id, actor_user_id=staff_a.id)

        event = db_session.query(ChangeEvent).filter_by(event_type="invoice.created").one()
        assert event.entity_id == invoice.id
        assert event.payload["invoice_number"] == invoice.invoice_number
        assert event.actor_user_id == staff_a.id

    def test_unknown_job_card(self, db_session, org_a):
        with pytest.raises(NotFoundError):
            invoice_service.generate_invoice(org_a.id, 99999)


# =============================================================================
# NUMBERING
# =============================================================================


class TestInvoiceNumbering:

    def test_sequential_per_tenant(
        self, db_session, org_a, org_b, customer_a, vehicle_a, customer_b, vehicle_b
    ):
        year = utcnow().year
        items = [{"id": None, "name": "Wash", "price_cents": 1000, "duration_minutes": None}]

        first = invoice_service.generate_invoice(
            org_a.id, _walk_in_job(org_a, customer_a, vehicle_a, items).id
        )
        second = invoice_service.generate_invoice(
            org_a.id, _walk_in_job(org_a, customer_a, vehicle_a, items).id
        )
        other = invoice_service.generate_invoice(
            org_b.id, _walk_in_job(org_b, customer_b, vehicle_b, items).id
        )

        assert first.invoice_number == f"INV-{year}-0001"
        assert second.invoice_number == f"INV-{year}-0002"
        assert other.invoice_number == f"INV-{year}-0001"

    def test_document_numbers_increment(self, db_session, org_a):
        numbers = [
            next_document_number(org_id=org_a.id, document_type="TEST", prefix="T")
            for _ in range(3)
        ]
        db_session.commit()
        assert numbers == ["T-0001", "T-0002", "T-0003"]

    def test_reserve_through_never_moves_backwards(self, db_session, org_a):
        reserve_through(org_id=org_a.id, document_type="TEST", number=5)
        reserve_through(org_id=org_a.id, document_type="TEST", number=2)
        number = next_document_number(org_id=org_a.id, document_type="TEST", prefix="T")
        db_session.commit()
        assert number == "T-0006"


# =============================================================================
# UNIQUENESS CONSTRAINTS
# =============================================================================


class TestInvoiceConstraints:
    """The unique constraints decide when the pre-insert checks are stale."""

    @staticmethod
    def _taken_number(db_session, org, customer, number):
        db_session.add(Invoice(
            org_id=org.id,
            customer_id=customer.id,
            invoice_number=number,
            items=[],
        ))
        db_session.commit()

    def test_number_taken_outside_sequence_is_skipped(
        self, db_session, org_a, customer_a, vehicle_a, booking_a
    ):
        year = utcnow().year
        self._taken_number(db_session, org_a, customer_a, f"INV-{year}-0001")
        job = _finished_job(org_a, booking_a)

        invoice = invoice_service.generate_invoice(org_a.id, job.id)
        assert invoice.invoice_number == f"INV-{year}-0002"
        assert invoice.job_card_id == job.id

        items = [{"id": None, "name": "Wash", "price_cents": 1000, "duration_minutes": None}]
        later = invoice_service.generate_invoice(
            org_a.id, _walk_in_job(org_a, customer_a, vehicle_a, items).id
        )
        assert later.invoice_number == f"INV-{year}-0003"

    def test_second_clash_is_constraint_violation(
        self, db_session, org_a, customer_a, booking_a, monkeypatch
    ):
        year = utcnow().year
        self._taken_number(db_session, org_a, customer_a, f"INV-{year}-0001")
        job = _finished_job(org_a, booking_a)

        monkeypatch.setattr(
            invoice_service, "next_document_number", lambda **kwargs: f"INV-{year}-0001"
        )

        with pytest.raises(ConstraintViolation):
            invoice_service.generate_invoice(org_a.id, job.id)

        assert db_session.query(Invoice).filter_by(job_card_id=job.id).count() == 0
        assert db_session.query(Invoice).filter_by(org_id=org_a.id).count() == 1
        assert db_session.get(Booking, booking_a.id).status == "completed"

    def test_stale_existence_check_is_already_invoiced(
        self, db_session, org_a, booking_a, monkeypatch
    ):
        job = _finished_job(org_a, booking_a)
        first = invoice_service.generate_invoice(org_a.id, job.id)
        first_id, first_number = first.id, first.invoice_number

        real_lookup = invoice_service._existing_invoice_id
        calls = []

        def lookup_misses_once(org_id, job_card_id):
            calls.append(job_card_id)
            if len(calls) == 1:
                return None
            return real_lookup(org_id, job_card_id)

        monkeypatch.setattr(invoice_service, "_existing_invoice_id", lookup_misses_once)

        with pytest.raises(AlreadyInvoiced):
            invoice_service.generate_invoice(org_a.id, job.id)

        assert len(calls) == 2
        invoices = db_session.query(Invoice).filter_by(job_card_id=job.id).all()
        assert [(i.id, i.invoice_number) for i in invoices] == [(first_id, first_number)]
        assert db_session.get(Booking, booking_a.id).status == "completed"
        created = db_session.query(ChangeEvent).filter_by(event_type="invoice.created").count()
        assert created == 1


# =============================================================================
# EDITING
# =============================================================================


class TestEditInvoice:

    @pytest.fixture
    def invoice(self, db_session, org_a, booking_a):
        job = _finished_job(org_a, booking_a)
        return invoice_service.generate_invoice(org_a.id, job.id)

    def test_replace_items(self, db_session, org_a, invoice):
        invoice = invoice_service.replace_invoice_items(
            org_a.id,
            invoice.id,
            [{"name": "Foam Wash", "price": "250.50"}, {"name": "Tyre shine", "price_cents": 4950}],
        )
        assert invoice.subtotal_cents == 25050 + 4950
        assert invoice.total_cents == 30000

    def test_remove_item(self, db_session, org_a, invoice):
        invoice = invoice_service.add_invoice_item(org_a.id, invoice.id, {"name": "Wax", "price_cents": 15000})
        invoice = invoice_service.remove_invoice_item(org_a.id, invoice.id, 0)
        assert [i["name"] for i in invoice.items] == ["Wax"]
        assert invoice.total_cents == 15000

    def test_remove_missing_item(self, db_session, org_a, invoice):
        with pytest.raises(NotFoundError):
            invoice_service.remove_invoice_item(org_a.id, invoice.id, 5)

    def test_adjustments_keep_totals_consistent(self, db_session, org_a, invoice):
        invoice = invoice_service.update_invoice_adjustments(org_a.id, invoice.id, tax_cents=900)
        assert invoice.total_cents == 30900

        invoice = invoice_service.update_invoice_adjustments(org_a.id, invoice.id, discount_cents=1000)
        assert invoice.tax_cents == 900
        assert invoice.total_cents == 30000 - 1000 + 900

        invoice = invoice_service.add_invoice_item(org_a.id, invoice.id, {"name": "Wax", "price_cents": 15000})
        assert invoice.total_cents == invoice.subtotal_cents - invoice.discount_cents + invoice.tax_cents

    def test_edit_making_total_negative_rejected(self, db_session, org_a, invoice):
        invoice = invoice_service.update_invoice_adjustments(org_a.id, invoice.id, discount_cents=30000)
        assert invoice.total_cents == 0

        with pytest.raises(ValidationError):
            invoice_service.remove_invoice_item(org_a.id, invoice.id, 0)

        invoice = invoice_service.get_invoice(org_a.id, invoice.id)
        assert len(invoice.items) == 1
        assert invoice.total_cents == 0

    def test_bad_item_rejected(self, db_session, org_a, invoice):
        with pytest.raises(ValidationError):
            invoice_service.add_invoice_item(org_a.id, invoice.id, {"name": "", "price": 10})
        with pytest.raises(ValidationError):
            invoice_service.add_invoice_item(org_a.id, invoice.id, {"name": "Wax", "price": -1})


# =============================================================================
# PAYMENT
# =============================================================================


class TestRecordPayment:

    @pytest.fixture
    def invoice(self, db_session, org_a, booking_a):
        job = _finished_job(org_a, booking_a)
        return invoice_service.generate_invoice(org_a.id, job.id)

    def test_record_payment(self, db_session, org_a, invoice):
        invoice = invoice_service.record_payment(org_a.id, invoice.id, "upi")
        assert invoice.payment_status == "paid"
        assert invoice.payment_method == "upi"
        assert invoice.paid_at is not None
        assert invoice.total_cents == 30000

    def test_unknown_method_rejected(self, db_session, org_a, invoice):
        with pytest.raises(ValidationError):
            invoice_service.record_payment(org_a.id, invoice.id, "barter")
        assert invoice_service.get_invoice(org_a.id, invoice.id).payment_status == "unpaid"

    def test_pay_twice_rejected(self, db_session, org_a, invoice):
        invoice_service.record_payment(org_a.id, invoice.id, "cash")
        with pytest.raises(ConflictError):
            invoice_service.record_payment(org_a.id, invoice.id, "card")

    def test_paid_invoice_is_frozen(self, db_session, org_a, invoice):
        invoice_service.record_payment(org_a.id, invoice.id, "cash")
        with pytest.raises(ConflictError):
            invoice_service.add_invoice_item(org_a.id, invoice.id, {"name": "Wax", "price": 150})
        with pytest.raises(ConflictError):
            invoice_service.update_invoice_adjustments(org_a.id, invoice.id, discount_cents=100)

    def test_list_by_payment_status(self, db_session, org_a, invoice):
        assert [i.id for i in invoice_service.list_invoices(org_a.id, payment_status="unpaid")] == [invoice.id]
        invoice_service.record_payment(org_a.id, invoice.id, "cash")
        assert invoice_service.list_invoices(org_a.id, payment_status="unpaid") == []
