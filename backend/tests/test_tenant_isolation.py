# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests create two organizations with separate users and data, then
verify that:
1. Services scoped to Organization A never return Organization B rows
2. Cross-tenant ids behave exactly like ids that do not exist (404)
3. Catalog references in bookings cannot point at another tenant's services
"""

import pytest

from washbay.services import (
    booking_service,
    catalog_service,
    customer_service,
    invoice_service,
    job_card_service,
)
from washbay.validation import NotFoundError

from conftest import auth_headers, get_auth_token, make_booking


@pytest.fixture
def booking_b(db_session, org_b, customer_b, vehicle_b):
    return booking_service.create_booking(
        org_b.id,
        customer_id=customer_b.id,
        vehicle_id=vehicle_b.id,
        booking_date="2026-10-20",
        booking_time="12:00",
        services=[{"id": None, "name": "Wash", "price_cents": 1000, "duration_minutes": None}],
    )


class TestServiceLayerIsolation:
    """Every lookup is scoped by the org_id passed in."""

    def test_get_foreign_rows_is_not_found(self, db_session, org_a, booking_b, customer_b):
        with pytest.raises(NotFoundError):
            booking_service.get_booking(org_a.id, booking_b.id)
        with pytest.raises(NotFoundError):
            customer_service.get_customer(org_a.id, customer_b.id)

    def test_confirm_foreign_booking_is_not_found(self, db_session, org_a, booking_b):
        with pytest.raises(NotFoundError):
            booking_service.confirm_booking(org_a.id, booking_b.id)

    def test_foreign_job_card_cannot_advance(self, db_session, org_a, org_b, booking_b):
        job = booking_service.confirm_booking(org_b.id, booking_b.id)
        with pytest.raises(NotFoundError):
            job_card_service.advance(org_a.id, job.id)
        with pytest.raises(NotFoundError):
            job_card_service.set_stage(org_a.id, job.id, "delivered")
        assert job_card_service.get_job_card(org_b.id, job.id).stage == "check_in"

    def test_foreign_invoice_cannot_be_paid(self, db_session, org_a, org_b, booking_b):
        job = booking_service.confirm_booking(org_b.id, booking_b.id)
        job_card_service.set_stage(org_b.id, job.id, "completed")
        invoice = invoice_service.generate_invoice(org_b.id, job.id)

        with pytest.raises(NotFoundError):
            invoice_service.record_payment(org_a.id, invoice.id, "cash")
        with pytest.raises(NotFoundError):
            invoice_service.generate_invoice(org_a.id, job.id)

    def test_lists_only_own_rows(self, db_session, org_a, org_b, booking_a, booking_b):
        assert [b.id for b in booking_service.list_bookings(org_a.id)] == [booking_a.id]
        assert [b.id for b in booking_service.list_bookings(org_b.id)] == [booking_b.id]

    def test_foreign_catalog_reference_rejected(self, db_session, org_a, org_b, foam_wash):
        with pytest.raises(NotFoundError):
            catalog_service.build_service_entries(org_b.id, [{"id": foam_wash.id}])

    def test_booking_with_foreign_customer_rejected(self, db_session, org_a, customer_b, vehicle_b, foam_wash):
        with pytest.raises(NotFoundError):
            make_booking(org_a, customer_b, vehicle_b, [foam_wash])


class TestApiIsolation:
    """The tenant comes from the session, never from the request."""

    def test_foreign_booking_is_404(self, client, admin_a, booking_b):
        headers = auth_headers(get_auth_token(client, "admin_a"))

        assert client.get(f"/api/bookings/{booking_b.id}", headers=headers).status_code == 404
        assert client.post(f"/api/bookings/{booking_b.id}/confirm", headers=headers).status_code == 404

    def test_lists_are_scoped(self, client, admin_a, admin_b, booking_a, booking_b):
        headers_a = auth_headers(get_auth_token(client, "admin_a"))
        headers_b = auth_headers(get_auth_token(client, "admin_b"))

        ids_a = [b["id"] for b in client.get("/api/bookings", headers=headers_a).json["bookings"]]
        ids_b = [b["id"] for b in client.get("/api/bookings", headers=headers_b).json["bookings"]]
        assert ids_a == [booking_a.id]
        assert ids_b == [booking_b.id]

    def test_events_are_scoped(self, client, admin_a, booking_b):
        headers = auth_headers(get_auth_token(client, "admin_a"))
        resp = client.get("/api/events", headers=headers)
        assert resp.json["events"] == []
