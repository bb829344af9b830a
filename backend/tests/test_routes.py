# Overview: Pytest coverage for the HTTP API surface.

"""
API route tests

Verifies:
- Unauthenticated requests return 401
- Staff role denied catalog edits and stage overrides (403)
- Domain errors map to 400/404/409 responses
- A booking can be driven from creation to payment over HTTP
- The change event feed and the booking webhook
"""

import pytest

from conftest import auth_headers, get_auth_token


@pytest.fixture
def staff_headers(client, staff_a):
    return auth_headers(get_auth_token(client, "staff_a"))


@pytest.fixture
def manager_headers(client, manager_a):
    return auth_headers(get_auth_token(client, "manager_a"))


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/customers"),
            ("POST", "/api/customers"),
            ("GET", "/api/services"),
            ("POST", "/api/services"),
            ("GET", "/api/bookings"),
            ("POST", "/api/bookings/1/confirm"),
            ("GET", "/api/job-cards"),
            ("POST", "/api/job-cards/1/advance"),
            ("POST", "/api/job-cards/1/stage"),
            ("GET", "/api/invoices"),
            ("POST", "/api/invoices/1/payment"),
            ("GET", "/api/events"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token_rejected(self, client, db_session):
        resp = client.get("/api/bookings", headers=auth_headers("not-a-real-token"))
        assert resp.status_code == 401


# =============================================================================
# AUTH
# =============================================================================


class TestAuth:

    def test_login_returns_token_and_tenant(self, client, org_a, staff_a):
        resp = client.post("/api/auth/login", json={"username": "staff_a", "password": "Password123!"})
        assert resp.status_code == 200
        assert resp.json["token"]
        assert resp.json["org_id"] == org_a.id
        assert resp.json["user"]["role"] == "staff"
        assert "password_hash" not in resp.json["user"]

    def test_login_by_email(self, client, staff_a):
        resp = client.post("/api/auth/login", json={"username": "staff_a@sparkle.test", "password": "Password123!"})
        assert resp.status_code == 200

    def test_bad_password(self, client, staff_a):
        resp = client.post("/api/auth/login", json={"username": "staff_a", "password": "wrong"})
        assert resp.status_code == 401

    def test_missing_credentials(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "staff_a"})
        assert resp.status_code == 400

    def test_me_and_logout(self, client, org_a, staff_a):
        token = get_auth_token(client, "staff_a")

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["user"]["username"] == "staff_a"
        assert resp.json["org_id"] == org_a.id

        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_deactivated_user_loses_session(self, client, db_session, staff_a):
        token = get_auth_token(client, "staff_a")
        staff_a.is_active = False
        db_session.commit()

        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


# =============================================================================
# ROLES: 403
# =============================================================================


class TestRoles:

    def test_staff_cannot_create_service(self, client, staff_headers):
        resp = client.post("/api/services", json={"name": "Wax", "price": 150}, headers=staff_headers)
        assert resp.status_code == 403
        assert set(resp.json["required_roles"]) == {"admin", "manager"}

    def test_manager_can_create_service(self, client, manager_headers):
        resp = client.post(
            "/api/services",
            json={"name": "Wax", "price": 150, "lifecycle_stages": ["check_in", "waxing", "delivered"]},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.json["service"]["base_price_cents"] == 15000
        assert resp.json["service"]["lifecycle_stages"] == ["check_in", "waxing", "delivered"]

    def test_invalid_lifecycle_rejected(self, client, manager_headers):
        resp = client.post(
            "/api/services",
            json={"name": "Wax", "price": 150, "lifecycle_stages": ["a", "a"]},
            headers=manager_headers,
        )
        assert resp.status_code == 400

    def test_duplicate_service_name_conflicts(self, client, manager_headers, foam_wash):
        resp = client.post("/api/services", json={"name": "Foam Wash", "price": 100}, headers=manager_headers)
        assert resp.status_code == 409

    def test_staff_cannot_override_stage(self, client, org_a, booking_a, staff_headers):
        job = client.post(f"/api/bookings/{booking_a.id}/confirm", headers=staff_headers).json["job_card"]
        resp = client.post(f"/api/job-cards/{job['id']}/stage", json={"stage": "qc"}, headers=staff_headers)
        assert resp.status_code == 403


# =============================================================================
# END-TO-END FLOW
# =============================================================================


class TestBookingToPaymentFlow:

    def test_full_flow(self, client, org_a, manager_headers):
        headers = manager_headers

        customer = client.post(
            "/api/customers", json={"name": "Meera", "phone": "9555512345"}, headers=headers
        ).json["customer"]
        vehicle = client.post(
            f"/api/customers/{customer['id']}/vehicles",
            json={"vehicle_number": "ka03xy9999", "vehicle_type": "hatchback"},
            headers=headers,
        ).json["vehicle"]
        assert vehicle["vehicle_number"] == "KA03XY9999"

        service = client.post(
            "/api/services", json={"name": "Foam Wash", "price": 300}, headers=headers
        ).json["service"]

        resp = client.post(
            "/api/bookings",
            json={
                "customer_id": customer["id"],
                "vehicle_id": vehicle["id"],
                "booking_date": "2026-10-20",
                "booking_time": "10:00",
                "services": [{"id": service["id"]}],
            },
            headers=headers,
        )
        assert resp.status_code == 201
        booking = resp.json["booking"]
        assert booking["status"] == "pending"
        assert booking["total_amount_cents"] == 30000

        resp = client.post(f"/api/bookings/{booking['id']}/confirm", headers=headers)
        assert resp.status_code == 200
        assert resp.json["booking"]["status"] == "in_progress"
        job = resp.json["job_card"]
        assert job["stage"] == "check_in"
        assert resp.json["progress"]["next_stage"] == "pre_wash"

        # Confirming again is harmless
        again = client.post(f"/api/bookings/{booking['id']}/confirm", headers=headers)
        assert again.json["job_card"]["id"] == job["id"]

        resp = client.post(f"/api/job-cards/{job['id']}/invoice", headers=headers)
        assert resp.status_code == 409

        for _ in range(7):
            resp = client.post(f"/api/job-cards/{job['id']}/advance", headers=headers)
            assert resp.status_code == 200
        assert resp.json["job_card"]["stage"] == "delivered"
        assert resp.json["progress"]["is_final"] is True

        resp = client.post(f"/api/job-cards/{job['id']}/advance", headers=headers)
        assert resp.status_code == 409

        detail = client.get(f"/api/bookings/{booking['id']}", headers=headers).json["booking"]
        assert detail["status"] == "completed"
        assert detail["job_card"]["id"] == job["id"]

        resp = client.post(f"/api/job-cards/{job['id']}/invoice", headers=headers)
        assert resp.status_code == 201
        invoice = resp.json["invoice"]
        assert invoice["total_cents"] == 30000
        assert invoice["payment_status"] == "unpaid"

        assert client.post(f"/api/job-cards/{job['id']}/invoice", headers=headers).status_code == 409

        resp = client.post(
            f"/api/invoices/{invoice['id']}/items", json={"name": "Wax", "price": 150}, headers=headers
        )
        assert resp.json["invoice"]["total_cents"] == 45000

        resp = client.post(
            f"/api/invoices/{invoice['id']}/payment", json={"payment_method": "cash"}, headers=headers
        )
        assert resp.status_code == 200
        assert resp.json["invoice"]["payment_status"] == "paid"

        resp = client.post(
            f"/api/invoices/{invoice['id']}/payment", json={"payment_method": "cash"}, headers=headers
        )
        assert resp.status_code == 409


# =============================================================================
# ERROR MAPPING
# =============================================================================


class TestErrorMapping:

    def test_unknown_ids_are_404(self, client, staff_headers):
        assert client.get("/api/bookings/99999", headers=staff_headers).status_code == 404
        assert client.post("/api/job-cards/99999/advance", headers=staff_headers).status_code == 404
        assert client.get("/api/invoices/99999", headers=staff_headers).status_code == 404

    def test_unlisted_stage_is_400(self, client, booking_a, manager_headers):
        job = client.post(f"/api/bookings/{booking_a.id}/confirm", headers=manager_headers).json["job_card"]
        resp = client.post(
            f"/api/job-cards/{job['id']}/stage", json={"stage": "teleport"}, headers=manager_headers
        )
        assert resp.status_code == 400

    def test_stage_not_patchable(self, client, booking_a, staff_headers):
        job = client.post(f"/api/bookings/{booking_a.id}/confirm", headers=staff_headers).json["job_card"]
        resp = client.patch(
            f"/api/job-cards/{job['id']}", json={"stage": "delivered"}, headers=staff_headers
        )
        assert resp.status_code == 400

    def test_patch_assigns_staff_and_notes(self, client, booking_a, staff_a, staff_headers):
        job = client.post(f"/api/bookings/{booking_a.id}/confirm", headers=staff_headers).json["job_card"]
        resp = client.patch(
            f"/api/job-cards/{job['id']}",
            json={"assigned_staff_id": staff_a.id, "internal_notes": "VIP"},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.json["job_card"]["assigned_staff_id"] == staff_a.id
        assert resp.json["job_card"]["internal_notes"] == "VIP"

    def test_cancel_after_confirm_is_409(self, client, booking_a, staff_headers):
        client.post(f"/api/bookings/{booking_a.id}/confirm", headers=staff_headers)
        resp = client.post(f"/api/bookings/{booking_a.id}/cancel", json={"reason": "late"}, headers=staff_headers)
        assert resp.status_code == 409

    def test_booking_validation_is_400(self, client, customer_a, staff_headers):
        resp = client.post("/api/bookings", json={"customer_id": customer_a.id}, headers=staff_headers)
        assert resp.status_code == 400

    def test_missing_payment_method_is_400(self, client, staff_headers):
        resp = client.post("/api/invoices/1/payment", json={}, headers=staff_headers)
        assert resp.status_code == 400

    @pytest.mark.parametrize("value", ["false", 0, None])
    def test_confirm_check_in_must_be_boolean(self, client, booking_a, staff_headers, value):
        resp = client.post(
            f"/api/bookings/{booking_a.id}/confirm", json={"check_in": value}, headers=staff_headers
        )
        assert resp.status_code == 400
        assert "check_in" in resp.json["error"]

        booking = client.get(f"/api/bookings/{booking_a.id}", headers=staff_headers).json["booking"]
        assert booking["status"] == "pending"
        assert booking["job_card"] is None

    def test_confirm_check_in_false_leaves_card_not_started(self, client, booking_a, staff_headers):
        resp = client.post(
            f"/api/bookings/{booking_a.id}/confirm", json={"check_in": False}, headers=staff_headers
        )
        assert resp.status_code == 200
        assert resp.json["job_card"]["stage"] is None
        assert resp.json["booking"]["status"] == "confirmed"

    def test_walk_in_check_in_must_be_boolean(self, client, customer_a, vehicle_a, staff_headers):
        resp = client.post(
            "/api/job-cards",
            json={"customer_id": customer_a.id, "vehicle_id": vehicle_a.id, "check_in": "no"},
            headers=staff_headers,
        )
        assert resp.status_code == 400
        assert "check_in" in resp.json["error"]


# =============================================================================
# EVENTS FEED
# =============================================================================


class TestEventsFeed:

    def test_poll_with_cursor(self, client, booking_a, staff_headers):
        client.post(f"/api/bookings/{booking_a.id}/confirm", headers=staff_headers)

        resp = client.get("/api/events", headers=staff_headers)
        assert resp.status_code == 200
        types = [e["event_type"] for e in resp.json["events"]]
        assert "booking.created" in types
        assert "job_card.created" in types
        assert "job_card.checked_in" in types
        assert "booking.status_changed" in types

        last_id = resp.json["last_id"]
        resp = client.get(f"/api/events?after_id={last_id}", headers=staff_headers)
        assert resp.json["events"] == []
        assert resp.json["last_id"] == last_id

    def test_filter_by_entity_type(self, client, booking_a, staff_headers):
        client.post(f"/api/bookings/{booking_a.id}/confirm", headers=staff_headers)
        resp = client.get("/api/events?entity_type=booking", headers=staff_headers)
        assert {e["entity_type"] for e in resp.json["events"]} == {"booking"}


# =============================================================================
# WEBHOOK AND HEALTH
# =============================================================================


class TestWebhookRoute:

    def _payload(self, org):
        return {
            "org_id": org.id,
            "customer_phone": "9777766666",
            "vehicle_number": "TN09ZZ0001",
            "booking_date": "2026-10-22",
            "booking_time": "08:15",
        }

    def test_creates_booking(self, client, org_a):
        resp = client.post(
            "/api/webhooks/bookings",
            json=self._payload(org_a),
            headers={"X-Webhook-Secret": "secret-a"},
        )
        assert resp.status_code == 200
        assert resp.json["success"] is True
        assert resp.json["booking_id"]

    def test_wrong_secret_is_401(self, client, org_a):
        resp = client.post(
            "/api/webhooks/bookings",
            json=self._payload(org_a),
            headers={"X-Webhook-Secret": "wrong"},
        )
        assert resp.status_code == 401

    def test_missing_fields_is_400(self, client, org_a):
        payload = self._payload(org_a)
        del payload["vehicle_number"]
        resp = client.post("/api/webhooks/bookings", json=payload, headers={"X-Webhook-Secret": "secret-a"})
        assert resp.status_code == 400


def test_health(client, db_session):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["checks"]["database"]["status"] == "healthy"
