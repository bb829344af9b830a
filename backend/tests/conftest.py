"""
Pytest fixtures for WashBay backend tests.

Provides test database setup, two tenants with staff accounts, a small
service catalog, and booking helpers.
"""

import pytest
from washbay import create_app
from washbay.extensions import db
from washbay.models import Organization, User, Customer, Vehicle, Service
from washbay.models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_STAFF
from washbay.services.auth_service import hash_password
from washbay.services import booking_service


PASSWORD = "Password123!"

CUSTOM_STAGES = ["check_in", "foam_wash", "qc", "completed", "delivered"]


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """Hash the shared test password once per session."""
    return hash_password(PASSWORD)


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Sparkle Wash", code="SPARKLE", is_active=True, webhook_secret="secret-a")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Shine Bay", code="SHINE", is_active=True, webhook_secret="secret-b")
    db_session.add(org)
    db_session.commit()
    return org


def _make_user(db_session, org, username, role, password_hash):
    user = User(
        org_id=org.id,
        username=username,
        email=f"{username}@{org.code.lower()}.test",
        password_hash=password_hash,
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_a(db_session, org_a, password_hash):
    return _make_user(db_session, org_a, "admin_a", ROLE_ADMIN, password_hash)


@pytest.fixture(scope='function')
def manager_a(db_session, org_a, password_hash):
    return _make_user(db_session, org_a, "manager_a", ROLE_MANAGER, password_hash)


@pytest.fixture(scope='function')
def staff_a(db_session, org_a, password_hash):
    return _make_user(db_session, org_a, "staff_a", ROLE_STAFF, password_hash)


@pytest.fixture(scope='function')
def admin_b(db_session, org_b, password_hash):
    return _make_user(db_session, org_b, "admin_b", ROLE_ADMIN, password_hash)


@pytest.fixture(scope='function')
def customer_a(db_session, org_a):
    customer = Customer(org_id=org_a.id, name="Ravi Kumar", phone="9000000001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def vehicle_a(db_session, org_a, customer_a):
    vehicle = Vehicle(org_id=org_a.id, customer_id=customer_a.id, vehicle_number="KA01AB1234", vehicle_type="sedan")
    db_session.add(vehicle)
    db_session.commit()
    return vehicle


@pytest.fixture(scope='function')
def customer_b(db_session, org_b):
    customer = Customer(org_id=org_b.id, name="Other Tenant Customer", phone="9000000001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def vehicle_b(db_session, org_b, customer_b):
    vehicle = Vehicle(org_id=org_b.id, customer_id=customer_b.id, vehicle_number="MH02CD5678")
    db_session.add(vehicle)
    db_session.commit()
    return vehicle


@pytest.fixture(scope='function')
def foam_wash(db_session, org_a):
    """Catalog service without lifecycle_stages (default pipeline)."""
    svc = Service(org_id=org_a.id, name="Foam Wash", base_price_cents=30000, duration_minutes=30)
    db_session.add(svc)
    db_session.commit()
    return svc


@pytest.fixture(scope='function')
def express_wash(db_session, org_a):
    """Catalog service with a short custom lifecycle."""
    svc = Service(
        org_id=org_a.id,
        name="Express Wash",
        base_price_cents=20000,
        duration_minutes=20,
        lifecycle_stages=list(CUSTOM_STAGES),
    )
    db_session.add(svc)
    db_session.commit()
    return svc


def make_booking(org, customer, vehicle, services, *, booking_time="10:00"):
    """Helper to create a pending booking for the given catalog services."""
    return booking_service.create_booking(
        org.id,
        customer_id=customer.id,
        vehicle_id=vehicle.id,
        booking_date="2026-10-20",
        booking_time=booking_time,
        services=[svc.to_entry() for svc in services],
    )


@pytest.fixture(scope='function')
def booking_a(db_session, org_a, customer_a, vehicle_a, foam_wash):
    """Pending booking for one Foam Wash (default lifecycle)."""
    return make_booking(org_a, customer_a, vehicle_a, [foam_wash])


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
