# Overview: Customers and their vehicles; find-or-create for inbound bookings.

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Vehicle
from ..models.customers import VEHICLE_TYPES
from ..validation import (
    AlreadyExists,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    validate_payload,
)
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "whatsapp_number", "notes"},
    required_on_create={"name", "phone"},
)

VEHICLE_POLICY = ModelValidationPolicy(
    writable_fields={"vehicle_number", "vehicle_type", "brand", "model", "color", "notes"},
    required_on_create={"vehicle_number"},
)


def normalize_vehicle_number(value: str) -> str:
    """Registration numbers are stored and compared upper-cased."""
    return str(value).strip().upper()


def get_customer(org_id: int, customer_id: int) -> Customer:
    customer = db.session.query(Customer).filter_by(id=customer_id, org_id=org_id).first()
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_customers(org_id: int, *, search: str | None = None, limit: int = 200) -> list[Customer]:
    q = db.session.query(Customer).filter(Customer.org_id == org_id)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(db.or_(Customer.name.ilike(pattern), Customer.phone.ilike(pattern)))
    return q.order_by(Customer.name.asc(), Customer.id.asc()).limit(limit).all()


def find_customer_by_phone(org_id: int, phone: str) -> Customer | None:
    return db.session.query(Customer).filter_by(org_id=org_id, phone=phone.strip()).first()


def create_customer(org_id: int, payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)

    def _op():
        customer = Customer(org_id=org_id, **patch)
        db.session.add(customer)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise AlreadyExists(f"A customer with phone {patch['phone']} already exists")
        return customer

    return run_with_retry(_op)


def _vehicle_patch(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=Vehicle, payload=payload, policy=VEHICLE_POLICY, partial=partial)
    if "vehicle_number" in patch:
        patch["vehicle_number"] = normalize_vehicle_number(patch["vehicle_number"])
    if patch.get("vehicle_type") is not None:
        patch["vehicle_type"] = patch["vehicle_type"].lower()
        if patch["vehicle_type"] not in VEHICLE_TYPES:
            raise ValidationError(
                f"Invalid vehicle_type. Must be one of: {', '.join(VEHICLE_TYPES)}"
            )
    return patch


def add_vehicle(org_id: int, customer_id: int, payload: dict) -> Vehicle:
    patch = _vehicle_patch(payload, partial=False)

    def _op():
        customer = get_customer(org_id, customer_id)
        vehicle = Vehicle(org_id=org_id, customer_id=customer.id, **patch)
        db.session.add(vehicle)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise AlreadyExists(
                f"Vehicle {patch['vehicle_number']} is already registered for customer {customer_id}"
            )
        return vehicle

    return run_with_retry(_op)


def find_or_create_customer(
    org_id: int,
    *,
    phone: str,
    name: str | None = None,
    email: str | None = None,
    source: str | None = None,
) -> Customer:
    """
    Look a customer up by (org, phone), creating one if missing. Does not commit.

    Losing the insert race rolls back only the savepoint and re-reads the
    winner.

    Existing customers are returned unchanged; inbound data never overwrites
    what staff entered.
    """
    phone = (phone or "").strip()
    if not phone:
        raise ValidationError("phone is required")

    customer = find_customer_by_phone(org_id, phone)
    if customer is not None:
        return customer

    customer = Customer(
        org_id=org_id,
        phone=phone,
        name=(name or "").strip() or "Walk-in Customer",
        email=(email or "").strip() or None,
        whatsapp_number=phone,
        notes=f"Created from {source}" if source else None,
    )
    try:
        with db.session.begin_nested():
            db.session.add(customer)
    except IntegrityError:
        customer = find_customer_by_phone(org_id, phone)
        if customer is None:
            raise
    else:
        logger.info("Created customer %s for phone %s", customer.id, phone)
    return customer


def find_or_create_vehicle(
    org_id: int,
    customer: Customer,
    *,
    vehicle_number: str,
    vehicle_type: str | None = None,
    source: str | None = None,
) -> Vehicle:
    """Look a vehicle up by (org, customer, number), creating one if missing. Does not commit."""
    number = normalize_vehicle_number(vehicle_number or "")
    if not number:
        raise ValidationError("vehicle_number is required")

    vtype = (vehicle_type or "sedan").strip().lower()
    if vtype not in VEHICLE_TYPES:
        vtype = "sedan"

    def _lookup():
        return (
            db.session.query(Vehicle)
            .filter_by(org_id=org_id, customer_id=customer.id, vehicle_number=number)
            .first()
        )

    vehicle = _lookup()
    if vehicle is not None:
        return vehicle

    vehicle = Vehicle(
        org_id=org_id,
        customer_id=customer.id,
        vehicle_number=number,
        vehicle_type=vtype,
        notes=f"Added from {source}" if source else None,
    )
    try:
        with db.session.begin_nested():
            db.session.add(vehicle)
    except IntegrityError:
        vehicle = _lookup()
        if vehicle is None:
            raise
    return vehicle
