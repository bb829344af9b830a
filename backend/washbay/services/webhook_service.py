# Overview: Inbound booking webhook (website / partner booking forms).

"""
Booking webhook intake

Turns an external booking form submission into a pending Booking:
1. verify the caller against the organization's webhook_secret
2. find-or-create the Customer by (org, phone)
3. find-or-create the Vehicle by (org, customer, vehicle_number)
4. resolve an optional service by fuzzy name match
5. create the booking (status pending)

Everything happens in one transaction. Retried deliveries create a second
booking; only job card creation is idempotent.
"""

from __future__ import annotations

import hmac
import logging

from ..extensions import db
from ..models import Organization
from ..validation import ValidationError
from .booking_service import _insert_booking, parse_booking_schedule
from .catalog_service import find_service_by_name
from .concurrency import run_with_retry
from .customer_service import find_or_create_customer, find_or_create_vehicle


logger = logging.getLogger(__name__)


REQUIRED_FIELDS = ("org_id", "customer_phone", "vehicle_number", "booking_date", "booking_time")

DEFAULT_SOURCE = "website"


class WebhookAuthError(Exception):
    """The caller did not present a valid webhook secret."""
    pass


def verify_webhook_secret(org_id, presented: str | None) -> Organization:
    """Return the active organization whose webhook_secret matches, or raise WebhookAuthError."""
    try:
        org_id = int(org_id)
    except (TypeError, ValueError):
        raise WebhookAuthError("Unknown organization")

    org = db.session.query(Organization).filter_by(id=org_id, is_active=True).first()
    if org is None or not org.webhook_secret or not presented:
        raise WebhookAuthError("Invalid webhook credentials")
    if not hmac.compare_digest(org.webhook_secret.encode("utf-8"), presented.encode("utf-8")):
        raise WebhookAuthError("Invalid webhook credentials")
    return org


def _missing_fields(payload: dict) -> list[str]:
    return [f for f in REQUIRED_FIELDS if payload.get(f) in (None, "")]


def ingest_booking_webhook(payload: dict, secret: str | None) -> dict:
    """
    Create a pending booking from a webhook payload.

    Returns {"booking_id", "customer_id", "vehicle_id"}.

    Raises:
        ValidationError: payload missing required fields or badly formatted
        WebhookAuthError: secret does not match the organization
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    missing = _missing_fields(payload)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    org = verify_webhook_secret(payload["org_id"], secret)
    day, start, _ = parse_booking_schedule(payload["booking_date"], payload["booking_time"])
    source = (payload.get("source") or DEFAULT_SOURCE).strip()

    def _op():
        customer = find_or_create_customer(
            org.id,
            phone=str(payload["customer_phone"]),
            name=payload.get("customer_name"),
            email=payload.get("customer_email"),
            source=source,
        )
        vehicle = find_or_create_vehicle(
            org.id,
            customer,
            vehicle_number=str(payload["vehicle_number"]),
            vehicle_type=payload.get("vehicle_type"),
            source=source,
        )

        services = []
        service = find_service_by_name(org.id, payload.get("service_name"))
        if service is not None:
            services.append(service.to_entry())
        elif payload.get("service_name"):
            logger.info("Webhook service '%s' matched nothing for org %s", payload["service_name"], org.id)

        booking = _insert_booking(
            customer=customer,
            vehicle=vehicle,
            day=day,
            start=start,
            end=None,
            services=services,
            notes=payload.get("notes") or None,
            source=source,
            actor_user_id=None,
        )
        db.session.commit()
        logger.info("Webhook booking %s created for org %s (%s)", booking.id, org.id, source)
        return {
            "booking_id": booking.id,
            "customer_id": customer.id,
            "vehicle_id": vehicle.id,
        }

    return run_with_retry(_op)
