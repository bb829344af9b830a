# Overview: Service catalog; prices, durations and per-service lifecycle stage lists.

"""
Catalog Service

MULTI-TENANT: Services are scoped to organizations via org_id; names are
unique within an organization.

Editing lifecycle_stages affects jobs that are already running (their stage
list is resolved on every read). A job whose stored stage drops out of the
new list reports index -1 until a manager sets a stage explicitly.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Service
from ..validation import (
    AlreadyExists,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    normalize_service_entries,
    parse_money_cents,
    require_cents,
    validate_payload,
)
from .concurrency import run_with_retry
from .lifecycle_service import validate_stage_list


SERVICE_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "description",
        "category",
        "base_price_cents",
        "duration_minutes",
        "is_active",
        "lifecycle_stages",
    },
    required_on_create={"name", "base_price_cents"},
)


def _prepare_patch(payload: dict, *, partial: bool) -> dict:
    payload = dict(payload or {})
    # Accept a major-unit "price" alongside base_price_cents
    if "price" in payload:
        price = payload.pop("price")
        if "base_price_cents" not in payload:
            payload["base_price_cents"] = parse_money_cents(price, "price")

    patch = validate_payload(model=Service, payload=payload, policy=SERVICE_POLICY, partial=partial)

    if "base_price_cents" in patch:
        patch["base_price_cents"] = require_cents(patch["base_price_cents"], "base_price_cents")
    if "duration_minutes" in patch and patch["duration_minutes"] is not None:
        if patch["duration_minutes"] <= 0:
            raise ValidationError("duration_minutes must be > 0")
    if "lifecycle_stages" in patch:
        patch["lifecycle_stages"] = validate_stage_list(patch["lifecycle_stages"])
    return patch


def get_service(org_id: int, service_id: int) -> Service:
    svc = db.session.query(Service).filter_by(id=service_id, org_id=org_id).first()
    if svc is None:
        raise NotFoundError(f"Service {service_id} not found")
    return svc


def list_services(org_id: int, *, active_only: bool = False) -> list[Service]:
    q = db.session.query(Service).filter(Service.org_id == org_id)
    if active_only:
        q = q.filter(Service.is_active.is_(True))
    return q.order_by(Service.name.asc(), Service.id.asc()).all()


def find_service_by_name(org_id: int, name: str | None) -> Service | None:
    """Case-insensitive substring match among active services; lowest id wins."""
    if not name or not name.strip():
        return None
    pattern = (
        name.strip()
        .replace("\\", "\\\\")
        .replace("%", "\\%")
        .replace("_", "\\_")
    )
    return (
        db.session.query(Service)
        .filter(
            Service.org_id == org_id,
            Service.is_active.is_(True),
            Service.name.ilike(f"%{pattern}%", escape="\\"),
        )
        .order_by(Service.id.asc())
        .first()
    )


def create_service(org_id: int, payload: dict) -> Service:
    patch = _prepare_patch(payload, partial=False)

    def _op():
        svc = Service(org_id=org_id, **patch)
        db.session.add(svc)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise AlreadyExists(f"Service '{patch['name']}' already exists")
        return svc

    return run_with_retry(_op)


def update_service(org_id: int, service_id: int, payload: dict) -> Service:
    patch = _prepare_patch(payload, partial=True)

    def _op():
        svc = get_service(org_id, service_id)
        for field, value in patch.items():
            setattr(svc, field, value)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise AlreadyExists(f"Service '{patch.get('name')}' already exists")
        return svc

    return run_with_retry(_op)


def build_service_entries(org_id: int, raw) -> list[dict]:
    """
    Turn request input into the services list stored on bookings and job cards.

    Accepts catalog references ({"id": 3}) and full entries
    ({"name": ..., "price": ...}). A reference is filled from the catalog; an
    entry that names an id must point at a service of this tenant.
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("services must be a list")

    expanded = []
    for i, entry in enumerate(raw):
        if isinstance(entry, int) and not isinstance(entry, bool):
            entry = {"id": entry}
        if not isinstance(entry, dict):
            raise ValidationError(f"services[{i}] must be an object")

        if entry.get("id") is not None:
            try:
                svc = get_service(org_id, int(entry["id"]))
            except (TypeError, ValueError):
                raise ValidationError(f"services[{i}].id must be an integer")
            merged = svc.to_entry()
            merged.update({k: v for k, v in entry.items() if v is not None})
            if "price" in entry and "price_cents" not in entry:
                merged.pop("price_cents", None)
            entry = merged

        expanded.append(entry)

    return normalize_service_entries(expanded)
