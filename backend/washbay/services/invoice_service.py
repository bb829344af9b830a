# Overview: Invoice generation and editing for finished job cards.

"""
WashBay Invoice Generator

RULES:
- A job can be invoiced once it reaches "completed" (when its lifecycle lists
  it) or its final stage (when it does not).
- At most one invoice per job card. The existence check is an early exit;
  uq_invoices_job_card is the real guard.
- Invoice numbers are INV-<year>-<seq>, allocated per tenant and year from
  DocumentSequence inside the same transaction as the insert.
- total_cents = subtotal_cents - discount_cents + tax_cents, recomputed on
  every edit. A negative total is rejected.
- Payment is recorded once; it never changes the amounts.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Invoice, JobCard
from ..models.billing import PAYMENT_METHODS, PAYMENT_PAID
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    normalize_invoice_items,
    require_cents,
)
from washbay.time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number, reserve_through
from .event_service import append_change_event
from .lifecycle_service import InvalidTransition, is_invoice_eligible, stages_for_job


logger = logging.getLogger(__name__)


class AlreadyInvoiced(ConflictError):
    """The job card already has an invoice."""
    pass


class ConstraintViolation(ConflictError):
    """An invoice insert kept failing a uniqueness constraint (e.g., number collision)."""
    pass


def get_invoice(org_id: int, invoice_id: int) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(id=invoice_id, org_id=org_id).first()
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def list_invoices(
    org_id: int,
    *,
    payment_status: str | None = None,
    customer_id: int | None = None,
    limit: int = 200,
) -> list[Invoice]:
    q = db.session.query(Invoice).filter(Invoice.org_id == org_id)
    if payment_status:
        q = q.filter(Invoice.payment_status == payment_status)
    if customer_id:
        q = q.filter(Invoice.customer_id == customer_id)
    return q.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit).all()


def _compute_totals(items: list[dict], tax_cents: int, discount_cents: int) -> tuple[int, int]:
    subtotal = sum(item["price_cents"] for item in items)
    total = subtotal - discount_cents + tax_cents
    if total < 0:
        raise ValidationError(
            f"Discount ({discount_cents}) exceeds subtotal plus tax ({subtotal + tax_cents})"
        )
    return subtotal, total


def _recompute(invoice: Invoice) -> None:
    invoice.subtotal_cents, invoice.total_cents = _compute_totals(
        list(invoice.items or []), invoice.tax_cents, invoice.discount_cents
    )
    invoice.updated_at = utcnow()


def _items_from_job(job: JobCard) -> list[dict]:
    items = []
    for entry in job.services or []:
        item = {"name": entry["name"], "price_cents": entry["price_cents"]}
        if entry.get("id") is not None:
            item["service_id"] = entry["id"]
        items.append(item)
    return items


def _existing_invoice_id(org_id: int, job_card_id: int) -> int | None:
    return (
        db.session.query(Invoice.id)
        .filter(Invoice.org_id == org_id, Invoice.job_card_id == job_card_id)
        .scalar()
    )


def _highest_used_number(org_id: int, prefix: str) -> int:
    """Largest numeric suffix among this org's invoice numbers that start with prefix."""
    rows = (
        db.session.query(Invoice.invoice_number)
        .filter(Invoice.org_id == org_id, Invoice.invoice_number.startswith(prefix + "-", autoescape=True))
        .all()
    )
    highest = 0
    for (number,) in rows:
        tail = number[len(prefix) + 1:]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return highest


def generate_invoice(
    org_id: int,
    job_card_id: int,
    *,
    tax_cents: int = 0,
    discount_cents: int = 0,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Create the invoice for a finished job card.

    Raises:
        NotFoundError: job card not in this tenant
        InvalidTransition: job has not reached its invoicing stage
        AlreadyInvoiced: job already has an invoice
        ConstraintViolation: insert failed a uniqueness constraint twice
        ValidationError: bad amounts or a negative total
    """
    tax_cents = require_cents(tax_cents, "tax_cents")
    discount_cents = require_cents(discount_cents, "discount_cents")

    year = utcnow().year
    document_type = f"INVOICE-{year}"
    number_prefix = f"{current_app.config.get('INVOICE_PREFIX', 'INV')}-{year}"

    def _op():
        job = lock_for_update(
            db.session.query(JobCard).filter_by(id=job_card_id, org_id=org_id)
        ).first()
        if job is None:
            raise NotFoundError(f"Job card {job_card_id} not found")

        stages = stages_for_job(job)
        if not is_invoice_eligible(job.stage, stages):
            gate = stages.names[stages.invoice_gate_index]
            raise InvalidTransition(
                f"Job card {job.id} is at stage '{job.stage}'; it must reach '{gate}' before invoicing"
            )

        existing_id = _existing_invoice_id(org_id, job.id)
        if existing_id is not None:
            raise AlreadyInvoiced(f"Job card {job.id} already has invoice {existing_id}")

        items = _items_from_job(job)
        subtotal, total = _compute_totals(items, tax_cents, discount_cents)

        invoice_number = next_document_number(
            org_id=org_id,
            document_type=document_type,
            prefix=number_prefix,
        )

        invoice = Invoice(
            org_id=org_id,
            customer_id=job.customer_id,
            booking_id=job.booking_id,
            job_card_id=job.id,
            invoice_number=invoice_number,
            items=items,
            subtotal_cents=subtotal,
            tax_cents=tax_cents,
            discount_cents=discount_cents,
            total_cents=total,
            notes=notes,
        )
        db.session.add(invoice)
        db.session.flush()

        append_change_event(
            org_id=org_id,
            event_type="invoice.created",
            entity_type="invoice",
            entity_id=invoice.id,
            actor_user_id=actor_user_id,
            payload={
                "job_card_id": job.id,
                "invoice_number": invoice_number,
                "total_cents": total,
            },
        )
        db.session.commit()
        logger.info("Invoice %s created for job card %s", invoice_number, job.id)
        return invoice

    def _skip_used_numbers():
        # Numbers written outside the sequence (imports, manual fixes) are skipped for good.
        reserve_through(
            org_id=org_id,
            document_type=document_type,
            number=_highest_used_number(org_id, number_prefix),
        )
        db.session.commit()

    for attempt in range(2):
        try:
            return run_with_retry(_op)
        except IntegrityError:
            # run_with_retry has already rolled the session back
            existing_id = _existing_invoice_id(org_id, job_card_id)
            if existing_id is not None:
                raise AlreadyInvoiced(f"Job card {job_card_id} already has invoice {existing_id}")
            if attempt == 0:
                logger.warning("Invoice insert for job card %s hit a constraint; retrying", job_card_id)
                run_with_retry(_skip_used_numbers)
                continue
            raise ConstraintViolation(
                f"Could not allocate a unique invoice for job card {job_card_id}"
            )


def _edit_invoice(org_id: int, invoice_id: int, mutate, *, event_type: str, actor_user_id: int | None) -> Invoice:
    def _op():
        invoice = lock_for_update(
            db.session.query(Invoice).filter_by(id=invoice_id, org_id=org_id)
        ).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.payment_status == PAYMENT_PAID:
            raise ConflictError(f"Invoice {invoice.invoice_number} is paid and can no longer be edited")

        mutate(invoice)
        _recompute(invoice)

        append_change_event(
            org_id=org_id,
            event_type=event_type,
            entity_type="invoice",
            entity_id=invoice.id,
            actor_user_id=actor_user_id,
            payload={
                "subtotal_cents": invoice.subtotal_cents,
                "tax_cents": invoice.tax_cents,
                "discount_cents": invoice.discount_cents,
                "total_cents": invoice.total_cents,
            },
        )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def replace_invoice_items(org_id: int, invoice_id: int, items, *, actor_user_id: int | None = None) -> Invoice:
    normalized = normalize_invoice_items(items)

    def mutate(invoice):
        invoice.items = normalized

    return _edit_invoice(org_id, invoice_id, mutate, event_type="invoice.items_updated", actor_user_id=actor_user_id)


def add_invoice_item(org_id: int, invoice_id: int, item, *, actor_user_id: int | None = None) -> Invoice:
    normalized = normalize_invoice_items([item])[0]

    def mutate(invoice):
        # Reassign so the JSON column is flagged dirty
        invoice.items = list(invoice.items or []) + [normalized]

    return _edit_invoice(org_id, invoice_id, mutate, event_type="invoice.items_updated", actor_user_id=actor_user_id)


def remove_invoice_item(org_id: int, invoice_id: int, index: int, *, actor_user_id: int | None = None) -> Invoice:
    def mutate(invoice):
        items = list(invoice.items or [])
        if index < 0 or index >= len(items):
            raise NotFoundError(f"Invoice item {index} not found")
        del items[index]
        invoice.items = items

    return _edit_invoice(org_id, invoice_id, mutate, event_type="invoice.items_updated", actor_user_id=actor_user_id)


def update_invoice_adjustments(
    org_id: int,
    invoice_id: int,
    *,
    tax_cents: int | None = None,
    discount_cents: int | None = None,
    actor_user_id: int | None = None,
) -> Invoice:
    """Change tax and/or discount; omitted values keep their stored amount."""
    if tax_cents is not None:
        tax_cents = require_cents(tax_cents, "tax_cents")
    if discount_cents is not None:
        discount_cents = require_cents(discount_cents, "discount_cents")

    def mutate(invoice):
        if tax_cents is not None:
            invoice.tax_cents = tax_cents
        if discount_cents is not None:
            invoice.discount_cents = discount_cents

    return _edit_invoice(org_id, invoice_id, mutate, event_type="invoice.adjusted", actor_user_id=actor_user_id)


def record_payment(
    org_id: int,
    invoice_id: int,
    payment_method: str,
    *,
    actor_user_id: int | None = None,
) -> Invoice:
    """
    Mark an invoice as paid in full.

    Raises:
        ValidationError: unknown payment method
        ConflictError: invoice is already paid
    """
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment_method '{payment_method}'. Must be one of: {', '.join(PAYMENT_METHODS)}"
        )

    def _op():
        invoice = lock_for_update(
            db.session.query(Invoice).filter_by(id=invoice_id, org_id=org_id)
        ).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        if invoice.payment_status == PAYMENT_PAID:
            raise ConflictError(f"Invoice {invoice.invoice_number} is already paid")

        invoice.payment_status = PAYMENT_PAID
        invoice.payment_method = payment_method
        invoice.paid_at = utcnow()

        append_change_event(
            org_id=org_id,
            event_type="invoice.paid",
            entity_type="invoice",
            entity_id=invoice.id,
            actor_user_id=actor_user_id,
            payload={"payment_method": payment_method, "total_cents": invoice.total_cents},
        )
        db.session.commit()
        logger.info("Invoice %s paid by %s", invoice.invoice_number, payment_method)
        return invoice

    return run_with_retry(_op)
