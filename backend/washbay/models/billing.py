from __future__ import annotations

from ..extensions import db
from washbay.time_utils import to_utc_z


PAYMENT_UNPAID = "unpaid"
PAYMENT_PARTIAL = "partial"
PAYMENT_PAID = "paid"
PAYMENT_STATUSES = (PAYMENT_UNPAID, PAYMENT_PARTIAL, PAYMENT_PAID)

PAYMENT_METHODS = ("cash", "upi", "card", "subscription")


class Invoice(db.Model):
    """
    Billing document derived from exactly one job card.

    Invariant (maintained by invoice_service on every edit):
        total_cents == subtotal_cents - discount_cents + tax_cents
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
        db.UniqueConstraint("job_card_id", name="uq_invoices_job_card"),
        db.Index("ix_invoices_org_payment_status", "org_id", "payment_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True, index=True)
    job_card_id = db.Column(db.Integer, db.ForeignKey("job_cards.id"), nullable=True)

    # Human-readable number (e.g., "INV-2026-0001")
    invoice_number = db.Column(db.String(64), nullable=False)

    # Ordered list of {name, price_cents, service_id?}
    items = db.Column(db.JSON, nullable=False, default=list)

    # All amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_UNPAID, index=True)
    payment_method = db.Column(db.String(16), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    job_card = db.relationship("JobCard", backref=db.backref("invoice", uselist=False, lazy=True))
    customer = db.relationship("Customer")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "booking_id": self.booking_id,
            "job_card_id": self.job_card_id,
            "invoice_number": self.invoice_number,
            "items": list(self.items or []),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "paid_at": to_utc_z(self.paid_at),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-tenant document sequences.

    WHY: Prevent race conditions when generating invoice numbers. The
    document_type carries the year (e.g., "INVOICE-2026") so numbering
    restarts every year.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("org_id", "document_type", name="uq_doc_sequences_org_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
