from __future__ import annotations

from ..extensions import db
from washbay.time_utils import to_utc_z


BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_IN_PROGRESS = "in_progress"
BOOKING_COMPLETED = "completed"
BOOKING_CANCELLED = "cancelled"

BOOKING_STATUSES = (
    BOOKING_PENDING,
    BOOKING_CONFIRMED,
    BOOKING_IN_PROGRESS,
    BOOKING_COMPLETED,
    BOOKING_CANCELLED,
)


def _clock(value) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


class Booking(db.Model):
    """
    One requested appointment.

    Once a job card exists for the booking, status is derived from the job
    card's stage (booking_service.derive_booking_status) and is never set
    independently.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        db.Index("ix_bookings_org_status_date", "org_id", "status", "booking_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)

    booking_date = db.Column(db.Date, nullable=False)
    booking_time = db.Column(db.Time, nullable=False)
    expected_end_time = db.Column(db.Time, nullable=True)

    # Ordered list of {id, name, price_cents, duration_minutes}
    services = db.Column(db.JSON, nullable=False, default=list)
    total_amount_cents = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=BOOKING_PENDING, index=True)
    source = db.Column(db.String(32), nullable=True)  # website, staff, webhook, ...
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer")
    vehicle = db.relationship("Vehicle")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "vehicle_id": self.vehicle_id,
            "booking_date": self.booking_date.isoformat() if self.booking_date else None,
            "booking_time": _clock(self.booking_time),
            "expected_end_time": _clock(self.expected_end_time),
            "services": list(self.services or []),
            "total_amount_cents": self.total_amount_cents,
            "status": self.status,
            "source": self.source,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class JobCard(db.Model):
    """
    One physical servicing engagement.

    stage is NULL until check-in ("not started", index -1) and afterwards is
    always a member of the job's effective lifecycle stage list. Stage writes
    go through job_card_service as conditional updates on the current stage.

    booking_id is unique: at most one job card per booking.
    """
    __tablename__ = "job_cards"
    __table_args__ = (
        db.UniqueConstraint("booking_id", name="uq_job_cards_booking"),
        db.Index("ix_job_cards_org_stage", "org_id", "stage"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    vehicle_id = db.Column(db.Integer, db.ForeignKey("vehicles.id"), nullable=False, index=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True)

    # Copied from the booking, or chosen directly for walk-ins
    services = db.Column(db.JSON, nullable=False, default=list)

    stage = db.Column(db.String(64), nullable=True)

    check_in_at = db.Column(db.DateTime(timezone=True), nullable=True)
    check_out_at = db.Column(db.DateTime(timezone=True), nullable=True)

    damage_notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)
    assigned_staff_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Image references (storage keys or URLs), never the images themselves
    before_images = db.Column(db.JSON, nullable=True)
    after_images = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    booking = db.relationship("Booking", backref=db.backref("job_card", uselist=False, lazy=True))
    customer = db.relationship("Customer")
    vehicle = db.relationship("Vehicle")
    assigned_staff = db.relationship("User")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "vehicle_id": self.vehicle_id,
            "booking_id": self.booking_id,
            "services": list(self.services or []),
            "stage": self.stage,
            "check_in_at": to_utc_z(self.check_in_at),
            "check_out_at": to_utc_z(self.check_out_at),
            "damage_notes": self.damage_notes,
            "internal_notes": self.internal_notes,
            "assigned_staff_id": self.assigned_staff_id,
            "before_images": list(self.before_images or []),
            "after_images": list(self.after_images or []),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
