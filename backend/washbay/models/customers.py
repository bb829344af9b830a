from __future__ import annotations

from ..extensions import db
from washbay.time_utils import to_utc_z


VEHICLE_TYPES = ("hatchback", "sedan", "suv", "luxury", "bike")


class Customer(db.Model):
    """
    Customer master data.

    MULTI-TENANT: phone numbers are unique within an organization; the
    booking webhook finds customers by (org_id, phone).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("org_id", "phone", name="uq_customers_org_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    whatsapp_number = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "whatsapp_number": self.whatsapp_number,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Vehicle(db.Model):
    """A customer's vehicle, identified by its registration number."""
    __tablename__ = "vehicles"
    __table_args__ = (
        db.UniqueConstraint("org_id", "customer_id", "vehicle_number", name="uq_vehicles_org_customer_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    vehicle_number = db.Column(db.String(32), nullable=False)
    vehicle_type = db.Column(db.String(16), nullable=False, default="sedan")
    brand = db.Column(db.String(64), nullable=True)
    model = db.Column(db.String(64), nullable=True)
    color = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("vehicles", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "customer_id": self.customer_id,
            "vehicle_number": self.vehicle_number,
            "vehicle_type": self.vehicle_type,
            "brand": self.brand,
            "model": self.model,
            "color": self.color,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
