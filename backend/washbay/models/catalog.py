from __future__ import annotations

from ..extensions import db
from washbay.time_utils import to_utc_z


class Service(db.Model):
    """
    Catalog definition of a wash service.

    lifecycle_stages is an optional ordered list of stage identifiers. When a
    job's first matching service defines one, it replaces the default
    8-stage pipeline for that job (see lifecycle_service).
    """
    __tablename__ = "services"
    __table_args__ = (
        db.UniqueConstraint("org_id", "name", name="uq_services_org_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True)

    base_price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False, default=30)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    lifecycle_stages = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_entry(self) -> dict:
        """The {id, name, price_cents, duration_minutes} shape stored on bookings and job cards."""
        return {
            "id": self.id,
            "name": self.name,
            "price_cents": self.base_price_cents,
            "duration_minutes": self.duration_minutes,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "base_price_cents": self.base_price_cents,
            "duration_minutes": self.duration_minutes,
            "is_active": self.is_active,
            "lifecycle_stages": list(self.lifecycle_stages) if self.lifecycle_stages else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
