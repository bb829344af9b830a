from __future__ import annotations

from ..extensions import db
from washbay.time_utils import to_utc_z


class ChangeEvent(db.Model):
    """
    Append-only record of committed mutations.

    Written in the same transaction as the change it describes. Connected
    clients pull these to learn about booking status, job stage and invoice
    payment changes; administrative stage overrides are audited here.
    """
    __tablename__ = "change_events"
    __table_args__ = (
        db.Index("ix_change_events_org_id_id", "org_id", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    org_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # e.g., job_card.stage_changed, booking.status_changed, invoice.paid
    event_type = db.Column(db.String(64), nullable=False, index=True)

    # What it refers to (generic pointer)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False, index=True)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Keep small; do not denormalize domain state
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "org_id": self.org_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }
