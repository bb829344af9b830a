# Overview: Bookings and the booking <-> job card status synchronizer.

"""
Booking <-> Job Card Synchronizer

WHY: A booking's status must always agree with its job card. Instead of every
screen writing booking.status by hand, the status is derived from the job
card's stage by ONE function (derive_booking_status) and written by ONE entry
point (sync_booking_status), which every job card stage write calls inside its
own transaction.

DIRECTION RULES (no cycles):
- Job card stage writes -> booking status (always, synchronously)
- Booking writes never touch job cards, with one exception:
  confirm_booking creates (and by default checks in) the job card, once,
  guarded by an existence check plus the uq_job_cards_booking constraint.

STATUS MAPPING:
    no job card                           -> pending / cancelled (not derived)
    job card not started (or stage lost)  -> confirmed
    "completed", "delivered", last stage  -> completed
    any other listed stage                -> in_progress

KNOWN SHARP EDGE: the mapping keys on the literal names "completed" and
"delivered" and on position for everything else. A custom lifecycle that puts
stages after "completed" will show the booking as completed and then
in_progress again. Nothing guards against this.
"""

from __future__ import annotations

import logging
from datetime import date, time

from ..extensions import db
from ..models import Booking, Customer, JobCard, Vehicle
from ..models.bookings import (
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    BOOKING_CONFIRMED,
    BOOKING_IN_PROGRESS,
    BOOKING_PENDING,
    BOOKING_STATUSES,
)
from ..validation import NotFoundError, ValidationError
from washbay.time_utils import parse_clock_time, parse_iso_date, utcnow
from .concurrency import lock_for_update, run_with_retry
from .event_service import append_change_event
from .lifecycle_service import (
    NOT_STARTED,
    STAGE_COMPLETED,
    STAGE_DELIVERED,
    EffectiveStages,
    InvalidTransition,
    stages_for_job,
)


logger = logging.getLogger(__name__)


def derive_booking_status(stage: str | None, stages: EffectiveStages) -> str:
    """
    The single stage -> booking status mapping. Pure; no database access.

    Only meaningful for bookings that have a job card.
    """
    if stage in (STAGE_COMPLETED, STAGE_DELIVERED):
        return BOOKING_COMPLETED

    index = stages.index_of(stage)
    if index == NOT_STARTED:
        return BOOKING_CONFIRMED
    if index == stages.last_index:
        return BOOKING_COMPLETED
    return BOOKING_IN_PROGRESS


def _set_booking_status(booking: Booking, status: str, *, actor_user_id: int | None) -> bool:
    if booking.status == status:
        return False

    previous = booking.status
    booking.status = status
    booking.updated_at = utcnow()
    append_change_event(
        org_id=booking.org_id,
        event_type="booking.status_changed",
        entity_type="booking",
        entity_id=booking.id,
        actor_user_id=actor_user_id,
        payload={"from": previous, "to": status},
    )
    logger.info("Booking %s: %s -> %s", booking.id, previous, status)
    return True


def sync_booking_status(
    job: JobCard,
    stages: EffectiveStages | None = None,
    *,
    actor_user_id: int | None = None,
) -> Booking | None:
    """
    Push the job card's stage onto its booking. Does not commit.

    Returns the booking, or None for walk-in job cards.
    """
    if job.booking_id is None:
        return None

    booking = db.session.query(Booking).filter_by(id=job.booking_id, org_id=job.org_id).first()
    if booking is None:
        raise NotFoundError(f"Booking {job.booking_id} for job card {job.id} not found")

    stages = stages or stages_for_job(job)
    _set_booking_status(booking, derive_booking_status(job.stage, stages), actor_user_id=actor_user_id)
    return booking


def get_booking(org_id: int, booking_id: int) -> Booking:
    booking = db.session.query(Booking).filter_by(id=booking_id, org_id=org_id).first()
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def list_bookings(
    org_id: int,
    *,
    status: str | None = None,
    booking_date: date | None = None,
    limit: int = 200,
) -> list[Booking]:
    if status is not None and status not in BOOKING_STATUSES:
        raise ValidationError(f"Invalid status '{status}'. Must be one of: {', '.join(BOOKING_STATUSES)}")

    q = db.session.query(Booking).filter(Booking.org_id == org_id)
    if status is not None:
        q = q.filter(Booking.status == status)
    if booking_date is not None:
        q = q.filter(Booking.booking_date == booking_date)
    return q.order_by(Booking.booking_date.desc(), Booking.booking_time.desc(), Booking.id.desc()).limit(limit).all()


def _coerce_date(value, field: str) -> date:
    if isinstance(value, date):
        return value
    try:
        parsed = parse_iso_date(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")
    return parsed


def _coerce_time(value, field: str, *, required: bool = True) -> time | None:
    if value is None and not required:
        return None
    if isinstance(value, time):
        return value
    try:
        parsed = parse_clock_time(value) if isinstance(value, str) else None
    except ValueError:
        parsed = None
    if parsed is None:
        if not required and value == "":
            return None
        raise ValidationError(f"{field} must be a HH:MM time")
    return parsed


def parse_booking_schedule(booking_date, booking_time, expected_end_time=None) -> tuple[date, time, time | None]:
    """Validate and parse (date, start, optional end) for a booking."""
    day = _coerce_date(booking_date, "booking_date")
    start = _coerce_time(booking_time, "booking_time")
    end = _coerce_time(expected_end_time, "expected_end_time", required=False)
    if end is not None and end <= start:
        raise ValidationError("expected_end_time must be after booking_time")
    return day, start, end


def _insert_booking(
    *,
    customer: Customer,
    vehicle: Vehicle,
    day: date,
    start: time,
    end: time | None,
    services: list[dict],
    notes: str | None,
    source: str,
    actor_user_id: int | None,
) -> Booking:
    entries = list(services or [])
    booking = Booking(
        org_id=customer.org_id,
        customer_id=customer.id,
        vehicle_id=vehicle.id,
        booking_date=day,
        booking_time=start,
        expected_end_time=end,
        services=entries,
        total_amount_cents=sum(e["price_cents"] for e in entries) if entries else None,
        status=BOOKING_PENDING,
        source=source,
        notes=notes,
    )
    db.session.add(booking)
    db.session.flush()

    append_change_event(
        org_id=booking.org_id,
        event_type="booking.created",
        entity_type="booking",
        entity_id=booking.id,
        actor_user_id=actor_user_id,
        payload={"source": source},
    )
    return booking


def create_booking(
    org_id: int,
    *,
    customer_id: int,
    vehicle_id: int,
    booking_date,
    booking_time,
    services: list[dict],
    expected_end_time=None,
    notes: str | None = None,
    source: str = "staff",
    actor_user_id: int | None = None,
) -> Booking:
    """
    Create a pending booking.

    services must already be normalized entries (catalog_service.build_service_entries);
    their order is kept and decides the job's lifecycle later on.
    """
    day, start, end = parse_booking_schedule(booking_date, booking_time, expected_end_time)

    def _op():
        customer = db.session.query(Customer).filter_by(id=customer_id, org_id=org_id).first()
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        vehicle = db.session.query(Vehicle).filter_by(id=vehicle_id, org_id=org_id).first()
        if vehicle is None or vehicle.customer_id != customer.id:
            raise NotFoundError(f"Vehicle {vehicle_id} not found for customer {customer_id}")

        booking = _insert_booking(
            customer=customer,
            vehicle=vehicle,
            day=day,
            start=start,
            end=end,
            services=services,
            notes=notes,
            source=source,
            actor_user_id=actor_user_id,
        )
        db.session.commit()
        return booking

    return run_with_retry(_op)


def confirm_booking(
    org_id: int,
    booking_id: int,
    *,
    check_in: bool = True,
    actor_user_id: int | None = None,
) -> JobCard:
    """
    Confirm a booking and open its job card.

    Idempotent: confirming a booking that already has a job card (double
    click, retried webhook) returns that job card and changes nothing.

    check_in=True moves the new card straight to its first stage, leaving the
    booking in_progress. check_in=False leaves it "not started" and the
    booking confirmed until the vehicle arrives (begin_check_in).

    Raises:
        NotFoundError: booking not in this tenant
        InvalidTransition: booking is cancelled
    """
    from .job_card_service import _check_in_locked, _create_job_card_for_booking

    def _op():
        booking = lock_for_update(
            db.session.query(Booking).filter_by(id=booking_id, org_id=org_id)
        ).first()
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        job, created = _create_job_card_for_booking(booking, actor_user_id=actor_user_id)
        if not created:
            return job

        stages = stages_for_job(job)
        if check_in:
            _check_in_locked(job, stages, actor_user_id=actor_user_id)
        else:
            sync_booking_status(job, stages, actor_user_id=actor_user_id)

        db.session.commit()
        return job

    return run_with_retry(_op)


def cancel_booking(
    org_id: int,
    booking_id: int,
    *,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Booking:
    """
    Cancel a booking that has no job card yet.

    Once a job card exists the booking's status belongs to the job card.
    """
    def _op():
        booking = lock_for_update(
            db.session.query(Booking).filter_by(id=booking_id, org_id=org_id)
        ).first()
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")

        if booking.status == BOOKING_CANCELLED:
            return booking

        if db.session.query(JobCard.id).filter_by(booking_id=booking.id).first() is not None:
            raise InvalidTransition(
                f"Booking {booking.id} already has a job card and can no longer be cancelled"
            )

        _set_booking_status(booking, BOOKING_CANCELLED, actor_user_id=actor_user_id)
        if reason:
            booking.notes = f"{booking.notes}\n{reason}" if booking.notes else reason
        db.session.commit()
        return booking

    return run_with_retry(_op)


def reconcile_booking_statuses(org_id: int) -> int:
    """
    Recompute every linked booking's status from its job card.

    Not needed for correctness (every stage write syncs in-transaction); this
    is a repair tool for rows edited outside the application. Returns the
    number of bookings corrected.
    """
    def _op():
        changed = 0
        jobs = (
            db.session.query(JobCard)
            .filter(JobCard.org_id == org_id, JobCard.booking_id.isnot(None))
            .all()
        )
        for job in jobs:
            booking = db.session.query(Booking).filter_by(id=job.booking_id, org_id=org_id).first()
            if booking is None:
                continue
            status = derive_booking_status(job.stage, stages_for_job(job))
            if _set_booking_status(booking, status, actor_user_id=None):
                changed += 1
        db.session.commit()
        return changed

    return run_with_retry(_op)
