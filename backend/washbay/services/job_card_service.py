# Overview: Job card state machine; the only code that writes JobCard.stage.

"""
WashBay Job Card State Machine

================================================================================
STATES: the job's effective stage list (lifecycle_service) plus the implicit
"not started" pre-state (stage IS NULL, index -1).
================================================================================

TRANSITIONS:
- not started -> stage 0            (check-in; sets check_in_at)
- stage i     -> stage i+1          (advance; no skipping)
- any         -> any listed stage   (set_stage; administrative override,
                                     audited as job_card.stage_overridden)

SIDE EFFECTS OF ENTERING A STAGE:
- index 0        -> check_in_at = now
- last index     -> check_out_at = now
- every entry    -> booking status re-derived (booking_service) and change
                    events appended, all in the same transaction

CONCURRENCY:
Every stage write is a single conditional UPDATE guarded by the stage the
caller read ("... WHERE id = :id AND stage = :current"). If another writer
got there first the UPDATE matches no row and InvalidTransition is raised;
the caller re-fetches and decides again. Two racing advances can never both
move 2 -> 3.
================================================================================
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Booking, Customer, JobCard, User, Vehicle
from ..models.bookings import BOOKING_CANCELLED
from ..validation import ModelValidationPolicy, NotFoundError, ValidationError, validate_payload
from washbay.time_utils import utcnow
from .booking_service import sync_booking_status
from .concurrency import lock_for_update, run_with_retry
from .event_service import append_change_event
from .lifecycle_service import (
    NOT_STARTED,
    EffectiveStages,
    InvalidTransition,
    Stage,
    is_invoice_eligible,
    stages_for_job,
)


logger = logging.getLogger(__name__)


DETAILS_POLICY = ModelValidationPolicy(
    writable_fields={"damage_notes", "internal_notes", "before_images", "after_images"},
)


def get_job_card(org_id: int, job_card_id: int) -> JobCard:
    job = db.session.query(JobCard).filter_by(id=job_card_id, org_id=org_id).first()
    if job is None:
        raise NotFoundError(f"Job card {job_card_id} not found")
    return job


def _get_job_card_locked(org_id: int, job_card_id: int) -> JobCard:
    job = lock_for_update(
        db.session.query(JobCard).filter_by(id=job_card_id, org_id=org_id)
    ).first()
    if job is None:
        raise NotFoundError(f"Job card {job_card_id} not found")
    return job


def list_job_cards(
    org_id: int,
    *,
    stage: str | None = None,
    booking_id: int | None = None,
    open_only: bool = False,
    limit: int = 200,
) -> list[JobCard]:
    """
    List job cards for a tenant, newest first.

    open_only keeps cards without a check_out_at (still on the floor).
    """
    q = db.session.query(JobCard).filter(JobCard.org_id == org_id)
    if stage is not None:
        q = q.filter(JobCard.stage == stage)
    if booking_id is not None:
        q = q.filter(JobCard.booking_id == booking_id)
    if open_only:
        q = q.filter(JobCard.check_out_at.is_(None))
    return q.order_by(JobCard.created_at.desc(), JobCard.id.desc()).limit(limit).all()


def describe_progress(job: JobCard, stages: EffectiveStages | None = None) -> dict:
    """Where a job stands in its lifecycle, for display next to the job card."""
    stages = stages or stages_for_job(job)
    index = stages.index_of(job.stage)
    stage_resolvable = job.stage is None or index != NOT_STARTED
    return {
        **stages.to_dict(),
        "current_stage": job.stage,
        "current_index": index,
        "stage_resolvable": stage_resolvable,
        "next_stage": stages.next_after(job.stage) if stage_resolvable else None,
        "is_final": index == stages.last_index,
        "invoice_eligible": is_invoice_eligible(job.stage, stages),
    }


def _stage_guard(current: str | None):
    if current is None:
        return JobCard.stage.is_(None)
    return JobCard.stage == current


def _enter_stage(
    job: JobCard,
    stages: EffectiveStages,
    target: Stage,
    *,
    actor_user_id: int | None,
    event_type: str = "job_card.stage_changed",
    audit: dict | None = None,
) -> JobCard:
    """
    Move job to target with a compare-and-swap on its current stage.

    Does not commit; the caller owns the transaction so the booking sync and
    the events land together with the stage write.
    """
    current = job.stage
    now = utcnow()

    values = {"stage": target.name, "updated_at": now}
    if target.is_first:
        values["check_in_at"] = now
    if target.is_last:
        values["check_out_at"] = now

    stmt = (
        update(JobCard)
        .where(
            JobCard.id == job.id,
            JobCard.org_id == job.org_id,
            _stage_guard(current),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise InvalidTransition(
            f"Job card {job.id} is no longer at stage '{current}'; reload it and try again"
        )
    db.session.refresh(job)

    payload = {"from": current, "to": target.name, "index": target.index}
    if audit:
        payload.update(audit)
    append_change_event(
        org_id=job.org_id,
        event_type=event_type,
        entity_type="job_card",
        entity_id=job.id,
        actor_user_id=actor_user_id,
        payload=payload,
    )
    logger.info("Job card %s: %s -> %s (%s)", job.id, current, target.name, event_type)

    sync_booking_status(job, stages, actor_user_id=actor_user_id)
    return job


def _check_in_locked(job: JobCard, stages: EffectiveStages, *, actor_user_id: int | None) -> JobCard:
    """not started -> stage 0; already at stage 0 is a no-op."""
    index = stages.index_of(job.stage)
    if job.stage is None:
        return _enter_stage(
            job, stages, stages.stage(stages.first),
            actor_user_id=actor_user_id,
            event_type="job_card.checked_in",
        )
    if index == 0:
        logger.info("Job card %s already checked in; nothing to do", job.id)
        return job
    raise InvalidTransition(
        f"Job card {job.id} is at stage '{job.stage}' and can no longer be checked in"
    )


def _job_card_for_booking(booking_id: int) -> JobCard | None:
    return db.session.query(JobCard).filter_by(booking_id=booking_id).first()


def _create_job_card_for_booking(booking: Booking, *, actor_user_id: int | None) -> tuple[JobCard, bool]:
    """
    Return (job_card, created) for a booking, creating a not-started card if needed.

    The existence check is only an early exit. uq_job_cards_booking is the
    real guard: losing an insert race is treated as "already exists".
    """
    existing = _job_card_for_booking(booking.id)
    if existing is not None:
        logger.info("Booking %s already has job card %s", booking.id, existing.id)
        return existing, False

    if booking.status == BOOKING_CANCELLED:
        raise InvalidTransition(f"Booking {booking.id} is cancelled")

    job = JobCard(
        org_id=booking.org_id,
        customer_id=booking.customer_id,
        vehicle_id=booking.vehicle_id,
        booking_id=booking.id,
        services=list(booking.services or []),
        stage=None,
    )
    try:
        with db.session.begin_nested():
            db.session.add(job)
    except IntegrityError:
        existing = _job_card_for_booking(booking.id)
        if existing is None:
            raise
        logger.info("Job card for booking %s was created concurrently; reusing %s", booking.id, existing.id)
        return existing, False

    append_change_event(
        org_id=job.org_id,
        event_type="job_card.created",
        entity_type="job_card",
        entity_id=job.id,
        actor_user_id=actor_user_id,
        payload={"booking_id": booking.id},
    )
    return job, True


def open_job_card(
    org_id: int,
    *,
    customer_id: int,
    vehicle_id: int,
    services: list[dict],
    check_in: bool = True,
    damage_notes: str | None = None,
    internal_notes: str | None = None,
    assigned_staff_id: int | None = None,
    actor_user_id: int | None = None,
) -> JobCard:
    """
    Open a walk-in job card (no booking).

    services must already be normalized entries (catalog_service.build_service_entries).
    """
    def _op():
        customer = db.session.query(Customer).filter_by(id=customer_id, org_id=org_id).first()
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        vehicle = db.session.query(Vehicle).filter_by(id=vehicle_id, org_id=org_id).first()
        if vehicle is None or vehicle.customer_id != customer.id:
            raise NotFoundError(f"Vehicle {vehicle_id} not found for customer {customer_id}")
        if assigned_staff_id is not None:
            _require_staff(org_id, assigned_staff_id)

        job = JobCard(
            org_id=org_id,
            customer_id=customer.id,
            vehicle_id=vehicle.id,
            services=list(services),
            stage=None,
            damage_notes=damage_notes,
            internal_notes=internal_notes,
            assigned_staff_id=assigned_staff_id,
        )
        db.session.add(job)
        db.session.flush()

        append_change_event(
            org_id=org_id,
            event_type="job_card.created",
            entity_type="job_card",
            entity_id=job.id,
            actor_user_id=actor_user_id,
            payload={"walk_in": True},
        )
        if check_in:
            _check_in_locked(job, stages_for_job(job), actor_user_id=actor_user_id)

        db.session.commit()
        return job

    return run_with_retry(_op)


def advance(org_id: int, job_card_id: int, *, actor_user_id: int | None = None) -> JobCard:
    """
    Move a job card exactly one stage forward.

    Raises:
        NotFoundError: job card not in this tenant
        InvalidTransition: already at the final stage, current stage not in
            the effective list, or a concurrent writer moved it first
    """
    def _op():
        job = _get_job_card_locked(org_id, job_card_id)
        stages = stages_for_job(job)
        index = stages.index_of(job.stage)

        if job.stage is not None and index == NOT_STARTED:
            raise InvalidTransition(
                f"Job card {job.id} is at stage '{job.stage}', which is not in its lifecycle "
                f"({', '.join(stages)}); set the stage explicitly"
            )
        if index >= stages.last_index:
            raise InvalidTransition(
                f"Job card {job.id} is already at its final stage '{job.stage}'"
            )

        target = stages.stage(stages.names[index + 1])
        event_type = "job_card.checked_in" if target.is_first else "job_card.stage_changed"
        _enter_stage(job, stages, target, actor_user_id=actor_user_id, event_type=event_type)

        db.session.commit()
        return job

    return run_with_retry(_op)


def begin_check_in(
    org_id: int,
    *,
    booking_id: int | None = None,
    job_card_id: int | None = None,
    actor_user_id: int | None = None,
) -> JobCard:
    """
    Check a vehicle in, by booking or by job card.

    - booking without a job card: the card is created and checked in
    - job card not started: moved to stage 0
    - job card already at stage 0: returned unchanged
    """
    if (booking_id is None) == (job_card_id is None):
        raise ValidationError("Provide exactly one of booking_id or job_card_id")

    def _op():
        if job_card_id is not None:
            job = _get_job_card_locked(org_id, job_card_id)
        else:
            booking = lock_for_update(
                db.session.query(Booking).filter_by(id=booking_id, org_id=org_id)
            ).first()
            if booking is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            job, _ = _create_job_card_for_booking(booking, actor_user_id=actor_user_id)

        _check_in_locked(job, stages_for_job(job), actor_user_id=actor_user_id)
        db.session.commit()
        return job

    return run_with_retry(_op)


def set_stage(
    org_id: int,
    job_card_id: int,
    stage: str,
    *,
    actor_user_id: int | None = None,
    reason: str | None = None,
) -> JobCard:
    """
    Administrative override: jump straight to any stage in the job's list.

    No ordering check. Check-in / check-out side effects still follow the
    entered stage's position, the booking is re-synced, and the override is
    always recorded (even when the stage does not change).

    Raises:
        InvalidStage: stage is not in the job's effective list
    """
    def _op():
        job = _get_job_card_locked(org_id, job_card_id)
        stages = stages_for_job(job)
        target = stages.stage(stage)

        _enter_stage(
            job, stages, target,
            actor_user_id=actor_user_id,
            event_type="job_card.stage_overridden",
            audit={"override": True, "reason": reason},
        )
        db.session.commit()
        return job

    return run_with_retry(_op)


def _require_staff(org_id: int, user_id: int) -> User:
    user = db.session.query(User).filter_by(id=user_id, org_id=org_id, is_active=True).first()
    if user is None:
        raise NotFoundError(f"Staff member {user_id} not found")
    return user


def assign_staff(
    org_id: int,
    job_card_id: int,
    staff_user_id: int | None,
    *,
    actor_user_id: int | None = None,
) -> JobCard:
    """Assign (or with None, unassign) the staff member working on a job."""
    def _op():
        job = _get_job_card_locked(org_id, job_card_id)
        if staff_user_id is not None:
            _require_staff(org_id, staff_user_id)

        previous = job.assigned_staff_id
        job.assigned_staff_id = staff_user_id
        append_change_event(
            org_id=org_id,
            event_type="job_card.staff_assigned",
            entity_type="job_card",
            entity_id=job.id,
            actor_user_id=actor_user_id,
            payload={"from": previous, "to": staff_user_id},
        )
        db.session.commit()
        return job

    return run_with_retry(_op)


def _validate_image_refs(field: str, value) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) and v.strip() for v in value):
        raise ValidationError(f"{field} must be a list of image references")
    return [v.strip() for v in value]


def update_job_card_details(
    org_id: int,
    job_card_id: int,
    payload: dict,
    *,
    actor_user_id: int | None = None,
) -> JobCard:
    """Edit notes and image references. Never touches the stage."""
    patch = validate_payload(model=JobCard, payload=payload, policy=DETAILS_POLICY, partial=True)
    for field in ("before_images", "after_images"):
        if field in patch:
            patch[field] = _validate_image_refs(field, patch[field])

    def _op():
        job = _get_job_card_locked(org_id, job_card_id)
        for field, value in patch.items():
            setattr(job, field, value)
        if patch:
            append_change_event(
                org_id=org_id,
                event_type="job_card.details_updated",
                entity_type="job_card",
                entity_id=job.id,
                actor_user_id=actor_user_id,
                payload={"fields": sorted(patch)},
            )
        db.session.commit()
        return job

    return run_with_retry(_op)
