# Overview: Pytest coverage for bookings and the booking <-> job card synchronizer.

"""
Booking synchronizer tests

Verifies:
- Booking status always follows the job card stage (one mapping, one writer)
- Confirming a booking twice yields exactly one job card
- Cancellation is only possible before a job card exists
- reconcile_booking_statuses repairs rows edited behind the app's back
"""

import pytest

from washbay.models import Booking, ChangeEvent, Customer, JobCard
from washbay.services import booking_service, job_card_service
from washbay.services.booking_service import derive_booking_status
from washbay.services.lifecycle_service import (
    DEFAULT_LIFECYCLE_STAGES,
    DEFAULT_STAGES,
    EffectiveStages,
    InvalidTransition,
)
from washbay.validation import NotFoundError, ValidationError

from conftest import make_booking


# =============================================================================
# STATUS MAPPING
# =============================================================================


class TestDeriveBookingStatus:
    """Pure stage -> booking status mapping."""

    @pytest.mark.parametrize(
        "stage,expected",
        [
            (None, "confirmed"),
            ("check_in", "in_progress"),
            ("pre_wash", "in_progress"),
            ("qc", "in_progress"),
            ("completed", "completed"),
            ("delivered", "completed"),
            ("not_a_stage", "confirmed"),
        ],
    )
    def test_default_pipeline(self, stage, expected):
        assert derive_booking_status(stage, DEFAULT_STAGES) == expected

    def test_last_custom_stage_is_completed(self):
        stages = EffectiveStages(("check_in", "wash", "handover"), source_service_id=1)
        assert derive_booking_status("wash", stages) == "in_progress"
        assert derive_booking_status("handover", stages) == "completed"

    def test_stage_after_completed_regresses(self):
        """Known sharp edge: stages after "completed" map back to in_progress."""
        stages = EffectiveStages(("check_in", "completed", "polish", "handover"), source_service_id=1)
        assert derive_booking_status("completed", stages) == "completed"
        assert derive_booking_status("polish", stages) == "in_progress"
        assert derive_booking_status("handover", stages) == "completed"


# =============================================================================
# SYNCHRONIZATION
# =============================================================================


class TestStatusFollowsStage:

    def test_every_default_stage(self, db_session, org_a, booking_a):
        job = booking_service.confirm_booking(org_a.id, booking_a.id, check_in=False)
        assert db_session.get(Booking, booking_a.id).status == "confirmed"

        for stage in DEFAULT_LIFECYCLE_STAGES:
            job = job_card_service.advance(org_a.id, job.id)
            assert job.stage == stage
            booking = db_session.get(Booking, booking_a.id)
            assert booking.status == derive_booking_status(stage, DEFAULT_STAGES)

    def test_override_also_syncs(self, db_session, org_a, booking_a):
        job = booking_service.confirm_booking(org_a.id, booking_a.id)
        job_card_service.set_stage(org_a.id, job.id, "completed")
        assert db_session.get(Booking, booking_a.id).status == "completed"

    def test_status_events_emitted_only_on_change(self, db_session, org_a, booking_a):
        job = booking_service.confirm_booking(org_a.id, booking_a.id)
        # check_in -> pre_wash keeps the booking in_progress
        job_card_service.advance(org_a.id, job.id)

        transitions = [
            (e.payload["from"], e.payload["to"])
            for e in db_session.query(ChangeEvent)
            .filter_by(entity_type="booking", entity_id=booking_a.id, event_type="booking.status_changed")
            .order_by(ChangeEvent.id.asc())
        ]
        assert transitions == [("pending", "in_progress")]

    def test_walk_in_sync_is_noop(self, db_session, org_a, customer_a, vehicle_a, foam_wash):
        job = job_card_service.open_job_card(
            org_a.id,
            customer_id=customer_a.id,
            vehicle_id=vehicle_a.id,
            services=[foam_wash.to_entry()],
        )
        assert booking_service.sync_booking_status(job) is None


# =============================================================================
# CONFIRM
# =============================================================================


class TestConfirmBooking:

    def test_confirm_checks_in_by_default(self, db_session, org_a, booking_a):
        job = booking_service.confirm_booking(org_a.id, booking_a.id)

        assert job.booking_id == booking_a.id
        assert job.stage == "check_in"
        assert job.check_in_at is not None
        assert job.services == booking_a.services
        assert db_session.get(Booking, booking_a.id).status == "in_progress"

    def test_confirm_without_check_in(self, db_session, org_a, booking_a):
        job = booking_service.confirm_booking(org_a.id, booking_a.id, check_in=False)

        assert job.stage is None
        assert job.check_in_at is None
        assert db_session.get(Booking, booking_a.id).status == "confirmed"

    def test_confirm_twice_yields_one_card(self, db_session, org_a, booking_a):
        first = booking_service.confirm_booking(org_a.id, booking_a.id)
        job_card_service.advance(org_a.id, first.id)

        second = booking_service.confirm_booking(org_a.id, booking_a.id)

        assert second.id == first.id
        assert second.stage == "pre_wash"
        assert db_session.query(JobCard).filter_by(booking_id=booking_a.id).count() == 1
        assert db_session.query(ChangeEvent).filter_by(event_type="job_card.created").count() == 1

    def test_confirm_cancelled_booking_rejected(self, db_session, org_a, booking_a):
        booking_service.cancel_booking(org_a.id, booking_a.id)
        with pytest.raises(InvalidTransition):
            booking_service.confirm_booking(org_a.id, booking_a.id)
        assert db_session.query(JobCard).count() == 0

    def test_confirm_unknown_booking(self, db_session, org_a):
        with pytest.raises(NotFoundError):
            booking_service.confirm_booking(org_a.id, 99999)


# =============================================================================
# CREATE / CANCEL / LIST
# =============================================================================


class TestCreateBooking:

    def test_create_pending_booking(self, db_session, org_a, customer_a, vehicle_a, foam_wash, express_wash):
        booking = make_booking(org_a, customer_a, vehicle_a, [foam_wash, express_wash])

        assert booking.status == "pending"
        assert [s["name"] for s in booking.services] == ["Foam Wash", "Express Wash"]
        assert booking.total_amount_cents == 50000
        assert db_session.query(ChangeEvent).filter_by(event_type="booking.created").count() == 1

    def test_vehicle_must_belong_to_customer(self, db_session, org_a, customer_a, vehicle_a):
        stranger = Customer(org_id=org_a.id, name="Stranger", phone="9111111111")
        db_session.add(stranger)
        db_session.commit()

        with pytest.raises(NotFoundError):
            booking_service.create_booking(
                org_a.id,
                customer_id=stranger.id,
                vehicle_id=vehicle_a.id,
                booking_date="2026-10-20",
                booking_time="10:00",
                services=[],
            )

    @pytest.mark.parametrize(
        "booking_date,booking_time,end_time",
        [
            ("20-10-2026", "10:00", None),
            ("2026-10-20", "10am", None),
            ("2026-10-20", "10:00", "09:30"),
        ],
    )
    def test_bad_schedule_rejected(self, db_session, org_a, customer_a, vehicle_a, booking_date, booking_time, end_time):
        with pytest.raises(ValidationError):
            booking_service.create_booking(
                org_a.id,
                customer_id=customer_a.id,
                vehicle_id=vehicle_a.id,
                booking_date=booking_date,
                booking_time=booking_time,
                expected_end_time=end_time,
                services=[],
            )

    def test_list_filters_by_status(self, db_session, org_a, customer_a, vehicle_a, foam_wash):
        pending = make_booking(org_a, customer_a, vehicle_a, [foam_wash], booking_time="09:00")
        confirmed = make_booking(org_a, customer_a, vehicle_a, [foam_wash], booking_time="11:00")
        booking_service.confirm_booking(org_a.id, confirmed.id, check_in=False)

        assert [b.id for b in booking_service.list_bookings(org_a.id, status="pending")] == [pending.id]
        assert [b.id for b in booking_service.list_bookings(org_a.id, status="confirmed")] == [confirmed.id]

        with pytest.raises(ValidationError):
            booking_service.list_bookings(org_a.id, status="teleported")


class TestCancelBooking:

    def test_cancel_pending_booking(self, db_session, org_a, booking_a):
        booking = booking_service.cancel_booking(org_a.id, booking_a.id, reason="Customer called")
        assert booking.status == "cancelled"
        assert "Customer called" in booking.notes

    def test_cancel_twice_is_noop(self, db_session, org_a, booking_a):
        booking_service.cancel_booking(org_a.id, booking_a.id)
        booking_service.cancel_booking(org_a.id, booking_a.id)
        events = db_session.query(ChangeEvent).filter_by(
            entity_type="booking", event_type="booking.status_changed"
        ).count()
        assert events == 1

    def test_cannot_cancel_once_job_card_exists(self, db_session, org_a, booking_a):
        booking_service.confirm_booking(org_a.id, booking_a.id, check_in=False)
        with pytest.raises(InvalidTransition):
            booking_service.cancel_booking(org_a.id, booking_a.id)
        assert db_session.get(Booking, booking_a.id).status == "confirmed"


# =============================================================================
# RECONCILE
# =============================================================================


class TestReconcile:

    def test_repairs_drifted_status(self, db_session, org_a, booking_a):
        job = booking_service.confirm_booking(org_a.id, booking_a.id)
        job_card_service.set_stage(org_a.id, job.id, "completed")

        # Simulate a row edited outside the application
        booking = db_session.get(Booking, booking_a.id)
        booking.status = "pending"
        db_session.commit()

        assert booking_service.reconcile_booking_statuses(org_a.id) == 1
        assert db_session.get(Booking, booking_a.id).status == "completed"
        assert booking_service.reconcile_booking_statuses(org_a.id) == 0
