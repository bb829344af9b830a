# Overview: Flask API routes for bookings; confirmation opens the job card.

"""
Booking API routes

- GET  /api/bookings                 list (status, date filters)
- POST /api/bookings                 create a pending booking
- GET  /api/bookings/<id>            booking plus its job card, if any
- POST /api/bookings/<id>/confirm    open the job card (checked in by default)
- POST /api/bookings/<id>/cancel     only before a job card exists
- POST /api/bookings/<id>/check-in   vehicle arrived (opens the job card if needed)

Booking status is never written directly here after confirmation; it follows
the job card.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import booking_service, catalog_service, job_card_service
from ..time_utils import parse_iso_date
from ..validation import ValidationError, require_bool
from ..decorators import require_auth
from .errors import DOMAIN_ERRORS, error_response


bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/bookings")


def _booking_payload(booking) -> dict:
    data = booking.to_dict()
    job = booking.job_card
    data["job_card"] = (
        {**job.to_dict(), "progress": job_card_service.describe_progress(job)} if job else None
    )
    return data


@bookings_bp.get("")
@require_auth
def list_bookings_route():
    """Query: status, date (YYYY-MM-DD), limit."""
    try:
        raw_date = request.args.get("date")
        try:
            booking_date = parse_iso_date(raw_date) if raw_date else None
        except ValueError:
            raise ValidationError("date must be YYYY-MM-DD")

        bookings = booking_service.list_bookings(
            g.org_id,
            status=request.args.get("status") or None,
            booking_date=booking_date,
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"bookings": [b.to_dict() for b in bookings], "count": len(bookings)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list bookings")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.post("")
@require_auth
def create_booking_route():
    """
    Body:
        customer_id, vehicle_id, booking_date (YYYY-MM-DD), booking_time (HH:MM),
        expected_end_time (optional), notes (optional),
        services: [{"id": 3}, {"name": "Wax", "price": 150}, ...]
    """
    try:
        data = request.get_json(silent=True) or {}
        missing = [f for f in ("customer_id", "vehicle_id", "booking_date", "booking_time") if not data.get(f)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        services = catalog_service.build_service_entries(g.org_id, data.get("services"))
        booking = booking_service.create_booking(
            g.org_id,
            customer_id=data["customer_id"],
            vehicle_id=data["vehicle_id"],
            booking_date=data["booking_date"],
            booking_time=data["booking_time"],
            expected_end_time=data.get("expected_end_time"),
            services=services,
            notes=data.get("notes"),
            source="staff",
            actor_user_id=g.current_user.id,
        )
        return jsonify({"booking": booking.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create booking")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.get("/<int:booking_id>")
@require_auth
def get_booking_route(booking_id: int):
    try:
        booking = booking_service.get_booking(g.org_id, booking_id)
        return jsonify({"booking": _booking_payload(booking)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get booking")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.post("/<int:booking_id>/confirm")
@require_auth
def confirm_booking_route(booking_id: int):
    """
    Body (optional): {"check_in": false} to open the job card without checking in.

    Safe to repeat: a second call returns the existing job card.
    """
    try:
        data = request.get_json(silent=True) or {}
        job = booking_service.confirm_booking(
            g.org_id,
            booking_id,
            check_in=require_bool(data.get("check_in", True), "check_in"),
            actor_user_id=g.current_user.id,
        )
        booking = booking_service.get_booking(g.org_id, booking_id)
        return jsonify({
            "booking": booking.to_dict(),
            "job_card": job.to_dict(),
            "progress": job_card_service.describe_progress(job),
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm booking")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.post("/<int:booking_id>/cancel")
@require_auth
def cancel_booking_route(booking_id: int):
    try:
        data = request.get_json(silent=True) or {}
        booking = booking_service.cancel_booking(
            g.org_id,
            booking_id,
            reason=data.get("reason"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"booking": booking.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel booking")
        return jsonify({"error": "Internal server error"}), 500


@bookings_bp.post("/<int:booking_id>/check-in")
@require_auth
def check_in_booking_route(booking_id: int):
    """Vehicle arrived: open the job card if needed and move it to its first stage."""
    try:
        job = job_card_service.begin_check_in(
            g.org_id,
            booking_id=booking_id,
            actor_user_id=g.current_user.id,
        )
        return jsonify({
            "job_card": job.to_dict(),
            "progress": job_card_service.describe_progress(job),
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check in booking")
        return jsonify({"error": "Internal server error"}), 500
