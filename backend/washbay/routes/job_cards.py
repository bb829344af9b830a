# Overview: Flask API routes for job cards; stage progression and invoicing.

"""
Job Card API routes

- GET   /api/job-cards                   list (stage, booking_id, open filters)
- POST  /api/job-cards                   open a walk-in job card
- GET   /api/job-cards/<id>              job card plus lifecycle progress
- PATCH /api/job-cards/<id>              notes, images, assigned staff
- POST  /api/job-cards/<id>/check-in     not started -> first stage
- POST  /api/job-cards/<id>/advance      one stage forward
- POST  /api/job-cards/<id>/stage        jump to any stage (manager/admin)
- POST  /api/job-cards/<id>/invoice      generate the invoice

A 409 from advance/check-in means another user moved the job first; reload
it before trying again.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import catalog_service, invoice_service, job_card_service
from ..validation import ValidationError, require_bool
from ..decorators import require_auth, require_role
from .errors import DOMAIN_ERRORS, error_response


job_cards_bp = Blueprint("job_cards", __name__, url_prefix="/api/job-cards")


def _job_payload(job) -> dict:
    return {
        "job_card": job.to_dict(),
        "progress": job_card_service.describe_progress(job),
        "invoice_id": job.invoice.id if job.invoice else None,
    }


@job_cards_bp.get("")
@require_auth
def list_job_cards_route():
    """Query: stage, booking_id, open (true -> not yet checked out), limit."""
    try:
        jobs = job_card_service.list_job_cards(
            g.org_id,
            stage=request.args.get("stage") or None,
            booking_id=request.args.get("booking_id", type=int),
            open_only=request.args.get("open", "false").lower() in ("1", "true", "yes"),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"job_cards": [j.to_dict() for j in jobs], "count": len(jobs)}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list job cards")
        return jsonify({"error": "Internal server error"}), 500


@job_cards_bp.post("")
@require_auth
def open_job_card_route():
    """
    Walk-in job card (no booking).

    Body: customer_id, vehicle_id, services, check_in (default true),
    damage_notes, internal_notes, assigned_staff_id
    """
    try:
        data = request.get_json(silent=True) or {}
        missing = [f for f in ("customer_id", "vehicle_id") if not data.get(f)]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

        services = catalog_service.build_service_entries(g.org_id, data.get("services"))
        job = job_card_service.open_job_card(
            g.org_id,
            customer_id=data["customer_id"],
            vehicle_id=data["vehicle_id"],
            services=services,
            check_in=require_bool(data.get("check_in", True), "check_in"),
            damage_notes=data.get("damage_notes"),
            internal_notes=data.get("internal_notes"),
            assigned_staff_id=data.get("assigned_staff_id"),
            actor_user_id=g.current_user.id,
        )
        return jsonify(_job_payload(job)), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open job card")
        return jsonify({"error": "Internal server error"}), 500


@job_cards_bp.get("/<int:job_card_id>")
@require_auth
def get_job_card_route(job_card_id: int):
    try:
        job = job_card_service.get_job_card(g.org_id, job_card_id)
        return jsonify(_job_payload(job)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get job card")
        return jsonify({"error": "Internal server error"}), 500


@job_cards_bp.patch("/<int:job_card_id>")
@require_auth
def update_job_card_route(job_card_id: int):
    """Body: damage_notes, internal_notes, before_images, after_images, assigned_staff_id."""
    try:
        data = dict(request.get_json(silent=True) or {})
        if "stage" in data:
            raise ValidationError("stage cannot be edited here; use advance or stage override")

        job = None
        if "assigned_staff_id" in data:
            job = job_card_service.assign_staff(
                g.org_id,
                job_card_id,
                data.pop("assigned_staff_id"),
                actor_user_id=g.current_user.id,
            )
        if data or job is None:
            job = job_card_service.update_job_card_details(
                g.org_id,
                job_card_id,
                data,
                actor_user_id=g.current_user.id,
            )
        return jsonify(_job_payload(job)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update job card")
        return jsonify({"error": "Internal server error"}), 500


@job_cards_bp.post("/<int:job_card_id>/check-in")
@require_auth
def check_in_route(job_card_id: int):
    try:
        job = job_card_service.begin_check_in(
            g.org_id,
            job_card_id=job_card_id,
            actor_user_id=g.current_user.id,
        )
        return jsonify(_job_payload(job)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check in job card")
        return jsonify({"error": "Internal server error"}), 500


@job_cards_bp.post("/<int:job_card_id>/advance")
@require_auth
def advance_route(job_card_id: int):
    try:
        job = job_card_service.advance(g.org_id, job_card_id, actor_user_id=g.current_user.id)
        return jsonify(_job_payload(job)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to advance job card")
        return jsonify({"error": "Internal server error"}), 500


@job_cards_bp.post("/<int:job_card_id>/stage")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def set_stage_route(job_card_id: int):
    """
    Administrative override. Body: {"stage": "...", "reason": "..."}

    Skips ordering checks; always audited as job_card.stage_overridden.
    """
    try:
        data = request.get_json(silent=True) or {}
        stage = data.get("stage")
        if not isinstance(stage, str) or not stage:
            raise ValidationError("stage is required")

        job = job_card_service.set_stage(
            g.org_id,
            job_card_id,
            stage,
            actor_user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return jsonify(_job_payload(job)), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to set job card stage")
        return jsonify({"error": "Internal server error"}), 500


@job_cards_bp.post("/<int:job_card_id>/invoice")
@require_auth
def generate_invoice_route(job_card_id: int):
    """Body (optional): tax_cents, discount_cents, notes."""
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.generate_invoice(
            g.org_id,
            job_card_id,
            tax_cents=data.get("tax_cents", 0),
            discount_cents=data.get("discount_cents", 0),
            notes=data.get("notes"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate invoice")
        return jsonify({"error": "Internal server error"}), 500
