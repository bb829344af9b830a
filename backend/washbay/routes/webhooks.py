# Overview: Inbound booking webhook endpoint (no session; shared secret per organization).

from flask import Blueprint, request, jsonify, current_app

from ..services import webhook_service
from ..services.webhook_service import WebhookAuthError
from .errors import DOMAIN_ERRORS, error_response


webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/bookings")
def booking_webhook_route():
    """
    Header: X-Webhook-Secret (the organization's webhook_secret)
    Body: org_id, customer_phone, vehicle_number, booking_date, booking_time
    (required); customer_name, customer_email, vehicle_type, service_name,
    notes, source (optional, default "website").
    """
    try:
        result = webhook_service.ingest_booking_webhook(
            request.get_json(silent=True),
            request.headers.get("X-Webhook-Secret"),
        )
        return jsonify({
            "success": True,
            **result,
            "message": "Booking created successfully",
        }), 200
    except WebhookAuthError as e:
        return jsonify({"error": str(e)}), 401
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process booking webhook")
        return jsonify({"error": "Internal server error"}), 500
