# Overview: Flask API routes for the service catalog.

from flask import Blueprint, request, jsonify, g, current_app

from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import catalog_service
from ..services.lifecycle_service import DEFAULT_LIFECYCLE_STAGES
from ..decorators import require_auth, require_role
from .errors import DOMAIN_ERRORS, error_response


services_bp = Blueprint("services", __name__, url_prefix="/api/services")


@services_bp.get("")
@require_auth
def list_services_route():
    try:
        active_only = request.args.get("active_only", "false").lower() in ("1", "true", "yes")
        services = catalog_service.list_services(g.org_id, active_only=active_only)
        return jsonify({
            "services": [s.to_dict() for s in services],
            "default_lifecycle_stages": list(DEFAULT_LIFECYCLE_STAGES),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list services")
        return jsonify({"error": "Internal server error"}), 500


@services_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_service_route():
    """
    Body: name, base_price_cents (or price), duration_minutes, category,
    description, is_active, lifecycle_stages (ordered list or null).
    """
    try:
        service = catalog_service.create_service(g.org_id, request.get_json(silent=True))
        return jsonify({"service": service.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create service")
        return jsonify({"error": "Internal server error"}), 500


@services_bp.patch("/<int:service_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_service_route(service_id: int):
    try:
        service = catalog_service.update_service(g.org_id, service_id, request.get_json(silent=True))
        return jsonify({"service": service.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update service")
        return jsonify({"error": "Internal server error"}), 500
