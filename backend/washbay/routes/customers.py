# Overview: Flask API routes for customers and vehicles.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import customer_service
from ..decorators import require_auth
from .errors import DOMAIN_ERRORS, error_response


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
def list_customers_route():
    """Query: search (name or phone substring), limit."""
    try:
        customers = customer_service.list_customers(
            g.org_id,
            search=request.args.get("search"),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({
            "customers": [
                {**c.to_dict(), "vehicles": [v.to_dict() for v in c.vehicles]}
                for c in customers
            ],
            "count": len(customers),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list customers")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("")
@require_auth
def create_customer_route():
    try:
        customer = customer_service.create_customer(g.org_id, request.get_json(silent=True))
        return jsonify({"customer": customer.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(g.org_id, customer_id)
        return jsonify({
            "customer": customer.to_dict(),
            "vehicles": [v.to_dict() for v in customer.vehicles],
        }), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/vehicles")
@require_auth
def add_vehicle_route(customer_id: int):
    try:
        vehicle = customer_service.add_vehicle(g.org_id, customer_id, request.get_json(silent=True))
        return jsonify({"vehicle": vehicle.to_dict()}), 201
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add vehicle")
        return jsonify({"error": "Internal server error"}), 500
