# Overview: Flask API routes for invoices; line items, adjustments and payment.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import invoice_service
from ..validation import ValidationError
from ..decorators import require_auth
from .errors import DOMAIN_ERRORS, error_response


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """Query: payment_status, customer_id, limit."""
    try:
        invoices = invoice_service.list_invoices(
            g.org_id,
            payment_status=request.args.get("payment_status") or None,
            customer_id=request.args.get("customer_id", type=int),
            limit=request.args.get("limit", 200, type=int),
        )
        return jsonify({"invoices": [i.to_dict() for i in invoices], "count": len(invoices)}), 200
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(g.org_id, invoice_id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.put("/<int:invoice_id>/items")
@require_auth
def replace_items_route(invoice_id: int):
    """Body: {"items": [{"name": ..., "price_cents": ...}, ...]}"""
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.replace_invoice_items(
            g.org_id,
            invoice_id,
            data.get("items"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to replace invoice items")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/items")
@require_auth
def add_item_route(invoice_id: int):
    """Body: {"name": ..., "price_cents": ...} or {"name": ..., "price": ...}"""
    try:
        invoice = invoice_service.add_invoice_item(
            g.org_id,
            invoice_id,
            request.get_json(silent=True),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.delete("/<int:invoice_id>/items/<int:index>")
@require_auth
def remove_item_route(invoice_id: int, index: int):
    try:
        invoice = invoice_service.remove_invoice_item(
            g.org_id,
            invoice_id,
            index,
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove invoice item")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>/adjustments")
@require_auth
def adjustments_route(invoice_id: int):
    """Body: tax_cents and/or discount_cents."""
    try:
        data = request.get_json(silent=True) or {}
        invoice = invoice_service.update_invoice_adjustments(
            g.org_id,
            invoice_id,
            tax_cents=data.get("tax_cents"),
            discount_cents=data.get("discount_cents"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice adjustments")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/payment")
@require_auth
def record_payment_route(invoice_id: int):
    """Body: {"payment_method": "cash" | "upi" | "card" | "subscription"}"""
    try:
        data = request.get_json(silent=True) or {}
        method = data.get("payment_method")
        if not method:
            raise ValidationError("payment_method is required")

        invoice = invoice_service.record_payment(
            g.org_id,
            invoice_id,
            method,
            actor_user_id=g.current_user.id,
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500
