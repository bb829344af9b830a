# Overview: Change event feed; clients poll with the last id they have seen.

from flask import Blueprint, request, jsonify, g, current_app

from ..services import event_service
from ..decorators import require_auth


events_bp = Blueprint("events", __name__, url_prefix="/api/events")


@events_bp.get("")
@require_auth
def list_events_route():
    """
    Query: after_id (default 0), entity_type, limit (max 500).

    Response includes last_id; pass it back as after_id on the next poll.
    """
    try:
        after_id = max(request.args.get("after_id", 0, type=int), 0)
        limit = min(max(request.args.get("limit", 200, type=int), 1), 500)
        events = event_service.list_change_events(
            g.org_id,
            after_id=after_id,
            entity_type=request.args.get("entity_type") or None,
            limit=limit,
        )
        return jsonify({
            "events": [e.to_dict() for e in events],
            "last_id": events[-1].id if events else after_id,
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list change events")
        return jsonify({"error": "Internal server error"}), 500
