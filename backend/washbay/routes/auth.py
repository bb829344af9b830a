# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST /api/auth/login   -> bearer token for the Authorization header
- POST /api/auth/logout  -> revokes the presented token
- GET  /api/auth/me      -> current user and tenant
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.

    Body: {"username": ..., "password": ..., "org_id": optional}
    username may also be the account email.
    """
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return jsonify({"error": "username/email and password required"}), 400

        org_id = data.get("org_id")
        if org_id is not None:
            try:
                org_id = int(org_id)
            except (TypeError, ValueError):
                return jsonify({"error": "org_id must be an integer"}), 400

        user = auth_service.authenticate(username, password, org_id=org_id)
        if not user:
            return jsonify({"error": "Invalid credentials"}), 401

        session, token = session_service.create_session(user.id)

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "org_id": session.org_id,
            "expires_at": session.expires_at.isoformat() + "Z",
            "message": "Login successful"
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    try:
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authorization header required"}), 401

        token = auth_header.split(" ", 1)[1]

        if not session_service.revoke_session(token, reason="User logout"):
            return jsonify({"error": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({
        "user": g.current_user.to_dict(),
        "org_id": g.org_id,
    }), 200
