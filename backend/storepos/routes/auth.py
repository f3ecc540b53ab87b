# Overview: Flask API route for operator login; returns the operator identity used on sales.

from flask import Blueprint, request, jsonify, current_app

from ..services import auth_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Check operator credentials.

    Returns the user (id, username, role, full_name) on success. There is no
    session; callers keep the identity and send it as operatorId/operatorName.
    """
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    password = data.get("password")

    if not all([username, password]):
        return jsonify({"error": "username and password required"}), 400

    try:
        user = auth_service.authenticate(username, password)
    except Exception:
        current_app.logger.exception("Login failed")
        return jsonify({"error": "Internal server error"}), 500

    if not user:
        return jsonify({"error": "Invalid credentials"}), 401

    return jsonify({
        "status": "success",
        "user": {
            "id": user.id,
            "username": user.username,
            "role": user.role,
            "full_name": user.full_name,
        },
    }), 200
