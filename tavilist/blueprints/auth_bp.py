"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login       — Email + password → access token
  GET  /api/v1/auth/me          — Current profile with role
"""

from flask import Blueprint, jsonify, request

from tavilist.auth import current_actor, require_auth
from tavilist.services import profile_service

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with email + password, return an access token.

    Body: { "email": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required"}), 400

    result = profile_service.authenticate(email, password)
    if result is None:
        return jsonify({"error": "Invalid email or password"}), 401
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    profile_id, role = current_actor()
    if profile_id is None:
        # Auth disabled and no token: anonymous admin
        return jsonify({"profile": None, "role": role}), 200
    profile = profile_service.get_profile(profile_id)
    return jsonify({"profile": profile.to_dict(role=role), "role": role}), 200
