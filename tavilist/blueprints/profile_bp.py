"""
TaviList
Profile Blueprint — collaborators and role management.

    GET  /api/v1/profiles                   — Profiles merged with roles
    POST /api/v1/profiles/<id>/promote      — Make admin (admin)
    POST /api/v1/profiles/<id>/demote       — Make colaborador (admin)
"""

import logging

from flask import Blueprint, jsonify

from tavilist.auth import current_profile_id, require_auth, require_role
from tavilist.services import profile_service
from tavilist.utils.errors import E, api_error

logger = logging.getLogger(__name__)

profile_bp = Blueprint("profile", __name__, url_prefix="/api/v1/profiles")


@profile_bp.route("", methods=["GET"])
@require_auth
def list_profiles():
    return jsonify(profile_service.list_profiles_with_roles())


@profile_bp.route("/<int:profile_id>/promote", methods=["POST"])
@require_auth
@require_role("admin")
def promote(profile_id):
    return jsonify(profile_service.set_role(profile_id, "admin"))


@profile_bp.route("/<int:profile_id>/demote", methods=["POST"])
@require_auth
@require_role("admin")
def demote(profile_id):
    if profile_id == current_profile_id():
        return api_error(E.CONFLICT_STATE, "You cannot demote yourself")
    return jsonify(profile_service.set_role(profile_id, "colaborador"))
