"""
TaviList
Settings Blueprint — WhatsApp channel configuration (admin only).

    GET  /api/v1/settings/whatsapp        — Current config (never the key)
    PUT  /api/v1/settings/whatsapp        — {api_url, instance_name, api_key?}
    POST /api/v1/settings/whatsapp/test   — Probe and persist connectivity
"""

import logging

from flask import Blueprint, jsonify, request

from tavilist.auth import require_auth, require_role
from tavilist.services import notification_service

logger = logging.getLogger(__name__)

settings_bp = Blueprint("settings", __name__, url_prefix="/api/v1/settings")


@settings_bp.route("/whatsapp", methods=["GET"])
@require_auth
@require_role("admin")
def get_whatsapp():
    return jsonify({"config": notification_service.get_whatsapp_config()})


@settings_bp.route("/whatsapp", methods=["PUT"])
@require_auth
@require_role("admin")
def save_whatsapp():
    data = request.get_json(silent=True) or {}
    return jsonify({"config": notification_service.save_whatsapp_config(data)})


@settings_bp.route("/whatsapp/test", methods=["POST"])
@require_auth
@require_role("admin")
def check_whatsapp():
    return jsonify(notification_service.check_connection())
