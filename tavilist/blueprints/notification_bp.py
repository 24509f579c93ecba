"""
TaviList
Notification Blueprint — client-facing WhatsApp and email sends (admin only).

Endpoints:
    POST /api/v1/stages/<sid>/notify/signature-request   — {phone?}
    POST /api/v1/stages/<sid>/notify/summary             — {phone?}
    POST /api/v1/notifications/whatsapp                  — {phone, message}
    POST /api/v1/projects/<pid>/report/email             — Report to client_email
    POST /api/v1/projects/<pid>/signature/request        — Project link by email

Every WhatsApp route probes the channel first: a disconnected instance
answers 503 and nothing is sent. Provider failures answer 502 with the
provider payload under ``details``.
"""

import logging

from flask import Blueprint, jsonify, request

from tavilist.auth import require_auth, require_role
from tavilist.services import notification_service

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")


@notification_bp.route("/stages/<int:sid>/notify/signature-request", methods=["POST"])
@require_auth
@require_role("admin")
def notify_signature_request(sid):
    data = request.get_json(silent=True) or {}
    return jsonify(notification_service.send_signature_request(sid, data.get("phone")))


@notification_bp.route("/stages/<int:sid>/notify/summary", methods=["POST"])
@require_auth
@require_role("admin")
def notify_summary(sid):
    data = request.get_json(silent=True) or {}
    return jsonify(notification_service.send_stage_summary(sid, data.get("phone")))


@notification_bp.route("/notifications/whatsapp", methods=["POST"])
@require_auth
@require_role("admin")
def send_whatsapp():
    data = request.get_json(silent=True) or {}
    return jsonify(notification_service.send_whatsapp_message(data.get("phone"), data.get("message")))


@notification_bp.route("/projects/<int:pid>/report/email", methods=["POST"])
@require_auth
@require_role("admin")
def email_report(pid):
    return jsonify(notification_service.send_project_report(pid))


@notification_bp.route("/projects/<int:pid>/signature/request", methods=["POST"])
@require_auth
@require_role("admin")
def request_project_signature(pid):
    return jsonify(notification_service.send_project_signature_request(pid))
