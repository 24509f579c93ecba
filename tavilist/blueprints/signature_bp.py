"""
TaviList
Signature Blueprints — admin token issue and the public signing surface.

Admin (JWT):
    POST /api/v1/stages/<sid>/signature               — Issue/refresh stage token
    POST /api/v1/projects/<pid>/signature/release     — Unlock project signature

Public (no JWT, rate limited, token is the only credential):
    GET  /api/v1/public/signatures/<token>            — What is being confirmed
    POST /api/v1/public/signatures/<token>/sign       — {name, signature}
    GET  /api/v1/public/signatures/<token>/gallery    — Stage photos
    GET  /api/v1/public/projects/<token>              — Project confirmation
    POST /api/v1/public/projects/<token>/sign         — {name, signature}
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from tavilist.auth import require_auth, require_role
from tavilist.services import signature_service
from tavilist.utils.helpers import get_client_ip

logger = logging.getLogger(__name__)

signature_bp = Blueprint("signature", __name__, url_prefix="/api/v1")
public_bp = Blueprint("public", __name__, url_prefix="/api/v1/public")


def _links(token: str) -> dict:
    base = current_app.config["SITE_URL"].rstrip("/")
    return {"view_link": f"{base}/etapa/{token}", "sign_link": f"{base}/assinar/{token}"}


# ── Admin ────────────────────────────────────────────────────────────────────


@signature_bp.route("/stages/<int:sid>/signature", methods=["POST"])
@require_auth
@require_role("admin")
def request_signature(sid):
    sig = signature_service.request_signature(sid)
    return jsonify({"token": sig.token, **_links(sig.token), "signature": sig.to_dict()}), 200


@signature_bp.route("/projects/<int:pid>/signature/release", methods=["POST"])
@require_auth
@require_role("admin")
def release_project_signature(pid):
    project = signature_service.release_project_signature(pid)
    return jsonify(project.to_dict())


# ── Public ───────────────────────────────────────────────────────────────────


@public_bp.route("/signatures/<token>", methods=["GET"])
def resolve_signature(token):
    return jsonify(signature_service.resolve_by_token(token))


@public_bp.route("/signatures/<token>/gallery", methods=["GET"])
def signature_gallery(token):
    return jsonify(signature_service.gallery_by_token(token))


@public_bp.route("/signatures/<token>/sign", methods=["POST"])
def sign_stage(token):
    data = request.get_json(silent=True) or {}
    result = signature_service.record_signature(
        token, data.get("name"), data.get("signature"), get_client_ip(),
    )
    return jsonify(result), 200


@public_bp.route("/projects/<token>", methods=["GET"])
def resolve_project(token):
    return jsonify(signature_service.resolve_project_token(token))


@public_bp.route("/projects/<token>/sign", methods=["POST"])
def sign_project(token):
    data = request.get_json(silent=True) or {}
    result = signature_service.sign_project(
        token, data.get("name"), data.get("signature"), get_client_ip(),
    )
    return jsonify(result), 200
