"""
TaviList
Stage Blueprint — lifecycle, responsibles, checklist, clipboard, attachments.

Endpoints:
    GET    /api/v1/stages/<sid>                    — Detail
    PUT    /api/v1/stages/<sid>                    — Edit (admin, may force status)
    DELETE /api/v1/stages/<sid>                    — Delete (admin)

    POST   /api/v1/stages/<sid>/start              — pending → in_progress
    POST   /api/v1/stages/<sid>/submit             — in_progress|rejected → submitted
    POST   /api/v1/stages/<sid>/approve            — submitted → approved (admin)
    POST   /api/v1/stages/<sid>/reject             — submitted → rejected (admin)

    PUT    /api/v1/stages/<sid>/responsibles       — Replace assignees (admin)
    PUT    /api/v1/stages/<sid>/items              — Replace checklist (admin)
    POST   /api/v1/items/<iid>/toggle              — Flip done

    GET    /api/v1/stages/<sid>/copy               — Clipboard snapshot

    GET    /api/v1/stages/<sid>/attachments        — List
    POST   /api/v1/stages/<sid>/attachments        — Upload (multipart "file")
    DELETE /api/v1/attachments/<aid>               — Delete (uploader or admin)

    GET    /api/v1/stages/pending                  — Approval queue (admin)
    GET    /api/v1/me/stages                       — Caller's stages

Layer contract:
    - Parse input, call stage_service / attachment_service, serialise.
    - Guards (transitions, collaborator permission) live in the service;
      errors map to HTTP through the app-level handlers.
"""

import logging

from flask import Blueprint, jsonify, request

from tavilist.auth import current_actor, current_profile_id, require_auth, require_role
from tavilist.services import attachment_service, stage_service
from tavilist.utils.errors import E, api_error

logger = logging.getLogger(__name__)

stage_bp = Blueprint("stage", __name__, url_prefix="/api/v1")


def _stage_response(stage, status=200):
    return jsonify(stage_service.stage_to_dict(stage)), status


# ── CRUD ─────────────────────────────────────────────────────────────────────


@stage_bp.route("/stages/<int:sid>", methods=["GET"])
@require_auth
def get_stage(sid):
    return _stage_response(stage_service.get_stage(sid))


@stage_bp.route("/stages/<int:sid>", methods=["PUT"])
@require_auth
@require_role("admin")
def edit_stage(sid):
    data = request.get_json(silent=True) or {}
    return _stage_response(stage_service.edit_stage(sid, data))


@stage_bp.route("/stages/<int:sid>", methods=["DELETE"])
@require_auth
@require_role("admin")
def delete_stage(sid):
    stage_service.delete_stage(sid)
    return jsonify({"message": "Stage deleted"}), 200


# ── Lifecycle ────────────────────────────────────────────────────────────────


@stage_bp.route("/stages/<int:sid>/start", methods=["POST"])
@require_auth
def start_stage(sid):
    actor_id, role = current_actor()
    return _stage_response(stage_service.start_stage(sid, actor_id=actor_id, actor_role=role))


@stage_bp.route("/stages/<int:sid>/submit", methods=["POST"])
@require_auth
def submit_stage(sid):
    data = request.get_json(silent=True) or {}
    actor_id, role = current_actor()
    stage = stage_service.submit_stage(sid, data.get("notes"), actor_id=actor_id, actor_role=role)
    return _stage_response(stage)


@stage_bp.route("/stages/<int:sid>/approve", methods=["POST"])
@require_auth
@require_role("admin")
def approve_stage(sid):
    return _stage_response(stage_service.approve_stage(sid))


@stage_bp.route("/stages/<int:sid>/reject", methods=["POST"])
@require_auth
@require_role("admin")
def reject_stage(sid):
    data = request.get_json(silent=True) or {}
    return _stage_response(stage_service.reject_stage(sid, data.get("reason")))


# ── Responsibles & checklist ─────────────────────────────────────────────────


@stage_bp.route("/stages/<int:sid>/responsibles", methods=["PUT"])
@require_auth
@require_role("admin")
def set_responsibles(sid):
    data = request.get_json(silent=True) or {}
    ids = stage_service.set_responsibles(sid, data.get("profile_ids"))
    return jsonify({"stage_id": sid, "profile_ids": ids})


@stage_bp.route("/stages/<int:sid>/items", methods=["PUT"])
@require_auth
@require_role("admin")
def replace_items(sid):
    data = request.get_json(silent=True) or {}
    items = stage_service.replace_items(sid, data.get("items"))
    return jsonify({"stage_id": sid, "items": [i.to_dict() for i in items]})


@stage_bp.route("/items/<int:iid>/toggle", methods=["POST"])
@require_auth
def toggle_item(iid):
    return jsonify(stage_service.toggle_item(iid).to_dict())


# ── Clipboard ────────────────────────────────────────────────────────────────


@stage_bp.route("/stages/<int:sid>/copy", methods=["GET"])
@require_auth
@require_role("admin")
def copy_stage(sid):
    return jsonify(stage_service.copy_stage(sid))


# ── Attachments ──────────────────────────────────────────────────────────────


@stage_bp.route("/stages/<int:sid>/attachments", methods=["GET"])
@require_auth
def list_attachments(sid):
    return jsonify(attachment_service.list_attachments(sid))


@stage_bp.route("/stages/<int:sid>/attachments", methods=["POST"])
@require_auth
def upload_attachment(sid):
    upload = request.files.get("file")
    if upload is None:
        return api_error(E.VALIDATION_REQUIRED, "Multipart field 'file' is required")
    actor_id, role = current_actor()
    attachment = attachment_service.upload_attachment(
        sid,
        filename=upload.filename,
        content_type=upload.mimetype,
        data=upload.read(),
        uploaded_by=actor_id,
        actor_role=role,
    )
    return jsonify(attachment.to_dict()), 201


@stage_bp.route("/attachments/<int:aid>", methods=["DELETE"])
@require_auth
def delete_attachment(aid):
    actor_id, role = current_actor()
    attachment_service.delete_attachment(aid, actor_id=actor_id, actor_role=role)
    return jsonify({"message": "Attachment deleted"}), 200


# ── Queues ───────────────────────────────────────────────────────────────────


@stage_bp.route("/stages/pending", methods=["GET"])
@require_auth
@require_role("admin")
def pending_approval():
    return jsonify(stage_service.list_pending_approval())


@stage_bp.route("/me/stages", methods=["GET"])
@require_auth
def my_stages():
    profile_id = current_profile_id()
    if profile_id is None:
        return jsonify([])
    return jsonify(stage_service.list_for_profile(profile_id))
