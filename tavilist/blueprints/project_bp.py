"""
TaviList
Project Blueprint — project CRUD, stage creation and clipboard paste.

Endpoints:
    GET    /api/v1/projects                        — List (status, q, limit, offset)
    GET    /api/v1/projects/stats                  — Counts by status
    POST   /api/v1/projects                        — Create (admin)
    GET    /api/v1/projects/<pid>                  — Detail (+ stages, progress)
    PUT    /api/v1/projects/<pid>                  — Update (admin)
    DELETE /api/v1/projects/<pid>                  — Delete (admin)
    GET    /api/v1/projects/<pid>/progress         — Approved / total

    GET    /api/v1/projects/<pid>/stages           — Ordered stages
    POST   /api/v1/projects/<pid>/stages           — Create stage (admin)
    POST   /api/v1/projects/<pid>/stages/paste     — Create from clipboard (admin)
"""

import logging

from flask import Blueprint, jsonify, request

from tavilist.auth import current_profile_id, require_auth, require_role
from tavilist.blueprints import paginate_query
from tavilist.services import project_service, stage_service

logger = logging.getLogger(__name__)

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")


# ── Projects ─────────────────────────────────────────────────────────────────


@project_bp.route("/projects", methods=["GET"])
@require_auth
def list_projects():
    query = project_service.list_projects_query(
        status=request.args.get("status"),
        search=request.args.get("q"),
    )
    return jsonify(paginate_query(query))


@project_bp.route("/projects/stats", methods=["GET"])
@require_auth
def project_stats():
    return jsonify(project_service.project_stats())


@project_bp.route("/projects", methods=["POST"])
@require_auth
@require_role("admin")
def create_project():
    data = request.get_json(silent=True) or {}
    project = project_service.create_project(data, created_by=current_profile_id())
    return jsonify(project.to_dict()), 201


@project_bp.route("/projects/<int:pid>", methods=["GET"])
@require_auth
def get_project(pid):
    project = project_service.get_project(pid)
    data = project.to_dict()
    data["stages"] = stage_service.list_stages(pid)
    data["progress"] = project_service.project_progress(pid)
    return jsonify(data)


@project_bp.route("/projects/<int:pid>", methods=["PUT"])
@require_auth
@require_role("admin")
def update_project(pid):
    data = request.get_json(silent=True) or {}
    project = project_service.update_project(pid, data)
    return jsonify(project.to_dict())


@project_bp.route("/projects/<int:pid>", methods=["DELETE"])
@require_auth
@require_role("admin")
def delete_project(pid):
    project_service.delete_project(pid)
    return jsonify({"message": "Project deleted"}), 200


@project_bp.route("/projects/<int:pid>/progress", methods=["GET"])
@require_auth
def project_progress(pid):
    project_service.get_project(pid)
    return jsonify(project_service.project_progress(pid))


# ── Stages under a project ───────────────────────────────────────────────────


@project_bp.route("/projects/<int:pid>/stages", methods=["GET"])
@require_auth
def list_stages(pid):
    return jsonify(stage_service.list_stages(pid))


@project_bp.route("/projects/<int:pid>/stages", methods=["POST"])
@require_auth
@require_role("admin")
def create_stage(pid):
    data = request.get_json(silent=True) or {}
    stage = stage_service.create_stage(pid, data)
    return jsonify(stage_service.stage_to_dict(stage)), 201


@project_bp.route("/projects/<int:pid>/stages/paste", methods=["POST"])
@require_auth
@require_role("admin")
def paste_stage(pid):
    snapshot = request.get_json(silent=True)
    stage = stage_service.paste_stage(pid, snapshot)
    return jsonify(stage_service.stage_to_dict(stage)), 201
