"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — process is up (load balancer probe)
    GET /api/v1/health/live   — database round-trip plus backend modes

``live`` answers 503 when the database is unreachable or the local media
directory cannot be written. Remote storage and the email provider are
reported, not probed: a paid call per health check is not worth it.
"""

import logging
import os
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from tavilist.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    t0 = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Health check — database failed: %s", exc)
        return {"status": "error", "detail": str(exc)[:200]}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}


def _check_storage() -> dict:
    cfg = current_app.config
    if cfg.get("STORAGE_URL"):
        return {"backend": "remote", "status": "ok"}
    media_dir = cfg["STORAGE_LOCAL_DIR"]
    try:
        os.makedirs(media_dir, exist_ok=True)
    except OSError as exc:
        logger.error("Health check — media dir unavailable: %s", exc)
        return {"backend": "local", "status": "error"}
    status = "ok" if os.access(media_dir, os.W_OK) else "error"
    return {"backend": "local", "status": status}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _check_database(),
        "storage": _check_storage(),
        "email": {"mode": "live" if current_app.config.get("RESEND_API_KEY") else "dev"},
    }
    healthy = checks["database"]["status"] == "ok" and checks["storage"]["status"] == "ok"
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
