"""
Local media serving for the filesystem storage backend.

    GET /media/<bucket>/<path>

Only active when STORAGE_URL is unset; with remote storage, URLs point
straight at the provider.
"""

from flask import Blueprint, abort, current_app, send_from_directory
from werkzeug.security import safe_join

media_bp = Blueprint("media", __name__)

_BUCKETS = frozenset({"signatures", "stage-attachments"})


@media_bp.route("/media/<bucket>/<path:path>", methods=["GET"])
def serve_media(bucket, path):
    if current_app.config.get("STORAGE_URL") or bucket not in _BUCKETS:
        abort(404)
    directory = safe_join(current_app.config["STORAGE_LOCAL_DIR"], bucket)
    if directory is None:
        abort(404)
    # Stored objects are immutable
    return send_from_directory(directory, path, max_age=current_app.config.get("MEDIA_CACHE_SECONDS", 86400))
