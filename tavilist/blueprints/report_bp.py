"""
TaviList
Report Blueprint — PDF download.

    POST /api/v1/projects/<pid>/report/pdf
         Body (optional): {"stage_ids": [..], "logo_url": "..."}
         Returns: application/pdf attachment relatorio-<slug>.pdf
"""

import io
import logging

from flask import Blueprint, request, send_file

from tavilist.auth import require_auth, require_role
from tavilist.services import report_service
from tavilist.utils.errors import E, api_error

logger = logging.getLogger(__name__)

report_bp = Blueprint("report", __name__, url_prefix="/api/v1")


@report_bp.route("/projects/<int:pid>/report/pdf", methods=["POST"])
@require_auth
@require_role("admin")
def report_pdf(pid):
    data = request.get_json(silent=True) or {}
    stage_ids = data.get("stage_ids")
    if stage_ids is not None:
        if not isinstance(stage_ids, list):
            return api_error(E.VALIDATION_INVALID, "stage_ids must be a list")
        try:
            stage_ids = [int(s) for s in stage_ids]
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "stage_ids must contain integers")

    pdf, filename = report_service.generate_report(pid, stage_ids, data.get("logo_url"))
    return send_file(
        io.BytesIO(pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=filename,
    )
