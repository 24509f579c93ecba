"""
Stage attachment service.

Upload order is storage first, then the row. A failed upload raises
StorageError and no row is written; a failed commit after a successful
upload leaves an orphaned object.
"""

from __future__ import annotations

import logging
import secrets
import time

from flask import current_app

from tavilist.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from tavilist.integrations import storage_gateway as storage_module
from tavilist.models import db
from tavilist.models.stage import StageAttachment
from tavilist.services.stage_service import ensure_can_execute, get_stage

logger = logging.getLogger(__name__)

ATTACHMENT_BUCKET = "stage-attachments"


def _storage_path(stage_id: int, filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    # Extension only; the display name is kept on the row
    ext = "".join(ch for ch in ext if ch.isalnum())[:10]
    stem = f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"
    return f"{stage_id}/{stem}.{ext}" if ext else f"{stage_id}/{stem}"


def upload_attachment(
    stage_id: int,
    *,
    filename: str,
    content_type: str | None,
    data: bytes,
    uploaded_by: int | None = None,
    actor_role: str = "admin",
) -> StageAttachment:
    stage = get_stage(stage_id)
    ensure_can_execute(stage, uploaded_by, actor_role)
    filename = (filename or "").strip()
    if not filename:
        raise ValidationError("A file name is required", details={"file": "required"})
    if not data:
        raise ValidationError("The file is empty", details={"file": "empty"})

    max_bytes = current_app.config["ATTACHMENT_MAX_BYTES"]
    if len(data) > max_bytes:
        raise ValidationError(
            f"{filename} exceeds the {max_bytes // (1024 * 1024)}MB limit",
            details={"file": "too_large", "max_bytes": max_bytes},
        )

    content_type = content_type or "application/octet-stream"
    path = _storage_path(stage.id, filename)
    url = storage_module.storage_gateway.upload(ATTACHMENT_BUCKET, path, data, content_type)

    attachment = StageAttachment(
        stage_id=stage.id,
        name=filename[:255],
        content_type=content_type,
        size=len(data),
        url=url,
        storage_path=path,
        uploaded_by=uploaded_by,
    )
    db.session.add(attachment)
    db.session.commit()
    logger.info(
        "Attachment uploaded attachment_id=%s stage_id=%s bytes=%d",
        attachment.id, stage.id, attachment.size,
        extra={"stage_id": stage.id, "project_id": stage.project_id},
    )
    return attachment


def list_attachments(stage_id: int) -> list[dict]:
    stage = get_stage(stage_id)
    return [a.to_dict() for a in stage.attachments]


def delete_attachment(
    attachment_id: int,
    actor_id: int | None = None,
    actor_role: str = "admin",
) -> None:
    """Remove the row. Admins may delete any attachment, collaborators only
    their own uploads. The stored object is left in place."""
    attachment = db.session.get(StageAttachment, attachment_id)
    if attachment is None:
        raise NotFoundError(resource="Attachment", resource_id=attachment_id)
    if actor_role != "admin" and (actor_id is None or attachment.uploaded_by != actor_id):
        logger.warning(
            "Attachment delete refused attachment_id=%s profile_id=%s",
            attachment_id, actor_id,
        )
        raise PermissionDeniedError("Only the uploader or an admin may delete this attachment")
    stage_id = attachment.stage_id
    db.session.delete(attachment)
    db.session.commit()
    logger.info("Attachment deleted attachment_id=%s stage_id=%s", attachment_id, stage_id)
