"""
Client signature workflow — stage-level (canonical) and project-level.

Flow (stage):
    admin approves stage
      → request_signature(stage)       issues / refreshes a single-use token
      → resolve_by_token(token)        public: what the client is confirming
      → record_signature(token, ...)   public: one-shot write

Guarantees:
    - Input is validated (name allowlist, image type/size/decodability)
      before anything touches storage.
    - The signature write is a single conditional UPDATE
      ``WHERE token = ? AND signed_at IS NULL``; zero affected rows means
      someone else signed first → AlreadySignedError. There is no
      read-then-write window.
    - Public reads expose only the token's own stage/project.

Tokens are uuid4 strings and never expire.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import re
import time
import uuid
from datetime import datetime, timezone

from flask import current_app
from PIL import Image, UnidentifiedImageError
from sqlalchemy import update

from tavilist.core.exceptions import (
    AlreadySignedError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from tavilist.integrations import storage_gateway as storage_module
from tavilist.models import db
from tavilist.models.project import Project
from tavilist.models.signature import StageSignature
from tavilist.models.stage import Stage
from tavilist.services.stage_service import get_stage

logger = logging.getLogger(__name__)

SIGNATURE_BUCKET = "signatures"

# Letters (incl. Latin-1 accented), spaces, hyphen, period, apostrophe
SIGNER_NAME_RE = re.compile(r"^[A-Za-zÀ-ÿ \-.']{2,100}$")

_DATA_URL_RE = re.compile(r"^data:image/(png|jpeg|webp);base64,(.+)$", re.DOTALL)

# MIME subtype → (Pillow format, file extension)
_IMAGE_TYPES = {
    "png": ("PNG", "png"),
    "jpeg": ("JPEG", "jpg"),
    "webp": ("WEBP", "webp"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Validation ───────────────────────────────────────────────────────────────


def validate_signer_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not SIGNER_NAME_RE.match(cleaned):
        raise ValidationError(
            "Name must be 2-100 characters: letters, spaces, hyphens, periods or apostrophes",
            details={"name": "invalid"},
        )
    return cleaned


def decode_signature_image(data_url: str | None) -> tuple[bytes, str, str]:
    """Decode a signature data URL.

    Returns ``(raw_bytes, content_type, extension)``.

    Raises:
        ValidationError: wrong scheme/type, bad base64, too large, or bytes
            that are not an image of the declared type.
    """
    match = _DATA_URL_RE.match((data_url or "").strip())
    if not match:
        raise ValidationError(
            "Signature must be a PNG, JPEG or WEBP data URL",
            details={"signature": "invalid_format"},
        )
    subtype, payload = match.group(1), re.sub(r"\s+", "", match.group(2))

    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Signature image is not valid base64", details={"signature": "invalid_base64"})

    max_bytes = current_app.config["SIGNATURE_MAX_BYTES"]
    if not raw:
        raise ValidationError("Signature image is empty", details={"signature": "empty"})
    if len(raw) > max_bytes:
        raise ValidationError(
            f"Signature image exceeds {max_bytes // 1024} KB",
            details={"signature": "too_large", "max_bytes": max_bytes},
        )

    expected_format, ext = _IMAGE_TYPES[subtype]
    try:
        with Image.open(io.BytesIO(raw)) as img:
            actual_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationError("Signature image could not be decoded", details={"signature": "corrupt"})
    if actual_format != expected_format:
        raise ValidationError(
            f"Signature declared as image/{subtype} but contains {actual_format}",
            details={"signature": "type_mismatch"},
        )

    return raw, f"image/{subtype}", ext


def _validate_signing_input(name, image_data_url) -> tuple[str, bytes, str, str]:
    missing = [f for f, v in (("name", name), ("signature", image_data_url)) if not v]
    if missing:
        raise ValidationError(
            "Missing required fields",
            details={f: "required" for f in missing},
        )
    clean_name = validate_signer_name(name)
    raw, content_type, ext = decode_signature_image(image_data_url)
    return clean_name, raw, content_type, ext


# ── Stage-level ──────────────────────────────────────────────────────────────


def _get_by_token(token: str) -> StageSignature:
    sig = db.session.execute(
        db.select(StageSignature).where(StageSignature.token == token)
    ).scalar_one_or_none()
    if sig is None:
        raise NotFoundError(resource="Signature")
    return sig


def ensure_signature_requestable(stage_id: int) -> Stage:
    """Raise unless a signature may be requested for the stage. No writes."""
    stage = get_stage(stage_id)
    if stage.status != "approved":
        raise InvalidTransitionError(
            "stage", stage.status, "signature_requested",
            message=f"Signature can only be requested for approved stages (current: {stage.status})",
        )
    if stage.signature is not None and stage.signature.is_signed:
        raise AlreadySignedError("This stage has already been signed")
    return stage


def request_signature(stage_id: int) -> StageSignature:
    """Issue a token for an approved stage, or refresh ``link_sent_at``."""
    stage = ensure_signature_requestable(stage_id)
    sig = stage.signature

    now = _utcnow()
    if sig is None:
        sig = StageSignature(stage_id=stage.id, token=str(uuid.uuid4()), link_sent_at=now)
        db.session.add(sig)
        action = "issued"
    else:
        sig.link_sent_at = now
        action = "refreshed"
    db.session.commit()
    logger.info(
        "Signature token %s stage_id=%s", action, stage.id,
        extra={"stage_id": stage.id, "project_id": stage.project_id, "event_type": "signature_requested"},
    )
    return sig


def resolve_by_token(token: str) -> dict:
    """Public summary for the signing page. Nothing beyond the token's stage."""
    sig = _get_by_token(token)
    stage = sig.stage
    project = stage.project
    return {
        "signature": {
            "id": sig.id,
            "signed": sig.is_signed,
            "signer_name": sig.signer_name,
            "signed_at": sig.signed_at.isoformat() if sig.signed_at else None,
        },
        "stage": {
            "id": stage.id,
            "title": stage.title,
            "description": stage.description,
            "ordinal": stage.ordinal,
        },
        "project": {
            "name": project.name,
            "client_name": project.client_name,
        },
        "attachments": [
            {"id": a.id, "name": a.name, "url": a.url, "content_type": a.content_type}
            for a in stage.attachments
        ],
    }


def gallery_by_token(token: str) -> dict:
    """Image-only view of the token's stage for the client preview page."""
    sig = _get_by_token(token)
    stage = sig.stage
    return {
        "stage": {"title": stage.title, "ordinal": stage.ordinal, "description": stage.description},
        "project": {"name": stage.project.name},
        "images": [
            {"id": a.id, "name": a.name, "url": a.url}
            for a in stage.attachments if a.is_image
        ],
    }


def record_signature(token: str, signer_name: str, image_data_url: str, client_ip: str) -> dict:
    """One-shot signature write for a stage token."""
    clean_name, raw, content_type, ext = _validate_signing_input(signer_name, image_data_url)

    sig = _get_by_token(token)
    if sig.is_signed:
        raise AlreadySignedError()

    path = f"stage-{token}-{int(time.time() * 1000)}.{ext}"
    image_url = storage_module.storage_gateway.upload(SIGNATURE_BUCKET, path, raw, content_type)

    signed_at = _utcnow()
    result = db.session.execute(
        update(StageSignature)
        .where(StageSignature.token == token, StageSignature.signed_at.is_(None))
        .values(
            signer_name=clean_name,
            signed_at=signed_at,
            signer_ip=client_ip,
            signature_image_url=image_url,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        logger.warning("Concurrent signature lost the race token_prefix=%s", token[:8])
        raise AlreadySignedError()
    db.session.commit()

    logger.info(
        "Stage signed stage_id=%s", sig.stage_id,
        extra={"stage_id": sig.stage_id, "event_type": "stage_signed"},
    )
    return {
        "success": True,
        "signer_name": clean_name,
        "signed_at": signed_at.isoformat(),
    }


# ── Project-level ────────────────────────────────────────────────────────────


def _get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def _get_project_by_token(token: str) -> Project:
    project = db.session.execute(
        db.select(Project).where(Project.signature_token == token)
    ).scalar_one_or_none()
    if project is None:
        raise NotFoundError(resource="Signature")
    return project


def release_project_signature(project_id: int) -> Project:
    """Admin unlock step required before a project signature can be requested."""
    project = _get_project(project_id)
    project.signature_unlocked = True
    db.session.commit()
    logger.info("Project signature released project_id=%s", project.id, extra={"project_id": project.id})
    return project


def request_project_signature(project_id: int) -> tuple[Project, str]:
    """Issue a fresh project token. Previous unsigned links stop working."""
    project = _get_project(project_id)
    if project.is_signed:
        raise AlreadySignedError("This project has already been signed")
    if project.status != "completed":
        raise InvalidTransitionError(
            "project", project.status, "signature_requested",
            message="Project signature requires a completed project",
        )
    if not project.signature_unlocked:
        raise InvalidTransitionError(
            "project", project.status, "signature_requested",
            message="Project signature has not been released by an admin",
        )

    token = str(uuid.uuid4())
    project.signature_token = token
    db.session.commit()
    logger.info("Project signature token issued project_id=%s", project.id, extra={"project_id": project.id})
    return project, token


def resolve_project_token(token: str) -> dict:
    project = _get_project_by_token(token)
    return {
        "project": {
            "name": project.name,
            "client_name": project.client_name,
            "status": project.status,
        },
        "signed": project.is_signed,
        "signature_name": project.signature_name,
        "signed_at": project.signed_at.isoformat() if project.signed_at else None,
    }


def sign_project(token: str, signer_name: str, image_data_url: str, client_ip: str) -> dict:
    clean_name, raw, content_type, ext = _validate_signing_input(signer_name, image_data_url)

    project = _get_project_by_token(token)
    if project.is_signed:
        raise AlreadySignedError()

    path = f"project-{token}-{int(time.time() * 1000)}.{ext}"
    image_url = storage_module.storage_gateway.upload(SIGNATURE_BUCKET, path, raw, content_type)

    signed_at = _utcnow()
    result = db.session.execute(
        update(Project)
        .where(Project.signature_token == token, Project.signed_at.is_(None))
        .values(
            signature_name=clean_name,
            signed_at=signed_at,
            signature_ip=client_ip,
            signature_image_url=image_url,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise AlreadySignedError()
    db.session.commit()

    logger.info("Project signed project_id=%s", project.id, extra={"project_id": project.id, "event_type": "project_signed"})
    return {
        "success": True,
        "signer_name": clean_name,
        "signed_at": signed_at.isoformat(),
    }
