"""
Stage lifecycle service.

Owns every write to a stage's status. All transitions go through
``_apply_transition`` which checks STAGE_TRANSITIONS; the only bypass is an
admin edit with an explicit status, which is logged at WARNING.

Ordinals are 1 + max(existing) per project and are never compacted, so a
deleted stage leaves a gap.

Responsible parties:
    The stage_responsibles junction is authoritative. The legacy
    stages.responsible_id column is read only as a fallback when the
    junction is empty, and is never written here.
"""

from __future__ import annotations

import logging

from sqlalchemy import func

from tavilist.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from tavilist.models import db
from tavilist.models.profile import Profile
from tavilist.models.project import Project
from tavilist.models.stage import (
    STAGE_STATUSES,
    Stage,
    StageItem,
    StageResponsible,
    validate_stage_transition,
)
from tavilist.utils.helpers import parse_date

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_stage(stage_id: int) -> Stage:
    stage = db.session.get(Stage, stage_id)
    if stage is None:
        raise NotFoundError(resource="Stage", resource_id=stage_id)
    return stage


def _get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def next_ordinal(project_id: int) -> int:
    """1 + highest ordinal in the project, 1 for the first stage."""
    current = db.session.execute(
        db.select(func.max(Stage.ordinal)).where(Stage.project_id == project_id)
    ).scalar()
    return (current or 0) + 1


def merged_responsibles(stage: Stage) -> list[Profile]:
    """Junction rows when present, else the legacy single assignee."""
    if stage.responsibles:
        return [r.profile for r in stage.responsibles if r.profile is not None]
    if stage.legacy_responsible is not None:
        return [stage.legacy_responsible]
    return []


def merged_responsible_ids(stage: Stage) -> list[int]:
    return [p.id for p in merged_responsibles(stage)]


# ── Serialisation ────────────────────────────────────────────────────────────


def stage_to_dict(stage: Stage, *, include_items: bool = True) -> dict:
    data = stage.to_dict()
    data["responsibles"] = [
        {"id": p.id, "full_name": p.full_name} for p in merged_responsibles(stage)
    ]
    if include_items:
        data["items"] = [i.to_dict() for i in stage.items]
    sig = stage.signature
    data["signature"] = None if sig is None else {
        "signed": sig.is_signed,
        "signer_name": sig.signer_name,
        "signed_at": sig.signed_at.isoformat() if sig.signed_at else None,
        "link_sent_at": sig.link_sent_at.isoformat() if sig.link_sent_at else None,
    }
    return data


def list_stages(project_id: int) -> list[dict]:
    _get_project(project_id)
    stages = db.session.execute(
        db.select(Stage).where(Stage.project_id == project_id).order_by(Stage.ordinal)
    ).scalars().all()
    return [stage_to_dict(s) for s in stages]


# ── Internal writers (no commit) ─────────────────────────────────────────────


def _clean_responsible_ids(raw_ids) -> list[int]:
    if raw_ids is None:
        return []
    if not isinstance(raw_ids, (list, tuple)):
        raise ValidationError("responsible_ids must be a list", details={"responsible_ids": "invalid"})
    try:
        ids = list(dict.fromkeys(int(i) for i in raw_ids))
    except (TypeError, ValueError):
        raise ValidationError("responsible_ids must be integers", details={"responsible_ids": "invalid"})
    if ids:
        found = set(db.session.execute(
            db.select(Profile.id).where(Profile.id.in_(ids))
        ).scalars().all())
        missing = [i for i in ids if i not in found]
        if missing:
            raise ValidationError(
                "Unknown responsible profile(s)",
                details={"responsible_ids": f"not found: {missing}"},
            )
    return ids


def _clean_items(raw_items) -> list[dict]:
    if raw_items is None:
        return []
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list", details={"items": "invalid"})
    cleaned = []
    for idx, item in enumerate(raw_items):
        if not isinstance(item, dict):
            raise ValidationError("each item must be an object", details={f"items[{idx}]": "invalid"})
        description = (item.get("description") or "").strip()
        # Blank lines from the editor are dropped, not rejected
        if not description:
            continue
        cleaned.append({
            "description": description,
            "product_line": (item.get("product_line") or "").strip() or None,
            "done": bool(item.get("done", False)),
        })
    return cleaned


def _write_responsibles(stage: Stage, ids: list[int]) -> None:
    # Deletes must hit the DB before the re-inserts (uq_stage_responsible)
    stage.responsibles.clear()
    db.session.flush()
    stage.responsibles.extend(StageResponsible(profile_id=pid) for pid in ids)


def _write_items(stage: Stage, items: list[dict]) -> None:
    stage.items.clear()
    db.session.flush()
    stage.items.extend(
        StageItem(ordinal=idx + 1, **item) for idx, item in enumerate(items)
    )


def _apply_transition(stage: Stage, target: str) -> str:
    """Single chokepoint for status changes. Returns the previous status."""
    old = stage.status
    if not validate_stage_transition(old, target):
        logger.warning(
            "Rejected stage transition stage_id=%s %s → %s",
            stage.id, old, target,
            extra={"stage_id": stage.id, "project_id": stage.project_id},
        )
        raise InvalidTransitionError("stage", old, target)
    stage.status = target
    return old


def ensure_can_execute(stage: Stage, actor_id: int | None, actor_role: str) -> None:
    """Collaborators may only act on stages assigned to them (or unassigned ones)."""
    if actor_role == "admin":
        return
    assigned = merged_responsible_ids(stage)
    if assigned and actor_id not in assigned:
        logger.warning(
            "Collaborator not assigned to stage stage_id=%s profile_id=%s",
            stage.id, actor_id,
        )
        raise PermissionDeniedError("You are not responsible for this stage")


def _log_transition(stage: Stage, old: str) -> None:
    logger.info(
        "Stage transitioned stage_id=%s %s → %s",
        stage.id, old, stage.status,
        extra={"stage_id": stage.id, "project_id": stage.project_id, "event_type": "stage_transition"},
    )


# ── Public operations ────────────────────────────────────────────────────────


def create_stage(project_id: int, data: dict) -> Stage:
    """Create a pending stage at the end of the project's ordering."""
    _get_project(project_id)

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    raw_due = data.get("due_date")
    due_date = parse_date(raw_due)
    if raw_due and due_date is None:
        raise ValidationError("Invalid due_date", details={"due_date": "invalid date"})

    responsible_ids = _clean_responsible_ids(data.get("responsible_ids"))
    items = _clean_items(data.get("items"))

    stage = Stage(
        project_id=project_id,
        title=title,
        description=(data.get("description") or "").strip() or None,
        notes=(data.get("notes") or "").strip() or None,
        due_date=due_date,
        ordinal=next_ordinal(project_id),
        status="pending",
    )
    db.session.add(stage)
    db.session.flush()
    if responsible_ids:
        _write_responsibles(stage, responsible_ids)
    if items:
        _write_items(stage, items)
    db.session.commit()
    logger.info(
        "Stage created stage_id=%s project_id=%s ordinal=%s",
        stage.id, project_id, stage.ordinal,
        extra={"stage_id": stage.id, "project_id": project_id},
    )
    return stage


def start_stage(stage_id: int, actor_id: int | None = None, actor_role: str = "admin") -> Stage:
    stage = get_stage(stage_id)
    ensure_can_execute(stage, actor_id, actor_role)
    old = _apply_transition(stage, "in_progress")
    db.session.commit()
    _log_transition(stage, old)
    return stage


def submit_stage(stage_id: int, notes: str | None = None,
                 actor_id: int | None = None, actor_role: str = "admin") -> Stage:
    """Hand the stage to admin review. No notification is sent."""
    stage = get_stage(stage_id)
    ensure_can_execute(stage, actor_id, actor_role)
    old = _apply_transition(stage, "submitted")
    cleaned = (notes or "").strip() or None
    stage.notes = cleaned
    stage.submission_notes = cleaned
    db.session.commit()
    _log_transition(stage, old)
    return stage


def approve_stage(stage_id: int) -> Stage:
    stage = get_stage(stage_id)
    old = _apply_transition(stage, "approved")
    db.session.commit()
    _log_transition(stage, old)
    return stage


def reject_stage(stage_id: int, reason: str) -> Stage:
    """Send back for rework. The reason replaces ``notes``."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A rejection reason is required", details={"reason": "required"})
    stage = get_stage(stage_id)
    old = _apply_transition(stage, "rejected")
    stage.notes = reason
    db.session.commit()
    _log_transition(stage, old)
    return stage


def edit_stage(stage_id: int, data: dict) -> Stage:
    """Admin edit. ``status`` here is a forced override of the state machine."""
    stage = get_stage(stage_id)
    errors: dict[str, str] = {}
    changes: dict = {}

    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            errors["title"] = "required"
        else:
            changes["title"] = title
    if "description" in data:
        changes["description"] = (data.get("description") or "").strip() or None
    if "notes" in data:
        changes["notes"] = (data.get("notes") or "").strip() or None
    if "due_date" in data:
        raw = data.get("due_date")
        parsed = parse_date(raw)
        if raw and parsed is None:
            errors["due_date"] = "invalid date"
        changes["due_date"] = parsed

    new_status = data.get("status")
    if new_status is not None and new_status not in STAGE_STATUSES:
        errors["status"] = f"must be one of: {', '.join(sorted(STAGE_STATUSES))}"

    if errors:
        raise ValidationError("Invalid stage data", details=errors)

    for field, value in changes.items():
        setattr(stage, field, value)

    if "responsible_ids" in data:
        _write_responsibles(stage, _clean_responsible_ids(data.get("responsible_ids")))

    if new_status is not None and new_status != stage.status:
        old = stage.status
        if not validate_stage_transition(old, new_status):
            logger.warning(
                "Forced stage status override stage_id=%s %s → %s",
                stage.id, old, new_status,
                extra={"stage_id": stage.id, "project_id": stage.project_id, "event_type": "status_override"},
            )
        stage.status = new_status

    db.session.commit()
    return stage


def delete_stage(stage_id: int) -> None:
    """Hard delete; siblings keep their ordinals."""
    stage = get_stage(stage_id)
    project_id = stage.project_id
    db.session.delete(stage)
    db.session.commit()
    logger.info(
        "Stage deleted stage_id=%s project_id=%s", stage_id, project_id,
        extra={"stage_id": stage_id, "project_id": project_id},
    )


def set_responsibles(stage_id: int, profile_ids) -> list[int]:
    """Full replace of the junction set. Idempotent for the same ids."""
    stage = get_stage(stage_id)
    ids = _clean_responsible_ids(profile_ids)
    _write_responsibles(stage, ids)
    db.session.commit()
    logger.info("Stage responsibles replaced stage_id=%s count=%d", stage.id, len(ids))
    return ids


def replace_items(stage_id: int, items) -> list[StageItem]:
    """Delete-then-insert the checklist inside one transaction."""
    stage = get_stage(stage_id)
    cleaned = _clean_items(items)
    _write_items(stage, cleaned)
    db.session.commit()
    return list(stage.items)


def toggle_item(item_id: int) -> StageItem:
    item = db.session.get(StageItem, item_id)
    if item is None:
        raise NotFoundError(resource="StageItem", resource_id=item_id)
    item.done = not item.done
    db.session.commit()
    return item


# ── Clipboard ────────────────────────────────────────────────────────────────


def copy_stage(stage_id: int) -> dict:
    """Snapshot the reusable parts of a stage (no status, no evidence)."""
    stage = get_stage(stage_id)
    return {
        "title": stage.title,
        "description": stage.description,
        "due_date": stage.due_date.isoformat() if stage.due_date else None,
        "notes": stage.notes,
        "items": [
            {"description": i.description, "product_line": i.product_line}
            for i in stage.items
        ],
        "responsible_ids": merged_responsible_ids(stage),
    }


def paste_stage(project_id: int, snapshot: dict) -> Stage:
    """Create a new pending stage in any project from a copy_stage snapshot."""
    if not isinstance(snapshot, dict):
        raise ValidationError("Clipboard payload must be an object")
    items = [
        {"description": i.get("description"), "product_line": i.get("product_line")}
        for i in (snapshot.get("items") or []) if isinstance(i, dict)
    ]
    return create_stage(project_id, {**snapshot, "items": items})


# ── Queues ───────────────────────────────────────────────────────────────────


def list_pending_approval() -> dict:
    """Submitted stages across all projects, oldest first, for the approvals page."""
    stages = db.session.execute(
        db.select(Stage).where(Stage.status == "submitted").order_by(Stage.updated_at)
    ).scalars().all()
    items = []
    for s in stages:
        data = stage_to_dict(s, include_items=False)
        data["project_name"] = s.project.name
        items.append(data)
    return {"items": items, "count": len(items)}


def list_for_profile(profile_id: int) -> list[dict]:
    """Stages the profile is responsible for, through the merged view."""
    junction_ids = db.session.execute(
        db.select(StageResponsible.stage_id).where(StageResponsible.profile_id == profile_id)
    ).scalars().all()
    candidates = db.session.execute(
        db.select(Stage)
        .where((Stage.id.in_(junction_ids)) | (Stage.responsible_id == profile_id))
        .order_by(Stage.project_id, Stage.ordinal)
    ).scalars().all()

    result = []
    for s in candidates:
        if profile_id not in merged_responsible_ids(s):
            continue
        data = stage_to_dict(s)
        data["project_name"] = s.project.name
        result.append(data)
    return result
