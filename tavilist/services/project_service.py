"""
Project service — CRUD, progress and dashboard counts.

Rules:
  - db.session.commit() happens only in service modules.
  - Status changes on projects are manual (admins); stage approvals do not
    move the project status.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import case, func, or_

from tavilist.core.exceptions import NotFoundError, ValidationError
from tavilist.models import db
from tavilist.models.project import PROJECT_STATUSES, Project
from tavilist.models.stage import Stage
from tavilist.utils.helpers import parse_date

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_EDITABLE_TEXT = ("name", "client_name", "client_email", "client_phone")


def get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def list_projects_query(status: str | None = None, search: str | None = None):
    """Build the filtered project query; the blueprint paginates it."""
    query = Project.query.order_by(Project.created_at.desc())
    if status:
        if status not in PROJECT_STATUSES:
            raise ValidationError(f"Unknown status '{status}'")
        query = query.filter(Project.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Project.name.ilike(like), Project.client_name.ilike(like)))
    return query


def _apply_fields(project: Project, data: dict, *, creating: bool) -> None:
    errors: dict[str, str] = {}

    for field in _EDITABLE_TEXT:
        if field in data:
            value = (data.get(field) or "").strip()
            setattr(project, field, value or None)

    for field in ("name", "client_name", "client_email"):
        if (creating or field in data) and not getattr(project, field):
            errors[field] = "required"

    if project.client_email and not _EMAIL_RE.match(project.client_email):
        errors["client_email"] = "invalid email"

    if "status" in data:
        if data["status"] not in PROJECT_STATUSES:
            errors["status"] = f"must be one of: {', '.join(sorted(PROJECT_STATUSES))}"
        else:
            project.status = data["status"]

    for field in ("start_date", "expected_end_date"):
        if field in data:
            raw = data.get(field)
            parsed = parse_date(raw)
            if raw and parsed is None:
                errors[field] = "invalid date"
            setattr(project, field, parsed)

    if project.start_date and project.expected_end_date and project.expected_end_date < project.start_date:
        errors["expected_end_date"] = "must not be before start_date"

    if errors:
        raise ValidationError("Invalid project data", details=errors)


def create_project(data: dict, created_by: int | None = None) -> Project:
    project = Project(status="not_started", created_by=created_by)
    _apply_fields(project, data, creating=True)
    db.session.add(project)
    db.session.commit()
    logger.info("Project created project_id=%s", project.id, extra={"project_id": project.id})
    return project


def update_project(project_id: int, data: dict) -> Project:
    project = get_project(project_id)
    old_status = project.status
    _apply_fields(project, data, creating=False)
    db.session.commit()
    if project.status != old_status:
        logger.info(
            "Project status changed project_id=%s %s → %s",
            project.id, old_status, project.status,
            extra={"project_id": project.id},
        )
    return project


def delete_project(project_id: int) -> None:
    project = get_project(project_id)
    db.session.delete(project)
    db.session.commit()
    logger.info("Project deleted project_id=%s", project_id, extra={"project_id": project_id})


def project_progress(project_id: int) -> dict:
    """Approved stages over total stages, percent rounded to an int."""
    total, approved = db.session.execute(
        db.select(
            func.count(Stage.id),
            func.coalesce(func.sum(case((Stage.status == "approved", 1), else_=0)), 0),
        ).where(Stage.project_id == project_id)
    ).one()
    # half-up rounding, so 1 of 8 shows 13%
    percent = (approved * 200 + total) // (2 * total) if total else 0
    return {"approved": approved, "total": total, "percent": percent}


def project_stats() -> dict:
    """Project counts per status for the admin dashboard."""
    rows = db.session.execute(
        db.select(Project.status, func.count(Project.id)).group_by(Project.status)
    ).all()
    by_status = {status: 0 for status in sorted(PROJECT_STATUSES)}
    for status, count in rows:
        by_status[status] = count
    return {"total": sum(by_status.values()), "by_status": by_status}
