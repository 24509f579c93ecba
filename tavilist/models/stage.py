"""
Stage ("etapa") models.

    - Stage:             ordered unit of work inside a project
    - StageResponsible:  many-to-many stage ↔ profile (supersedes responsible_id)
    - StageItem:         checklist line, replaced wholesale on save
    - StageAttachment:   uploaded evidence file

Status lifecycle (enforced in stage_service._apply_transition):

    pending → in_progress → submitted → approved
                               ↓    ↑
                            rejected
"""

from tavilist.models import _utcnow, db

STAGE_STATUSES = frozenset({"pending", "in_progress", "submitted", "approved", "rejected"})

STAGE_STATUS_LABELS = {
    "pending": "Pendente",
    "in_progress": "Em Andamento",
    "submitted": "Submetida",
    "approved": "Aprovada",
    "rejected": "Rejeitada",
}

# Badge colours shared by the report email and the PDF
STAGE_STATUS_COLORS = {
    "pending": "#9ca3af",
    "in_progress": "#3b82f6",
    "submitted": "#f59e0b",
    "approved": "#22c55e",
    "rejected": "#ef4444",
}

# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STAGE_TRANSITIONS = {
    "pending":     ["in_progress"],
    "in_progress": ["submitted"],
    "submitted":   ["approved", "rejected"],
    "rejected":    ["submitted"],   # resubmission after rework
    "approved":    [],
}


def validate_stage_transition(old_status, new_status):
    """Return True if Stage status transition is valid."""
    return new_status in STAGE_TRANSITIONS.get(old_status, [])


class Stage(db.Model):
    """One ordered unit of trackable work within a project."""

    __tablename__ = "stages"
    __table_args__ = (
        db.UniqueConstraint("project_id", "ordinal", name="uq_stage_project_ordinal"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    notes = db.Column(
        db.Text,
        nullable=True,
        comment="Collaborator remarks on submit; overwritten by the rejection reason",
    )
    submission_notes = db.Column(
        db.Text,
        nullable=True,
        comment="Last collaborator submission note, kept when a rejection overwrites notes",
    )
    ordinal = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=True)
    status = db.Column(
        db.String(20),
        nullable=False,
        default="pending",
        comment="pending | in_progress | submitted | approved | rejected",
    )

    # Legacy single assignee: read-only fallback, never written by new code
    responsible_id = db.Column(
        db.Integer,
        db.ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    project = db.relationship("Project", back_populates="stages")
    legacy_responsible = db.relationship("Profile", foreign_keys=[responsible_id])
    responsibles = db.relationship(
        "StageResponsible",
        back_populates="stage",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    items = db.relationship(
        "StageItem",
        back_populates="stage",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StageItem.ordinal",
    )
    attachments = db.relationship(
        "StageAttachment",
        back_populates="stage",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="desc(StageAttachment.created_at)",
    )
    signature = db.relationship(
        "StageSignature",
        back_populates="stage",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "notes": self.notes,
            "submission_notes": self.submission_notes,
            "ordinal": self.ordinal,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "status": self.status,
            "responsible_id": self.responsible_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Stage #{self.id} project={self.project_id} ord={self.ordinal} {self.status}>"


class StageResponsible(db.Model):
    """Junction row assigning a profile to a stage."""

    __tablename__ = "stage_responsibles"
    __table_args__ = (
        db.UniqueConstraint("stage_id", "profile_id", name="uq_stage_responsible"),
    )

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer,
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    profile_id = db.Column(
        db.Integer,
        db.ForeignKey("profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    stage = db.relationship("Stage", back_populates="responsibles")
    profile = db.relationship("Profile")


class StageItem(db.Model):
    """Checklist line belonging to a stage."""

    __tablename__ = "stage_items"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer,
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description = db.Column(db.Text, nullable=False)
    product_line = db.Column(db.String(100), nullable=True)
    done = db.Column(db.Boolean, nullable=False, default=False)
    ordinal = db.Column(db.Integer, nullable=False)

    stage = db.relationship("Stage", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "description": self.description,
            "product_line": self.product_line,
            "done": self.done,
            "ordinal": self.ordinal,
        }


class StageAttachment(db.Model):
    """Uploaded evidence file. Created on upload, deleted individually."""

    __tablename__ = "stage_attachments"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer,
        db.ForeignKey("stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    content_type = db.Column(db.String(100), nullable=False)
    size = db.Column(db.Integer, nullable=False)
    url = db.Column(db.Text, nullable=False)
    storage_path = db.Column(db.String(500), nullable=False)
    uploaded_by = db.Column(
        db.Integer,
        db.ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    stage = db.relationship("Stage", back_populates="attachments")

    @property
    def is_image(self) -> bool:
        return (self.content_type or "").startswith("image/")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "name": self.name,
            "content_type": self.content_type,
            "size": self.size,
            "url": self.url,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
