"""
Project ("obra") model.

A project is one client's unit of construction work. It owns its stages
and carries the project-level signature fields used by the whole-project
confirmation flow (see signature_service).
"""

from tavilist.models import _utcnow, db

PROJECT_STATUSES = frozenset({
    "not_started",
    "in_progress",
    "awaiting_approval",
    "completed",
    "cancelled",
})

PROJECT_STATUS_LABELS = {
    "not_started": "Não Iniciada",
    "in_progress": "Em Andamento",
    "awaiting_approval": "Aguardando Aprovação",
    "completed": "Concluída",
    "cancelled": "Cancelada",
}


class Project(db.Model):
    """Construction project tracked end-to-end for one client."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)

    client_name = db.Column(db.String(200), nullable=False)
    client_email = db.Column(db.String(255), nullable=False)
    client_phone = db.Column(db.String(30), nullable=True)

    status = db.Column(
        db.String(30),
        nullable=False,
        default="not_started",
        comment="not_started | in_progress | awaiting_approval | completed | cancelled",
    )
    start_date = db.Column(db.Date, nullable=True)
    expected_end_date = db.Column(db.Date, nullable=True)
    completed_at = db.Column(
        db.DateTime(timezone=True),
        nullable=True,
        comment="Stamped the first time a report is emailed while status=completed",
    )

    created_by = db.Column(
        db.Integer,
        db.ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Project-level signature (single-use token)
    signature_token = db.Column(db.String(36), nullable=True, unique=True, index=True)
    signature_name = db.Column(db.String(100), nullable=True)
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signature_ip = db.Column(db.String(64), nullable=True)
    signature_image_url = db.Column(db.Text, nullable=True)
    signature_unlocked = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    stages = db.relationship(
        "Stage",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Stage.ordinal",
    )

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None

    def to_dict(self, include_stages: bool = False) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "client_phone": self.client_phone,
            "status": self.status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "expected_end_date": self.expected_end_date.isoformat() if self.expected_end_date else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_by": self.created_by,
            "signature_unlocked": self.signature_unlocked,
            "signed": self.is_signed,
            "signature_name": self.signature_name,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_stages:
            data["stages"] = [s.to_dict() for s in self.stages]
        return data

    def __repr__(self) -> str:
        return f"<Project #{self.id} {self.name!r} {self.status}>"
