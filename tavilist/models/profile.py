"""
User profile and role models.

Roles live in ``user_roles`` keyed by the auth identity (``user_id``),
not by ``profiles.id``. A profile without a role row is a collaborator.
"""

from tavilist.models import _utcnow, _uuid, db

ROLES = frozenset({"admin", "colaborador"})
DEFAULT_ROLE = "colaborador"


class Profile(db.Model):
    """A person who can log in: admin or collaborator."""

    __tablename__ = "profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), nullable=False, unique=True, index=True, default=_uuid)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    avatar_url = db.Column(db.Text, nullable=True)
    password_hash = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self, role: str | None = None) -> dict:
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "email": self.email,
            "avatar_url": self.avatar_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if role is not None:
            data["role"] = role
        return data

    def __repr__(self) -> str:
        return f"<Profile #{self.id} {self.email}>"


class UserRole(db.Model):
    """Role assignment for an auth identity."""

    __tablename__ = "user_roles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), nullable=False, unique=True, index=True)
    role = db.Column(db.String(20), nullable=False, default=DEFAULT_ROLE, comment="admin | colaborador")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
