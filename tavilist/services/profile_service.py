"""
Profile & role service.

Roles are stored apart from profiles (user_roles keyed by auth user_id).
Every read that needs a role merges the two here so callers never join
the tables themselves.
"""

from __future__ import annotations

import logging

from tavilist.core.exceptions import NotFoundError, ValidationError
from tavilist.models import db
from tavilist.models.profile import DEFAULT_ROLE, ROLES, Profile, UserRole
from tavilist.services.jwt_service import generate_access_token
from tavilist.utils.crypto import hash_password, verify_password

logger = logging.getLogger(__name__)


def _roles_by_user_id(user_ids: list[str]) -> dict[str, str]:
    if not user_ids:
        return {}
    rows = db.session.execute(
        db.select(UserRole).where(UserRole.user_id.in_(user_ids))
    ).scalars().all()
    return {r.user_id: r.role for r in rows}


def get_profile(profile_id: int) -> Profile:
    profile = db.session.get(Profile, profile_id)
    if profile is None:
        raise NotFoundError(resource="Profile", resource_id=profile_id)
    return profile


def role_of(profile: Profile) -> str:
    return _roles_by_user_id([profile.user_id]).get(profile.user_id, DEFAULT_ROLE)


def list_profiles_with_roles() -> list[dict]:
    """All profiles ordered by name, each with its merged role."""
    profiles = db.session.execute(
        db.select(Profile).order_by(Profile.full_name)
    ).scalars().all()
    roles = _roles_by_user_id([p.user_id for p in profiles])
    return [p.to_dict(role=roles.get(p.user_id, DEFAULT_ROLE)) for p in profiles]


def set_role(profile_id: int, role: str) -> dict:
    """Promote or demote a profile. Upserts the user_roles row."""
    if role not in ROLES:
        raise ValidationError(
            f"role must be one of: {', '.join(sorted(ROLES))}",
            details={"role": "invalid"},
        )
    profile = get_profile(profile_id)
    row = db.session.execute(
        db.select(UserRole).where(UserRole.user_id == profile.user_id)
    ).scalar_one_or_none()
    if row is None:
        row = UserRole(user_id=profile.user_id, role=role)
        db.session.add(row)
    else:
        row.role = role
    db.session.commit()
    logger.info("Role changed profile_id=%s role=%s", profile_id, role)
    return profile.to_dict(role=role)


def create_profile(full_name: str, email: str, password: str | None = None,
                   role: str = DEFAULT_ROLE) -> Profile:
    """Create a profile (and its role row when not the default)."""
    full_name = (full_name or "").strip()
    email = (email or "").strip().lower()
    if not full_name or not email:
        raise ValidationError("full_name and email are required")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(sorted(ROLES))}")

    profile = Profile(
        full_name=full_name,
        email=email,
        password_hash=hash_password(password) if password else None,
    )
    db.session.add(profile)
    db.session.flush()
    if role != DEFAULT_ROLE:
        db.session.add(UserRole(user_id=profile.user_id, role=role))
    db.session.commit()
    logger.info("Profile created profile_id=%s role=%s", profile.id, role)
    return profile


def ensure_admin(email: str, full_name: str, password: str) -> Profile:
    """Create an admin, or promote and reset the password of an existing one."""
    email = email.strip().lower()
    profile = db.session.execute(
        db.select(Profile).where(Profile.email == email)
    ).scalar_one_or_none()
    if profile is None:
        return create_profile(full_name, email, password, role="admin")

    profile.password_hash = hash_password(password)
    db.session.commit()
    set_role(profile.id, "admin")
    return profile


def authenticate(email: str, password: str) -> dict | None:
    """Check credentials; return a token payload, or None when they don't match."""
    email = (email or "").strip().lower()
    profile = db.session.execute(
        db.select(Profile).where(Profile.email == email)
    ).scalar_one_or_none()
    if profile is None or not verify_password(password or "", profile.password_hash):
        logger.warning("Failed login attempt email=%s", email)
        return None

    role = role_of(profile)
    token = generate_access_token(profile.user_id, profile.id, [role])
    logger.info("Login profile_id=%s role=%s", profile.id, role)
    return {
        "access_token": token,
        "token_type": "Bearer",
        "profile": profile.to_dict(role=role),
    }
