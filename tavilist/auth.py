"""
TaviList
Authentication & authorization decorators.

Provides:
    - require_auth: resolves the caller from the JWT set by jwt_auth middleware
    - require_role: role gate (admin > colaborador)
    - current_actor: (profile_id, role) of the caller for service-level guards

Security model:
    - Every /api/v1/* endpoint except health, login and /public/* requires
      a valid Bearer token.
    - Roles are read from user_roles at request time, so a promotion or
      demotion takes effect without re-login.

Configuration:
    API_AUTH_ENABLED — "false" disables auth (development/tests). Requests
                       without a token then act as an anonymous admin; a
                       Bearer token, when present, is still honoured.
"""

import functools
import logging
import os

from flask import current_app, g

from tavilist.models import db
from tavilist.models.profile import DEFAULT_ROLE, Profile, UserRole
from tavilist.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Role hierarchy: admin > colaborador
ROLE_HIERARCHY = {
    "admin": {"admin", "colaborador"},
    "colaborador": {"colaborador"},
}


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def role_for_user(user_id: str) -> str:
    """Return the role stored for an auth identity, defaulting to colaborador."""
    row = db.session.execute(
        db.select(UserRole).where(UserRole.user_id == user_id)
    ).scalar_one_or_none()
    return row.role if row else DEFAULT_ROLE


def current_actor() -> tuple[int | None, str]:
    """Return ``(profile_id, role)`` for the authenticated caller."""
    return getattr(g, "current_profile_id", None), getattr(g, "current_user_role", DEFAULT_ROLE)


def current_profile_id() -> int | None:
    return getattr(g, "current_profile_id", None)


# ── Authentication decorator ─────────────────────────────────────────────────

def require_auth(f):
    """
    Decorator: require an authenticated caller.

    Sets g.current_profile_id and g.current_user_role.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user_id = getattr(g, "jwt_user_id", None)

        if user_id:
            profile = db.session.execute(
                db.select(Profile).where(Profile.user_id == user_id)
            ).scalar_one_or_none()
            if profile is None:
                return api_error(E.UNAUTHORIZED, "Unknown user")
            g.current_profile_id = profile.id
            g.current_user_role = role_for_user(user_id)
            return f(*args, **kwargs)

        if not _is_auth_enabled():
            g.current_profile_id = None
            g.current_user_role = "admin"
            return f(*args, **kwargs)

        return api_error(E.UNAUTHORIZED, "Authentication required. Provide a Bearer token.")

    return decorated


def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @require_auth
        @require_role("admin")
        def delete_stage(sid): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role:
                return api_error(E.UNAUTHORIZED, "Authentication required")

            allowed = ROLE_HIERARCHY.get(user_role, set())
            if minimum_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint",
                    user_role, minimum_role,
                )
                return api_error(
                    E.FORBIDDEN,
                    f"Insufficient permissions. Required role: {minimum_role}",
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
