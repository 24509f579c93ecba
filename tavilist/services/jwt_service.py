"""
JWT Service — access tokens for profiles.

    HS256, signed with JWT_SECRET_KEY (falls back to SECRET_KEY)
    Lifetime: JWT_ACCESS_EXPIRES seconds (default 8 h)

Claims:
    sub    auth user_id (uuid string, joins user_roles)
    pid    profile id
    roles  role at login time; informational only, require_auth re-reads
           the role from user_roles on every request
    iss    "tavilist"

There is no refresh token: the admin UI logs in again after expiry.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

DEFAULT_ACCESS_EXPIRES = 28800
ALGORITHM = "HS256"
ISSUER = "tavilist"
_REQUIRED_CLAIMS = ["exp", "iat", "sub", "pid"]


def _signing_key() -> str:
    cfg = current_app.config
    return cfg.get("JWT_SECRET_KEY") or cfg["SECRET_KEY"]


def generate_access_token(user_id: str, profile_id: int, roles: list[str]) -> str:
    issued = datetime.now(timezone.utc)
    lifetime = int(current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES))
    claims = {
        "sub": user_id,
        "pid": profile_id,
        "roles": roles,
        "iss": ISSUER,
        "iat": issued,
        "exp": issued + timedelta(seconds=lifetime),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _signing_key(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and issuer; return the claims.

    Raises jwt.ExpiredSignatureError or another jwt.InvalidTokenError.
    """
    return jwt.decode(
        token,
        _signing_key(),
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        options={"require": _REQUIRED_CLAIMS},
    )
