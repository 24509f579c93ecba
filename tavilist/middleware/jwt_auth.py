"""
JWT Auth Middleware — parses the Bearer token, sets g.jwt_*.

The middleware never rejects a request by itself: invalid or expired
tokens simply leave g.jwt_user_id unset and require_auth decides.
"""

import logging

import jwt as pyjwt
from flask import g, request

from tavilist.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
    "/api/v1/public/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_profile_id = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token path=%s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid access token path=%s", path)
            return

        g.jwt_user_id = payload.get("sub")
        g.jwt_profile_id = payload.get("pid")
        g.jwt_roles = payload.get("roles", [])
