"""
Security headers middleware.

Every response gets nosniff, frame denial, HSTS and a no-referrer policy.
Beyond that the headers depend on what is served:

    /api/v1/public/*  token-bearing JSON  → no-store, strict CSP
    /media/*          uploaded files      → sandboxed CSP
    everything else   JSON / PDF          → strict CSP

Usage:
    from tavilist.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

from flask import request

_STRICT_CSP = "default-src 'none'; frame-ancestors 'none'"
# Uploaded files are rendered by the browser; forbid scripts inside them
_MEDIA_CSP = "default-src 'none'; img-src 'self' data:; style-src 'unsafe-inline'; sandbox"

_COMMON = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    # Signature tokens live in URLs
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), payment=()",
}


def init_security_headers(app):
    """Register after_request handler that injects security headers."""

    @app.after_request
    def _add_security_headers(response):
        for name, value in _COMMON.items():
            response.headers.setdefault(name, value)

        path = request.path
        if path.startswith("/media/"):
            response.headers.setdefault("Content-Security-Policy", _MEDIA_CSP)
        else:
            response.headers.setdefault("Content-Security-Policy", _STRICT_CSP)
            if path.startswith("/api/v1/public/"):
                response.headers["Cache-Control"] = "no-store"

        response.headers.pop("Server", None)
        return response
