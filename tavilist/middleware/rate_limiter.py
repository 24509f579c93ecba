"""
Per-blueprint rate limits (Flask-Limiter).

The Limiter is created in tavilist/__init__.py with no default limits;
this module attaches limits to individual blueprints after registration.
Keys are the remote address, so the public signing pages are throttled
per client device.

Usage:
    from tavilist.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# blueprint name → config key holding the limit, fallback limit
_BLUEPRINT_LIMITS = {
    "public": ("PUBLIC_RATE_LIMIT", "30 per minute"),
    "auth": ("AUTH_RATE_LIMIT", "10 per minute"),
    # Every call reaches a paid provider
    "notification": ("NOTIFICATION_RATE_LIMIT", "30 per minute"),
}

_EXEMPT = ("health", "media")


def init_rate_limits(app, limiter):
    """Attach limits to the public, auth and notification blueprints.

    Disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    applied = {}
    for name, (config_key, fallback) in _BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(name)
        if bp is None:
            continue
        limit = app.config.get(config_key) or fallback
        limiter.limit(limit)(bp)
        applied[name] = limit

    for name in _EXEMPT:
        bp = app.blueprints.get(name)
        if bp is not None:
            limiter.exempt(bp)

    app.logger.info("Rate limits configured: %s",
                    ", ".join(f"{k}={v}" for k, v in applied.items()))
