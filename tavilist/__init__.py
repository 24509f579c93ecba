"""
TaviList
Flask Application Factory.

Usage:
    from tavilist import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from tavilist.config import config
from tavilist.core.exceptions import (
    AlreadySignedError,
    ChannelUnavailableError,
    GatewayError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from tavilist.middleware.jwt_auth import init_jwt_middleware
from tavilist.middleware.logging_config import configure_logging
from tavilist.middleware.rate_limiter import init_rate_limits
from tavilist.middleware.security_headers import init_security_headers
from tavilist.middleware.timing import init_request_timing
from tavilist.models import db
from tavilist.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, apply per-blueprint
)


def _register_error_handlers(app):
    """One handler per domain exception so every blueprint answers alike."""

    @app.errorhandler(ValidationError)
    def _validation(e):
        return api_error(E.VALIDATION_INVALID, str(e), details=e.details or None)

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        logger.info("Not found: %s", e)
        return api_error(E.NOT_FOUND, f"{e.resource} not found")

    @app.errorhandler(AlreadySignedError)
    def _already_signed(e):
        return api_error(E.ALREADY_SIGNED, str(e))

    @app.errorhandler(InvalidTransitionError)
    def _invalid_transition(e):
        return api_error(
            E.CONFLICT_STATE, str(e),
            details={"current": e.current, "target": e.target},
        )

    @app.errorhandler(PermissionDeniedError)
    def _permission_denied(e):
        return api_error(E.FORBIDDEN, str(e))

    @app.errorhandler(ChannelUnavailableError)
    def _channel_unavailable(e):
        return api_error(E.CHANNEL_UNAVAILABLE, str(e))

    @app.errorhandler(GatewayError)
    def _gateway(e):
        return api_error(E.GATEWAY, str(e), details=e.details)

    @app.errorhandler(StorageError)
    def _storage(e):
        logger.error("Storage failure: %s", e)
        return api_error(E.STORAGE, "File storage failed. Please try again.")

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large", "code": E.VALIDATION_INVALID}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": E.INTERNAL}, 500


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiate so ProductionConfig can refuse to start without secrets
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from tavilist.models import profile as _profile_models      # noqa: F401
    from tavilist.models import project as _project_models      # noqa: F401
    from tavilist.models import signature as _signature_models  # noqa: F401
    from tavilist.models import stage as _stage_models          # noqa: F401
    from tavilist.models import whatsapp as _whatsapp_models    # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if not app.config.get("TESTING"):
        with app.app_context():
            try:
                os.makedirs(app.instance_path, exist_ok=True)
                db.create_all()
                app.logger.info("db.create_all() completed successfully")
            except (SQLAlchemyError, OSError) as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from tavilist.blueprints.auth_bp import auth_bp
    from tavilist.blueprints.health_bp import health_bp
    from tavilist.blueprints.media_bp import media_bp
    from tavilist.blueprints.notification_bp import notification_bp
    from tavilist.blueprints.profile_bp import profile_bp
    from tavilist.blueprints.project_bp import project_bp
    from tavilist.blueprints.report_bp import report_bp
    from tavilist.blueprints.settings_bp import settings_bp
    from tavilist.blueprints.signature_bp import public_bp, signature_bp
    from tavilist.blueprints.stage_bp import stage_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(media_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(report_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(signature_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(stage_bp)

    _register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-admin")
    @click.argument("email")
    @click.argument("full_name")
    @click.argument("password")
    def create_admin_cmd(email, full_name, password):
        """Create an admin profile, or promote an existing one."""
        from tavilist.services.profile_service import ensure_admin
        profile = ensure_admin(email, full_name, password)
        click.echo(f"Admin ready: {profile.email} (id={profile.id})")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
