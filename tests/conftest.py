"""
Shared pytest fixtures for the TaviList test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project / admin / collaborator: pre-created rows
    - make_png / make_profile / auth_headers: factory fixtures
"""

import base64
import io
import os

import pytest
from cryptography.fernet import Fernet
from PIL import Image

# Must be set before any encrypt_secret call
os.environ.setdefault("ENCRYPTION_KEY", Fernet.generate_key().decode())

from tavilist import create_app  # noqa: E402
from tavilist.models import db as _db  # noqa: E402
from tavilist.models.profile import Profile, UserRole  # noqa: E402
from tavilist.models.project import Project  # noqa: E402
from tavilist.services.jwt_service import generate_access_token  # noqa: E402


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Helper factories ─────────────────────────────────────────────────────


def _make_profile(full_name="Maria Souza", email=None, role="colaborador") -> Profile:
    email = email or f"{full_name.split()[0].lower()}@example.com"
    profile = Profile(full_name=full_name, email=email)
    _db.session.add(profile)
    _db.session.flush()
    if role != "colaborador":
        _db.session.add(UserRole(user_id=profile.user_id, role=role))
    _db.session.commit()
    return profile


def _auth_headers(profile: Profile, role: str = "colaborador") -> dict:
    token = generate_access_token(profile.user_id, profile.id, [role])
    return {"Authorization": f"Bearer {token}"}


def _png_data_url(size=(40, 20), fmt="PNG", mime="png") -> str:
    buf = io.BytesIO()
    Image.new("RGB", size, (10, 20, 30)).save(buf, format=fmt)
    return f"data:image/{mime};base64," + base64.b64encode(buf.getvalue()).decode()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """A project with a client phone and email."""
    p = Project(
        name="Casa Jardim",
        client_name="João Silva",
        client_email="joao@example.com",
        client_phone="(11) 98888-7777",
        status="in_progress",
    )
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def admin():
    return _make_profile("Ana Admin", "ana@example.com", role="admin")


@pytest.fixture()
def collaborator():
    return _make_profile("Carlos Lima", "carlos@example.com")


@pytest.fixture()
def make_png():
    return _png_data_url


@pytest.fixture()
def make_profile():
    return _make_profile


@pytest.fixture()
def auth_headers():
    return _auth_headers
