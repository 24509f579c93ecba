"""
TaviList
SQLAlchemy models package.

``db`` is the shared Flask-SQLAlchemy handle; model modules are imported
by the app factory so Flask-Migrate sees every table.
"""

import uuid
from datetime import datetime, timezone

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid():
    return str(uuid.uuid4())
