"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi create-admin admin@example.com "Nome" senha
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
    gunicorn wsgi:app
"""

from tavilist import create_app

app = create_app()
