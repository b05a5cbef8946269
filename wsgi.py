"""
WSGI entry point and Flask-Migrate / Alembic target.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db upgrade
    flask --app wsgi db migrate -m "description"
"""

from opsdesk import create_app

app = create_app()
