"""
OpsDesk
Database models.

All models share the single ``db`` instance bound in ``create_app``.
Model modules are imported there so Alembic sees every table.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
