"""DB schema bootstrap (SQLite, no Alembic).

Must be callable both from the web app and the Celery worker.
"""
from __future__ import annotations

from .db import engine
from .models import Base


def ensure_schema() -> None:
    """Create missing tables."""
    Base.metadata.create_all(bind=engine)
