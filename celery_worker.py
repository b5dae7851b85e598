"""
Celery Worker Entry Point

Start a worker:
    celery -A celery_worker worker --loglevel=info

Start Celery Beat (drives the periodic settlement sweep):
    celery -A celery_worker beat --loglevel=info

Or run both together (development only):
    celery -A celery_worker worker --beat --loglevel=info

Workers don't auto-reload; restart them after changing task code.
"""

from shapeup.core.celery_app import celery_app
from shapeup.core import celery_signals  # Import to register signal handlers

__all__ = ["celery_app", "celery_signals"]
