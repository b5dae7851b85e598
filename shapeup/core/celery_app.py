"""
Celery Application Configuration

Celery task queue using Redis as broker and backend.
"""

from __future__ import annotations

import ssl
from typing import Dict, Optional

from celery import Celery
from shapeup.core.config import settings


def _build_redis_ssl_options(url: str) -> Optional[Dict[str, int]]:
    """
    Celery requires explicit SSL options when connecting to Redis over TLS.
    Managed Redis providers supply rediss:// URLs without extra parameters,
    so provide a default to keep local development working.
    """

    if not url or not url.startswith("rediss://"):
        return None

    # Respect explicit ssl_cert_reqs in the URL if provided.
    if "ssl_cert_reqs" in url:
        return None

    return {"ssl_cert_reqs": ssl.CERT_NONE}


# Create Celery app instance
redis_url = settings.redis_connection_url
redis_ssl_options = _build_redis_ssl_options(redis_url)

celery_app = Celery(
    "shapeup",
    broker=redis_url,
    backend=redis_url,
    include=["shapeup.services.tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=120,
    task_soft_time_limit=100,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_use_ssl=redis_ssl_options,
    redis_backend_use_ssl=redis_ssl_options,
    beat_schedule={
        "settle-completed-challenges": {
            "task": "settle_completed_challenges",
            "schedule": 60.0 * 15.0,  # Every 15 minutes
            # Completes in-progress challenges past their end date, then
            # settles every completed challenge without a stored result
        },
    },
)
