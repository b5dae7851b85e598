"""
Shared utilities for Celery tasks.
"""

import asyncio

from shapeup.core.celery_app import celery_app
from shapeup.services.logger import logger


def run_async(coro):
    """Helper to run async service code in sync Celery task context."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_closed():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop.run_until_complete(coro)


__all__ = ["celery_app", "logger", "run_async"]
