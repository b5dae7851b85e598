"""
Celery Tasks Package

Re-exports all tasks for Celery autodiscovery.

- challenge_tasks: challenge close and settlement
"""

from shapeup.services.tasks.challenge_tasks import (
    settle_completed_challenges_task,
)

__all__ = [
    "settle_completed_challenges_task",
]
