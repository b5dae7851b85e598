"""
Celery Signal Handlers

Hooks for Celery lifecycle events (e.g., worker startup).
"""

from celery.signals import worker_ready


@worker_ready.connect
def on_worker_ready(sender, **kwargs):
    """
    Settle anything that ended while no worker was running, without waiting
    for the first beat interval.
    """
    from shapeup.services.tasks import settle_completed_challenges_task

    print("🚀 Celery worker ready! Queueing initial settlement sweep...")
    settle_completed_challenges_task.apply_async(countdown=0)
