"""
Challenge Lifecycle Tasks

Celery tasks for closing challenges:
- Completing in-progress challenges whose end date has passed
- Settling completed challenges that have no stored result yet
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from shapeup.core.exceptions import ShapeUpError
from shapeup.services.challenge_service import ChallengeService
from shapeup.services.settlement_service import SettlementService
from shapeup.services.tasks.base import celery_app, logger, run_async

SYSTEM_ACTOR = "system:challenge-lifecycle"


async def settle_due_challenges(
    challenge_service: ChallengeService,
    settlement_service: SettlementService,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Close ended challenges and settle them.

    Returns:
        Dict with completed/settled challenge ids, no-winner ids and errors
    """
    now = now or datetime.now(timezone.utc)
    completed = []
    settled = []
    no_winners = []
    errors = []

    for challenge in await challenge_service.list_challenges(status="in-progress"):
        if challenge.end_date > now:
            continue
        try:
            await challenge_service.transition_status(
                challenge.id, "completed", SYSTEM_ACTOR, is_admin=True
            )
            completed.append(challenge.id)
        except ShapeUpError as e:
            errors.append(f"Failed to complete challenge {challenge.id}: {e.message}")

    for challenge in await challenge_service.list_challenges(status="completed"):
        if await settlement_service.get_settlement(challenge.id) is not None:
            continue
        try:
            result = await settlement_service.settle(challenge.id)
        except ShapeUpError as e:
            # Another worker holds the lock; the next sweep picks it up if needed
            errors.append(f"Failed to settle challenge {challenge.id}: {e.message}")
            continue
        settled.append(challenge.id)
        if result.no_winners is not None:
            no_winners.append(challenge.id)

    for error in errors:
        logger.warning(error)

    return {
        "completed": completed,
        "settled": settled,
        "no_winners": no_winners,
        "errors": errors,
    }


@celery_app.task(
    name="settle_completed_challenges",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    retry_backoff=True,
)
def settle_completed_challenges_task(self) -> Dict[str, Any]:
    """
    Periodic task that closes ended challenges and runs their settlement.

    Settlement is idempotent, so overlapping sweeps are harmless.
    """
    try:
        summary = run_async(settle_due_challenges(ChallengeService(), SettlementService()))
        print(
            f"✅ [CHALLENGE SETTLEMENT] Completed {len(summary['completed'])}, "
            f"settled {len(summary['settled'])}, {len(summary['errors'])} errors"
        )
        return {"success": True, **summary}

    except Exception as e:
        logger.error(
            f"Failed to settle completed challenges: {str(e)}",
            {"error": str(e), "retry_count": self.request.retries},
        )

        if self.request.retries >= self.max_retries:
            return {"success": False, "error": str(e)}

        raise self.retry(exc=e)
