"""
Weight verification reviews.

A review never touches the weight record itself (records are immutable); the
verdict is stored alongside it and announced to the challenge's observers.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from shapeup.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.models.realtime import RealtimeEvent
from shapeup.models.weight import WeightRecord, WeightReview
from shapeup.services.logger import logger
from shapeup.services.realtime_service import EventBroadcaster, event_broadcaster

REVIEW_STATUSES = ("approved", "rejected")


class ModerationService:
    def __init__(
        self,
        repository: Optional[ChallengeRepository] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ) -> None:
        self.repository = repository or get_repository()
        self.broadcaster = broadcaster or event_broadcaster

    async def review_weight_record(
        self,
        record_id: str,
        status: str,
        reviewer_id: str,
        is_admin: bool = False,
        feedback: Optional[str] = None,
    ) -> WeightReview:
        if status not in REVIEW_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(REVIEW_STATUSES)}")

        record = await self.repository.get_weight_record(record_id)
        if record is None:
            raise NotFoundError("Weight record not found")

        challenge = await self.repository.get_challenge(record.challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")
        if not is_admin and challenge.host_id != reviewer_id:
            raise ForbiddenError("Only the host or an administrator can review weigh-ins")

        review = WeightReview(
            id=str(uuid.uuid4()),
            record_id=record.id,
            challenge_id=record.challenge_id,
            user_id=record.user_id,
            status=status,
            feedback=feedback,
            reviewer_id=reviewer_id,
            reviewed_at=datetime.now(timezone.utc),
        )
        stored = await self.repository.insert_weight_review(review)

        logger.info(
            f"Weight record {record_id} {status} by {reviewer_id}",
            {"challenge_id": record.challenge_id, "user_id": record.user_id},
        )
        await self.broadcaster.publish(
            RealtimeEvent(
                kind="weight-verification",
                challenge_id=record.challenge_id,
                payload={
                    "record_id": record.id,
                    "user_id": record.user_id,
                    "status": status,
                    "feedback": feedback,
                },
            )
        )
        return stored

    async def list_reviews(self, challenge_id: str) -> List[WeightReview]:
        return await self.repository.list_weight_reviews(challenge_id)

    async def list_pending_records(
        self, challenge_id: str, actor_id: str, is_admin: bool = False
    ) -> List[WeightRecord]:
        """Records with a verification photo and no review yet."""
        challenge = await self.repository.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")
        if not is_admin and challenge.host_id != actor_id:
            raise ForbiddenError("Only the host or an administrator can review weigh-ins")

        records = await self.repository.list_weight_records(challenge_id)
        reviewed = {r.record_id for r in await self.repository.list_weight_reviews(challenge_id)}
        return [r for r in records if r.image_ref and r.id not in reviewed]
