"""
Weight Record Store

Append-only ledger of weigh-ins. There is no update or delete: corrections are
new records, so the full history stays available for audits and disputes.
Every successful append is fanned out as a `weight-update` event.
"""

import uuid
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from shapeup.core.exceptions import IllegalStateError, NotFoundError, ValidationError
from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.models.realtime import RealtimeEvent
from shapeup.models.weight import WeightRecord
from shapeup.services.logger import logger
from shapeup.services.progress_calculator import to_decimal
from shapeup.services.realtime_service import EventBroadcaster, event_broadcaster


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_weight(weight) -> Decimal:
    try:
        value = to_decimal(weight)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Weight must be a number")
    if not value.is_finite():
        raise ValidationError("Weight must be a finite number")
    if value <= 0:
        raise ValidationError("Weight must be a positive number")
    return value


class WeightRecordStore:
    """Append-only access to weight records"""

    def __init__(
        self,
        repository: Optional[ChallengeRepository] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ) -> None:
        self.repository = repository or get_repository()
        self.broadcaster = broadcaster or event_broadcaster

    async def append(
        self,
        user_id: str,
        challenge_id: str,
        weight,
        recorded_at: Optional[datetime] = None,
        image_ref: Optional[str] = None,
    ) -> WeightRecord:
        """
        Append a weigh-in for a participant.

        Args:
            user_id: Participant's user ID
            challenge_id: Challenge ID
            weight: Positive weight value
            recorded_at: When the weight was measured (defaults to now, UTC)
            image_ref: Optional reference to the verification photo

        Returns:
            The stored record, including its insertion sequence
        """
        value = parse_weight(weight)

        challenge = await self.repository.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")

        participant = await self.repository.get_participant(challenge_id, user_id)
        if participant is None:
            raise NotFoundError("Not a participant in this challenge")

        if challenge.status in ("completed", "cancelled"):
            raise IllegalStateError(
                f"Cannot record weight for a {challenge.status} challenge"
            )

        now = utcnow()
        record = WeightRecord(
            id=str(uuid.uuid4()),
            user_id=user_id,
            challenge_id=challenge_id,
            weight=value,
            recorded_at=ensure_aware(recorded_at) if recorded_at else now,
            image_ref=image_ref,
            created_at=now,
        )
        stored = await self.repository.insert_weight_record(record)

        logger.info(
            f"Recorded weight for user {user_id} in challenge {challenge_id}",
            {"record_id": stored.id, "recorded_at": stored.recorded_at.isoformat()},
        )

        await self.broadcaster.publish(
            RealtimeEvent(
                kind="weight-update",
                challenge_id=challenge_id,
                payload=stored.model_dump(mode="json"),
            )
        )
        return stored

    async def list_for(self, user_id: str, challenge_id: str) -> List[WeightRecord]:
        """All records of one participant, ascending by recorded_at."""
        return await self.repository.list_weight_records(challenge_id, user_id=user_id)

    async def list_for_challenge(
        self, challenge_id: str, recorded_before: Optional[datetime] = None
    ) -> Dict[str, List[WeightRecord]]:
        """Records of every participant keyed by user_id, each list ascending."""
        records = await self.repository.list_weight_records(
            challenge_id, recorded_before=recorded_before
        )
        grouped: Dict[str, List[WeightRecord]] = defaultdict(list)
        for record in records:
            grouped[record.user_id].append(record)
        return dict(grouped)
