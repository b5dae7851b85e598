"""
Challenge Service

Handles challenge creation, participation, entry-fee confirmation and the
status lifecycle (open -> in-progress -> completed, or -> cancelled).
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from shapeup.core.config import settings
from shapeup.core.exceptions import (
    ForbiddenError,
    IllegalStateError,
    NotFoundError,
    ValidationError,
)
from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.models.challenge import JOINABLE_STATUSES, Challenge, Participant
from shapeup.models.realtime import RealtimeEvent
from shapeup.services.logger import logger
from shapeup.services.realtime_service import EventBroadcaster, event_broadcaster
from shapeup.services.weight_record_store import ensure_aware, parse_weight


class ChallengeService:
    """Service for managing challenges"""

    def __init__(
        self,
        repository: Optional[ChallengeRepository] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ) -> None:
        self.repository = repository or get_repository()
        self.broadcaster = broadcaster or event_broadcaster

    async def create_challenge(
        self,
        host_id: str,
        title: str,
        description: Optional[str],
        start_date: datetime,
        end_date: datetime,
        entry_fee: int,
        percentage_goal,
    ) -> Challenge:
        """
        Create a new challenge hosted by `host_id`.

        Args:
            host_id: User creating the challenge
            title: Challenge title
            description: Challenge description
            start_date: When weigh-ins start counting
            end_date: Last moment a weigh-in counts for settlement
            entry_fee: Fee in the smallest currency unit
            percentage_goal: Weight-loss goal in percent

        Returns:
            Created challenge
        """
        if not title or not title.strip():
            raise ValidationError("Title is required")

        start_date = ensure_aware(start_date)
        end_date = ensure_aware(end_date)
        if start_date > end_date:
            raise ValidationError("End date must be after start date")

        if isinstance(entry_fee, bool) or not isinstance(entry_fee, int):
            raise ValidationError("Entry fee must be an integer amount")
        if not settings.MIN_ENTRY_FEE <= entry_fee <= settings.MAX_ENTRY_FEE:
            raise ValidationError(
                f"Entry fee must be between {settings.MIN_ENTRY_FEE} and {settings.MAX_ENTRY_FEE}"
            )

        try:
            goal = Decimal(str(percentage_goal))
        except (InvalidOperation, ValueError):
            raise ValidationError("Weight loss goal must be a number")
        if not goal.is_finite() or not (
            settings.MIN_PERCENTAGE_GOAL <= goal <= settings.MAX_PERCENTAGE_GOAL
        ):
            raise ValidationError(
                f"Weight loss goal must be between {settings.MIN_PERCENTAGE_GOAL}% "
                f"and {settings.MAX_PERCENTAGE_GOAL}%"
            )

        challenge = Challenge(
            id=str(uuid.uuid4()),
            host_id=host_id,
            title=title.strip(),
            description=description or "",
            start_date=start_date,
            end_date=end_date,
            entry_fee=entry_fee,
            percentage_goal=goal,
            status="open",
            created_at=datetime.now(timezone.utc),
        )
        created = await self.repository.insert_challenge(challenge)

        logger.info(
            f"Created challenge '{created.title}' by user {host_id}",
            {"challenge_id": created.id, "entry_fee": entry_fee},
        )
        return created

    async def get_challenge(self, challenge_id: str) -> Challenge:
        challenge = await self.repository.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")
        return challenge

    async def list_challenges(self, status: Optional[str] = None) -> List[Challenge]:
        return await self.repository.list_challenges(status=status)

    async def join_challenge(
        self, challenge_id: str, user_id: str, start_weight
    ) -> Participant:
        """
        Join a challenge. The start weight becomes the participant's fixed
        baseline for progress.
        """
        weight = parse_weight(start_weight)
        challenge = await self.get_challenge(challenge_id)

        if challenge.status not in JOINABLE_STATUSES:
            raise IllegalStateError(f"Cannot join a {challenge.status} challenge")

        existing = await self.repository.get_participant(challenge_id, user_id)
        if existing is not None:
            raise ValidationError("Already joined this challenge")

        participant = Participant(
            id=str(uuid.uuid4()),
            user_id=user_id,
            challenge_id=challenge_id,
            start_weight=weight,
            paid=False,
            joined_at=datetime.now(timezone.utc),
        )
        joined = await self.repository.insert_participant(participant)

        logger.info(
            f"User {user_id} joined challenge {challenge_id}",
            {"challenge_id": challenge_id, "user_id": user_id},
        )
        await self.broadcaster.publish(
            RealtimeEvent(
                kind="participant-joined",
                challenge_id=challenge_id,
                payload={"user_id": user_id, "participant_id": joined.id},
            )
        )
        return joined

    async def get_participant(self, challenge_id: str, user_id: str) -> Participant:
        participant = await self.repository.get_participant(challenge_id, user_id)
        if participant is None:
            raise NotFoundError("Not a participant in this challenge")
        return participant

    async def list_participants(self, challenge_id: str) -> List[Participant]:
        await self.get_challenge(challenge_id)
        return await self.repository.list_participants(challenge_id)

    async def confirm_payment(self, challenge_id: str, user_id: str) -> Participant:
        """
        Record the payment processor's confirmation of an entry fee.

        `paid` flips to True at most once; repeated confirmations return the
        participant unchanged.
        """
        participant = await self.get_participant(challenge_id, user_id)
        if participant.paid:
            return participant

        updated = await self.repository.mark_participant_paid(
            challenge_id, user_id, datetime.now(timezone.utc)
        )
        if updated is None:
            # Someone else confirmed it between our read and write
            return await self.get_participant(challenge_id, user_id)

        logger.info(
            f"Entry fee confirmed for user {user_id} in challenge {challenge_id}",
            {"challenge_id": challenge_id, "user_id": user_id},
        )
        await self.broadcaster.publish(
            RealtimeEvent(
                kind="payment-confirmed",
                challenge_id=challenge_id,
                payload={"user_id": user_id},
            )
        )
        return updated

    async def transition_status(
        self,
        challenge_id: str,
        new_status: str,
        actor_id: str,
        is_admin: bool = False,
    ) -> Challenge:
        """
        Move a challenge forward in its lifecycle. Only the host or an
        administrator may do this, and only along allowed transitions.
        """
        challenge = await self.get_challenge(challenge_id)

        if not is_admin and challenge.host_id != actor_id:
            raise ForbiddenError("Only the host or an administrator can change status")

        if not challenge.can_transition_to(new_status):
            raise IllegalStateError(
                f"Cannot move challenge from {challenge.status} to {new_status}"
            )

        updated = await self.repository.update_challenge_status(
            challenge_id, challenge.status, new_status
        )
        if updated is None:
            raise IllegalStateError("Challenge status changed concurrently, retry")

        logger.info(
            f"Challenge {challenge_id} moved from {challenge.status} to {new_status}",
            {"challenge_id": challenge_id, "actor_id": actor_id},
        )
        await self.broadcaster.publish(
            RealtimeEvent(
                kind="challenge-status",
                challenge_id=challenge_id,
                payload={"previous_status": challenge.status, "status": new_status},
            )
        )
        return updated
