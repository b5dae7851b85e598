"""
Leaderboard Service

Ranks challenge participants by percentage lost. The leaderboard is a view
recomputed on every read; weight records can arrive out of order, so a stored
ranking would go stale.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set, Tuple

from shapeup.core.exceptions import NotFoundError
from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.models.challenge import Participant
from shapeup.models.weight import LeaderboardEntry, Progress, WeightRecord
from shapeup.services.progress_calculator import compute_progress
from shapeup.services.weight_record_store import WeightRecordStore


def _ranking_key(item: Tuple[Participant, Progress]):
    participant, progress = item
    # Never weighed in sorts last whatever the nominal 0.0%
    no_weigh_ins = progress.total_weigh_ins == 0
    return (
        no_weigh_ins,
        -progress.percentage_lost,
        progress.last_weigh_in or participant.joined_at,
        participant.joined_at,
        participant.user_id,
    )


def rank_participants(
    participants: Sequence[Participant],
    records_by_user: Dict[str, List[WeightRecord]],
    window_days: Optional[int] = None,
) -> List[LeaderboardEntry]:
    """
    Order participants best first.

    Ties on percentage lost go to the earliest last weigh-in, then join time,
    then user id, so any two participants compare strictly.
    """
    scored = [
        (
            participant,
            compute_progress(
                participant.start_weight,
                records_by_user.get(participant.user_id, []),
                window_days,
            ),
        )
        for participant in participants
    ]
    scored.sort(key=_ranking_key)

    return [
        LeaderboardEntry(
            rank=rank,
            user_id=participant.user_id,
            participant_id=participant.id,
            paid=participant.paid,
            start_weight=participant.start_weight,
            joined_at=participant.joined_at,
            latest_weight=progress.latest_weight,
            percentage_lost=progress.percentage_lost,
            weekly_trend=progress.weekly_trend,
            last_weigh_in=progress.last_weigh_in,
            total_weigh_ins=progress.total_weigh_ins,
        )
        for rank, (participant, progress) in enumerate(scored, start=1)
    ]


class LeaderboardService:
    """Service for reading challenge leaderboards"""

    def __init__(
        self,
        repository: Optional[ChallengeRepository] = None,
        weight_store: Optional[WeightRecordStore] = None,
    ) -> None:
        self.repository = repository or get_repository()
        self.weight_store = weight_store or WeightRecordStore(self.repository)

    async def get_leaderboard(
        self, challenge_id: str, recorded_before: Optional[datetime] = None
    ) -> List[LeaderboardEntry]:
        """
        Get challenge leaderboard.

        Args:
            challenge_id: Challenge ID
            recorded_before: Only count records at or before this time
                (settlement passes the challenge end date)

        Returns:
            Ranked entries, best performer first
        """
        challenge = await self.repository.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")

        participants = await self.repository.list_participants(challenge_id)
        records_by_user = await self.weight_store.list_for_challenge(
            challenge_id, recorded_before=recorded_before
        )
        rejected = await self._rejected_record_ids(challenge_id)
        if rejected:
            records_by_user = {
                user_id: [r for r in records if r.id not in rejected]
                for user_id, records in records_by_user.items()
            }
        return rank_participants(participants, records_by_user)

    async def _rejected_record_ids(self, challenge_id: str) -> Set[str]:
        """Records whose most recent review rejected them."""
        verdicts: Dict[str, str] = {}
        for review in await self.repository.list_weight_reviews(challenge_id):
            verdicts[review.record_id] = review.status
        return {record_id for record_id, status in verdicts.items() if status == "rejected"}
