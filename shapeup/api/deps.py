"""
Service wiring for the API.

All services share one repository and one broadcaster so that a weigh-in
posted through one endpoint is visible to the leaderboard and to realtime
observers immediately. Tests swap the container via
`app.dependency_overrides[get_services]`.
"""

from dataclasses import dataclass
from typing import Any, Optional

from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.services.challenge_service import ChallengeService
from shapeup.services.chat_service import ChatService
from shapeup.services.feed_service import FeedService
from shapeup.services.leaderboard_service import LeaderboardService
from shapeup.services.moderation_service import ModerationService
from shapeup.services.payment_service import PaymentGateway, get_payment_gateway
from shapeup.services.realtime_service import EventBroadcaster, event_broadcaster
from shapeup.services.settlement_service import SettlementService
from shapeup.services.weight_record_store import WeightRecordStore


@dataclass
class Services:
    repository: ChallengeRepository
    broadcaster: EventBroadcaster
    challenges: ChallengeService
    weights: WeightRecordStore
    leaderboard: LeaderboardService
    settlement: SettlementService
    chat: ChatService
    feed: FeedService
    moderation: ModerationService


def build_services(
    repository: Optional[ChallengeRepository] = None,
    broadcaster: Optional[EventBroadcaster] = None,
    payment_gateway: Optional[PaymentGateway] = None,
    redis_client: Any = None,
) -> Services:
    repository = repository or get_repository()
    broadcaster = broadcaster or event_broadcaster
    weights = WeightRecordStore(repository, broadcaster)
    leaderboard = LeaderboardService(repository, weights)
    return Services(
        repository=repository,
        broadcaster=broadcaster,
        challenges=ChallengeService(repository, broadcaster),
        weights=weights,
        leaderboard=leaderboard,
        settlement=SettlementService(
            repository=repository,
            leaderboard_service=leaderboard,
            payment_gateway=payment_gateway or get_payment_gateway(),
            broadcaster=broadcaster,
            redis_client=redis_client,
        ),
        chat=ChatService(repository, broadcaster),
        feed=FeedService(repository, broadcaster),
        moderation=ModerationService(repository, broadcaster),
    )


_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services
