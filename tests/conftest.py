"""
Pytest configuration and fixtures for ShapeUp API tests.

Everything runs against a fresh InMemoryChallengeRepository and a no-op Redis,
so no Supabase project or Redis server is needed.
"""

import asyncio
import os

# Must be set before shapeup.core.config is imported
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["REDIS_URL"] = ""

from datetime import datetime, timedelta, timezone
from typing import Any, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from main import app
from shapeup.api.deps import Services, build_services, get_services
from shapeup.core.cache import DummyRedis
from shapeup.core.repository import InMemoryChallengeRepository
from shapeup.models.challenge import Challenge, Participant
from shapeup.services.payment_service import InMemoryPaymentGateway
from shapeup.services.realtime_service import EventBroadcaster, SubscriptionRegistry

START = datetime(2026, 1, 5, 8, 0, tzinfo=timezone.utc)
END = START + timedelta(days=28)
HOST_ID = "host-1"


class FakeConnection:
    """Stands in for a WebSocket: records what it was sent."""

    def __init__(self, name: str = "conn", fail: bool = False, delay: float = 0) -> None:
        self.name = name
        self.fail = fail
        self.delay = delay
        self.sent: List[Any] = []

    async def send_json(self, data: Any) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.name} is closed")
        self.sent.append(data)

    def kinds(self) -> List[str]:
        return [message["kind"] for message in self.sent]


@pytest.fixture
def repository() -> InMemoryChallengeRepository:
    return InMemoryChallengeRepository()


@pytest.fixture
def payment_gateway() -> InMemoryPaymentGateway:
    return InMemoryPaymentGateway()


@pytest.fixture
def registry() -> SubscriptionRegistry:
    return SubscriptionRegistry()


@pytest.fixture
def broadcaster(registry: SubscriptionRegistry) -> EventBroadcaster:
    return EventBroadcaster(registry, redis_client=DummyRedis(), instance_id="test-instance")


@pytest.fixture
def services(repository, broadcaster, payment_gateway) -> Services:
    return build_services(
        repository=repository,
        broadcaster=broadcaster,
        payment_gateway=payment_gateway,
        redis_client=DummyRedis(),
    )


@pytest.fixture
def client(services: Services) -> Generator[TestClient, None, None]:
    """Test client for the FastAPI app, wired to the in-memory services."""
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app, base_url="http://test") as c:
        yield c
    app.dependency_overrides.pop(get_services, None)


@pytest.fixture
def api_base() -> str:
    """Base path for API v1 endpoints."""
    return "/api/v1"


def user_headers(user_id: str, role: str = "user") -> dict:
    """Identity headers as set by the upstream auth gateway."""
    return {"X-User-Id": user_id, "X-User-Role": role}


async def create_challenge(
    services: Services,
    host_id: str = HOST_ID,
    entry_fee: int = 40,
    percentage_goal: Any = "5",
    start_date: datetime = START,
    end_date: datetime = END,
) -> Challenge:
    return await services.challenges.create_challenge(
        host_id=host_id,
        title="New Year Shape Up",
        description="Four weeks, five percent",
        start_date=start_date,
        end_date=end_date,
        entry_fee=entry_fee,
        percentage_goal=percentage_goal,
    )


async def add_participant(
    services: Services,
    challenge_id: str,
    user_id: str,
    start_weight: Any,
    paid: bool = True,
) -> Participant:
    participant = await services.challenges.join_challenge(
        challenge_id, user_id, start_weight
    )
    if paid:
        participant = await services.challenges.confirm_payment(challenge_id, user_id)
    return participant


async def record_weight(
    services: Services,
    challenge_id: str,
    user_id: str,
    weight: Any,
    days: float = 1,
    image_ref: Optional[str] = None,
):
    """Weigh-in `days` after the challenge start."""
    return await services.weights.append(
        user_id,
        challenge_id,
        weight,
        recorded_at=START + timedelta(days=days),
        image_ref=image_ref,
    )


async def start_challenge(services: Services, challenge_id: str, host_id: str = HOST_ID):
    return await services.challenges.transition_status(challenge_id, "in-progress", host_id)


async def complete_challenge(services: Services, challenge_id: str, host_id: str = HOST_ID):
    challenge = await services.challenges.get_challenge(challenge_id)
    if challenge.status == "open":
        await start_challenge(services, challenge_id, host_id)
    return await services.challenges.transition_status(challenge_id, "completed", host_id)
