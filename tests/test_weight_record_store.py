"""Tests for the append-only weight record store."""

from datetime import datetime, timedelta
from decimal import Decimal

import time

import pytest

from shapeup.core.exceptions import IllegalStateError, NotFoundError, ValidationError
from shapeup.services.progress_calculator import compute_progress
from tests.conftest import (
    START,
    FakeConnection,
    add_participant,
    complete_challenge,
    create_challenge,
    record_weight,
    start_challenge,
)


@pytest.mark.asyncio
async def test_append_assigns_increasing_sequence(services):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)

    first = await record_weight(services, challenge.id, "a", 99, days=1)
    second = await record_weight(services, challenge.id, "a", "98.4", days=1)

    assert second.sequence > first.sequence
    assert second.weight == Decimal("98.4")
    assert first.recorded_at == second.recorded_at


@pytest.mark.asyncio
async def test_append_publishes_weight_update(services, registry):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    record = await record_weight(services, challenge.id, "a", 97, days=2, image_ref="photos/a/1.jpg")

    assert observer.kinds() == ["weight-update"]
    payload = observer.sent[0]["payload"]
    assert payload["id"] == record.id
    assert payload["user_id"] == "a"
    assert payload["image_ref"] == "photos/a/1.jpg"


@pytest.mark.asyncio
@pytest.mark.parametrize("weight", [0, -1, "-72.5", "abc", None, float("nan"), "inf"])
async def test_rejects_invalid_weights(services, weight):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)

    with pytest.raises(ValidationError):
        await services.weights.append("a", challenge.id, weight)

    assert await services.weights.list_for("a", challenge.id) == []


@pytest.mark.asyncio
async def test_non_participant_cannot_record(services):
    challenge = await create_challenge(services)

    with pytest.raises(NotFoundError):
        await services.weights.append("stranger", challenge.id, 80)


@pytest.mark.asyncio
async def test_unknown_challenge(services):
    with pytest.raises(NotFoundError):
        await services.weights.append("a", "missing", 80)


@pytest.mark.asyncio
async def test_closed_challenge_rejects_records(services):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)
    await complete_challenge(services, challenge.id)

    with pytest.raises(IllegalStateError):
        await record_weight(services, challenge.id, "a", 90, days=3)


@pytest.mark.asyncio
async def test_list_for_is_ordered_by_recorded_at(services):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)
    await add_participant(services, challenge.id, "b", 100)
    await start_challenge(services, challenge.id)

    await record_weight(services, challenge.id, "a", 96, days=6)
    await record_weight(services, challenge.id, "a", 98, days=2)
    await record_weight(services, challenge.id, "b", 99, days=1)
    await record_weight(services, challenge.id, "a", 97, days=4)

    records = await services.weights.list_for("a", challenge.id)

    assert [r.weight for r in records] == [Decimal("98"), Decimal("97"), Decimal("96")]
    grouped = await services.weights.list_for_challenge(challenge.id)
    assert sorted(grouped) == ["a", "b"]
    assert len(grouped["a"]) == 3


@pytest.mark.asyncio
async def test_naive_timestamp_is_utc(services):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)

    naive = datetime(2026, 1, 7, 9, 30)
    record = await services.weights.append("a", challenge.id, 95, recorded_at=naive)

    assert record.recorded_at == START.replace(day=7, hour=9, minute=30)
    assert record.recorded_at.utcoffset() == timedelta(0)


@pytest.mark.asyncio
async def test_append_not_held_up_by_stalled_observers(services, registry, broadcaster):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)
    broadcaster.send_timeout = 0.2
    for n in range(3):
        registry.subscribe(FakeConnection(f"stalled-{n}", delay=1.0), challenge.id)

    started = time.monotonic()
    record = await record_weight(services, challenge.id, "a", 97, days=2)
    elapsed = time.monotonic() - started

    assert elapsed < 0.5
    assert await services.weights.list_for("a", challenge.id) == [record]
    assert registry.subscribers_for(challenge.id) == set()


@pytest.mark.asyncio
async def test_back_dated_record_moves_weekly_trend(services):
    challenge = await create_challenge(services)
    participant = await add_participant(services, challenge.id, "a", 100)
    await start_challenge(services, challenge.id)

    await record_weight(services, challenge.id, "a", 100, days=0)
    await record_weight(services, challenge.id, "a", 95, days=10)

    records = await services.weights.list_for("a", challenge.id)
    before = compute_progress(participant.start_weight, records, window_days=7)
    # Nothing at or before day 3 except the day-0 record
    assert before.weekly_trend == Decimal("-5")

    # Arrives last, but lands on the 7-day comparison point
    await record_weight(services, challenge.id, "a", 97, days=3)

    records = await services.weights.list_for("a", challenge.id)
    after = compute_progress(participant.start_weight, records, window_days=7)
    assert after.weekly_trend == Decimal("-2")
    assert after.latest_weight == Decimal("95")
    assert after.percentage_lost == before.percentage_lost
