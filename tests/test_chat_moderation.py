"""Tests for challenge chat and weigh-in verification reviews."""

import pytest

from shapeup.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from shapeup.services.chat_service import MAX_MESSAGE_LENGTH
from tests.conftest import (
    HOST_ID,
    FakeConnection,
    add_participant,
    create_challenge,
    record_weight,
)


async def challenge_with_members(services):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)
    await add_participant(services, challenge.id, "b", 100)
    return challenge


@pytest.mark.asyncio
async def test_participants_and_host_can_post(services, registry):
    challenge = await challenge_with_members(services)
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    await services.chat.post_message(challenge.id, "a", "  Day one done!  ")
    await services.chat.post_message(challenge.id, HOST_ID, "Welcome all")

    messages = await services.chat.list_messages(challenge.id)
    assert [m.message for m in messages] == ["Day one done!", "Welcome all"]
    assert observer.kinds() == ["chat-message", "chat-message"]


@pytest.mark.asyncio
async def test_outsider_cannot_post(services):
    challenge = await challenge_with_members(services)

    with pytest.raises(ForbiddenError):
        await services.chat.post_message(challenge.id, "stranger", "hi")


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "x" * (MAX_MESSAGE_LENGTH + 1)])
async def test_message_validation(services, text):
    challenge = await challenge_with_members(services)

    with pytest.raises(ValidationError):
        await services.chat.post_message(challenge.id, "a", text)


@pytest.mark.asyncio
async def test_only_author_edits(services, registry):
    challenge = await challenge_with_members(services)
    message = await services.chat.post_message(challenge.id, "a", "typo")
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    with pytest.raises(ForbiddenError):
        await services.chat.edit_message(challenge.id, message.id, "b", "hijack")

    edited = await services.chat.edit_message(challenge.id, message.id, "a", "fixed")
    assert edited.message == "fixed"
    assert edited.edited_at is not None
    assert observer.kinds() == ["chat-edit"]


@pytest.mark.asyncio
async def test_pinned_messages_listed_first(services, registry):
    challenge = await challenge_with_members(services)
    first = await services.chat.post_message(challenge.id, "a", "first")
    rules = await services.chat.post_message(challenge.id, HOST_ID, "rules")
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    await services.chat.set_pinned(challenge.id, rules.id, HOST_ID, True)

    messages = await services.chat.list_messages(challenge.id)
    assert [m.id for m in messages] == [rules.id, first.id]
    assert observer.kinds() == ["chat-pin"]
    assert observer.sent[0]["payload"]["moderator_id"] == HOST_ID


@pytest.mark.asyncio
async def test_participant_cannot_pin(services):
    challenge = await challenge_with_members(services)
    message = await services.chat.post_message(challenge.id, "a", "me first")

    with pytest.raises(ForbiddenError):
        await services.chat.set_pinned(challenge.id, message.id, "a", True)

    pinned = await services.chat.set_pinned(
        challenge.id, message.id, "admin-1", True, is_admin=True
    )
    assert pinned.is_pinned


@pytest.mark.asyncio
async def test_delete_permissions(services, registry):
    challenge = await challenge_with_members(services)
    own = await services.chat.post_message(challenge.id, "a", "oops")
    other = await services.chat.post_message(challenge.id, "a", "spam")
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    with pytest.raises(ForbiddenError):
        await services.chat.delete_message(challenge.id, other.id, "b")

    await services.chat.delete_message(challenge.id, own.id, "a")
    await services.chat.delete_message(challenge.id, other.id, HOST_ID)

    assert await services.chat.list_messages(challenge.id) == []
    assert observer.kinds() == ["chat-delete", "chat-delete"]

    with pytest.raises(NotFoundError):
        await services.chat.delete_message(challenge.id, own.id, "a")


@pytest.mark.asyncio
async def test_message_from_other_challenge_not_found(services):
    challenge = await challenge_with_members(services)
    other_challenge = await create_challenge(services)
    message = await services.chat.post_message(challenge.id, "a", "hello")

    with pytest.raises(NotFoundError):
        await services.chat.edit_message(other_challenge.id, message.id, "a", "moved")


@pytest.mark.asyncio
async def test_review_weight_record(services, registry):
    challenge = await challenge_with_members(services)
    record = await record_weight(services, challenge.id, "a", 96, image_ref="photos/a.jpg")
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    review = await services.moderation.review_weight_record(
        record.id, "rejected", HOST_ID, feedback="Scale not visible"
    )

    assert review.user_id == "a"
    assert review.status == "rejected"
    assert observer.kinds() == ["weight-verification"]
    assert observer.sent[0]["payload"]["feedback"] == "Scale not visible"
    assert [r.id for r in await services.moderation.list_reviews(challenge.id)] == [review.id]


@pytest.mark.asyncio
async def test_review_leaves_record_untouched(services):
    challenge = await challenge_with_members(services)
    record = await record_weight(services, challenge.id, "a", 96, image_ref="photos/a.jpg")

    await services.moderation.review_weight_record(record.id, "rejected", HOST_ID)

    records = await services.weights.list_for("a", challenge.id)
    assert records == [record]


@pytest.mark.asyncio
async def test_pending_records(services):
    challenge = await challenge_with_members(services)
    reviewed = await record_weight(services, challenge.id, "a", 96, days=1, image_ref="p/1.jpg")
    pending = await record_weight(services, challenge.id, "b", 97, days=2, image_ref="p/2.jpg")
    await record_weight(services, challenge.id, "a", 95, days=3)
    await services.moderation.review_weight_record(reviewed.id, "approved", HOST_ID)

    records = await services.moderation.list_pending_records(challenge.id, HOST_ID)

    assert [r.id for r in records] == [pending.id]

    with pytest.raises(ForbiddenError):
        await services.moderation.list_pending_records(challenge.id, "a")


@pytest.mark.asyncio
async def test_review_permissions_and_status(services):
    challenge = await challenge_with_members(services)
    record = await record_weight(services, challenge.id, "a", 96, image_ref="photos/a.jpg")

    with pytest.raises(ForbiddenError):
        await services.moderation.review_weight_record(record.id, "approved", "b")

    with pytest.raises(ValidationError):
        await services.moderation.review_weight_record(record.id, "maybe", HOST_ID)

    with pytest.raises(NotFoundError):
        await services.moderation.review_weight_record("missing", "approved", HOST_ID)

    review = await services.moderation.review_weight_record(
        record.id, "approved", "admin-1", is_admin=True
    )
    assert review.reviewer_id == "admin-1"
