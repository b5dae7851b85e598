"""Tests for the challenge community feed."""

from datetime import timedelta

import pytest

from shapeup.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from shapeup.models.feed import FeedPost
from shapeup.services.feed_service import MAX_COMMENT_LENGTH, MAX_POST_LENGTH
from shapeup.services.weight_record_store import utcnow
from tests.conftest import HOST_ID, START, FakeConnection, add_participant, create_challenge


async def challenge_with_members(services):
    challenge = await create_challenge(services)
    await add_participant(services, challenge.id, "a", 100)
    await add_participant(services, challenge.id, "b", 100)
    return challenge


async def stored_post(services, challenge_id, post_id, minutes, is_pinned=False):
    return await services.repository.insert_feed_post(
        FeedPost(
            id=post_id,
            challenge_id=challenge_id,
            user_id="a",
            content=post_id,
            is_pinned=is_pinned,
            created_at=START + timedelta(minutes=minutes),
        )
    )


@pytest.mark.asyncio
async def test_members_post_and_observers_hear(services, registry):
    challenge = await challenge_with_members(services)
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    post = await services.feed.create_post(
        challenge.id, "a", "  Down 2kg!  ", image_ref="photos/scale.jpg"
    )

    assert post.content == "Down 2kg!"
    assert post.image_ref == "photos/scale.jpg"
    assert observer.kinds() == ["feed-post"]
    assert observer.sent[0]["payload"]["id"] == post.id


@pytest.mark.asyncio
async def test_outsider_cannot_post_or_comment(services):
    challenge = await challenge_with_members(services)
    post = await services.feed.create_post(challenge.id, "a", "hello")

    with pytest.raises(ForbiddenError):
        await services.feed.create_post(challenge.id, "stranger", "hi")
    with pytest.raises(ForbiddenError):
        await services.feed.add_comment(challenge.id, post.id, "stranger", "hi")


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   ", "x" * (MAX_POST_LENGTH + 1)])
async def test_post_content_validation(services, text):
    challenge = await challenge_with_members(services)

    with pytest.raises(ValidationError):
        await services.feed.create_post(challenge.id, "a", text)


@pytest.mark.asyncio
async def test_posts_listed_pinned_first_then_newest(services):
    challenge = await challenge_with_members(services)
    await stored_post(services, challenge.id, "old", 0)
    await stored_post(services, challenge.id, "rules", 1, is_pinned=True)
    await stored_post(services, challenge.id, "new", 2)

    posts = await services.feed.list_posts(challenge.id, "b")

    assert [p.id for p in posts] == ["rules", "new", "old"]


@pytest.mark.asyncio
async def test_only_host_pins(services, registry):
    challenge = await challenge_with_members(services)
    post = await services.feed.create_post(challenge.id, "a", "milestone")

    with pytest.raises(ForbiddenError):
        await services.feed.set_pinned(challenge.id, post.id, "a", True)
    with pytest.raises(ForbiddenError):
        await services.feed.create_post(challenge.id, "a", "me first", is_pinned=True)

    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)
    pinned = await services.feed.set_pinned(challenge.id, post.id, HOST_ID, True)

    assert pinned.is_pinned is True
    assert observer.kinds() == ["feed-pin"]
    assert observer.sent[0]["payload"]["moderator_id"] == HOST_ID

    admin_post = await services.feed.create_post(
        challenge.id, "admin-1", "announcement", is_pinned=True, is_admin=True
    )
    assert admin_post.is_pinned is True


@pytest.mark.asyncio
async def test_scheduled_post_hidden_until_due(services, registry):
    challenge = await challenge_with_members(services)
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)
    due = utcnow() + timedelta(hours=1)

    post = await services.feed.create_post(
        challenge.id, HOST_ID, "Week two starts now", scheduled_for=due
    )

    assert observer.kinds() == []
    assert await services.feed.list_posts(challenge.id, "a") == []
    assert [p.id for p in await services.feed.list_posts(challenge.id, HOST_ID)] == [post.id]
    with pytest.raises(NotFoundError):
        await services.feed.add_comment(challenge.id, post.id, "a", "early bird")

    later = await services.feed.list_posts(challenge.id, "a", now=due + timedelta(seconds=1))
    assert [p.id for p in later] == [post.id]


@pytest.mark.asyncio
async def test_schedule_must_be_in_future(services):
    challenge = await challenge_with_members(services)

    with pytest.raises(ValidationError):
        await services.feed.create_post(
            challenge.id, HOST_ID, "too late", scheduled_for=utcnow() - timedelta(minutes=1)
        )


@pytest.mark.asyncio
async def test_comments_oldest_first(services, registry):
    challenge = await challenge_with_members(services)
    post = await services.feed.create_post(challenge.id, "a", "Day one done")
    observer = FakeConnection()
    registry.subscribe(observer, challenge.id)

    first = await services.feed.add_comment(challenge.id, post.id, "b", "Nice!")
    second = await services.feed.add_comment(challenge.id, post.id, HOST_ID, "Keep going")

    comments = await services.feed.list_comments(challenge.id, post.id, "a")
    assert [c.id for c in comments] == [first.id, second.id]
    assert observer.kinds() == ["feed-comment", "feed-comment"]

    with pytest.raises(ValidationError):
        await services.feed.add_comment(challenge.id, post.id, "b", "x" * (MAX_COMMENT_LENGTH + 1))


@pytest.mark.asyncio
async def test_post_from_other_challenge_not_found(services):
    challenge = await challenge_with_members(services)
    other = await create_challenge(services)
    post = await services.feed.create_post(challenge.id, "a", "hello")

    with pytest.raises(NotFoundError):
        await services.feed.list_comments(other.id, post.id, HOST_ID)
    with pytest.raises(NotFoundError):
        await services.feed.set_pinned(other.id, post.id, HOST_ID, True)
