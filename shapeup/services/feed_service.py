"""
Community Feed Service

Posts and comments on a challenge's feed. The host and participants may post;
only the host (or an administrator) may pin. A post scheduled for later stays
hidden from everyone but its author, the host and administrators until its
time comes.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from shapeup.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.models.challenge import Challenge
from shapeup.models.feed import FeedComment, FeedPost
from shapeup.models.realtime import RealtimeEvent
from shapeup.services.logger import logger
from shapeup.services.realtime_service import EventBroadcaster, event_broadcaster
from shapeup.services.weight_record_store import ensure_aware, utcnow

MAX_POST_LENGTH = 5000
MAX_COMMENT_LENGTH = 1000


def _clean_content(content: str, limit: int) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Content cannot be empty")
    if len(text) > limit:
        raise ValidationError(f"Content cannot exceed {limit} characters")
    return text


def published_at(post: FeedPost) -> datetime:
    return ensure_aware(post.scheduled_for or post.created_at)


def is_visible(post: FeedPost, now: datetime) -> bool:
    return post.scheduled_for is None or ensure_aware(post.scheduled_for) <= now


class FeedService:
    def __init__(
        self,
        repository: Optional[ChallengeRepository] = None,
        broadcaster: Optional[EventBroadcaster] = None,
    ) -> None:
        self.repository = repository or get_repository()
        self.broadcaster = broadcaster or event_broadcaster

    async def _get_challenge(self, challenge_id: str) -> Challenge:
        challenge = await self.repository.get_challenge(challenge_id)
        if challenge is None:
            raise NotFoundError("Challenge not found")
        return challenge

    async def _require_member(self, challenge: Challenge, user_id: str, is_admin: bool) -> None:
        if is_admin or challenge.host_id == user_id:
            return
        participant = await self.repository.get_participant(challenge.id, user_id)
        if participant is None:
            raise ForbiddenError("Only participants can post in this feed")

    def _can_see_early(
        self, challenge: Challenge, post: FeedPost, viewer_id: str, is_admin: bool
    ) -> bool:
        return is_admin or viewer_id in (post.user_id, challenge.host_id)

    async def _get_visible_post(
        self,
        challenge: Challenge,
        post_id: str,
        viewer_id: str,
        is_admin: bool,
        now: Optional[datetime] = None,
    ) -> FeedPost:
        post = await self.repository.get_feed_post(post_id)
        if post is None or post.challenge_id != challenge.id:
            raise NotFoundError("Post not found")
        if not is_visible(post, now or utcnow()) and not self._can_see_early(
            challenge, post, viewer_id, is_admin
        ):
            raise NotFoundError("Post not found")
        return post

    async def create_post(
        self,
        challenge_id: str,
        user_id: str,
        content: str,
        image_ref: Optional[str] = None,
        is_pinned: bool = False,
        scheduled_for: Optional[datetime] = None,
        is_admin: bool = False,
    ) -> FeedPost:
        """
        Create a feed post.

        Args:
            challenge_id: Challenge whose feed receives the post
            user_id: Author; must be the host or a participant
            content: Post body
            image_ref: Optional reference to an attached photo
            is_pinned: Pin on creation (host or administrator only)
            scheduled_for: Keep the post hidden until this time
            is_admin: Whether the author is an administrator

        Returns:
            The stored post
        """
        text = _clean_content(content, MAX_POST_LENGTH)
        challenge = await self._get_challenge(challenge_id)
        await self._require_member(challenge, user_id, is_admin)

        if is_pinned and not is_admin and challenge.host_id != user_id:
            raise ForbiddenError("Only the host or an administrator can pin posts")

        now = utcnow()
        if scheduled_for is not None:
            scheduled_for = ensure_aware(scheduled_for)
            if scheduled_for <= now:
                raise ValidationError("Scheduled time must be in the future")

        post = FeedPost(
            id=str(uuid.uuid4()),
            challenge_id=challenge_id,
            user_id=user_id,
            content=text,
            image_ref=image_ref,
            is_pinned=is_pinned,
            scheduled_for=scheduled_for,
            created_at=now,
        )
        stored = await self.repository.insert_feed_post(post)

        logger.info(
            f"Feed post {stored.id} created by {user_id}",
            {"challenge_id": challenge_id, "scheduled": scheduled_for is not None},
        )
        # Scheduled posts surface on the next read instead
        if scheduled_for is None:
            await self.broadcaster.publish(
                RealtimeEvent(
                    kind="feed-post",
                    challenge_id=challenge_id,
                    payload=stored.model_dump(mode="json"),
                )
            )
        return stored

    async def list_posts(
        self,
        challenge_id: str,
        viewer_id: str,
        is_admin: bool = False,
        now: Optional[datetime] = None,
    ) -> List[FeedPost]:
        """Pinned posts first, then newest first."""
        challenge = await self._get_challenge(challenge_id)
        now = now or utcnow()
        posts = [
            post
            for post in await self.repository.list_feed_posts(challenge_id)
            if is_visible(post, now) or self._can_see_early(challenge, post, viewer_id, is_admin)
        ]
        posts.sort(key=published_at, reverse=True)
        posts.sort(key=lambda p: not p.is_pinned)
        return posts

    async def set_pinned(
        self,
        challenge_id: str,
        post_id: str,
        actor_id: str,
        is_pinned: bool,
        is_admin: bool = False,
    ) -> FeedPost:
        challenge = await self._get_challenge(challenge_id)
        if not is_admin and challenge.host_id != actor_id:
            raise ForbiddenError("Only the host or an administrator can pin posts")
        await self._get_visible_post(challenge, post_id, actor_id, is_admin)

        updated = await self.repository.update_feed_post(post_id, {"is_pinned": is_pinned})
        if updated is None:
            raise NotFoundError("Post not found")

        logger.info(
            f"Feed post {post_id} {'pinned' if is_pinned else 'unpinned'} by {actor_id}",
            {"challenge_id": challenge_id},
        )
        if is_visible(updated, utcnow()):
            payload = updated.model_dump(mode="json")
            payload["moderator_id"] = actor_id
            await self.broadcaster.publish(
                RealtimeEvent(kind="feed-pin", challenge_id=challenge_id, payload=payload)
            )
        return updated

    async def add_comment(
        self,
        challenge_id: str,
        post_id: str,
        user_id: str,
        content: str,
        is_admin: bool = False,
    ) -> FeedComment:
        text = _clean_content(content, MAX_COMMENT_LENGTH)
        challenge = await self._get_challenge(challenge_id)
        await self._require_member(challenge, user_id, is_admin)
        post = await self._get_visible_post(challenge, post_id, user_id, is_admin)

        comment = FeedComment(
            id=str(uuid.uuid4()),
            post_id=post.id,
            challenge_id=challenge_id,
            user_id=user_id,
            content=text,
            created_at=utcnow(),
        )
        stored = await self.repository.insert_feed_comment(comment)

        if is_visible(post, utcnow()):
            await self.broadcaster.publish(
                RealtimeEvent(
                    kind="feed-comment",
                    challenge_id=challenge_id,
                    payload=stored.model_dump(mode="json"),
                )
            )
        return stored

    async def list_comments(
        self,
        challenge_id: str,
        post_id: str,
        viewer_id: str,
        is_admin: bool = False,
    ) -> List[FeedComment]:
        """Oldest first."""
        challenge = await self._get_challenge(challenge_id)
        await self._get_visible_post(challenge, post_id, viewer_id, is_admin)
        return await self.repository.list_feed_comments(post_id)
