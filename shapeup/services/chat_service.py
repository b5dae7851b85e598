"""
Challenge chat: messages, edits, pins and deletions. Every change is fanned out
to the challenge's observers.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from shapeup.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from shapeup.core.repository import ChallengeRepository, get_repository
from shapeup.models.challenge import Challenge
from shapeup.models.chat import ChatMessage
from shapeup.models.realtime import RealtimeEvent
from shapeup.services.logger import logger
from shapeup.services.realtime_service import EventBroadcaster, event_broadcaster

MAX_MESSAGE_LENGTH = 2000


def _clean_message(message: str) -> str:
    text = (message or "").strip()
    if not text:
        raise ValidationError("Message cannot be empty")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message cannot exceed {MAX_MESSAGE_LENGTH} characters")
    return text


class ChatService:
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

    async def _get_message(self, challenge_id: str, message_id: str) -> ChatMessage:
        message = await self.repository.get_chat_message(message_id)
        if message is None or message.challenge_id != challenge_id:
            raise NotFoundError("Message not found")
        return message

    async def _require_moderator(
        self, challenge: Challenge, actor_id: str, is_admin: bool
    ) -> None:
        if not is_admin and challenge.host_id != actor_id:
            raise ForbiddenError("Only the host or an administrator can moderate chat")

    async def _publish(self, kind: str, message: ChatMessage, **extra) -> None:
        payload = message.model_dump(mode="json")
        payload.update(extra)
        await self.broadcaster.publish(
            RealtimeEvent(kind=kind, challenge_id=message.challenge_id, payload=payload)
        )

    async def post_message(
        self, challenge_id: str, user_id: str, message: str
    ) -> ChatMessage:
        text = _clean_message(message)
        challenge = await self._get_challenge(challenge_id)

        if challenge.host_id != user_id:
            participant = await self.repository.get_participant(challenge_id, user_id)
            if participant is None:
                raise ForbiddenError("Only participants can post in this chat")

        chat_message = ChatMessage(
            id=str(uuid.uuid4()),
            challenge_id=challenge_id,
            user_id=user_id,
            message=text,
            sent_at=datetime.now(timezone.utc),
        )
        stored = await self.repository.insert_chat_message(chat_message)
        await self._publish("chat-message", stored)
        return stored

    async def edit_message(
        self, challenge_id: str, message_id: str, user_id: str, message: str
    ) -> ChatMessage:
        text = _clean_message(message)
        existing = await self._get_message(challenge_id, message_id)
        if existing.user_id != user_id:
            raise ForbiddenError("Only the author can edit a message")

        updated = await self.repository.update_chat_message(
            message_id, {"message": text, "edited_at": datetime.now(timezone.utc)}
        )
        if updated is None:
            raise NotFoundError("Message not found")
        await self._publish("chat-edit", updated)
        return updated

    async def set_pinned(
        self,
        challenge_id: str,
        message_id: str,
        actor_id: str,
        is_pinned: bool,
        is_admin: bool = False,
    ) -> ChatMessage:
        challenge = await self._get_challenge(challenge_id)
        await self._require_moderator(challenge, actor_id, is_admin)
        await self._get_message(challenge_id, message_id)

        updated = await self.repository.update_chat_message(
            message_id, {"is_pinned": is_pinned}
        )
        if updated is None:
            raise NotFoundError("Message not found")

        logger.info(
            f"Message {message_id} {'pinned' if is_pinned else 'unpinned'} by {actor_id}",
            {"challenge_id": challenge_id},
        )
        await self._publish("chat-pin", updated, moderator_id=actor_id)
        return updated

    async def delete_message(
        self,
        challenge_id: str,
        message_id: str,
        actor_id: str,
        is_admin: bool = False,
    ) -> None:
        challenge = await self._get_challenge(challenge_id)
        message = await self._get_message(challenge_id, message_id)
        if message.user_id != actor_id:
            await self._require_moderator(challenge, actor_id, is_admin)

        deleted = await self.repository.delete_chat_message(message_id)
        if not deleted:
            raise NotFoundError("Message not found")

        logger.info(
            f"Message {message_id} deleted by {actor_id}",
            {"challenge_id": challenge_id},
        )
        await self.broadcaster.publish(
            RealtimeEvent(
                kind="chat-delete",
                challenge_id=challenge_id,
                payload={"id": message_id, "moderator_id": actor_id},
            )
        )

    async def list_messages(self, challenge_id: str) -> List[ChatMessage]:
        """Pinned messages first, then oldest to newest."""
        await self._get_challenge(challenge_id)
        messages = await self.repository.list_chat_messages(challenge_id)
        return sorted(messages, key=lambda m: (not m.is_pinned, m.sent_at))
