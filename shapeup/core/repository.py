"""
Persistence collaborator for the challenge core.

Two backends share one contract:
- SupabaseChallengeRepository: PostgREST tables (deployed environments)
- InMemoryChallengeRepository: process-local maps (local runs and tests)

Both provide atomic inserts for the keys the core relies on:
one participant per (user, challenge) and one settlement per challenge.
Weight records are append-only and always read back ordered by
(recorded_at, sequence).
"""

from __future__ import annotations

import itertools
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from shapeup.core.config import settings
from shapeup.core.exceptions import ValidationError
from shapeup.models.challenge import Challenge, Participant
from shapeup.models.chat import ChatMessage
from shapeup.models.feed import FeedComment, FeedPost
from shapeup.models.settlement import SettlementResult
from shapeup.models.weight import WeightRecord, WeightReview
from shapeup.services.logger import logger


def _record_sort_key(record: WeightRecord) -> Tuple[datetime, int]:
    return (record.recorded_at, record.sequence)


class ChallengeRepository(ABC):
    """Storage contract consumed by the services."""

    # Challenges
    @abstractmethod
    async def insert_challenge(self, challenge: Challenge) -> Challenge: ...

    @abstractmethod
    async def get_challenge(self, challenge_id: str) -> Optional[Challenge]: ...

    @abstractmethod
    async def list_challenges(self, status: Optional[str] = None) -> List[Challenge]: ...

    @abstractmethod
    async def update_challenge_status(
        self, challenge_id: str, expected_status: str, new_status: str
    ) -> Optional[Challenge]:
        """Compare-and-set the status. Returns None if the current status differs."""

    # Participants
    @abstractmethod
    async def insert_participant(self, participant: Participant) -> Participant: ...

    @abstractmethod
    async def get_participant(
        self, challenge_id: str, user_id: str
    ) -> Optional[Participant]: ...

    @abstractmethod
    async def list_participants(self, challenge_id: str) -> List[Participant]: ...

    @abstractmethod
    async def mark_participant_paid(
        self, challenge_id: str, user_id: str, paid_at: datetime
    ) -> Optional[Participant]:
        """Flip paid false->true. Returns None when the participant was already paid."""

    # Weight records
    @abstractmethod
    async def insert_weight_record(self, record: WeightRecord) -> WeightRecord: ...

    @abstractmethod
    async def get_weight_record(self, record_id: str) -> Optional[WeightRecord]: ...

    @abstractmethod
    async def list_weight_records(
        self,
        challenge_id: str,
        user_id: Optional[str] = None,
        recorded_before: Optional[datetime] = None,
    ) -> List[WeightRecord]: ...

    @abstractmethod
    async def insert_weight_review(self, review: WeightReview) -> WeightReview: ...

    @abstractmethod
    async def list_weight_reviews(self, challenge_id: str) -> List[WeightReview]: ...

    # Chat
    @abstractmethod
    async def insert_chat_message(self, message: ChatMessage) -> ChatMessage: ...

    @abstractmethod
    async def get_chat_message(self, message_id: str) -> Optional[ChatMessage]: ...

    @abstractmethod
    async def update_chat_message(
        self, message_id: str, updates: Dict[str, Any]
    ) -> Optional[ChatMessage]: ...

    @abstractmethod
    async def delete_chat_message(self, message_id: str) -> bool: ...

    @abstractmethod
    async def list_chat_messages(self, challenge_id: str) -> List[ChatMessage]: ...

    # Community feed
    @abstractmethod
    async def insert_feed_post(self, post: FeedPost) -> FeedPost: ...

    @abstractmethod
    async def get_feed_post(self, post_id: str) -> Optional[FeedPost]: ...

    @abstractmethod
    async def update_feed_post(
        self, post_id: str, updates: Dict[str, Any]
    ) -> Optional[FeedPost]: ...

    @abstractmethod
    async def list_feed_posts(self, challenge_id: str) -> List[FeedPost]: ...

    @abstractmethod
    async def insert_feed_comment(self, comment: FeedComment) -> FeedComment: ...

    @abstractmethod
    async def list_feed_comments(self, post_id: str) -> List[FeedComment]:
        """Comments on a post, oldest first."""

    # Settlements
    @abstractmethod
    async def get_settlement(self, challenge_id: str) -> Optional[SettlementResult]: ...

    @abstractmethod
    async def insert_settlement_if_absent(
        self, result: SettlementResult
    ) -> Tuple[SettlementResult, bool]:
        """Store the result unless one exists. Returns (stored_result, created)."""


class InMemoryChallengeRepository(ChallengeRepository):
    """Process-local storage guarded by a single lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._challenges: Dict[str, Challenge] = {}
        self._participants: Dict[Tuple[str, str], Participant] = {}
        self._weight_records: Dict[str, WeightRecord] = {}
        self._weight_reviews: Dict[str, WeightReview] = {}
        self._chat_messages: Dict[str, ChatMessage] = {}
        self._feed_posts: Dict[str, FeedPost] = {}
        self._feed_comments: Dict[str, FeedComment] = {}
        self._settlements: Dict[str, SettlementResult] = {}

    async def insert_challenge(self, challenge: Challenge) -> Challenge:
        with self._lock:
            self._challenges[challenge.id] = challenge.model_copy(deep=True)
            return challenge.model_copy(deep=True)

    async def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            return challenge.model_copy(deep=True) if challenge else None

    async def list_challenges(self, status: Optional[str] = None) -> List[Challenge]:
        with self._lock:
            challenges = [
                c.model_copy(deep=True)
                for c in self._challenges.values()
                if status is None or c.status == status
            ]
        return sorted(challenges, key=lambda c: c.start_date)

    async def update_challenge_status(
        self, challenge_id: str, expected_status: str, new_status: str
    ) -> Optional[Challenge]:
        with self._lock:
            challenge = self._challenges.get(challenge_id)
            if challenge is None or challenge.status != expected_status:
                return None
            updated = challenge.model_copy(update={"status": new_status})
            self._challenges[challenge_id] = updated
            return updated.model_copy(deep=True)

    async def insert_participant(self, participant: Participant) -> Participant:
        key = (participant.challenge_id, participant.user_id)
        with self._lock:
            if key in self._participants:
                raise ValidationError("Already joined this challenge")
            self._participants[key] = participant.model_copy(deep=True)
            return participant.model_copy(deep=True)

    async def get_participant(
        self, challenge_id: str, user_id: str
    ) -> Optional[Participant]:
        with self._lock:
            participant = self._participants.get((challenge_id, user_id))
            return participant.model_copy(deep=True) if participant else None

    async def list_participants(self, challenge_id: str) -> List[Participant]:
        with self._lock:
            participants = [
                p.model_copy(deep=True)
                for (cid, _), p in self._participants.items()
                if cid == challenge_id
            ]
        return sorted(participants, key=lambda p: p.joined_at)

    async def mark_participant_paid(
        self, challenge_id: str, user_id: str, paid_at: datetime
    ) -> Optional[Participant]:
        key = (challenge_id, user_id)
        with self._lock:
            participant = self._participants.get(key)
            if participant is None or participant.paid:
                return None
            updated = participant.model_copy(update={"paid": True, "paid_at": paid_at})
            self._participants[key] = updated
            return updated.model_copy(deep=True)

    async def insert_weight_record(self, record: WeightRecord) -> WeightRecord:
        with self._lock:
            stored = record.model_copy(update={"sequence": next(self._sequence)})
            self._weight_records[stored.id] = stored
            return stored.model_copy(deep=True)

    async def get_weight_record(self, record_id: str) -> Optional[WeightRecord]:
        with self._lock:
            record = self._weight_records.get(record_id)
            return record.model_copy(deep=True) if record else None

    async def list_weight_records(
        self,
        challenge_id: str,
        user_id: Optional[str] = None,
        recorded_before: Optional[datetime] = None,
    ) -> List[WeightRecord]:
        with self._lock:
            records = [
                r.model_copy(deep=True)
                for r in self._weight_records.values()
                if r.challenge_id == challenge_id
                and (user_id is None or r.user_id == user_id)
                and (recorded_before is None or r.recorded_at <= recorded_before)
            ]
        return sorted(records, key=_record_sort_key)

    async def insert_weight_review(self, review: WeightReview) -> WeightReview:
        with self._lock:
            self._weight_reviews[review.id] = review.model_copy(deep=True)
            return review.model_copy(deep=True)

    async def list_weight_reviews(self, challenge_id: str) -> List[WeightReview]:
        with self._lock:
            reviews = [
                r.model_copy(deep=True)
                for r in self._weight_reviews.values()
                if r.challenge_id == challenge_id
            ]
        return sorted(reviews, key=lambda r: r.reviewed_at)

    async def insert_chat_message(self, message: ChatMessage) -> ChatMessage:
        with self._lock:
            self._chat_messages[message.id] = message.model_copy(deep=True)
            return message.model_copy(deep=True)

    async def get_chat_message(self, message_id: str) -> Optional[ChatMessage]:
        with self._lock:
            message = self._chat_messages.get(message_id)
            return message.model_copy(deep=True) if message else None

    async def update_chat_message(
        self, message_id: str, updates: Dict[str, Any]
    ) -> Optional[ChatMessage]:
        with self._lock:
            message = self._chat_messages.get(message_id)
            if message is None:
                return None
            updated = message.model_copy(update=updates)
            self._chat_messages[message_id] = updated
            return updated.model_copy(deep=True)

    async def delete_chat_message(self, message_id: str) -> bool:
        with self._lock:
            return self._chat_messages.pop(message_id, None) is not None

    async def list_chat_messages(self, challenge_id: str) -> List[ChatMessage]:
        with self._lock:
            messages = [
                m.model_copy(deep=True)
                for m in self._chat_messages.values()
                if m.challenge_id == challenge_id
            ]
        return sorted(messages, key=lambda m: m.sent_at)

    async def insert_feed_post(self, post: FeedPost) -> FeedPost:
        with self._lock:
            self._feed_posts[post.id] = post.model_copy(deep=True)
            return post.model_copy(deep=True)

    async def get_feed_post(self, post_id: str) -> Optional[FeedPost]:
        with self._lock:
            post = self._feed_posts.get(post_id)
            return post.model_copy(deep=True) if post else None

    async def update_feed_post(
        self, post_id: str, updates: Dict[str, Any]
    ) -> Optional[FeedPost]:
        with self._lock:
            post = self._feed_posts.get(post_id)
            if post is None:
                return None
            updated = post.model_copy(update=updates)
            self._feed_posts[post_id] = updated
            return updated.model_copy(deep=True)

    async def list_feed_posts(self, challenge_id: str) -> List[FeedPost]:
        with self._lock:
            return [
                p.model_copy(deep=True)
                for p in self._feed_posts.values()
                if p.challenge_id == challenge_id
            ]

    async def insert_feed_comment(self, comment: FeedComment) -> FeedComment:
        with self._lock:
            self._feed_comments[comment.id] = comment.model_copy(deep=True)
            return comment.model_copy(deep=True)

    async def list_feed_comments(self, post_id: str) -> List[FeedComment]:
        with self._lock:
            comments = [
                c.model_copy(deep=True)
                for c in self._feed_comments.values()
                if c.post_id == post_id
            ]
        return sorted(comments, key=lambda c: c.created_at)

    async def get_settlement(self, challenge_id: str) -> Optional[SettlementResult]:
        with self._lock:
            result = self._settlements.get(challenge_id)
            return result.model_copy(deep=True) if result else None

    async def insert_settlement_if_absent(
        self, result: SettlementResult
    ) -> Tuple[SettlementResult, bool]:
        with self._lock:
            existing = self._settlements.get(result.challenge_id)
            if existing is not None:
                return existing.model_copy(deep=True), False
            self._settlements[result.challenge_id] = result.model_copy(deep=True)
            return result.model_copy(deep=True), True


class SupabaseChallengeRepository(ChallengeRepository):
    """PostgREST-backed storage. Unique constraints provide the atomic inserts."""

    def __init__(self, client=None) -> None:
        self._client = client

    @property
    def supabase(self):
        if self._client is None:
            from shapeup.core.database import get_supabase_client

            self._client = get_supabase_client()
        return self._client

    @staticmethod
    def _is_unique_violation(exc: Exception) -> bool:
        return getattr(exc, "code", None) == "23505" or "duplicate key" in str(exc)

    async def insert_challenge(self, challenge: Challenge) -> Challenge:
        row = challenge.model_dump(mode="json", exclude_none=True)
        result = self.supabase.table("challenges").insert(row).execute()
        if not result.data:
            raise Exception("Failed to create challenge")
        return Challenge.model_validate(result.data[0])

    async def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        result = (
            self.supabase.table("challenges")
            .select("*")
            .eq("id", challenge_id)
            .maybe_single()
            .execute()
        )
        if not result or not result.data:
            return None
        return Challenge.model_validate(result.data)

    async def list_challenges(self, status: Optional[str] = None) -> List[Challenge]:
        query = self.supabase.table("challenges").select("*")
        if status:
            query = query.eq("status", status)
        result = query.order("start_date").execute()
        return [Challenge.model_validate(row) for row in result.data or []]

    async def update_challenge_status(
        self, challenge_id: str, expected_status: str, new_status: str
    ) -> Optional[Challenge]:
        result = (
            self.supabase.table("challenges")
            .update({"status": new_status})
            .eq("id", challenge_id)
            .eq("status", expected_status)
            .execute()
        )
        if not result.data:
            return None
        return Challenge.model_validate(result.data[0])

    async def insert_participant(self, participant: Participant) -> Participant:
        row = participant.model_dump(mode="json", exclude_none=True)
        try:
            result = self.supabase.table("challenge_participants").insert(row).execute()
        except Exception as e:
            if self._is_unique_violation(e):
                raise ValidationError("Already joined this challenge")
            raise
        if not result.data:
            raise Exception("Failed to join challenge")
        return Participant.model_validate(result.data[0])

    async def get_participant(
        self, challenge_id: str, user_id: str
    ) -> Optional[Participant]:
        result = (
            self.supabase.table("challenge_participants")
            .select("*")
            .eq("challenge_id", challenge_id)
            .eq("user_id", user_id)
            .maybe_single()
            .execute()
        )
        if not result or not result.data:
            return None
        return Participant.model_validate(result.data)

    async def list_participants(self, challenge_id: str) -> List[Participant]:
        result = (
            self.supabase.table("challenge_participants")
            .select("*")
            .eq("challenge_id", challenge_id)
            .order("joined_at")
            .execute()
        )
        return [Participant.model_validate(row) for row in result.data or []]

    async def mark_participant_paid(
        self, challenge_id: str, user_id: str, paid_at: datetime
    ) -> Optional[Participant]:
        # The paid=false filter makes the flip happen at most once
        result = (
            self.supabase.table("challenge_participants")
            .update({"paid": True, "paid_at": paid_at.isoformat()})
            .eq("challenge_id", challenge_id)
            .eq("user_id", user_id)
            .eq("paid", False)
            .execute()
        )
        if not result.data:
            return None
        return Participant.model_validate(result.data[0])

    async def insert_weight_record(self, record: WeightRecord) -> WeightRecord:
        # sequence is assigned by the database (bigserial)
        row = record.model_dump(mode="json", exclude_none=True, exclude={"sequence"})
        result = self.supabase.table("weight_records").insert(row).execute()
        if not result.data:
            raise Exception("Failed to store weight record")
        return WeightRecord.model_validate(result.data[0])

    async def get_weight_record(self, record_id: str) -> Optional[WeightRecord]:
        result = (
            self.supabase.table("weight_records")
            .select("*")
            .eq("id", record_id)
            .maybe_single()
            .execute()
        )
        if not result or not result.data:
            return None
        return WeightRecord.model_validate(result.data)

    async def list_weight_records(
        self,
        challenge_id: str,
        user_id: Optional[str] = None,
        recorded_before: Optional[datetime] = None,
    ) -> List[WeightRecord]:
        query = (
            self.supabase.table("weight_records")
            .select("*")
            .eq("challenge_id", challenge_id)
        )
        if user_id:
            query = query.eq("user_id", user_id)
        if recorded_before:
            query = query.lte("recorded_at", recorded_before.isoformat())
        result = query.order("recorded_at").order("sequence").execute()
        records = [WeightRecord.model_validate(row) for row in result.data or []]
        return sorted(records, key=_record_sort_key)

    async def insert_weight_review(self, review: WeightReview) -> WeightReview:
        row = review.model_dump(mode="json", exclude_none=True)
        result = self.supabase.table("weight_record_reviews").insert(row).execute()
        if not result.data:
            raise Exception("Failed to store weight review")
        return WeightReview.model_validate(result.data[0])

    async def list_weight_reviews(self, challenge_id: str) -> List[WeightReview]:
        result = (
            self.supabase.table("weight_record_reviews")
            .select("*")
            .eq("challenge_id", challenge_id)
            .order("reviewed_at")
            .execute()
        )
        return [WeightReview.model_validate(row) for row in result.data or []]

    async def insert_chat_message(self, message: ChatMessage) -> ChatMessage:
        row = message.model_dump(mode="json", exclude_none=True)
        result = self.supabase.table("challenge_chat_messages").insert(row).execute()
        if not result.data:
            raise Exception("Failed to store chat message")
        return ChatMessage.model_validate(result.data[0])

    async def get_chat_message(self, message_id: str) -> Optional[ChatMessage]:
        result = (
            self.supabase.table("challenge_chat_messages")
            .select("*")
            .eq("id", message_id)
            .maybe_single()
            .execute()
        )
        if not result or not result.data:
            return None
        return ChatMessage.model_validate(result.data)

    async def update_chat_message(
        self, message_id: str, updates: Dict[str, Any]
    ) -> Optional[ChatMessage]:
        row = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in updates.items()
        }
        result = (
            self.supabase.table("challenge_chat_messages")
            .update(row)
            .eq("id", message_id)
            .execute()
        )
        if not result.data:
            return None
        return ChatMessage.model_validate(result.data[0])

    async def delete_chat_message(self, message_id: str) -> bool:
        result = (
            self.supabase.table("challenge_chat_messages")
            .delete()
            .eq("id", message_id)
            .execute()
        )
        return bool(result.data)

    async def list_chat_messages(self, challenge_id: str) -> List[ChatMessage]:
        result = (
            self.supabase.table("challenge_chat_messages")
            .select("*")
            .eq("challenge_id", challenge_id)
            .order("sent_at")
            .execute()
        )
        return [ChatMessage.model_validate(row) for row in result.data or []]

    async def insert_feed_post(self, post: FeedPost) -> FeedPost:
        row = post.model_dump(mode="json", exclude_none=True)
        result = self.supabase.table("feed_posts").insert(row).execute()
        if not result.data:
            raise Exception("Failed to store feed post")
        return FeedPost.model_validate(result.data[0])

    async def get_feed_post(self, post_id: str) -> Optional[FeedPost]:
        result = (
            self.supabase.table("feed_posts")
            .select("*")
            .eq("id", post_id)
            .maybe_single()
            .execute()
        )
        if not result or not result.data:
            return None
        return FeedPost.model_validate(result.data)

    async def update_feed_post(
        self, post_id: str, updates: Dict[str, Any]
    ) -> Optional[FeedPost]:
        row = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in updates.items()
        }
        result = self.supabase.table("feed_posts").update(row).eq("id", post_id).execute()
        if not result.data:
            return None
        return FeedPost.model_validate(result.data[0])

    async def list_feed_posts(self, challenge_id: str) -> List[FeedPost]:
        result = (
            self.supabase.table("feed_posts")
            .select("*")
            .eq("challenge_id", challenge_id)
            .execute()
        )
        return [FeedPost.model_validate(row) for row in result.data or []]

    async def insert_feed_comment(self, comment: FeedComment) -> FeedComment:
        row = comment.model_dump(mode="json", exclude_none=True)
        result = self.supabase.table("feed_comments").insert(row).execute()
        if not result.data:
            raise Exception("Failed to store feed comment")
        return FeedComment.model_validate(result.data[0])

    async def list_feed_comments(self, post_id: str) -> List[FeedComment]:
        result = (
            self.supabase.table("feed_comments")
            .select("*")
            .eq("post_id", post_id)
            .order("created_at")
            .execute()
        )
        return [FeedComment.model_validate(row) for row in result.data or []]

    async def get_settlement(self, challenge_id: str) -> Optional[SettlementResult]:
        result = (
            self.supabase.table("challenge_settlements")
            .select("*")
            .eq("challenge_id", challenge_id)
            .maybe_single()
            .execute()
        )
        if not result or not result.data:
            return None
        return SettlementResult.model_validate(result.data)

    async def insert_settlement_if_absent(
        self, result: SettlementResult
    ) -> Tuple[SettlementResult, bool]:
        row = result.model_dump(mode="json")
        try:
            inserted = self.supabase.table("challenge_settlements").insert(row).execute()
        except Exception as e:
            if not self._is_unique_violation(e):
                raise
            existing = await self.get_settlement(result.challenge_id)
            if existing is None:
                raise
            logger.warning(
                f"Settlement for challenge {result.challenge_id} was already stored",
                {"challenge_id": result.challenge_id},
            )
            return existing, False
        return SettlementResult.model_validate(inserted.data[0]), True


_repository: Optional[ChallengeRepository] = None


def get_repository() -> ChallengeRepository:
    """Shared repository for the configured STORAGE_BACKEND."""
    global _repository
    if _repository is None:
        if settings.STORAGE_BACKEND == "supabase":
            _repository = SupabaseChallengeRepository()
        else:
            _repository = InMemoryChallengeRepository()
    return _repository
