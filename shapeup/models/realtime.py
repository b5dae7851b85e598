from __future__ import annotations

from typing import Any, Dict, Literal

from pydantic import BaseModel, Field


EventKind = Literal[
    "weight-update",
    "weight-verification",
    "participant-joined",
    "payment-confirmed",
    "chat-message",
    "chat-edit",
    "chat-pin",
    "chat-delete",
    "feed-post",
    "feed-comment",
    "feed-pin",
    "challenge-status",
    "challenge-settled",
]


class RealtimeEvent(BaseModel):
    kind: EventKind
    challenge_id: str
    payload: Dict[str, Any] = Field(default_factory=dict)
