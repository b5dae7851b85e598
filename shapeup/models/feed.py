from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class FeedPost(BaseModel):
    id: str
    challenge_id: str
    user_id: str
    content: str
    image_ref: Optional[str] = Field(None, description="Opaque reference to an attached photo")
    is_pinned: bool = False
    scheduled_for: Optional[datetime] = Field(
        None, description="Hidden from the feed until this time"
    )
    created_at: datetime


class FeedComment(BaseModel):
    id: str
    post_id: str
    challenge_id: str
    user_id: str
    content: str
    created_at: datetime
