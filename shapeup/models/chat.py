from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ChatMessage(BaseModel):
    id: str
    challenge_id: str
    user_id: str
    message: str
    is_pinned: bool = False
    sent_at: datetime
    edited_at: Optional[datetime] = None
