from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, Literal, Optional

from pydantic import BaseModel, Field


ChallengeStatus = Literal["open", "in-progress", "completed", "cancelled"]

# Status only moves forward; completed and cancelled are terminal.
ALLOWED_STATUS_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "open": frozenset({"in-progress", "cancelled"}),
    "in-progress": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

JOINABLE_STATUSES = ("open", "in-progress")


class Challenge(BaseModel):
    id: str
    host_id: str = Field(..., description="User who created and hosts the challenge")
    title: str
    description: str = ""
    start_date: datetime
    end_date: datetime
    entry_fee: int = Field(..., gt=0, description="Entry fee in the smallest currency unit")
    percentage_goal: Decimal = Field(..., gt=0, description="Weight-loss goal, in percent")
    status: ChallengeStatus = "open"
    created_at: Optional[datetime] = None

    def can_transition_to(self, new_status: str) -> bool:
        return new_status in ALLOWED_STATUS_TRANSITIONS.get(self.status, frozenset())


class Participant(BaseModel):
    id: str
    user_id: str
    challenge_id: str
    start_weight: Decimal = Field(..., gt=0)
    paid: bool = False
    joined_at: datetime
    paid_at: Optional[datetime] = None
