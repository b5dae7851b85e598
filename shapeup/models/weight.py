from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


ReviewStatus = Literal["approved", "rejected"]


class WeightRecord(BaseModel):
    id: str
    user_id: str
    challenge_id: str
    weight: Decimal = Field(..., gt=0)
    recorded_at: datetime
    image_ref: Optional[str] = Field(
        None, description="Opaque reference to the verification photo"
    )
    sequence: int = Field(0, description="Insertion order, breaks recorded_at ties")
    created_at: Optional[datetime] = None


class WeightReview(BaseModel):
    id: str
    record_id: str
    challenge_id: str
    user_id: str
    status: ReviewStatus
    feedback: Optional[str] = None
    reviewer_id: str
    reviewed_at: datetime


class Progress(BaseModel):
    latest_weight: Decimal
    percentage_lost: Decimal
    weekly_trend: Decimal
    last_weigh_in: Optional[datetime] = None
    total_weigh_ins: int = 0


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    participant_id: str
    paid: bool
    start_weight: Decimal
    joined_at: datetime
    latest_weight: Decimal
    percentage_lost: Decimal
    weekly_trend: Decimal
    last_weigh_in: Optional[datetime] = None
    total_weigh_ins: int = 0
