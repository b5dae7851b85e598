from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


PayoutStatus = Literal["ready", "blocked"]


class PayoutInstruction(BaseModel):
    user_id: str
    rank: int
    percentage_lost: Decimal
    amount: int = Field(..., ge=0)
    destination: Optional[str] = Field(
        None, description="Payout account reference from the payment processor"
    )
    status: PayoutStatus = "ready"


class IneligibleParticipant(BaseModel):
    """A participant who reached the goal but cannot share the pool."""

    user_id: str
    rank: int
    percentage_lost: Decimal
    reason: Literal["entry_fee_unpaid"] = "entry_fee_unpaid"


class NoWinnersError(BaseModel):
    """
    Settlement outcome when nobody reached the goal.

    This is a value, not an exception: the caller decides on refund or
    rollover, the pool is left undistributed.
    """

    challenge_id: str
    pool: int
    paid_participants: int
    message: str = "No paid participant reached the weight-loss goal"


class SettlementResult(BaseModel):
    challenge_id: str
    entry_fee: int
    percentage_goal: Decimal
    paid_participants: int
    pool: int
    platform_fee: int
    distributable: int
    payouts: List[PayoutInstruction] = Field(default_factory=list)
    ineligible: List[IneligibleParticipant] = Field(default_factory=list)
    no_winners: Optional[NoWinnersError] = None
    settled_at: datetime

    @property
    def has_winners(self) -> bool:
        return self.no_winners is None
