"""
Challenges API endpoints
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from shapeup.api.deps import Services, get_services
from shapeup.core.auth import get_current_user
from shapeup.core.exceptions import ForbiddenError
from shapeup.models.challenge import Challenge, ChallengeStatus, Participant
from shapeup.models.settlement import SettlementResult
from shapeup.models.weight import LeaderboardEntry
from shapeup.services.logger import logger

router = APIRouter(redirect_slashes=False)


class ChallengeCreate(BaseModel):
    """Request body for creating a challenge"""

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    entry_fee: int = Field(..., description="Entry fee in the smallest currency unit")
    percentage_goal: Decimal = Field(..., description="Weight-loss goal, in percent")


class JoinChallengeRequest(BaseModel):
    start_weight: Decimal


class ConfirmPaymentRequest(BaseModel):
    user_id: str


class StatusUpdateRequest(BaseModel):
    status: ChallengeStatus


def require_host_or_admin(challenge: Challenge, current_user: Dict[str, Any]) -> None:
    if not current_user.get("is_admin") and challenge.host_id != current_user["id"]:
        raise ForbiddenError("Only the host or an administrator can do this")


@router.post("", response_model=Challenge, status_code=status.HTTP_201_CREATED)
async def create_challenge(
    data: ChallengeCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Create a challenge hosted by the current user"""
    return await services.challenges.create_challenge(
        host_id=current_user["id"],
        title=data.title,
        description=data.description,
        start_date=data.start_date,
        end_date=data.end_date,
        entry_fee=data.entry_fee,
        percentage_goal=data.percentage_goal,
    )


@router.get("", response_model=List[Challenge])
async def list_challenges(
    challenge_status: Optional[ChallengeStatus] = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.challenges.list_challenges(status=challenge_status)


@router.get("/{challenge_id}", response_model=Challenge)
async def get_challenge(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.challenges.get_challenge(challenge_id)


@router.get("/{challenge_id}/participants", response_model=List[Participant])
async def list_participants(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.challenges.list_participants(challenge_id)


@router.post(
    "/{challenge_id}/join",
    response_model=Participant,
    status_code=status.HTTP_201_CREATED,
)
async def join_challenge(
    challenge_id: str,
    data: JoinChallengeRequest,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Join a challenge with a starting weight"""
    return await services.challenges.join_challenge(
        challenge_id, current_user["id"], data.start_weight
    )


@router.post("/{challenge_id}/payments/confirm", response_model=Participant)
async def confirm_payment(
    challenge_id: str,
    data: ConfirmPaymentRequest,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """
    Mark a participant's entry fee as paid.

    Called by the payment webhook relay, which authenticates as an admin.
    """
    if not current_user.get("is_admin"):
        raise ForbiddenError("Only an administrator can confirm payments")
    return await services.challenges.confirm_payment(challenge_id, data.user_id)


@router.post("/{challenge_id}/status", response_model=Challenge)
async def update_status(
    challenge_id: str,
    data: StatusUpdateRequest,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.challenges.transition_status(
        challenge_id,
        data.status,
        current_user["id"],
        is_admin=current_user.get("is_admin", False),
    )


@router.get("/{challenge_id}/leaderboard", response_model=List[LeaderboardEntry])
async def get_leaderboard(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.leaderboard.get_leaderboard(challenge_id)


@router.post("/{challenge_id}/settlement", response_model=SettlementResult)
async def settle_challenge(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """
    Settle a completed challenge. Safe to call repeatedly: the first
    stored result is returned every time.
    """
    challenge = await services.challenges.get_challenge(challenge_id)
    require_host_or_admin(challenge, current_user)

    result = await services.settlement.settle(challenge_id)
    logger.info(
        f"Settlement requested for challenge {challenge_id} by {current_user['id']}",
        {"has_winners": result.has_winners},
    )
    return result


@router.get("/{challenge_id}/settlement", response_model=SettlementResult)
async def get_settlement(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.challenges.get_challenge(challenge_id)
    result = await services.settlement.get_settlement(challenge_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Challenge has not been settled",
        )
    return result
