"""
Weight records and their verification reviews
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from shapeup.api.deps import Services, get_services
from shapeup.core.auth import get_current_user
from shapeup.core.exceptions import NotFoundError
from shapeup.models.weight import Progress, WeightRecord, WeightReview
from shapeup.services.progress_calculator import compute_progress

router = APIRouter(redirect_slashes=False)


class WeightRecordCreate(BaseModel):
    weight: Decimal
    recorded_at: Optional[datetime] = None
    image_ref: Optional[str] = Field(None, max_length=2048)


class WeightReviewCreate(BaseModel):
    status: Literal["approved", "rejected"]
    feedback: Optional[str] = Field(None, max_length=1000)


class MyWeightsResponse(BaseModel):
    records: List[WeightRecord]
    progress: Progress


@router.post(
    "/{challenge_id}/weights",
    response_model=WeightRecord,
    status_code=status.HTTP_201_CREATED,
)
async def record_weight(
    challenge_id: str,
    data: WeightRecordCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Append a weigh-in for the current user"""
    return await services.weights.append(
        current_user["id"],
        challenge_id,
        data.weight,
        recorded_at=data.recorded_at,
        image_ref=data.image_ref,
    )


@router.get("/{challenge_id}/weights/me", response_model=MyWeightsResponse)
async def get_my_weights(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Current user's weigh-ins (oldest first) and progress"""
    participant = await services.challenges.get_participant(
        challenge_id, current_user["id"]
    )
    records = await services.weights.list_for(current_user["id"], challenge_id)
    return MyWeightsResponse(
        records=records,
        progress=compute_progress(participant.start_weight, records),
    )


@router.get("/{challenge_id}/weights/pending", response_model=List[WeightRecord])
async def list_pending_weights(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Photo-verified weigh-ins that still need a review"""
    return await services.moderation.list_pending_records(
        challenge_id,
        current_user["id"],
        is_admin=current_user.get("is_admin", False),
    )


@router.get("/{challenge_id}/weights/reviews", response_model=List[WeightReview])
async def list_weight_reviews(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.challenges.get_challenge(challenge_id)
    return await services.moderation.list_reviews(challenge_id)


@router.post(
    "/{challenge_id}/weights/{record_id}/review",
    response_model=WeightReview,
    status_code=status.HTTP_201_CREATED,
)
async def review_weight(
    challenge_id: str,
    record_id: str,
    data: WeightReviewCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    record = await services.repository.get_weight_record(record_id)
    if record is None or record.challenge_id != challenge_id:
        raise NotFoundError("Weight record not found")

    return await services.moderation.review_weight_record(
        record_id,
        data.status,
        current_user["id"],
        is_admin=current_user.get("is_admin", False),
        feedback=data.feedback,
    )
