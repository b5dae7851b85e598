"""
Community feed endpoints
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from shapeup.api.deps import Services, get_services
from shapeup.core.auth import get_current_user
from shapeup.models.feed import FeedComment, FeedPost

router = APIRouter(redirect_slashes=False)


class FeedPostCreate(BaseModel):
    content: str
    image_ref: Optional[str] = None
    is_pinned: bool = False
    scheduled_for: Optional[datetime] = Field(
        None, description="Publish later; hidden from the feed until then"
    )


class FeedPinUpdate(BaseModel):
    is_pinned: bool


class FeedCommentCreate(BaseModel):
    content: str


@router.get("/{challenge_id}/posts", response_model=List[FeedPost])
async def list_posts(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Pinned posts first, then newest first"""
    return await services.feed.list_posts(
        challenge_id,
        current_user["id"],
        is_admin=current_user.get("is_admin", False),
    )


@router.post(
    "/{challenge_id}/posts",
    response_model=FeedPost,
    status_code=status.HTTP_201_CREATED,
)
async def create_post(
    challenge_id: str,
    data: FeedPostCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.feed.create_post(
        challenge_id,
        current_user["id"],
        data.content,
        image_ref=data.image_ref,
        is_pinned=data.is_pinned,
        scheduled_for=data.scheduled_for,
        is_admin=current_user.get("is_admin", False),
    )


@router.post("/{challenge_id}/posts/{post_id}/pin", response_model=FeedPost)
async def pin_post(
    challenge_id: str,
    post_id: str,
    data: FeedPinUpdate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.feed.set_pinned(
        challenge_id,
        post_id,
        current_user["id"],
        data.is_pinned,
        is_admin=current_user.get("is_admin", False),
    )


@router.get(
    "/{challenge_id}/posts/{post_id}/comments", response_model=List[FeedComment]
)
async def list_comments(
    challenge_id: str,
    post_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.feed.list_comments(
        challenge_id,
        post_id,
        current_user["id"],
        is_admin=current_user.get("is_admin", False),
    )


@router.post(
    "/{challenge_id}/posts/{post_id}/comments",
    response_model=FeedComment,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    challenge_id: str,
    post_id: str,
    data: FeedCommentCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.feed.add_comment(
        challenge_id,
        post_id,
        current_user["id"],
        data.content,
        is_admin=current_user.get("is_admin", False),
    )
