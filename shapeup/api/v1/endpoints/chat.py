"""
Challenge chat endpoints
"""

from typing import List

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from shapeup.api.deps import Services, get_services
from shapeup.core.auth import get_current_user
from shapeup.models.chat import ChatMessage

router = APIRouter(redirect_slashes=False)


class ChatMessageCreate(BaseModel):
    message: str


class ChatPinUpdate(BaseModel):
    is_pinned: bool


@router.get("/{challenge_id}/chat", response_model=List[ChatMessage])
async def list_messages(
    challenge_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    """Pinned messages first, then oldest to newest"""
    return await services.chat.list_messages(challenge_id)


@router.post(
    "/{challenge_id}/chat",
    response_model=ChatMessage,
    status_code=status.HTTP_201_CREATED,
)
async def post_message(
    challenge_id: str,
    data: ChatMessageCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.chat.post_message(
        challenge_id, current_user["id"], data.message
    )


@router.patch("/{challenge_id}/chat/{message_id}", response_model=ChatMessage)
async def edit_message(
    challenge_id: str,
    message_id: str,
    data: ChatMessageCreate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.chat.edit_message(
        challenge_id, message_id, current_user["id"], data.message
    )


@router.post("/{challenge_id}/chat/{message_id}/pin", response_model=ChatMessage)
async def pin_message(
    challenge_id: str,
    message_id: str,
    data: ChatPinUpdate,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.chat.set_pinned(
        challenge_id,
        message_id,
        current_user["id"],
        data.is_pinned,
        is_admin=current_user.get("is_admin", False),
    )


@router.delete(
    "/{challenge_id}/chat/{message_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_message(
    challenge_id: str,
    message_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await services.chat.delete_message(
        challenge_id,
        message_id,
        current_user["id"],
        is_admin=current_user.get("is_admin", False),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
