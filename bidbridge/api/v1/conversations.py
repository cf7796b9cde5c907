"""Project-scoped two-party messaging."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.api.deps import get_current_user, get_db
from bidbridge.core.conversations.resolver import ConversationResolver
from bidbridge.core.conversations.schemas import ConversationView, MessageInput, MessageView
from bidbridge.db.models.user import User

router = APIRouter(prefix="/conversations", tags=["Conversations"])

resolver = ConversationResolver()


class ConversationOpenRequest(BaseModel):
    job_id: uuid.UUID
    other_user_id: uuid.UUID


@router.post("", response_model=ConversationView)
async def open_conversation(
    body: ConversationOpenRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await resolver.resolve(db, body.job_id, current_user.id, body.other_user_id)


@router.get("", response_model=list[ConversationView])
async def list_conversations(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await resolver.list_for_user(db, current_user.id)


@router.get("/{conversation_id}/messages", response_model=list[MessageView])
async def list_messages(
    conversation_id: uuid.UUID,
    after: int | None = Query(None, ge=0, description="Only messages with a higher sequence"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    messages = await resolver.list_messages(db, conversation_id, current_user.id, after_sequence=after)
    return [MessageView.model_validate(m) for m in messages]


@router.post("/{conversation_id}/messages", response_model=MessageView, status_code=201)
async def post_message(
    conversation_id: uuid.UUID,
    body: MessageInput,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    message = await resolver.post_message(
        db, conversation_id, current_user.id, body.text, attachment=body.attachment
    )
    return MessageView.model_validate(message)
