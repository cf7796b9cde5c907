"""Recipient-side notification endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.api.deps import get_current_user, get_db
from bidbridge.common.enums import NotificationCategory
from bidbridge.common.pagination import PaginatedResponse, PaginationParams
from bidbridge.core.notifications.dispatcher import NotificationDispatcher
from bidbridge.core.notifications.schemas import NotificationCounts
from bidbridge.db.models.notification import Notification
from bidbridge.db.models.user import User

router = APIRouter(prefix="/notifications", tags=["Notifications"])

dispatcher = NotificationDispatcher()


# ---------- Schemas ----------

class NotificationResponse(BaseModel):
    id: uuid.UUID
    category: str
    title: str
    message: str
    metadata: dict
    is_read: bool
    is_seen: bool
    read_at: str | None
    created_at: str


class NotificationListResponse(PaginatedResponse[NotificationResponse]):
    unread_count: int


class MarkSeenRequest(BaseModel):
    ids: list[uuid.UUID] | None = None


class UpdatedCount(BaseModel):
    updated: int


# ---------- Endpoints ----------

@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    params: PaginationParams = Depends(),
    category: NotificationCategory | None = None,
    unread_only: bool = False,
):
    items, total = await dispatcher.list_for_user(
        db, current_user.id, params, category=category, unread_only=unread_only
    )
    counts = await dispatcher.counts(db, current_user.id)

    return NotificationListResponse(
        items=[_notif_response(n) for n in items],
        total=total, page=params.page, page_size=params.page_size,
        total_pages=params.total_pages(total), unread_count=counts.unread,
    )


@router.get("/counts", response_model=NotificationCounts)
async def notification_counts(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await dispatcher.counts(db, current_user.id)


@router.post("/read-all", response_model=UpdatedCount)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return UpdatedCount(updated=await dispatcher.mark_all_read(db, current_user.id))


@router.post("/seen", response_model=UpdatedCount)
async def mark_seen(
    body: MarkSeenRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return UpdatedCount(updated=await dispatcher.mark_seen(db, current_user.id, body.ids))


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notif = await dispatcher.mark_read(db, notification_id, current_user.id)
    return _notif_response(notif)


@router.delete("/{notification_id}", status_code=204)
async def delete_notification(
    notification_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await dispatcher.soft_delete(db, notification_id, current_user.id)


def _notif_response(n: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=n.id, category=n.category, title=n.title, message=n.message,
        metadata=n.metadata_ or {}, is_read=n.is_read, is_seen=n.is_seen,
        read_at=n.read_at.isoformat() if n.read_at else None,
        created_at=n.created_at.isoformat(),
    )
