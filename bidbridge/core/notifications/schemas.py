import uuid
from typing import Any

from pydantic import BaseModel, Field

from bidbridge.common.enums import NotificationCategory


class NotificationEvent(BaseModel):
    """One logical alert, delivered as one record per recipient."""

    recipient_ids: list[uuid.UUID]
    category: NotificationCategory
    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationCounts(BaseModel):
    total: int
    unread: int
    unseen: int
