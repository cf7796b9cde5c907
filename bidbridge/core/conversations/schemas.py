import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from bidbridge.core.quotes.schemas import Attachment


class ParticipantView(BaseModel):
    id: uuid.UUID
    name: str
    type: str


class ConversationView(BaseModel):
    """A conversation as one participant sees it. Names and titles are read fresh on every call."""

    id: uuid.UUID
    job_id: uuid.UUID
    job_title: str
    participant_ids: list[uuid.UUID]
    participants: list[ParticipantView]
    other_participant: ParticipantView | None = None
    last_message: str | None = None
    last_message_at: datetime | None = None
    last_sender_id: uuid.UUID | None = None
    created_at: datetime


class MessageInput(BaseModel):
    text: str = Field(default="", max_length=10000)
    attachment: Attachment | None = None


class MessageView(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    sender_name: str | None = None
    text: str
    attachment: dict | None = None
    sequence: int
    created_at: datetime
