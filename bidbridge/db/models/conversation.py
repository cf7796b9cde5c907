import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from bidbridge.db.base import BaseModel, JSONType


class Conversation(BaseModel):
    """Two-party thread scoped to a project. ``id`` is derived, never random."""

    __tablename__ = "conversations"

    job_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    # Stored sorted so (first, second) is canonical for the pair
    participant_one_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    participant_two_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    last_sender_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    message_sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def participant_ids(self) -> list[uuid.UUID]:
        return [self.participant_one_id, self.participant_two_id]

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in (self.participant_one_id, self.participant_two_id)


class Message(BaseModel):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_messages_conversation_sequence"),
    )

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("conversations.id"), nullable=False, index=True
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    sender_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachment: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
