"""Conversation resolver and message log.

A conversation's id is a pure function of (project, participant pair), so
creation is an idempotent ``INSERT ... ON CONFLICT DO NOTHING`` at that id.
Concurrent resolves for the same pair all land on the same row.
"""

from __future__ import annotations

import uuid

from sqlalchemy import or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.common.exceptions import (
    BadRequestError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)
from bidbridge.common.logging import get_logger
from bidbridge.config import settings
from bidbridge.core import lookups
from bidbridge.core.conversations.schemas import ConversationView, ParticipantView
from bidbridge.core.notifications import outbox, templates
from bidbridge.core.quotes.schemas import Attachment
from bidbridge.db.base import utcnow
from bidbridge.db.models.conversation import Conversation, Message
from bidbridge.db.models.project import Project
from bidbridge.db.models.user import User
from bidbridge.db.transactions import run_atomic

logger = get_logger("conversations.resolver")

CONVERSATION_NAMESPACE = uuid.UUID("6f1c2b8e-4d0a-5b7e-9c3f-2a8d1e6b4c90")
STARTED_PLACEHOLDER = "Conversation started."
MISSING_JOB_TITLE = "Job no longer available"

_INSERTS = {"postgresql": pg_insert, "sqlite": sqlite_insert}


def conversation_id_for(project_id: uuid.UUID, a: uuid.UUID, b: uuid.UUID) -> uuid.UUID:
    first, second = sorted((str(a), str(b)))
    return uuid.uuid5(CONVERSATION_NAMESPACE, f"{project_id}:{first}:{second}")


def _participant(user_id: uuid.UUID, users: dict[uuid.UUID, User]) -> ParticipantView:
    user = users.get(user_id)
    if user is None:
        return ParticipantView(id=user_id, name=lookups.UNKNOWN_USER_NAME, type="unknown")
    return ParticipantView(id=user_id, name=user.display_name, type=getattr(user.role, "value", user.role))


class ConversationResolver:
    conversation_id_for = staticmethod(conversation_id_for)

    async def resolve(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        participant_a: uuid.UUID,
        participant_b: uuid.UUID,
    ) -> ConversationView:
        if participant_a == participant_b:
            raise BadRequestError("A conversation needs two different participants")
        await lookups.get_project(db, project_id)
        users = await lookups.get_users(db, [participant_a, participant_b])
        for user_id in (participant_a, participant_b):
            if user_id not in users:
                raise NotFoundError("User", str(user_id))

        conversation_id = conversation_id_for(project_id, participant_a, participant_b)
        first, second = sorted((participant_a, participant_b), key=str)
        now = utcnow()

        dialect = db.get_bind().dialect.name
        insert = _INSERTS.get(dialect)
        if insert is None:
            logger.error("No conversation upsert for dialect %s", dialect)
            raise TransientError(f"Conversations are unavailable on the {dialect} backend")
        statement = (
            insert(Conversation)
            .values(
                id=conversation_id,
                job_id=project_id,
                participant_one_id=first,
                participant_two_id=second,
                last_message=STARTED_PLACEHOLDER,
                last_message_at=now,
                message_sequence=0,
                created_at=now,
                updated_at=now,
                is_deleted=False,
            )
            .on_conflict_do_nothing(index_elements=["id"])
        )

        async def _work() -> None:
            await db.execute(statement)

        await run_atomic(db, _work, resource="Conversation", resource_id=str(conversation_id))
        conversation = await self._get(db, conversation_id)
        views = await self._enrich(db, [conversation], viewer_id=participant_a)
        return views[0]

    async def list_for_user(self, db: AsyncSession, user_id: uuid.UUID) -> list[ConversationView]:
        result = await db.execute(
            select(Conversation)
            .where(
                or_(
                    Conversation.participant_one_id == user_id,
                    Conversation.participant_two_id == user_id,
                ),
                Conversation.is_deleted.is_(False),
            )
            .order_by(Conversation.last_message_at.desc(), Conversation.id)
            .execution_options(populate_existing=True)
        )
        return await self._enrich(db, list(result.scalars().all()), viewer_id=user_id)

    async def post_message(
        self,
        db: AsyncSession,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        text: str | None,
        attachment: Attachment | None = None,
    ) -> Message:
        conversation = await self._get(db, conversation_id)
        if not conversation.has_participant(sender_id):
            raise PermissionDeniedError("You are not a participant in this conversation")
        body = (text or "").strip()
        if not body and attachment is None:
            raise BadRequestError("A message needs text or an attachment")

        users = await lookups.get_users(db, conversation.participant_ids)
        sender_name = _participant(sender_id, users).name
        recipients = [
            (user_id, _participant(user_id, users).name)
            for user_id in conversation.participant_ids
            if user_id != sender_id
        ]
        job_title = await self._job_title(db, conversation.job_id)
        now = utcnow()

        async def _work() -> Message:
            sequence = (
                await db.execute(
                    update(Conversation)
                    .where(Conversation.id == conversation_id)
                    .values(message_sequence=Conversation.message_sequence + 1)
                    .returning(Conversation.message_sequence)
                    .execution_options(synchronize_session=False)
                )
            ).scalar_one()

            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                sender_name=sender_name,
                text=body,
                attachment=attachment.model_dump() if attachment else None,
                sequence=sequence,
                created_at=now,
                updated_at=now,
            )
            db.add(message)
            await db.flush()

            await db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(
                    last_message=body or "Sent an attachment",
                    last_message_at=now,
                    last_sender_id=sender_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            outbox.enqueue(
                db,
                *templates.message_posted(
                    message_id=message.id,
                    conversation_id=conversation_id,
                    sender_id=sender_id,
                    sender_name=sender_name,
                    recipients=recipients,
                    text=body,
                    job_title=job_title,
                    preview_length=settings.MESSAGE_PREVIEW_LENGTH,
                ),
            )
            return message

        message = await run_atomic(db, _work, resource="Conversation", resource_id=str(conversation_id))
        logger.debug("Message %d posted to conversation %s", message.sequence, conversation_id)
        return message

    async def list_messages(
        self,
        db: AsyncSession,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
        after_sequence: int | None = None,
    ) -> list[Message]:
        conversation = await self._get(db, conversation_id)
        if not conversation.has_participant(user_id):
            raise PermissionDeniedError("You are not a participant in this conversation")

        query = select(Message).where(
            Message.conversation_id == conversation_id, Message.is_deleted.is_(False)
        )
        if after_sequence is not None:
            query = query.where(Message.sequence > after_sequence)
        result = await db.execute(query.order_by(Message.sequence.asc()))
        return list(result.scalars().all())

    async def _get(self, db: AsyncSession, conversation_id: uuid.UUID) -> Conversation:
        result = await db.execute(
            select(Conversation)
            .where(Conversation.id == conversation_id, Conversation.is_deleted.is_(False))
            .execution_options(populate_existing=True)
        )
        conversation = result.scalar_one_or_none()
        if not conversation:
            raise NotFoundError("Conversation", str(conversation_id))
        return conversation

    async def _job_title(self, db: AsyncSession, project_id: uuid.UUID) -> str:
        titles = await self._job_titles(db, [project_id])
        return titles.get(project_id, MISSING_JOB_TITLE)

    async def _job_titles(self, db: AsyncSession, project_ids: list[uuid.UUID]) -> dict[uuid.UUID, str]:
        if not project_ids:
            return {}
        result = await db.execute(
            select(Project.id, Project.title).where(
                Project.id.in_(list(set(project_ids))), Project.is_deleted.is_(False)
            )
        )
        return {project_id: title for project_id, title in result.all()}

    async def _enrich(
        self,
        db: AsyncSession,
        conversations: list[Conversation],
        viewer_id: uuid.UUID,
    ) -> list[ConversationView]:
        user_ids = [uid for c in conversations for uid in c.participant_ids]
        users = await lookups.get_users(db, user_ids)
        titles = await self._job_titles(db, [c.job_id for c in conversations])

        views = []
        for conversation in conversations:
            participants = [_participant(uid, users) for uid in conversation.participant_ids]
            other = next((p for p in participants if p.id != viewer_id), None)
            views.append(
                ConversationView(
                    id=conversation.id,
                    job_id=conversation.job_id,
                    job_title=titles.get(conversation.job_id, MISSING_JOB_TITLE),
                    participant_ids=conversation.participant_ids,
                    participants=participants,
                    other_participant=other,
                    last_message=conversation.last_message,
                    last_message_at=conversation.last_message_at,
                    last_sender_id=conversation.last_sender_id,
                    created_at=conversation.created_at,
                )
            )
        return views
