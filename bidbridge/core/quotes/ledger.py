"""Quote ledger: the only writer of quote rows and of a project's quote counter.

Submission bumps the project's counter and inserts the quote in one unit of
work, guarded by a conditional UPDATE on ``status = 'open'`` so a quote can
never land on a project that was assigned or cancelled in the meantime.
"""

from __future__ import annotations

import uuid

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.common.enums import ProjectStatus, QuoteStatus
from bidbridge.common.exceptions import (
    ConflictError,
    DuplicateQuoteError,
    InvalidStateError,
    PermissionDeniedError,
)
from bidbridge.common.logging import get_logger
from bidbridge.core import lookups
from bidbridge.core.engagement.workflow import ensure_transition
from bidbridge.core.notifications import outbox, templates
from bidbridge.core.quotes.schemas import QuoteInput, QuotePatch
from bidbridge.db.base import utcnow
from bidbridge.db.models.project import Project
from bidbridge.db.models.quote import Quote
from bidbridge.db.transactions import run_atomic

logger = get_logger("quotes.ledger")


def _value(status) -> str:
    return getattr(status, "value", status)


class QuoteLedger:
    async def submit(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        provider_id: uuid.UUID,
        data: QuoteInput,
    ) -> Quote:
        project = await lookups.get_project(db, project_id)
        if project.poster_id == provider_id:
            raise PermissionDeniedError("You cannot quote on your own project")
        if _value(project.status) != ProjectStatus.OPEN.value:
            raise ConflictError(
                f"Project '{project_id}' is {_value(project.status)} and no longer accepts quotes"
            )

        existing = await db.execute(
            select(Quote.id).where(
                Quote.project_id == project_id,
                Quote.provider_id == provider_id,
                Quote.status != QuoteStatus.WITHDRAWN.value,
            )
        )
        if existing.first() is not None:
            raise DuplicateQuoteError(str(project_id), str(provider_id))

        provider_name = await lookups.display_name(db, provider_id, fallback="A provider")

        async def _work() -> Quote:
            result = await db.execute(
                update(Project)
                .where(
                    Project.id == project_id,
                    Project.status == ProjectStatus.OPEN.value,
                    Project.is_deleted.is_(False),
                )
                .values(
                    quote_count=Project.quote_count + 1,
                    quote_sequence=Project.quote_sequence + 1,
                    updated_at=utcnow(),
                )
                .returning(Project.quote_sequence)
                .execution_options(synchronize_session=False)
            )
            sequence = result.scalar_one_or_none()
            if sequence is None:
                raise ConflictError(f"Project '{project_id}' stopped accepting quotes")

            quote = Quote(
                project_id=project_id,
                provider_id=provider_id,
                amount=data.amount,
                timeline_days=data.timeline_days,
                description=data.description,
                attachments=[a.model_dump() for a in data.attachments],
                status=QuoteStatus.SUBMITTED.value,
                sequence=sequence,
            )
            db.add(quote)
            await db.flush()

            outbox.enqueue(
                db,
                *templates.quote_submitted(
                    quote_id=quote.id,
                    project_id=project.id,
                    project_title=project.title,
                    poster_id=project.poster_id,
                    provider_id=provider_id,
                    provider_name=provider_name,
                    amount=data.amount,
                ),
            )
            return quote

        quote = await run_atomic(
            db,
            _work,
            resource="Project",
            resource_id=str(project_id),
            on_integrity_error=lambda e: DuplicateQuoteError(str(project_id), str(provider_id)),
        )
        logger.info("Quote %s submitted on project %s by %s", quote.id, project_id, provider_id)
        return quote

    async def update(
        self,
        db: AsyncSession,
        quote_id: uuid.UUID,
        editor_id: uuid.UUID,
        patch: QuotePatch,
    ) -> Quote:
        quote = await lookups.get_quote(db, quote_id)
        if quote.provider_id != editor_id:
            raise PermissionDeniedError("Only the quote's provider can edit it")
        if _value(quote.status) != QuoteStatus.SUBMITTED.value:
            raise InvalidStateError("Quote", str(quote_id), _value(quote.status), "edit")

        values = patch.model_dump(
            exclude_unset=True, exclude_none=True, include={"amount", "timeline_days", "description"}
        )
        added = [a.model_dump() for a in patch.attachments or []]
        if not values and not added:
            return quote

        async def _work() -> None:
            changes = dict(values, updated_at=utcnow())
            if not added:
                await self._guarded_update(db, quote_id, changes, action="edit")
                return

            # Append to the list as stored now; the write only lands if the
            # row is unchanged since this read.
            row = (
                await db.execute(
                    select(Quote.attachments, Quote.updated_at)
                    .where(Quote.id == quote_id)
                    .with_for_update()
                )
            ).one()
            changes["attachments"] = list(row.attachments or []) + added
            await self._guarded_update(
                db, quote_id, changes, action="edit", expected_updated_at=row.updated_at
            )

        await run_atomic(db, _work, resource="Quote", resource_id=str(quote_id))
        await db.refresh(quote)
        return quote

    async def withdraw(self, db: AsyncSession, quote_id: uuid.UUID, provider_id: uuid.UUID) -> Quote:
        quote = await lookups.get_quote(db, quote_id)
        if quote.provider_id != provider_id:
            raise PermissionDeniedError("Only the quote's provider can withdraw it")
        if _value(quote.status) != QuoteStatus.SUBMITTED.value:
            raise InvalidStateError("Quote", str(quote_id), _value(quote.status), "withdraw")
        ensure_transition(quote.status, QuoteStatus.WITHDRAWN, str(quote_id))

        now = utcnow()

        async def _work() -> None:
            await self._guarded_update(
                db,
                quote_id,
                {"status": QuoteStatus.WITHDRAWN.value, "withdrawn_at": now, "updated_at": now},
                action="withdraw",
            )
            # Clamped: the counter never goes negative
            await db.execute(
                update(Project)
                .where(Project.id == quote.project_id)
                .values(
                    quote_count=case((Project.quote_count > 0, Project.quote_count - 1), else_=0),
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

        await run_atomic(db, _work, resource="Quote", resource_id=str(quote_id))
        await db.refresh(quote)
        logger.info("Quote %s withdrawn by %s", quote_id, provider_id)
        return quote

    async def list_for_project(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        requester_id: uuid.UUID,
        status: QuoteStatus | None = None,
    ) -> list[Quote]:
        project = await lookups.get_project(db, project_id)
        if project.poster_id != requester_id:
            raise PermissionDeniedError("Only the project's poster can list its quotes")

        query = select(Quote).where(Quote.project_id == project_id, Quote.is_deleted.is_(False))
        if status is not None:
            query = query.where(Quote.status == status.value)
        query = query.order_by(Quote.created_at.desc(), Quote.sequence.asc())
        result = await db.execute(query.execution_options(populate_existing=True))
        return list(result.scalars().all())

    async def list_for_provider(
        self,
        db: AsyncSession,
        provider_id: uuid.UUID,
        requester_id: uuid.UUID,
    ) -> list[Quote]:
        if provider_id != requester_id:
            raise PermissionDeniedError("You can only list your own quotes")
        result = await db.execute(
            select(Quote)
            .where(Quote.provider_id == provider_id, Quote.is_deleted.is_(False))
            .order_by(Quote.created_at.desc(), Quote.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get(self, db: AsyncSession, quote_id: uuid.UUID, requester_id: uuid.UUID) -> Quote:
        quote = await lookups.get_quote(db, quote_id)
        if quote.provider_id == requester_id:
            return quote
        project = await lookups.get_project(db, quote.project_id)
        if project.poster_id != requester_id:
            raise PermissionDeniedError("You do not have access to this quote")
        return quote

    async def _guarded_update(
        self,
        db: AsyncSession,
        quote_id: uuid.UUID,
        values: dict,
        action: str,
        expected_updated_at=None,
    ) -> None:
        query = update(Quote).where(Quote.id == quote_id, Quote.status == QuoteStatus.SUBMITTED.value)
        if expected_updated_at is not None:
            query = query.where(Quote.updated_at == expected_updated_at)
        result = await db.execute(query.values(**values).execution_options(synchronize_session=False))
        if result.rowcount != 1:
            current = await db.scalar(select(Quote.status).where(Quote.id == quote_id))
            if expected_updated_at is not None and _value(current) == QuoteStatus.SUBMITTED.value:
                raise ConflictError(f"Quote '{quote_id}' was changed by another request; retry the edit")
            raise InvalidStateError("Quote", str(quote_id), _value(current), action)
