"""Engagement state machine: the only writer of project status.

Approval is a compare-and-swap on ``status = 'open'``. Of two approvers racing
on the same project exactly one UPDATE matches a row; the other sees zero rows
and gets a ``ConflictError`` with nothing written.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.common.enums import ProjectStatus, QuoteStatus
from bidbridge.common.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from bidbridge.common.logging import get_logger
from bidbridge.config import settings
from bidbridge.core import lookups
from bidbridge.core.engagement.schemas import ApprovalResult, ProjectCreate, ProjectUpdate
from bidbridge.core.engagement.workflow import ensure_transition
from bidbridge.core.notifications import outbox, templates
from bidbridge.db.base import utcnow
from bidbridge.db.models.project import Project
from bidbridge.db.models.quote import Quote
from bidbridge.db.transactions import run_atomic

logger = get_logger("engagement.state_machine")


def _value(status) -> str:
    return getattr(status, "value", status)


class EngagementStateMachine:
    def __init__(self, notify_rejected: bool | None = None):
        self.notify_rejected = (
            settings.NOTIFY_REJECTED_PROVIDERS if notify_rejected is None else notify_rejected
        )

    async def create_project(self, db: AsyncSession, poster_id: uuid.UUID, data: ProjectCreate) -> Project:
        project = Project(
            poster_id=poster_id,
            title=data.title,
            description=data.description,
            budget=data.budget,
            deadline=data.deadline,
            status=ProjectStatus.OPEN.value,
            quote_count=0,
            quote_sequence=0,
        )

        async def _work() -> Project:
            db.add(project)
            await db.flush()
            return project

        await run_atomic(db, _work, resource="Project", resource_id="new")
        logger.info("Project %s created by %s", project.id, poster_id)
        return project

    async def get_project(self, db: AsyncSession, project_id: uuid.UUID) -> Project:
        return await lookups.get_project(db, project_id)

    async def update_project(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        data: ProjectUpdate,
        is_admin: bool = False,
    ) -> Project:
        project = await lookups.get_project(db, project_id)
        if project.poster_id != actor_id and not is_admin:
            raise PermissionDeniedError("Only the project's poster can edit it")
        if _value(project.status) != ProjectStatus.OPEN.value:
            raise InvalidStateError("Project", str(project_id), _value(project.status), "edit")

        values = data.model_dump(exclude_unset=True)
        # A title can be changed but not cleared
        if values.get("title", "") is None:
            del values["title"]
        if not values:
            return project
        values["updated_at"] = utcnow()

        async def _work() -> None:
            result = await db.execute(
                update(Project)
                .where(
                    Project.id == project_id,
                    Project.status == ProjectStatus.OPEN.value,
                    Project.is_deleted.is_(False),
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                row = (
                    await db.execute(select(Project.status, Project.is_deleted).where(Project.id == project_id))
                ).one()
                if row.is_deleted:
                    raise NotFoundError("Project", str(project_id))
                raise InvalidStateError("Project", str(project_id), _value(row.status), "edit")

        await run_atomic(db, _work, resource="Project", resource_id=str(project_id))
        await db.refresh(project)
        logger.info("Project %s edited by %s: %s", project_id, actor_id, sorted(values))
        return project

    async def delete_project(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        is_admin: bool = False,
    ) -> list[uuid.UUID]:
        """Soft-delete a project together with all of its quotes.

        Assigned projects have to be cancelled first. Providers whose quotes
        were still live are told the project is gone. Returns the ids of the
        quotes closed along with the project.
        """
        project = await lookups.get_project(db, project_id)
        if project.poster_id != actor_id and not is_admin:
            raise PermissionDeniedError("Only the project's poster can delete it")
        old_status = _value(project.status)
        if old_status == ProjectStatus.ASSIGNED.value:
            raise InvalidStateError("Project", str(project_id), old_status, "delete")

        now = utcnow()

        async def _work() -> list[uuid.UUID]:
            result = await db.execute(
                update(Project)
                .where(
                    Project.id == project_id,
                    Project.status == old_status,
                    Project.is_deleted.is_(False),
                )
                .values(is_deleted=True, deleted_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Project '{project_id}' changed while being deleted")

            closed = (
                await db.execute(
                    update(Quote)
                    .where(Quote.project_id == project_id, Quote.is_deleted.is_(False))
                    .values(is_deleted=True, deleted_at=now, updated_at=now)
                    .returning(Quote.id, Quote.provider_id, Quote.status)
                    .execution_options(synchronize_session=False)
                )
            ).all()

            live = sorted(
                {provider for _, provider, status in closed if _value(status) == QuoteStatus.SUBMITTED.value},
                key=str,
            )
            if live:
                outbox.enqueue(
                    db,
                    templates.project_deleted(
                        project_id=project.id,
                        project_title=project.title,
                        poster_id=project.poster_id,
                        provider_ids=live,
                    ),
                )
            return [quote_id for quote_id, _, _ in closed]

        closed_ids = await run_atomic(db, _work, resource="Project", resource_id=str(project_id))
        logger.info("Project %s deleted by %s; %d quote(s) closed", project_id, actor_id, len(closed_ids))
        return closed_ids

    async def approve(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        quote_id: uuid.UUID,
        approver_id: uuid.UUID,
    ) -> ApprovalResult:
        project = await lookups.get_project(db, project_id)
        quote = await lookups.get_quote(db, quote_id)
        if quote.project_id != project.id:
            raise NotFoundError("Quote", str(quote_id))
        if project.poster_id != approver_id:
            raise PermissionDeniedError("Only the project's poster can approve a quote")
        if _value(project.status) != ProjectStatus.OPEN.value:
            raise ConflictError(f"Project '{project_id}' is already {_value(project.status)}")
        if _value(quote.status) != QuoteStatus.SUBMITTED.value:
            raise InvalidStateError("Quote", str(quote_id), _value(quote.status), "approve")
        ensure_transition(project.status, ProjectStatus.ASSIGNED, str(project_id))

        provider_name = await lookups.display_name(db, quote.provider_id, fallback="the provider")
        now = utcnow()

        async def _work() -> list[uuid.UUID]:
            result = await db.execute(
                update(Project)
                .where(
                    Project.id == project_id,
                    Project.status == ProjectStatus.OPEN.value,
                    Project.is_deleted.is_(False),
                )
                .values(
                    status=ProjectStatus.ASSIGNED.value,
                    assigned_provider_id=quote.provider_id,
                    approved_quote_id=quote.id,
                    approved_amount=quote.amount,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await db.scalar(select(Project.status).where(Project.id == project_id))
                raise ConflictError(f"Project '{project_id}' is already {_value(current)}")

            result = await db.execute(
                update(Quote)
                .where(
                    Quote.id == quote_id,
                    Quote.project_id == project_id,
                    Quote.status == QuoteStatus.SUBMITTED.value,
                )
                .values(status=QuoteStatus.APPROVED.value, approved_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(f"Quote '{quote_id}' is no longer open for approval")

            rejected = (
                await db.execute(
                    update(Quote)
                    .where(
                        Quote.project_id == project_id,
                        Quote.id != quote_id,
                        Quote.status == QuoteStatus.SUBMITTED.value,
                    )
                    .values(status=QuoteStatus.REJECTED.value, rejected_at=now, updated_at=now)
                    .returning(Quote.id, Quote.provider_id)
                    .execution_options(synchronize_session=False)
                )
            ).all()

            outbox.enqueue(
                db,
                *templates.quote_approved(
                    quote_id=quote.id,
                    project_id=project.id,
                    project_title=project.title,
                    poster_id=project.poster_id,
                    provider_id=quote.provider_id,
                    provider_name=provider_name,
                    amount=quote.amount,
                ),
            )
            if self.notify_rejected:
                outbox.enqueue(
                    db,
                    *[
                        templates.quote_rejected(
                            quote_id=rejected_id,
                            project_id=project.id,
                            project_title=project.title,
                            provider_id=rejected_provider,
                        )
                        for rejected_id, rejected_provider in rejected
                    ],
                )
            return [rejected_id for rejected_id, _ in rejected]

        rejected_ids = await run_atomic(db, _work, resource="Project", resource_id=str(project_id))
        await db.refresh(project)
        await db.refresh(quote)
        logger.info(
            "Project %s assigned to %s via quote %s; %d quote(s) rejected",
            project_id,
            quote.provider_id,
            quote_id,
            len(rejected_ids),
        )
        return ApprovalResult(project=project, quote=quote, rejected_quote_ids=rejected_ids)

    async def cancel(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        is_admin: bool = False,
    ) -> Project:
        return await self._finish(db, project_id, actor_id, ProjectStatus.CANCELLED, is_admin)

    async def complete(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        is_admin: bool = False,
    ) -> Project:
        return await self._finish(db, project_id, actor_id, ProjectStatus.COMPLETED, is_admin)

    async def _finish(
        self,
        db: AsyncSession,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        target: ProjectStatus,
        is_admin: bool,
    ) -> Project:
        project = await lookups.get_project(db, project_id)
        if project.poster_id != actor_id and not is_admin:
            raise PermissionDeniedError("Only the project's poster can change its status")
        old_status = _value(project.status)
        ensure_transition(old_status, target, str(project_id))

        values = {"status": target.value, "updated_at": utcnow()}
        if target == ProjectStatus.CANCELLED:
            # A cancelled project no longer has an assignment
            values.update(assigned_provider_id=None, approved_quote_id=None, approved_amount=None)
        provider_id = project.assigned_provider_id

        async def _work() -> None:
            result = await db.execute(
                update(Project)
                .where(Project.id == project_id, Project.status == old_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                current = await db.scalar(select(Project.status).where(Project.id == project_id))
                raise ConflictError(
                    f"Project '{project_id}' moved to {_value(current)} while being updated"
                )
            if provider_id is not None:
                outbox.enqueue(
                    db,
                    templates.project_status_changed(
                        project_id=project.id,
                        project_title=project.title,
                        poster_id=project.poster_id,
                        provider_id=provider_id,
                        old_status=old_status,
                        new_status=target.value,
                    ),
                )

        await run_atomic(db, _work, resource="Project", resource_id=str(project_id))
        await db.refresh(project)
        logger.info("Project %s moved %s -> %s by %s", project_id, old_status, target.value, actor_id)
        return project
