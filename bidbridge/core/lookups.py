"""Fresh-from-store loaders shared by the core services.

Every load uses ``populate_existing`` so a long-lived session never serves a
stale identity-map copy after another session committed.
"""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.common.exceptions import NotFoundError
from bidbridge.db.models.project import Project
from bidbridge.db.models.quote import Quote
from bidbridge.db.models.user import User

UNKNOWN_USER_NAME = "Unknown User"


async def get_project(db: AsyncSession, project_id: uuid.UUID) -> Project:
    result = await db.execute(
        select(Project)
        .where(Project.id == project_id, Project.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if not project:
        raise NotFoundError("Project", str(project_id))
    return project


async def get_quote(db: AsyncSession, quote_id: uuid.UUID) -> Quote:
    result = await db.execute(
        select(Quote)
        .where(Quote.id == quote_id, Quote.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    quote = result.scalar_one_or_none()
    if not quote:
        raise NotFoundError("Quote", str(quote_id))
    return quote


async def get_users(db: AsyncSession, user_ids: list[uuid.UUID]) -> dict[uuid.UUID, User]:
    if not user_ids:
        return {}
    result = await db.execute(
        select(User)
        .where(User.id.in_(list(set(user_ids))), User.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    return {user.id: user for user in result.scalars().all()}


async def display_name(db: AsyncSession, user_id: uuid.UUID, fallback: str = UNKNOWN_USER_NAME) -> str:
    users = await get_users(db, [user_id])
    user = users.get(user_id)
    return user.display_name if user else fallback
