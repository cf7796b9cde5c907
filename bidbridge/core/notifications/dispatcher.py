"""Notification dispatcher: fan-out writes plus recipient-side bookkeeping."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import Any

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bidbridge.common.enums import NotificationCategory
from bidbridge.common.exceptions import NotFoundError, PermissionDeniedError
from bidbridge.common.logging import get_logger
from bidbridge.common.pagination import PaginationParams, paginate
from bidbridge.core.notifications.schemas import NotificationCounts, NotificationEvent
from bidbridge.db.base import utcnow
from bidbridge.db.models.notification import Notification
from bidbridge.db.transactions import run_atomic

logger = get_logger("notifications.dispatcher")


class NotificationDispatcher:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        if session_factory is None:
            from bidbridge.db.session import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory

    # ---------- Fan-out ----------

    async def dispatch(
        self,
        recipient_ids: list[uuid.UUID],
        category: NotificationCategory,
        title: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> list[uuid.UUID]:
        """Write one record per recipient concurrently; return the ids that landed.

        Every recipient is written in its own session, so one failed write
        never takes the others down with it.
        """
        recipients = list(dict.fromkeys(recipient_ids))
        if not recipients:
            logger.warning("Dropping '%s' notification with no recipients", title)
            return []

        results = await asyncio.gather(
            *(self._deliver(user_id, category, title, message, metadata or {}) for user_id in recipients),
            return_exceptions=True,
        )

        created: list[uuid.UUID] = []
        for user_id, result in zip(recipients, results):
            if isinstance(result, BaseException):
                logger.error("Notification '%s' to user %s failed: %s", title, user_id, result)
            else:
                created.append(result)

        logger.info(
            "Dispatched '%s' (%s) to %d/%d recipient(s)",
            title,
            NotificationCategory(category).value,
            len(created),
            len(recipients),
        )
        return created

    async def dispatch_event(self, event: NotificationEvent) -> list[uuid.UUID]:
        return await self.dispatch(
            event.recipient_ids, event.category, event.title, event.message, event.metadata
        )

    async def _deliver(
        self,
        user_id: uuid.UUID,
        category: NotificationCategory,
        title: str,
        message: str,
        metadata: dict[str, Any],
    ) -> uuid.UUID:
        async with self._session_factory() as db:
            notification = Notification(
                user_id=user_id,
                category=NotificationCategory(category).value,
                title=title,
                message=message,
                metadata_=metadata,
            )
            db.add(notification)
            await db.commit()
            return notification.id

    # ---------- Recipient operations ----------

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        params: PaginationParams,
        category: NotificationCategory | None = None,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        query = select(Notification).where(
            Notification.user_id == user_id,
            Notification.is_deleted.is_(False),
        )
        if category is not None:
            query = query.where(Notification.category == NotificationCategory(category).value)
        if unread_only:
            query = query.where(Notification.is_read.is_(False))
        query = query.order_by(Notification.created_at.desc(), Notification.id)
        return await paginate(db, query, params)

    async def counts(self, db: AsyncSession, user_id: uuid.UUID) -> NotificationCounts:
        result = await db.execute(
            select(
                func.count(Notification.id),
                func.coalesce(func.sum(case((Notification.is_read.is_(False), 1), else_=0)), 0),
                func.coalesce(func.sum(case((Notification.is_seen.is_(False), 1), else_=0)), 0),
            ).where(
                Notification.user_id == user_id,
                Notification.is_deleted.is_(False),
            )
        )
        total, unread, unseen = result.one()
        return NotificationCounts(total=total or 0, unread=int(unread), unseen=int(unseen))

    async def mark_read(
        self, db: AsyncSession, notification_id: uuid.UUID, user_id: uuid.UUID
    ) -> Notification:
        notification = await self._get_owned(db, notification_id, user_id)
        if notification.is_read:
            return notification

        async def _work() -> Notification:
            now = utcnow()
            notification.is_read = True
            notification.read_at = now
            if not notification.is_seen:
                notification.is_seen = True
                notification.seen_at = now
            await db.flush()
            return notification

        return await run_atomic(db, _work, resource="Notification", resource_id=str(notification_id))

    async def mark_all_read(self, db: AsyncSession, user_id: uuid.UUID) -> int:
        async def _work() -> int:
            now = utcnow()
            result = await db.execute(
                update(Notification)
                .where(
                    Notification.user_id == user_id,
                    Notification.is_read.is_(False),
                    Notification.is_deleted.is_(False),
                )
                .values(
                    is_read=True,
                    read_at=now,
                    is_seen=True,
                    seen_at=func.coalesce(Notification.seen_at, now),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        updated = await run_atomic(db, _work, resource="User", resource_id=str(user_id))
        logger.info("Marked %d notification(s) read for user %s", updated, user_id)
        return updated

    async def mark_seen(
        self,
        db: AsyncSession,
        user_id: uuid.UUID,
        notification_ids: list[uuid.UUID] | None = None,
    ) -> int:
        async def _work() -> int:
            stmt = update(Notification).where(
                Notification.user_id == user_id,
                Notification.is_seen.is_(False),
                Notification.is_deleted.is_(False),
            )
            if notification_ids is not None:
                stmt = stmt.where(Notification.id.in_(notification_ids))
            result = await db.execute(
                stmt.values(is_seen=True, seen_at=utcnow()).execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        return await run_atomic(db, _work, resource="User", resource_id=str(user_id))

    async def soft_delete(
        self, db: AsyncSession, notification_id: uuid.UUID, user_id: uuid.UUID
    ) -> None:
        notification = await self._get_owned(db, notification_id, user_id)

        async def _work() -> None:
            notification.is_deleted = True
            notification.deleted_at = utcnow()
            await db.flush()

        await run_atomic(db, _work, resource="Notification", resource_id=str(notification_id))

    async def purge_expired(self, db: AsyncSession, retention_days: int) -> int:
        """Retention sweep: the only path that hard-deletes notification records."""
        cutoff = utcnow() - timedelta(days=retention_days)

        async def _work() -> int:
            result = await db.execute(
                delete(Notification)
                .where(Notification.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0

        purged = await run_atomic(db, _work, resource="Notification", resource_id="retention-sweep")
        logger.info("Purged %d notification(s) older than %d day(s)", purged, retention_days)
        return purged

    async def _get_owned(
        self, db: AsyncSession, notification_id: uuid.UUID, user_id: uuid.UUID
    ) -> Notification:
        result = await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.is_deleted.is_(False),
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError("Notification", str(notification_id))
        if notification.user_id != user_id:
            raise PermissionDeniedError(
                f"Notification '{notification_id}' does not belong to user '{user_id}'"
            )
        return notification
