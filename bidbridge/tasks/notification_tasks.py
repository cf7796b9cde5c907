import asyncio

from sqlalchemy.pool import NullPool

from bidbridge.common.logging import get_logger
from bidbridge.config import settings
from bidbridge.tasks.celery_app import app

logger = get_logger("tasks.notifications")


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@app.task(name="bidbridge.tasks.notification_tasks.dispatch_notification")
def dispatch_notification(payload: dict):
    """Fan one handed-off event out to its recipients. Never retried."""

    async def _dispatch():
        from bidbridge.core.notifications.dispatcher import NotificationDispatcher
        from bidbridge.core.notifications.schemas import NotificationEvent
        from bidbridge.db.session import build_engine, build_session_factory

        # Each task runs on a fresh loop, so pooled connections cannot be shared
        engine = build_engine(poolclass=NullPool)
        try:
            notification = NotificationEvent.model_validate(payload)
            dispatcher = NotificationDispatcher(build_session_factory(engine))
            created = await dispatcher.dispatch_event(notification)
            return [str(notification_id) for notification_id in created]
        finally:
            await engine.dispose()

    try:
        return _run_async(_dispatch())
    except Exception as e:
        logger.error("Notification dispatch failed for '%s': %s", payload.get("title"), e)
        return []


@app.task(name="bidbridge.tasks.notification_tasks.purge_expired_notifications")
def purge_expired_notifications(retention_days: int | None = None):
    """Celery Beat task: hard-delete notifications past the retention window."""
    days = retention_days or settings.NOTIFICATION_RETENTION_DAYS
    logger.info("Purging notifications older than %d day(s)", days)

    async def _purge():
        from bidbridge.core.notifications.dispatcher import NotificationDispatcher
        from bidbridge.db.session import build_engine, build_session_factory

        engine = build_engine(poolclass=NullPool)
        try:
            session_factory = build_session_factory(engine)
            async with session_factory() as db:
                return await NotificationDispatcher(session_factory).purge_expired(db, days)
        finally:
            await engine.dispose()

    return _run_async(_purge())
