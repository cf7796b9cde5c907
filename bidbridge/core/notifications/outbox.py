"""After-commit hand-off of notification events.

Services park events on their session with ``enqueue`` while the unit of work
is open. Nothing leaves the process until the session commits; a rollback
discards whatever was parked.
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from bidbridge.common.logging import get_logger
from bidbridge.core.notifications.schemas import NotificationEvent

logger = get_logger("notifications.outbox")

PENDING_KEY = "bidbridge.pending_notifications"


def enqueue(db: AsyncSession, *events: NotificationEvent) -> None:
    db.info.setdefault(PENDING_KEY, []).extend(events)


def hand_off(notification: NotificationEvent) -> None:
    """Push one event onto the task queue. Broker failures are logged, not raised."""
    from bidbridge.tasks.notification_tasks import dispatch_notification

    try:
        dispatch_notification.delay(notification.model_dump(mode="json"))
    except Exception as e:
        logger.error(
            "Failed to hand off '%s' notification for %d recipient(s): %s",
            notification.title,
            len(notification.recipient_ids),
            e,
        )


@event.listens_for(Session, "after_commit")
def _hand_off_pending(session: Session) -> None:
    pending = session.info.pop(PENDING_KEY, None)
    if not pending:
        return
    for notification in pending:
        hand_off(notification)
    logger.debug("Handed off %d notification event(s) after commit", len(pending))


@event.listens_for(Session, "after_rollback")
def _discard_pending(session: Session) -> None:
    dropped = session.info.pop(PENDING_KEY, None)
    if dropped:
        logger.debug("Discarded %d notification event(s) on rollback", len(dropped))
