import uuid
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import select

from bidbridge.common.enums import NotificationCategory
from bidbridge.common.exceptions import NotFoundError, PermissionDeniedError
from bidbridge.common.pagination import PaginationParams
from bidbridge.core.notifications import outbox
from bidbridge.core.notifications.dispatcher import NotificationDispatcher
from bidbridge.core.notifications.schemas import NotificationEvent
from bidbridge.db.base import utcnow
from bidbridge.db.models.notification import Notification


@pytest.fixture
def dispatcher(session_factory):
    return NotificationDispatcher(session_factory)


async def _notify(dispatcher, *users, title="Heads up", category=NotificationCategory.SYSTEM):
    return await dispatcher.dispatch(
        [u.id for u in users], category, title, "Something happened", {"action": "test"}
    )


@pytest.mark.asyncio
async def test_dispatch_writes_one_record_per_unique_recipient(dispatcher, db_session, poster_user, provider_user):
    created = await dispatcher.dispatch(
        [poster_user.id, provider_user.id, poster_user.id],
        NotificationCategory.JOB,
        "Project Completed",
        "Done",
        {"action": "job_completed"},
    )
    assert len(created) == 2

    rows = (await db_session.execute(select(Notification))).scalars().all()
    assert {r.user_id for r in rows} == {poster_user.id, provider_user.id}
    assert all(r.is_read is False and r.is_seen is False for r in rows)
    assert rows[0].metadata_ == {"action": "job_completed"}


@pytest.mark.asyncio
async def test_one_failed_recipient_does_not_block_others(dispatcher, db_session, poster_user, provider_user):
    # No such user: the foreign key is not enforced on SQLite, so fail the write explicitly
    ghost = uuid.uuid4()
    original = NotificationDispatcher._deliver

    async def flaky(self, user_id, *args, **kwargs):
        if user_id == ghost:
            raise RuntimeError("write failed")
        return await original(self, user_id, *args, **kwargs)

    with patch.object(NotificationDispatcher, "_deliver", flaky):
        created = await dispatcher.dispatch(
            [poster_user.id, ghost, provider_user.id], NotificationCategory.QUOTE, "t", "m"
        )

    assert len(created) == 2
    rows = (await db_session.execute(select(Notification.user_id))).scalars().all()
    assert set(rows) == {poster_user.id, provider_user.id}


@pytest.mark.asyncio
async def test_dispatch_without_recipients_is_dropped(dispatcher):
    assert await dispatcher.dispatch([], NotificationCategory.SYSTEM, "t", "m") == []


@pytest.mark.asyncio
async def test_mark_read_is_idempotent(dispatcher, db_session, poster_user):
    [notification_id] = await _notify(dispatcher, poster_user)

    first = await dispatcher.mark_read(db_session, notification_id, poster_user.id)
    read_at = first.read_at
    assert first.is_read is True
    assert first.is_seen is True

    second = await dispatcher.mark_read(db_session, notification_id, poster_user.id)
    assert second.is_read is True
    assert second.read_at == read_at


@pytest.mark.asyncio
async def test_mark_read_checks_owner_and_existence(dispatcher, db_session, poster_user, provider_user):
    [notification_id] = await _notify(dispatcher, poster_user)

    with pytest.raises(PermissionDeniedError):
        await dispatcher.mark_read(db_session, notification_id, provider_user.id)
    with pytest.raises(NotFoundError):
        await dispatcher.mark_read(db_session, uuid.uuid4(), poster_user.id)


@pytest.mark.asyncio
async def test_counts_mark_all_read_and_mark_seen(dispatcher, db_session, poster_user):
    ids = []
    for i in range(3):
        ids += await _notify(dispatcher, poster_user, title=f"Alert {i}")

    counts = await dispatcher.counts(db_session, poster_user.id)
    assert (counts.total, counts.unread, counts.unseen) == (3, 3, 3)

    assert await dispatcher.mark_seen(db_session, poster_user.id, [ids[0]]) == 1
    counts = await dispatcher.counts(db_session, poster_user.id)
    assert (counts.unread, counts.unseen) == (3, 2)

    assert await dispatcher.mark_all_read(db_session, poster_user.id) == 3
    counts = await dispatcher.counts(db_session, poster_user.id)
    assert (counts.total, counts.unread, counts.unseen) == (3, 0, 0)


@pytest.mark.asyncio
async def test_soft_deleted_records_leave_listings_and_counts(dispatcher, db_session, poster_user, provider_user):
    [keep] = await _notify(dispatcher, poster_user, title="Keep")
    [drop] = await _notify(dispatcher, poster_user, title="Drop")

    with pytest.raises(PermissionDeniedError):
        await dispatcher.soft_delete(db_session, drop, provider_user.id)
    await dispatcher.soft_delete(db_session, drop, poster_user.id)

    items, total = await dispatcher.list_for_user(db_session, poster_user.id, PaginationParams(page=1, page_size=50))
    assert total == 1
    assert [n.id for n in items] == [keep]
    assert (await dispatcher.counts(db_session, poster_user.id)).total == 1
    with pytest.raises(NotFoundError):
        await dispatcher.mark_read(db_session, drop, poster_user.id)


@pytest.mark.asyncio
async def test_list_filters_by_category_and_unread(dispatcher, db_session, poster_user):
    [quote_note] = await _notify(dispatcher, poster_user, category=NotificationCategory.QUOTE)
    [job_note] = await _notify(dispatcher, poster_user, category=NotificationCategory.JOB)
    await dispatcher.mark_read(db_session, job_note, poster_user.id)

    params = PaginationParams(page=1, page_size=50)
    items, _ = await dispatcher.list_for_user(db_session, poster_user.id, params, category=NotificationCategory.QUOTE)
    assert [n.id for n in items] == [quote_note]

    items, _ = await dispatcher.list_for_user(db_session, poster_user.id, params, unread_only=True)
    assert [n.id for n in items] == [quote_note]


@pytest.mark.asyncio
async def test_purge_expired_only_removes_old_records(dispatcher, db_session, poster_user):
    [fresh_id] = await _notify(dispatcher, poster_user)
    db_session.add(
        Notification(
            user_id=poster_user.id,
            category=NotificationCategory.SYSTEM.value,
            title="Ancient",
            message="old",
            created_at=utcnow() - timedelta(days=120),
        )
    )
    await db_session.commit()

    assert await dispatcher.purge_expired(db_session, 90) == 1
    remaining = (await db_session.execute(select(Notification.id))).scalars().all()
    assert remaining == [fresh_id]


@pytest.mark.asyncio
async def test_outbox_hands_off_only_after_commit(db_session, handed_off, poster_user):
    poster_id = poster_user.id
    event = NotificationEvent(
        recipient_ids=[poster_id], category=NotificationCategory.SYSTEM, title="t", message="m"
    )

    await db_session.execute(select(Notification.id))
    outbox.enqueue(db_session, event)
    await db_session.rollback()
    assert handed_off == []

    await db_session.execute(select(Notification.id))
    outbox.enqueue(db_session, event)
    await db_session.commit()
    assert [p["title"] for p in handed_off] == ["t"]
    assert handed_off[0]["recipient_ids"] == [str(poster_id)]


@pytest.mark.asyncio
async def test_broker_failure_is_logged_not_raised(db_session, poster_user):
    event = NotificationEvent(
        recipient_ids=[poster_user.id], category=NotificationCategory.SYSTEM, title="t", message="m"
    )
    with patch(
        "bidbridge.tasks.notification_tasks.dispatch_notification.delay",
        side_effect=ConnectionError("broker down"),
    ):
        await db_session.execute(select(Notification.id))
        outbox.enqueue(db_session, event)
        await db_session.commit()


# ---------- API ----------


@pytest.mark.asyncio
async def test_list_notifications_empty(client, poster_headers):
    response = await client.get("/api/v1/notifications", headers=poster_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 0
    assert data["unread_count"] == 0


@pytest.mark.asyncio
async def test_notification_endpoints(client, dispatcher, poster_headers, provider_headers, poster_user):
    [notification_id] = await _notify(dispatcher, poster_user)

    listed = await client.get("/api/v1/notifications", headers=poster_headers)
    assert listed.json()["unread_count"] == 1
    assert listed.json()["items"][0]["metadata"] == {"action": "test"}

    forbidden = await client.post(f"/api/v1/notifications/{notification_id}/read", headers=provider_headers)
    assert forbidden.status_code == 403

    read = await client.post(f"/api/v1/notifications/{notification_id}/read", headers=poster_headers)
    assert read.status_code == 200
    assert read.json()["is_read"] is True

    counts = await client.get("/api/v1/notifications/counts", headers=poster_headers)
    assert counts.json() == {"total": 1, "unread": 0, "unseen": 0}

    deleted = await client.delete(f"/api/v1/notifications/{notification_id}", headers=poster_headers)
    assert deleted.status_code == 204
    counts = await client.get("/api/v1/notifications/counts", headers=poster_headers)
    assert counts.json()["total"] == 0


@pytest.mark.asyncio
async def test_read_all_and_seen_endpoints(client, dispatcher, poster_headers, poster_user):
    await _notify(dispatcher, poster_user)
    await _notify(dispatcher, poster_user)

    seen = await client.post("/api/v1/notifications/seen", json={}, headers=poster_headers)
    assert seen.json() == {"updated": 2}

    read_all = await client.post("/api/v1/notifications/read-all", headers=poster_headers)
    assert read_all.json() == {"updated": 2}


@pytest.mark.asyncio
async def test_missing_token_rejected(client):
    response = await client.get("/api/v1/notifications")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_bad_token_rejected(client):
    response = await client.get("/api/v1/notifications", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 403
