import asyncio
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from bidbridge.common.exceptions import (
    ConflictError,
    IllegalTransitionError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    TransientError,
)
from bidbridge.core.engagement.schemas import ProjectCreate, ProjectUpdate
from bidbridge.core.engagement.state_machine import EngagementStateMachine
from bidbridge.core.quotes.ledger import QuoteLedger
from bidbridge.core.quotes.schemas import QuoteInput
from bidbridge.db.models.notification import Notification
from bidbridge.db.models.project import Project
from bidbridge.db.models.quote import Quote

ledger = QuoteLedger()
machine = EngagementStateMachine()


async def _submit(db, project, provider, amount="1000.00"):
    return await ledger.submit(
        db, project.id, provider.id, QuoteInput(amount=Decimal(amount), description="Quote")
    )


async def _state(session_factory, project_id):
    async with session_factory() as fresh:
        project = (await fresh.execute(select(Project).where(Project.id == project_id))).scalar_one()
        quotes = (
            await fresh.execute(select(Quote).where(Quote.project_id == project_id).order_by(Quote.sequence))
        ).scalars().all()
        return project, {q.id: q.status for q in quotes}


@pytest.mark.asyncio
async def test_create_and_get_project(db_session, poster_user):
    project = await machine.create_project(
        db_session, poster_user.id, ProjectCreate(title="  Paint fence  ", budget=Decimal("300"))
    )
    assert project.title == "Paint fence"
    assert project.status == "open"
    assert project.quote_count == 0

    fetched = await machine.get_project(db_session, project.id)
    assert fetched.id == project.id


@pytest.mark.asyncio
async def test_approve_scenario_assigns_and_rejects_others(
    db_session,
    session_factory,
    open_project,
    poster_user,
    provider_user,
    second_provider_user,
    handed_off,
    drain_notifications,
):
    q1 = await _submit(db_session, open_project, provider_user, "1200.00")
    q2 = await _submit(db_session, open_project, second_provider_user, "950.00")
    handed_off.clear()

    result = await machine.approve(db_session, open_project.id, q2.id, poster_user.id)

    assert result.project.status == "assigned"
    assert result.project.assigned_provider_id == second_provider_user.id
    assert result.project.approved_amount == Decimal("950.00")
    assert result.quote.status == "approved"
    assert result.rejected_quote_ids == [q1.id]

    project, statuses = await _state(session_factory, open_project.id)
    assert project.approved_quote_id == q2.id
    assert statuses == {q1.id: "rejected", q2.id: "approved"}

    await drain_notifications()
    async with session_factory() as fresh:
        rows = (await fresh.execute(select(Notification))).scalars().all()
    by_user = {(n.user_id, n.title) for n in rows}
    assert (second_provider_user.id, "Quote Approved!") in by_user
    assert (poster_user.id, "Quote Approved") in by_user
    assert (provider_user.id, "Quote Not Selected") in by_user


@pytest.mark.asyncio
async def test_rejected_provider_notifications_can_be_disabled(
    db_session, open_project, poster_user, provider_user, second_provider_user, handed_off
):
    q1 = await _submit(db_session, open_project, provider_user)
    await _submit(db_session, open_project, second_provider_user)
    handed_off.clear()

    await EngagementStateMachine(notify_rejected=False).approve(db_session, open_project.id, q1.id, poster_user.id)

    assert "Quote Not Selected" not in {p["title"] for p in handed_off}


@pytest.mark.asyncio
async def test_concurrent_approvals_exactly_one_wins(
    session_factory, open_project, poster_user, provider_user, second_provider_user
):
    async with session_factory() as setup:
        q1 = await _submit(setup, open_project, provider_user)
        q2 = await _submit(setup, open_project, second_provider_user)

    async def _approve(quote_id):
        async with session_factory() as db:
            return await machine.approve(db, open_project.id, quote_id, poster_user.id)

    results = await asyncio.gather(_approve(q1.id), _approve(q2.id), return_exceptions=True)

    wins = [r for r in results if not isinstance(r, BaseException)]
    losses = [r for r in results if isinstance(r, BaseException)]
    assert len(wins) == 1
    assert len(losses) == 1
    assert isinstance(losses[0], ConflictError)

    project, statuses = await _state(session_factory, open_project.id)
    assert list(statuses.values()).count("approved") == 1
    assert project.approved_quote_id == wins[0].quote.id


@pytest.mark.asyncio
async def test_approve_is_all_or_nothing(
    db_session, session_factory, open_project, poster_user, provider_user, second_provider_user, handed_off
):
    q1 = await _submit(db_session, open_project, provider_user)
    q2 = await _submit(db_session, open_project, second_provider_user)
    # The rollback expires everything loaded in db_session
    project_id, q1_id, q2_id, poster_id = open_project.id, q1.id, q2.id, poster_user.id
    handed_off.clear()

    with patch(
        "bidbridge.core.engagement.state_machine.outbox.enqueue",
        side_effect=RuntimeError("boom"),
    ):
        with pytest.raises(TransientError):
            await machine.approve(db_session, project_id, q1_id, poster_id)

    project, statuses = await _state(session_factory, project_id)
    assert project.status == "open"
    assert project.assigned_provider_id is None
    assert statuses == {q1_id: "submitted", q2_id: "submitted"}
    assert handed_off == []


@pytest.mark.asyncio
async def test_approve_twice_conflicts(db_session, open_project, poster_user, provider_user):
    quote = await _submit(db_session, open_project, provider_user)
    await machine.approve(db_session, open_project.id, quote.id, poster_user.id)

    with pytest.raises(ConflictError) as exc_info:
        await machine.approve(db_session, open_project.id, quote.id, poster_user.id)
    assert "already assigned" in exc_info.value.detail


@pytest.mark.asyncio
async def test_only_poster_can_approve(db_session, open_project, provider_user):
    quote = await _submit(db_session, open_project, provider_user)

    with pytest.raises(PermissionDeniedError):
        await machine.approve(db_session, open_project.id, quote.id, provider_user.id)


@pytest.mark.asyncio
async def test_approve_quote_from_other_project_not_found(
    db_session, open_project, poster_user, provider_user
):
    other = await machine.create_project(db_session, poster_user.id, ProjectCreate(title="Other job"))
    quote = await _submit(db_session, other, provider_user)

    with pytest.raises(NotFoundError):
        await machine.approve(db_session, open_project.id, quote.id, poster_user.id)


@pytest.mark.asyncio
async def test_withdrawn_quote_cannot_be_approved(db_session, open_project, poster_user, provider_user):
    quote = await _submit(db_session, open_project, provider_user)
    await ledger.withdraw(db_session, quote.id, provider_user.id)

    with pytest.raises(InvalidStateError):
        await machine.approve(db_session, open_project.id, quote.id, poster_user.id)


@pytest.mark.asyncio
async def test_complete_notifies_assigned_provider(
    db_session, open_project, poster_user, provider_user, handed_off
):
    quote = await _submit(db_session, open_project, provider_user)
    await machine.approve(db_session, open_project.id, quote.id, poster_user.id)
    handed_off.clear()

    project = await machine.complete(db_session, open_project.id, poster_user.id)

    assert project.status == "completed"
    assert project.assigned_provider_id == provider_user.id
    assert [(p["title"], p["recipient_ids"]) for p in handed_off] == [
        ("Project Completed", [str(provider_user.id)])
    ]


@pytest.mark.asyncio
async def test_complete_open_project_is_illegal(db_session, open_project, poster_user):
    with pytest.raises(IllegalTransitionError):
        await machine.complete(db_session, open_project.id, poster_user.id)


@pytest.mark.asyncio
async def test_cancel_assigned_clears_assignment(db_session, open_project, poster_user, provider_user):
    quote = await _submit(db_session, open_project, provider_user)
    await machine.approve(db_session, open_project.id, quote.id, poster_user.id)

    project = await machine.cancel(db_session, open_project.id, poster_user.id)

    assert project.status == "cancelled"
    assert project.assigned_provider_id is None
    assert project.approved_amount is None


@pytest.mark.asyncio
async def test_cancelled_is_terminal(db_session, open_project, poster_user):
    await machine.cancel(db_session, open_project.id, poster_user.id)

    with pytest.raises(IllegalTransitionError):
        await machine.cancel(db_session, open_project.id, poster_user.id)


@pytest.mark.asyncio
async def test_admin_can_cancel_but_stranger_cannot(db_session, open_project, admin_user, outsider_user):
    with pytest.raises(PermissionDeniedError):
        await machine.cancel(db_session, open_project.id, outsider_user.id)

    project = await machine.cancel(db_session, open_project.id, admin_user.id, is_admin=True)
    assert project.status == "cancelled"


@pytest.mark.asyncio
async def test_update_project_changes_details_only(db_session, open_project, poster_user):
    project = await machine.update_project(
        db_session,
        open_project.id,
        poster_user.id,
        ProjectUpdate(title="  Fix roof and gutters ", budget=Decimal("1800.00")),
    )

    assert project.title == "Fix roof and gutters"
    assert project.budget == Decimal("1800.00")
    assert project.description == "Two spots above the kitchen"
    assert project.status == "open"


@pytest.mark.asyncio
async def test_update_project_rules(db_session, open_project, poster_user, provider_user):
    with pytest.raises(PermissionDeniedError):
        await machine.update_project(db_session, open_project.id, provider_user.id, ProjectUpdate(title="Mine now"))

    quote = await _submit(db_session, open_project, provider_user)
    await machine.approve(db_session, open_project.id, quote.id, poster_user.id)

    with pytest.raises(InvalidStateError):
        await machine.update_project(db_session, open_project.id, poster_user.id, ProjectUpdate(title="Too late"))


@pytest.mark.asyncio
async def test_delete_project_closes_quotes_and_notifies_live_providers(
    db_session, session_factory, open_project, poster_user, provider_user, second_provider_user, handed_off
):
    live = await _submit(db_session, open_project, provider_user)
    withdrawn = await _submit(db_session, open_project, second_provider_user)
    await ledger.withdraw(db_session, withdrawn.id, second_provider_user.id)
    handed_off.clear()

    closed = await machine.delete_project(db_session, open_project.id, poster_user.id)

    assert sorted(closed, key=str) == sorted([live.id, withdrawn.id], key=str)
    async with session_factory() as fresh:
        project = await fresh.get(Project, open_project.id)
        assert project.is_deleted is True
        assert project.deleted_at is not None
        quotes = (await fresh.execute(select(Quote).where(Quote.project_id == open_project.id))).scalars().all()
        assert all(q.is_deleted for q in quotes)

    assert [(p["title"], p["recipient_ids"]) for p in handed_off] == [
        ("Project Removed", [str(provider_user.id)])
    ]
    with pytest.raises(NotFoundError):
        await machine.get_project(db_session, open_project.id)
    with pytest.raises(NotFoundError):
        await ledger.get(db_session, live.id, provider_user.id)


@pytest.mark.asyncio
async def test_delete_project_rules(db_session, open_project, poster_user, provider_user, admin_user):
    quote = await _submit(db_session, open_project, provider_user)

    with pytest.raises(PermissionDeniedError):
        await machine.delete_project(db_session, open_project.id, provider_user.id)

    await machine.approve(db_session, open_project.id, quote.id, poster_user.id)
    with pytest.raises(InvalidStateError):
        await machine.delete_project(db_session, open_project.id, poster_user.id)

    await machine.cancel(db_session, open_project.id, poster_user.id)
    assert await machine.delete_project(db_session, open_project.id, admin_user.id, is_admin=True) == [quote.id]


# ---------- API ----------


@pytest.mark.asyncio
async def test_create_project_endpoint(client, poster_headers):
    response = await client.post(
        "/api/v1/projects",
        json={"title": "Install ceiling fan", "budget": "200.00"},
        headers=poster_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "open"
    assert data["quote_count"] == 0


@pytest.mark.asyncio
async def test_provider_cannot_create_project(client, provider_headers):
    response = await client.post("/api/v1/projects", json={"title": "Nope"}, headers=provider_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_approve_endpoint(client, poster_headers, provider_headers, open_project):
    created = await client.post(
        f"/api/v1/projects/{open_project.id}/quotes",
        json={"amount": "750.00", "description": "Reseal"},
        headers=provider_headers,
    )
    quote_id = created.json()["id"]

    response = await client.post(
        f"/api/v1/projects/{open_project.id}/quotes/{quote_id}/approve",
        headers=poster_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["project"]["status"] == "assigned"
    assert data["quote"]["status"] == "approved"
    assert data["rejected_quote_ids"] == []

    again = await client.post(
        f"/api/v1/projects/{open_project.id}/quotes/{quote_id}/approve",
        headers=poster_headers,
    )
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_list_projects_provider_sees_open_only(client, provider_headers, poster_headers, open_project):
    await client.post(f"/api/v1/projects/{open_project.id}/cancel", headers=poster_headers)
    created = await client.post("/api/v1/projects", json={"title": "Still open"}, headers=poster_headers)

    response = await client.get("/api/v1/projects", headers=provider_headers)
    assert response.status_code == 200
    assert [p["id"] for p in response.json()["items"]] == [created.json()["id"]]


@pytest.mark.asyncio
async def test_edit_and_delete_project_endpoints(client, poster_headers, provider_headers, open_project):
    edited = await client.patch(
        f"/api/v1/projects/{open_project.id}",
        json={"description": "Three spots now"},
        headers=poster_headers,
    )
    assert edited.status_code == 200
    assert edited.json()["description"] == "Three spots now"
    assert edited.json()["title"] == "Fix leaking roof"

    forbidden = await client.delete(f"/api/v1/projects/{open_project.id}", headers=provider_headers)
    assert forbidden.status_code == 403

    deleted = await client.delete(f"/api/v1/projects/{open_project.id}", headers=poster_headers)
    assert deleted.status_code == 204

    gone = await client.get(f"/api/v1/projects/{open_project.id}", headers=poster_headers)
    assert gone.status_code == 404


@pytest.mark.asyncio
async def test_get_missing_project_404(client, poster_headers):
    response = await client.get(
        "/api/v1/projects/00000000-0000-0000-0000-000000000000", headers=poster_headers
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_no_notification_rows_written_inline(db_session, open_project, provider_user):
    await _submit(db_session, open_project, provider_user)

    total = await db_session.scalar(select(func.count(Notification.id)))
    assert total == 0
