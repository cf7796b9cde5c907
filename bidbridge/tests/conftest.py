import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal
from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from bidbridge.common.enums import UserRole
from bidbridge.common.security import create_access_token
from bidbridge.core.engagement.schemas import ProjectCreate
from bidbridge.core.engagement.state_machine import EngagementStateMachine
from bidbridge.core.notifications.dispatcher import NotificationDispatcher
from bidbridge.core.notifications.schemas import NotificationEvent
from bidbridge.db.base import Base
from bidbridge.db.models import *  # noqa: F401,F403 - ensure all models loaded


# A file database per test: concurrency tests need separate connections
# that contend on the same store.
@pytest.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def client(session_factory):
    from bidbridge.api.deps import get_db
    from bidbridge.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, name: str, role: UserRole):
    from bidbridge.db.models.user import User

    user = User(
        id=uuid.uuid4(),
        email=f"{name.lower().replace(' ', '_')}_{uuid.uuid4().hex[:8]}@test.com",
        display_name=name,
        role=role.value,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def poster_user(db_session):
    return await _make_user(db_session, "Pat Poster", UserRole.POSTER)


@pytest.fixture
async def provider_user(db_session):
    return await _make_user(db_session, "Alice Plumbing", UserRole.PROVIDER)


@pytest.fixture
async def second_provider_user(db_session):
    return await _make_user(db_session, "Bob Electric", UserRole.PROVIDER)


@pytest.fixture
async def outsider_user(db_session):
    return await _make_user(db_session, "Olly Outsider", UserRole.PROVIDER)


@pytest.fixture
async def admin_user(db_session):
    return await _make_user(db_session, "Ada Admin", UserRole.ADMIN)


def _headers(user) -> dict[str, str]:
    token = create_access_token({"sub": str(user.id), "name": user.display_name, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def poster_headers(poster_user):
    return _headers(poster_user)


@pytest.fixture
def provider_headers(provider_user):
    return _headers(provider_user)


@pytest.fixture
def second_provider_headers(second_provider_user):
    return _headers(second_provider_user)


@pytest.fixture
def outsider_headers(outsider_user):
    return _headers(outsider_user)


@pytest.fixture
def admin_headers(admin_user):
    return _headers(admin_user)


@pytest.fixture
async def open_project(db_session, poster_user):
    return await EngagementStateMachine().create_project(
        db_session,
        poster_user.id,
        ProjectCreate(title="Fix leaking roof", description="Two spots above the kitchen", budget=Decimal("1500.00")),
    )


@pytest.fixture(autouse=True)
def handed_off():
    """Capture every notification handed to the task queue instead of publishing it."""
    payloads: list[dict] = []
    with patch(
        "bidbridge.tasks.notification_tasks.dispatch_notification.delay",
        side_effect=payloads.append,
    ):
        yield payloads


@pytest.fixture
def drain_notifications(session_factory, handed_off):
    """Run the captured hand-offs through a real dispatcher, like the worker would."""

    async def _drain() -> int:
        dispatcher = NotificationDispatcher(session_factory)
        written = 0
        while handed_off:
            payload = handed_off.pop(0)
            written += len(await dispatcher.dispatch_event(NotificationEvent.model_validate(payload)))
        return written

    return _drain
