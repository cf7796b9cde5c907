from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from bidbridge.config import settings


def build_engine(url: str | None = None, **kwargs: Any) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    connect_args: dict[str, Any] = kwargs.pop("connect_args", {})
    if url.startswith("postgresql+asyncpg"):
        # Waiting on a competing writer's row lock surfaces as a lock timeout, not a hang
        connect_args.setdefault("server_settings", {"lock_timeout": str(settings.LOCK_TIMEOUT_MS)})
    return create_async_engine(
        url, echo=settings.DATABASE_ECHO, connect_args=connect_args, **kwargs
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
async_session_factory = build_session_factory(engine)
