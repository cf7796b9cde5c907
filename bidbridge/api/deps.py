import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.common.enums import UserRole
from bidbridge.common.exceptions import NotFoundError, PermissionDeniedError
from bidbridge.common.security import decode_token
from bidbridge.core import lookups
from bidbridge.db.models.user import User
from bidbridge.db.session import async_session_factory

BEARER_PREFIX = "Bearer "


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def caller_id_from_header(authorization: str) -> uuid.UUID:
    """Turn an ``Authorization`` header into the caller's user id.

    The identity system signs the token; only the ``sub`` claim of an access
    token is trusted. Name and role are read from the user directory.
    """
    if not authorization.startswith(BEARER_PREFIX):
        raise PermissionDeniedError("Invalid authorization header format")

    try:
        claims = decode_token(authorization.removeprefix(BEARER_PREFIX))
    except ValueError:
        raise PermissionDeniedError("Invalid or expired token")

    if claims.get("type") != "access":
        raise PermissionDeniedError("Invalid token type")
    try:
        return uuid.UUID(str(claims["sub"]))
    except (KeyError, ValueError):
        raise PermissionDeniedError("Token does not name a user")


async def get_current_user(
    authorization: str = Header(..., description="Bearer <token>"),
    db: AsyncSession = Depends(get_db),
) -> User:
    caller_id = caller_id_from_header(authorization)
    user = (await lookups.get_users(db, [caller_id])).get(caller_id)
    if user is None:
        raise NotFoundError("User", str(caller_id))
    if not user.is_active:
        raise PermissionDeniedError("User account is inactive")
    return user


def is_admin(user: User) -> bool:
    return user.role == UserRole.ADMIN.value


def require_role(*roles: UserRole):
    allowed = {r.value for r in roles}
    label = " or ".join(sorted(allowed))

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed:
            raise PermissionDeniedError(f"Only {label} accounts can do this")
        return current_user

    return role_checker
