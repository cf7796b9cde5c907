"""Unit-of-work helper shared by every multi-row mutation.

``run_atomic`` runs a coroutine and the commit that follows it as one bounded
unit. Anything that goes wrong rolls the whole session back, and driver errors
are translated into the service's error kinds: a competing writer becomes
``ConflictError``, anything else from the store becomes ``TransientError``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from bidbridge.common.exceptions import BidBridgeException, ConflictError, TransientError
from bidbridge.common.logging import get_logger
from bidbridge.config import settings

logger = get_logger("db.transactions")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available, unique_violation
CONFLICT_SQLSTATES = {"40001", "40P01", "55P03", "23505"}


def _sqlstate(error: DBAPIError) -> str | None:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_write_conflict(error: SQLAlchemyError) -> bool:
    if isinstance(error, IntegrityError):
        return True
    if isinstance(error, DBAPIError):
        if _sqlstate(error) in CONFLICT_SQLSTATES:
            return True
        # SQLite reports a competing writer holding the lock this way
        return "database is locked" in str(error.orig).lower()
    return False


def translate_db_error(error: SQLAlchemyError, resource: str, resource_id: str) -> BidBridgeException:
    if is_write_conflict(error):
        return ConflictError(
            f"{resource} '{resource_id}' was modified concurrently; reload it and retry"
        )
    return TransientError(f"Storage failure while updating {resource.lower()} '{resource_id}'")


async def _safe_rollback(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except Exception as e:
        logger.warning("Rollback failed after aborted unit of work: %s", e)


async def run_atomic(
    db: AsyncSession,
    work: Callable[[], Awaitable[T]],
    *,
    resource: str,
    resource_id: str,
    timeout: float | None = None,
    on_integrity_error: Callable[[IntegrityError], BidBridgeException] | None = None,
) -> T:
    """Run ``work`` then commit; all of it becomes visible or none of it does."""
    limit = settings.TRANSACTION_TIMEOUT_SECONDS if timeout is None else timeout

    async def _unit() -> T:
        result = await work()
        await db.commit()
        return result

    try:
        return await asyncio.wait_for(_unit(), limit)
    except BidBridgeException:
        await _safe_rollback(db)
        raise
    except asyncio.TimeoutError as e:
        await _safe_rollback(db)
        logger.warning("Unit of work on %s %s timed out after %.1fs", resource, resource_id, limit)
        raise TransientError(
            f"Timed out updating {resource.lower()} '{resource_id}'; retry the request"
        ) from e
    except IntegrityError as e:
        await _safe_rollback(db)
        if on_integrity_error is not None:
            raise on_integrity_error(e) from e
        raise translate_db_error(e, resource, resource_id) from e
    except SQLAlchemyError as e:
        await _safe_rollback(db)
        translated = translate_db_error(e, resource, resource_id)
        logger.warning("Unit of work on %s %s aborted (%s): %s", resource, resource_id, translated.code, e)
        raise translated from e
    except Exception as e:
        await _safe_rollback(db)
        logger.error("Unit of work on %s %s failed: %s", resource, resource_id, e)
        raise TransientError(
            f"Could not update {resource.lower()} '{resource_id}'; retry the request"
        ) from e
