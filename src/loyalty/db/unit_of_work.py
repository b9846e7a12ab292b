"""Explicit transaction boundary for engine operations."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.errors import TransientStorageError

logger = structlog.get_logger()


def is_transient(exc: DBAPIError) -> bool:
    """Lock contention, serialization failures and dropped connections."""
    return isinstance(exc, OperationalError) or exc.connection_invalidated


class UnitOfWork:
    """Opens one session per transaction and owns begin/commit/rollback.

    Everything written inside ``transaction()`` is committed together when the
    block exits normally and rolled back when it raises. Driver errors that are
    safe to retry are re-raised as ``TransientStorageError``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except DBAPIError as exc:
                if is_transient(exc):
                    logger.warning("transaction_transient_failure", error=str(exc.orig))
                    raise TransientStorageError(str(exc.orig)) from exc
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[AsyncSession]:
        """Session for read-only work; nothing is committed."""
        async with self._session_factory() as session:
            yield session
