"""
Unit of Work

A database transaction paired with the per-key locks taken inside it. Locks are
released only after the transaction has committed or rolled back, so no other
writer can observe or act on uncommitted SCD2 state.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .locks import KeyedLockRegistry, LockScope


@dataclass
class UnitOfWork:
    session: AsyncSession
    locks: LockScope


@asynccontextmanager
async def open_unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
    registry: KeyedLockRegistry,
    timeout: Optional[float] = None,
    uow: Optional[UnitOfWork] = None,
) -> AsyncGenerator[UnitOfWork, None]:
    """
    Join uow when given, otherwise open a new transaction and lock scope.

    The lock scope wraps the session so locks outlive the commit. Any
    exception, cancellation included, rolls the transaction back.
    """
    if uow is not None:
        yield uow
        return

    async with registry.scope(timeout) as scope:
        async with session_factory() as session:
            async with session.begin():
                yield UnitOfWork(session=session, locks=scope)
