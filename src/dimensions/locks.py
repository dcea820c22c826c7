"""
Per-Natural-Key Locking

Concurrent SCD2 transitions for the same natural key must be serialized;
transitions for different keys must not contend. The registry hands out one
asyncio.Lock per (dimension type, natural key), reference counted so idle
keys do not accumulate.

A LockScope collects the locks taken during one unit of work and releases
them together once the surrounding transaction has committed or rolled back.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncGenerator, Dict, Hashable, List, Optional

import structlog

from src.config import get_settings
from .exceptions import ContentionTimeout

logger = structlog.get_logger(__name__)


@dataclass
class _Entry:
    lock: asyncio.Lock
    users: int = 0


class KeyedLockRegistry:
    """
    Registry of per-key asyncio locks.

    Example:
        registry = KeyedLockRegistry()
        async with registry.scope(timeout=2.0) as scope:
            await scope.acquire(("station", "STN_DE001"))
            ...
    """

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = (
            default_timeout
            if default_timeout is not None
            else get_settings().loader.lock_timeout_seconds
        )
        self._entries: Dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    async def acquire(self, key: Hashable, timeout: Optional[float] = None) -> None:
        """
        Acquire the lock for key, waiting at most timeout seconds.

        Raises:
            ContentionTimeout: The lock was not acquired in time
        """
        timeout = self.default_timeout if timeout is None else timeout
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry(asyncio.Lock())
        entry.users += 1

        try:
            await asyncio.wait_for(entry.lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            self._forget(key, entry)
            logger.warning("Lock acquisition timed out", key=str(key), timeout=timeout)
            raise ContentionTimeout(
                f"Timed out after {timeout}s waiting for lock on {key}"
            ) from None
        except BaseException:
            self._forget(key, entry)
            raise

    def release(self, key: Hashable) -> None:
        entry = self._entries[key]
        entry.lock.release()
        self._forget(key, entry)

    def _forget(self, key: Hashable, entry: _Entry) -> None:
        entry.users -= 1
        if entry.users == 0 and self._entries.get(key) is entry:
            del self._entries[key]

    @asynccontextmanager
    async def hold(self, key: Hashable, timeout: Optional[float] = None) -> AsyncGenerator[None, None]:
        """Hold a single key lock for the duration of the block"""
        await self.acquire(key, timeout)
        try:
            yield
        finally:
            self.release(key)

    @asynccontextmanager
    async def scope(self, timeout: Optional[float] = None) -> AsyncGenerator["LockScope", None]:
        """Collect locks for one unit of work; all are released on exit"""
        scope = LockScope(self, timeout)
        try:
            yield scope
        finally:
            scope.release_all()


class LockScope:
    """Locks held by one unit of work. Re-acquiring a held key is a no-op."""

    def __init__(self, registry: KeyedLockRegistry, timeout: Optional[float] = None):
        self.registry = registry
        self.timeout = timeout
        self._held: List[Hashable] = []

    @property
    def held(self) -> List[Hashable]:
        return list(self._held)

    def holds(self, key: Hashable) -> bool:
        return key in self._held

    async def acquire(self, key: Hashable) -> None:
        if self.holds(key):
            return
        await self.registry.acquire(key, self.timeout)
        self._held.append(key)

    def release_all(self) -> None:
        while self._held:
            self.registry.release(self._held.pop())
