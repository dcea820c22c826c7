"""
Unit Tests - Key Locks
"""
import asyncio

import pytest

from src.dimensions import ContentionTimeout, KeyedLockRegistry


class TestKeyedLockRegistry:
    """Tests for KeyedLockRegistry"""

    async def test_acquire_and_release(self):
        registry = KeyedLockRegistry(default_timeout=1.0)

        await registry.acquire(("station", "A"))
        assert registry.is_locked(("station", "A"))

        registry.release(("station", "A"))
        assert not registry.is_locked(("station", "A"))
        assert len(registry) == 0

    async def test_same_key_times_out(self):
        registry = KeyedLockRegistry(default_timeout=1.0)
        held = asyncio.Event()
        done = asyncio.Event()

        async def holder():
            async with registry.hold(("station", "A")):
                held.set()
                await done.wait()

        task = asyncio.create_task(holder())
        await held.wait()

        with pytest.raises(ContentionTimeout) as exc:
            await registry.acquire(("station", "A"), timeout=0.05)
        assert exc.value.retryable is True

        done.set()
        await task
        assert len(registry) == 0

    async def test_different_keys_do_not_contend(self):
        registry = KeyedLockRegistry(default_timeout=0.05)

        async with registry.hold(("station", "A")):
            async with registry.hold(("station", "B")):
                assert registry.is_locked(("station", "A"))
                assert registry.is_locked(("station", "B"))

    async def test_same_natural_key_different_dimension(self):
        registry = KeyedLockRegistry(default_timeout=0.05)

        async with registry.hold(("station", "X1")):
            async with registry.hold(("vehicle", "X1")):
                pass

    async def test_waiter_gets_lock_after_release(self):
        registry = KeyedLockRegistry(default_timeout=1.0)
        order = []

        async def worker(name: str):
            async with registry.hold("key"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
        assert len(registry) == 0


class TestLockScope:
    """Tests for LockScope"""

    async def test_scope_releases_everything(self):
        registry = KeyedLockRegistry(default_timeout=1.0)

        async with registry.scope() as scope:
            await scope.acquire("a")
            await scope.acquire("b")
            await scope.acquire("a")
            assert scope.held == ["a", "b"]
            assert scope.holds("a") and not scope.holds("c")

        assert not registry.is_locked("a")
        assert not registry.is_locked("b")
        assert len(registry) == 0

    async def test_scope_releases_on_error(self):
        registry = KeyedLockRegistry(default_timeout=1.0)

        with pytest.raises(RuntimeError):
            async with registry.scope() as scope:
                await scope.acquire("a")
                raise RuntimeError("boom")

        assert not registry.is_locked("a")
