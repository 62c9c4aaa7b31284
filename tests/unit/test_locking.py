import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.core.exceptions import ConcurrencyConflict
from app.services.locking import (
    LocalResourceLockManager,
    RedisResourceLockManager,
    lock_order,
)


def test_lock_order_is_sorted_and_distinct():
    a, b = sorted([uuid.uuid4(), uuid.uuid4()], key=str)
    assert lock_order([b, a, b]) == [str(a), str(b)]


class TestLocalResourceLockManager:
    """Test in-process resource locks."""

    async def test_serializes_same_resource(self):
        manager = LocalResourceLockManager(wait_seconds=1)
        resource = uuid.uuid4()
        events = []

        async def worker(name):
            async with manager.hold([resource]):
                events.append(f"{name}-in")
                await asyncio.sleep(0.01)
                events.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert events == ["a-in", "a-out", "b-in", "b-out"]

    async def test_different_resources_do_not_block(self):
        manager = LocalResourceLockManager(wait_seconds=0.1)
        async with manager.hold([uuid.uuid4()]):
            async with manager.hold([uuid.uuid4()]):
                pass

    async def test_overlapping_sets_in_any_order(self):
        manager = LocalResourceLockManager(wait_seconds=1)
        a, b = uuid.uuid4(), uuid.uuid4()

        async def worker(resources):
            async with manager.hold(resources):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(asyncio.gather(worker([a, b]), worker([b, a])), timeout=2)

    async def test_wait_timeout(self):
        manager = LocalResourceLockManager(wait_seconds=0.05)
        resource = uuid.uuid4()

        async with manager.hold([resource]):
            with pytest.raises(ConcurrencyConflict):
                async with manager.hold([resource]):
                    pass

        # Released after the failed attempt
        async with manager.hold([resource]):
            pass

    async def test_releases_on_error(self):
        manager = LocalResourceLockManager(wait_seconds=0.05)
        resource = uuid.uuid4()

        with pytest.raises(RuntimeError):
            async with manager.hold([resource]):
                raise RuntimeError("boom")

        async with manager.hold([resource]):
            pass


class TestRedisResourceLockManager:
    """Test the Redis-backed manager against a mocked client."""

    async def test_acquires_in_order_and_releases(self):
        client = MagicMock()
        client.acquire_resource_lock = AsyncMock(side_effect=lambda key: f"lock:{key}")
        client.release_resource_lock = AsyncMock(return_value=True)
        manager = RedisResourceLockManager(client)
        a, b = sorted([uuid.uuid4(), uuid.uuid4()], key=str)

        async with manager.hold([b, a]):
            assert [c.args[0] for c in client.acquire_resource_lock.await_args_list] == [
                str(a),
                str(b),
            ]
            client.release_resource_lock.assert_not_awaited()

        assert client.release_resource_lock.await_count == 2

    async def test_wait_expired(self):
        client = MagicMock()
        client.acquire_resource_lock = AsyncMock(side_effect=["held", None])
        client.release_resource_lock = AsyncMock(return_value=True)
        manager = RedisResourceLockManager(client)

        with pytest.raises(ConcurrencyConflict):
            async with manager.hold([uuid.uuid4(), uuid.uuid4()]):
                pass

        client.release_resource_lock.assert_awaited_once_with("held")
