"""
Tests for utils.locks.
"""

import asyncio

import pytest

from utils.locks import KeyedLocks


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_is_serialised(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold("k"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = KeyedLocks()
        async with locks.hold("a"):
            assert locks.is_locked("a")
            assert not locks.is_locked("b")
            async with locks.hold("b"):
                assert locks.is_locked("b")

    @pytest.mark.asyncio
    async def test_unused_locks_are_dropped(self):
        locks = KeyedLocks()
        async with locks.hold(("user-1", "facebook")):
            assert len(locks) == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            async with locks.hold("k"):
                raise RuntimeError("boom")
        assert not locks.is_locked("k")
        assert len(locks) == 0
