"""
Tests for per-key locks.
"""

import asyncio

import pytest

from redialer.shared.locks import AsyncKeyedLock, KeyedLock


class TestKeyedLock:
    def test_slot_dropped_after_release(self) -> None:
        locks = KeyedLock()

        with locks.hold("a"):
            assert len(locks) == 1

        assert len(locks) == 0

    def test_slot_released_on_error(self) -> None:
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("boom")

        with locks.hold("a"):
            pass
        assert len(locks) == 0


class TestAsyncKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_serialized(self) -> None:
        locks = AsyncKeyedLock()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("k"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self) -> None:
        locks = AsyncKeyedLock()
        entered = asyncio.Event()

        async def holder() -> None:
            async with locks.hold("a"):
                await entered.wait()

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)

        assert locks.locked("a") is True
        async with locks.hold("b"):
            assert locks.locked("b") is True
            entered.set()

        await task
        assert locks.locked("a") is False
