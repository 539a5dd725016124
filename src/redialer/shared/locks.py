"""
Per-key mutual exclusion.

Two flavours share the same shape: ``KeyedLock`` guards short synchronous
critical sections (ledger, registry, governor state) and is safe across worker
threads; ``AsyncKeyedLock`` serializes coroutines that await I/O while holding
the key (dispatch, completion handling, partition writes).
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass


@dataclass
class _Slot:
    lock: threading.Lock
    holders: int = 0


class KeyedLock:
    """A lock per key, created on demand and dropped once nobody holds it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot(threading.Lock())
            slot.holders += 1
        slot.lock.acquire()
        try:
            yield
        finally:
            slot.lock.release()
            with self._guard:
                slot.holders -= 1
                if slot.holders == 0:
                    self._slots.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)


@dataclass
class _AsyncSlot:
    lock: asyncio.Lock
    holders: int = 0


class AsyncKeyedLock:
    """asyncio counterpart of ``KeyedLock``; not reentrant."""

    def __init__(self) -> None:
        self._slots: dict[str, _AsyncSlot] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _AsyncSlot(asyncio.Lock())
        slot.holders += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.holders -= 1
            if slot.holders == 0:
                self._slots.pop(key, None)

    def locked(self, key: str) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        return len(self._slots)
