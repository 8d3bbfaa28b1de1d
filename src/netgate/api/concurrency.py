#!/usr/bin/env python3
"""Concurrency Primitives for NetGate.

This module provides the two concurrency controls the enforcement core
relies on:
    - KeyedLock: one exclusive section per key, any number of keys in parallel
    - process_concurrent: bounded-concurrency fan-out over a list of items

Example:
    locks = KeyedLock()
    async with locks.hold(("10.0.0.5", "SUB-001")):
        state = await firewall.exists("10.0.0.5", "SUB-001")
        ...

    results = await process_concurrent(subscribers, reconcile_one, max_concurrent=10)
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Hashable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Keyed Lock
# ============================================

class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLock:
    """Per-key mutual exclusion.

    Holders of the same key are serialized in arrival order; holders of
    different keys never wait on each other. Entries are created on first use
    and dropped once no task holds or waits for them, so the table stays as
    small as the set of keys currently in flight.

    Must be used from a single event loop.

    Example:
        locks = KeyedLock()

        async with locks.hold("SUB-001"):
            ...  # no other task holds "SUB-001" here
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._entries: dict[Hashable, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Acquire the exclusive section for key."""
        entry = self._entries.get(key)
        if entry is None:
            entry = _LockEntry()
            self._entries[key] = entry
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def is_locked(self, key: Hashable) -> bool:
        """Check whether some task currently holds key."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)


# ============================================
# Bounded Fan-out
# ============================================

async def process_concurrent(
    items: list[T],
    processor: Callable[[T], Awaitable[Any]],
    max_concurrent: int = 10,
    return_exceptions: bool = False,
) -> list[Any]:
    """Process items concurrently with bounded concurrency.

    Uses a semaphore so at most max_concurrent processors run at once; one
    slow item only occupies one slot.

    Args:
        items: List of items to process
        processor: Async function to apply to each item
        max_concurrent: Maximum concurrent operations
        return_exceptions: If True, return exceptions instead of raising

    Returns:
        List of results in the same order as input items
    """
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    semaphore = asyncio.Semaphore(max_concurrent)

    async def bounded_processor(item: T) -> Any:
        async with semaphore:
            return await processor(item)

    return await asyncio.gather(
        *(bounded_processor(item) for item in items),
        return_exceptions=return_exceptions,
    )


__all__ = [
    "KeyedLock",
    "process_concurrent",
]
