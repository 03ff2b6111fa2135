"""
Short-TTL read-through / write-through cache for device status.

HomeKit asks for several characteristics of the same thermostat in a burst;
each of them reads the same device document. Reads within the TTL are served
from memory, concurrent misses for one key share a single fetch, and a
successful write replaces the entry so the writer sees its own update at once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ..log_utils import default_logger

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 5.0


def _retrieve_exception(fut: asyncio.Future) -> None:
    # Every reader may have been cancelled before a failed fetch settled.
    if not fut.cancelled():
        fut.exception()


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    timestamp: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return (now - self.timestamp) < self.ttl


class DeviceStatusCache(Generic[T]):
    def __init__(
        self,
        fetch: Callable[[str], Awaitable[T]],
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._clock = clock
        self._log = log or default_logger("watts_home.api_client.cache")
        self._entries: dict[str, CacheEntry[T]] = {}
        self._pending: dict[str, asyncio.Future] = {}
        self._writes: dict[str, int] = {}

    def entry(self, key: str) -> Optional[CacheEntry[T]]:
        return self._entries.get(key)

    async def get(self, key: str) -> T:
        entry = self._entries.get(key)
        if entry is not None and entry.is_fresh(self._clock()):
            self._log.debug("cache hit for %s", key)
            return entry.value

        pending = self._pending.get(key)
        if pending is None:
            self._log.debug("cache miss for %s; fetching", key)
            pending = asyncio.ensure_future(self._load(key, self._writes.get(key, 0)))
            self._pending[key] = pending

            def _done(fut: asyncio.Future, k: str = key) -> None:
                if self._pending.get(k) is fut:
                    del self._pending[k]

            pending.add_done_callback(_done)
            pending.add_done_callback(_retrieve_exception)
        return await asyncio.shield(pending)

    async def _load(self, key: str, writes_before: int) -> T:
        value = await self._fetch(key)
        # A write that landed during the fetch is newer than what we read.
        if self._writes.get(key, 0) != writes_before:
            current = self._entries.get(key)
            if current is not None:
                return current.value
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock(), ttl=self._ttl)
        return value

    def put(self, key: str, value: T) -> None:
        """Write-through: replace the entry with a freshly written value."""
        self._writes[key] = self._writes.get(key, 0) + 1
        self._entries[key] = CacheEntry(value=value, timestamp=self._clock(), ttl=self._ttl)

    async def write(self, key: str, mutation: Awaitable[T]) -> T:
        """Await a mutating call and, only if it succeeds, store its result."""
        value = await mutation
        self.put(key, value)
        return value


__all__ = ["CacheEntry", "DEFAULT_TTL_SECONDS", "DeviceStatusCache"]
