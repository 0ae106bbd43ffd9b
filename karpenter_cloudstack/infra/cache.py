"""In-memory TTL cache with single-flight fetching.

Inventory lists (zones, networks, templates, service offerings) are cached
per ``(kind, zone)`` key. ``get_or_fetch`` collapses concurrent cold-cache
lookups into a single backend call:

    networks = await cache.get_or_fetch(("networks", zone), lambda: fetch(zone))

Expiry is passive: an entry past its deadline is dropped on the next access.
``cleanup`` sweeps expired entries and may be run periodically, but nothing
depends on it.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from karpenter_cloudstack.constants import DEFAULT_CACHE_TTL


@dataclass(frozen=True, slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Keyed cache whose entries expire after a time-to-live.

    Stored values are replaced wholesale on refresh and never mutated in
    place, so callers should store immutable values (tuples, frozen
    dataclasses).

    Args:
        default_ttl: Lifetime in seconds for entries stored without an explicit TTL.
        clock: Monotonic time source, injectable for tests.
        name: Label used in log records.
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_CACHE_TTL,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[Hashable, _Entry] = {}
        self._lock = asyncio.Lock()
        self._log = logger.bind(component="cache", cache=name)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: Hashable) -> tuple[bool, Any]:
        """Return ``(found, value)``; expired entries count as missing."""
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self._log.debug("Cache expired key={key}", key=key)
            return False, None
        return True, entry.value

    def set(self, key: Hashable, value: Any, ttl: float | None = None) -> None:
        lifetime = self.default_ttl if ttl is None else ttl
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + lifetime)

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            self._log.debug("Cache cleanup removed={n}", n=len(expired))
        return len(expired)

    async def get_or_fetch[T](
        self,
        key: Hashable,
        fetch: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> T:
        """Return the cached value for ``key`` or fetch it exactly once.

        On a miss the guard lock is taken and the cache re-checked before
        ``fetch`` runs, so callers racing on a cold key share one backend
        call. A failing fetch caches nothing and its error propagates; the
        next waiter then tries its own fetch.
        """
        found, value = self.get(key)
        if found:
            return value

        async with self._lock:
            found, value = self.get(key)
            if found:
                return value

            self._log.debug("Cache miss, fetching key={key}", key=key)
            result = await fetch()
            self.set(key, result, ttl)
            return result
