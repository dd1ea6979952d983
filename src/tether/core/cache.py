"""
TTL response cache shared by the integration clients.

Manifesto:
    Authorities are slow and rate-limited; most lookups repeat. The cache
    trades a bounded amount of staleness for fewer round trips, and its one
    hard rule is that an expired entry is never served.

    - **Never stale:** an entry older than its TTL is invisible to readers
    - **Outcome-aware TTLs:** confirmed answers live long, confirmed
      negatives live short, transient failures are never cached
    - **Cheap reads:** expiry is checked lazily on read; a background task
      sweeps the rest instead of scanning on every call

Architecture:
    ::

        ResponseCache
        ├── get(key)            → payload | None   (lazy delete on expired)
        ├── set(key, payload, ttl_seconds)
        ├── delete(key) / clear() / exists(key) / len()
        ├── purge_expired()     → int               (one sweep)
        └── start() / aclose()  background sweep task (default every 60 s)

        CacheTtlPolicy
        └── ttl_for(valid)      → positive_ttl | negative_ttl

Examples:
    >>> cache = ResponseCache()
    >>> cache.set("registry:1234567890123", {"valid": True}, ttl_seconds=86400)
    >>> cache.get("registry:1234567890123")
    {'valid': True}

Guardrails:
    ❌ DON'T: cache ``IntegrationUnavailable`` or any transient failure
    ✅ DO: cache answers and clean negatives through :class:`CacheTtlPolicy`

Tags:
    cache, ttl, in-memory, asyncio, tether
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tether.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_POSITIVE_TTL = 86_400
DEFAULT_NEGATIVE_TTL = 3_600
DEFAULT_SWEEP_INTERVAL = 60.0


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    """A cached payload with its creation time and TTL (seconds)."""

    payload: T
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass(frozen=True)
class CacheTtlPolicy:
    """TTL by semantic outcome of a lookup."""

    positive_ttl: float = DEFAULT_POSITIVE_TTL
    negative_ttl: float = DEFAULT_NEGATIVE_TTL

    def ttl_for(self, valid: bool) -> float:
        return self.positive_ttl if valid else self.negative_ttl


class ResponseCache:
    """In-memory TTL cache with LRU bound and periodic sweep.

    Concurrent writers to one key resolve last-write-wins. The clock must be
    monotonic; tests inject a fake one.

    Example:
        cache = ResponseCache(max_size=5_000, sweep_interval=60)
        cache.start()
        ...
        await cache.aclose()
    """

    def __init__(
        self,
        *,
        max_size: int = 10_000,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._max_size = max_size
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._sweeper: asyncio.Task[None] | None = None

    # ── Reads ────────────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the payload, or None when absent or expired."""
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._store[key]
            return None
        self._store.move_to_end(key)
        return entry.payload

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.exists(key)

    # ── Writes ───────────────────────────────────────────────────

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store ``value`` for ``ttl_seconds``; overwrites any previous entry."""
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if key in self._store:
            self._store.move_to_end(key)
        elif len(self._store) >= self._max_size:
            self._store.popitem(last=False)
        self._store[key] = CacheEntry(payload=value, created_at=self._clock(), ttl=ttl_seconds)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def clear(self) -> None:
        self._store.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._store.items() if entry.is_expired(now)]
        for key in expired:
            del self._store[key]
        return len(expired)

    # ── Background sweep ─────────────────────────────────────────

    def start(self) -> None:
        """Start the periodic sweep task on the running loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = self.purge_expired()
            if removed:
                logger.debug("cache.sweep", removed=removed, remaining=len(self._store))

    async def aclose(self) -> None:
        """Stop the sweep task. Cached entries are kept."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None

    async def __aenter__(self) -> ResponseCache:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


__all__ = [
    "CacheEntry",
    "CacheTtlPolicy",
    "ResponseCache",
    "DEFAULT_POSITIVE_TTL",
    "DEFAULT_NEGATIVE_TTL",
    "DEFAULT_SWEEP_INTERVAL",
]
