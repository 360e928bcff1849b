from __future__ import annotations

from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import json
import logging
import threading
import time
from typing import Any, NamedTuple

import anyio
from pydantic import BaseModel, computed_field

from .errors import SheetCoreError
from .ops.types import DiffMode

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    """Cache key; ``diff_mode`` keeps fidelity levels apart."""

    spreadsheet_id: str
    resource: str
    diff_mode: DiffMode


@dataclass
class CacheEntry:
    value: Any
    expires_at: float
    approx_size: int


class CacheStats(BaseModel):
    """Read-only cache statistics."""

    entries: int
    approx_bytes: int
    hits: int
    misses: int
    evictions: int
    invalidations: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


@dataclass
class _InFlight:
    done: anyio.Event
    value: Any = None
    error: Exception | None = None
    completed: bool = False


def approximate_size(value: Any) -> int:
    """Approximate the memory footprint of a JSON-like value in bytes."""
    return len(json.dumps(value, default=str, separators=(",", ":")))


class ReadCache:
    """Short-TTL LRU store for idempotent reads.

    Expired entries are evicted first, then least recently used entries,
    until both the entry and byte bounds hold.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 30.0,
        max_entries: int = 500,
        max_bytes: int = 50 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.max_bytes = max_bytes
        self._clock = clock
        self._entries: OrderedDict[CacheKey, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._bytes = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._invalidations = 0
        self._generations: dict[str, int] = {}
        self._in_flight: dict[CacheKey, _InFlight] = {}

    def get(self, key: CacheKey) -> tuple[bool, Any]:
        """Return ``(hit, value)`` for ``key``."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return False, None
            if self._clock() >= entry.expires_at:
                self._drop(key)
                self._misses += 1
                return False, None
            self._entries.move_to_end(key)
            self._hits += 1
            return True, entry.value

    def set(self, key: CacheKey, value: Any, ttl: float | None = None) -> None:
        """Store ``value`` under ``key`` with an optional TTL override."""
        size = approximate_size(value)
        if size > self.max_bytes:
            logger.debug("Skipping cache store of %d bytes for %s.", size, key.resource)
            return
        with self._lock:
            if key in self._entries:
                self._drop(key)
            effective_ttl = self.ttl_seconds if ttl is None else ttl
            self._entries[key] = CacheEntry(value, self._clock() + effective_ttl, size)
            self._bytes += size
            self._evict()

    def invalidate(self, spreadsheet_id: str) -> int:
        """Drop every entry for one spreadsheet and return how many were dropped."""
        with self._lock:
            self._generations[spreadsheet_id] = (
                self._generations.get(spreadsheet_id, 0) + 1
            )
            stale = [key for key in self._entries if key.spreadsheet_id == spreadsheet_id]
            for key in stale:
                self._drop(key)
            self._invalidations += 1
        if stale:
            logger.debug("Invalidated %d cache entries for %s.", len(stale), spreadsheet_id)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._bytes = 0

    async def get_or_fetch(
        self, key: CacheKey, fetch: Callable[[], Awaitable[Any]]
    ) -> tuple[Any, bool]:
        """Return the cached value or fetch it once for all concurrent callers.

        Args:
            key: Cache key.
            fetch: Coroutine factory that performs the remote read.

        Returns:
            ``(value, from_cache)``. Callers that joined an in-flight fetch
            receive its value with ``from_cache=True``.
        """
        hit, value = self.get(key)
        if hit:
            logger.debug("Cache hit for %s.", key.resource)
            return value, True
        with self._lock:
            pending = self._in_flight.get(key)
            if pending is None:
                pending = _InFlight(done=anyio.Event())
                self._in_flight[key] = pending
                owner = True
                generation = self._generations.get(key.spreadsheet_id, 0)
            else:
                owner = False
        if not owner:
            await pending.done.wait()
            if pending.error is not None and not _owner_cancelled(pending.error):
                raise pending.error
            if not pending.completed:
                # the owner gave up; this caller fetches for itself
                return await self.get_or_fetch(key, fetch)
            return pending.value, True

        logger.debug("Cache miss for %s.", key.resource)
        try:
            value = await fetch()
        except Exception as exc:
            pending.error = exc
            raise
        else:
            pending.value = value
            pending.completed = True
            with self._lock:
                fresh = self._generations.get(key.spreadsheet_id, 0) == generation
            if fresh:
                self.set(key, value)
            return value, False
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
            pending.done.set()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                approx_bytes=self._bytes,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                invalidations=self._invalidations,
            )

    def _drop(self, key: CacheKey) -> None:
        entry = self._entries.pop(key)
        self._bytes -= entry.approx_size

    def _evict(self) -> None:
        if len(self._entries) <= self.max_entries and self._bytes <= self.max_bytes:
            return
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            self._drop(key)
            self._evictions += 1
        while self._entries and (
            len(self._entries) > self.max_entries or self._bytes > self.max_bytes
        ):
            key = next(iter(self._entries))
            self._drop(key)
            self._evictions += 1


def _owner_cancelled(error: BaseException | None) -> bool:
    return isinstance(error, SheetCoreError) and error.code == "CANCELLED"


__all__ = ["CacheEntry", "CacheKey", "CacheStats", "ReadCache", "approximate_size"]
