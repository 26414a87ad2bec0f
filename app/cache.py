"""
app/cache.py — Time-bounded read-through cache for slowly-changing collections.

One instance guards one slot (e.g. the donor list):
  - get() returns the stored snapshot while it is younger than the TTL,
    otherwise fetches through the loader and stores the new snapshot.
  - A TTL of 0 disables caching: every get() refetches.
  - Concurrent misses share one in-flight fetch; every waiter receives the
    same snapshot (or the same FetchError).
  - A failed fetch leaves the previous entry untouched and still expired,
    so the next get() retries.  Stale data is never returned as fresh.
  - invalidate() bumps the generation; entries and in-flight fetches from an
    older generation are never served to later callers.

TTLs are in seconds (floats allowed); a 300000 ms budget is ttl_seconds=300.
The clock is injectable so tests can move time without sleeping.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from app.errors import FetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    fetched_at: float
    generation: int = 0


class ReadThroughCache(Generic[T]):

    def __init__(
        self,
        loader: Callable[[], Awaitable[T]],
        ttl_seconds: float,
        clock: Clock = time.monotonic,
        name: str = "cache",
    ):
        self.ttl_seconds = self._check_ttl(ttl_seconds)
        self.name = name
        self._loader = loader
        self._clock = clock
        self._entry: Optional[CacheEntry[T]] = None
        self._generation = 0
        self._inflight: Optional[asyncio.Task] = None
        self.fetch_count = 0

    @staticmethod
    def _check_ttl(ttl_seconds: float) -> float:
        if ttl_seconds < 0:
            raise ValueError(f"TTL must be non-negative, got {ttl_seconds}")
        return ttl_seconds

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def entry(self) -> Optional[CacheEntry[T]]:
        return self._entry

    def age(self) -> Optional[float]:
        """Seconds since the stored snapshot was fetched, None if never fetched."""
        if self._entry is None:
            return None
        return self._clock() - self._entry.fetched_at

    def is_fresh(self, ttl_seconds: Optional[float] = None) -> bool:
        ttl = self.ttl_seconds if ttl_seconds is None else self._check_ttl(ttl_seconds)
        entry = self._entry
        if entry is None or entry.generation != self._generation:
            return False
        return (self._clock() - entry.fetched_at) < ttl

    # ------------------------------------------------------------------
    # Read-through
    # ------------------------------------------------------------------

    async def get(self, ttl_seconds: Optional[float] = None) -> T:
        if self.is_fresh(ttl_seconds):
            logger.debug("Cache hit: %s", self.name)
            return self._entry.value

        if self._inflight is None:
            logger.info("Cache miss: %s, refreshing", self.name)
            self._inflight = asyncio.ensure_future(self._refresh(self._generation))
        else:
            logger.debug("Cache miss: %s, joining in-flight fetch", self.name)

        # shield: a cancelled waiter must not cancel the fetch other callers share
        return await asyncio.shield(self._inflight)

    async def _refresh(self, generation: int) -> T:
        started_at = self._clock()
        self.fetch_count += 1
        try:
            value = await self._loader()
        except FetchError as exc:
            logger.error("Refresh of %s failed: %s", self.name, exc)
            raise
        except Exception as exc:
            logger.error("Refresh of %s failed: %s", self.name, exc)
            raise FetchError(self.name, f"Failed to refresh '{self.name}': {exc}") from exc
        finally:
            if self._inflight is asyncio.current_task():
                self._inflight = None

        if generation == self._generation:
            self._entry = CacheEntry(value=value, fetched_at=started_at, generation=generation)
        else:
            logger.info("Discarding %s snapshot fetched before invalidation", self.name)
        return value

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self) -> None:
        """Force the next get() to refetch; the stored value is kept but expired."""
        self._generation += 1
        self._inflight = None
        logger.info("Cache invalidated: %s", self.name)

    def clear(self) -> None:
        self.invalidate()
        self._entry = None
