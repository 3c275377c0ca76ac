"""
Owner lookup cache.

Owners are read far more often than they change during a backfill: every
scanned product and every selection attempt resolves its owner. OwnerCache
memoizes ``get_by_id`` reads of the owner collection for a bounded time.

- Entries expire ``cache_ttl_seconds`` after they were read
- Owners that do not exist are cached too, as None
- Beyond ``cache_max_size`` entries the least recently used one is evicted
- Store errors are never cached; they propagate to the caller
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from backfill.config import BackfillConfig
from backfill.models import OwnerRecord, is_blank
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import ATTR_CACHE_HIT, ATTR_OWNER_ID
from backfill.stores.interface import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    """
    Counters of an OwnerCache.

    Attributes:
        hits: Lookups served from the cache
        misses: Lookups that read the store
        evictions: Entries dropped to stay within max_size
        size: Entries currently cached
        max_size: Capacity of the cache
    """

    hits: int
    misses: int
    evictions: int
    size: int
    max_size: int

    @property
    def efficiency(self) -> float:
        """Hit rate as a percentage of all lookups."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total * 100

    def to_dict(self) -> dict[str, float | int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "size": self.size,
            "max_size": self.max_size,
            "efficiency": round(self.efficiency, 2),
        }


@dataclass
class _CacheEntry:
    owner: OwnerRecord | None
    expires_at: float


class OwnerCache:
    """
    TTL and LRU cache in front of the owner collection.

    Example:
        >>> cache = OwnerCache(store, BackfillConfig())
        >>> owner = await cache.get_owner("u-1")   # reads the store
        >>> owner = await cache.get_owner("u-1")   # served from the cache
        >>> cache.invalidate("u-1")
        True
    """

    def __init__(
        self,
        store: DocumentStore,
        config: BackfillConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the cache.

        Args:
            store: Store holding the owner collection
            config: Collection names, TTL and capacity (defaults if omitted)
            clock: Monotonic time source in seconds, injectable for tests
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._store = store
        self._config = config or BackfillConfig()
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def ttl_seconds(self) -> float:
        return self._config.cache_ttl_seconds

    @property
    def max_size(self) -> int:
        return self._config.cache_max_size

    async def get_owner(self, owner_id: str | None) -> OwnerRecord | None:
        """
        Resolve an owner by id.

        Args:
            owner_id: Owner document id; blank ids resolve to None without a read

        Returns:
            The owner, or None if it does not exist

        Raises:
            Exception: Whatever the store raises on a failed read
        """
        if owner_id is None or is_blank(owner_id):
            return None

        entry = self._entries.get(owner_id)
        if entry is not None:
            if entry.expires_at > self._clock():
                self._entries.move_to_end(owner_id)
                self._hits += 1
                return entry.owner
            del self._entries[owner_id]

        self._misses += 1
        with self._tracer.span(
            "backfill.owner_cache.load",
            {ATTR_OWNER_ID: owner_id, ATTR_CACHE_HIT: False},
        ):
            doc = await self._store.get_by_id(self._config.owner_collection, owner_id)

        owner = OwnerRecord.from_document(doc, self._config) if doc is not None else None
        if owner is None:
            logger.debug("Owner %s not found, caching miss", owner_id)
        self._put(owner_id, owner)
        return owner

    async def get_owners(self, owner_ids: Iterable[str]) -> dict[str, OwnerRecord | None]:
        """
        Resolve several owners, reading each distinct uncached id once.

        Returns:
            Mapping of every requested non-blank id to its owner (or None)
        """
        resolved: dict[str, OwnerRecord | None] = {}
        for owner_id in owner_ids:
            if is_blank(owner_id) or owner_id in resolved:
                continue
            resolved[owner_id] = await self.get_owner(owner_id)
        return resolved

    def invalidate(self, owner_id: str) -> bool:
        """
        Drop one cached entry.

        Returns:
            True if an entry was cached for the id
        """
        return self._entries.pop(owner_id, None) is not None

    def invalidate_all(self) -> int:
        """Drop every cached entry. Returns the number dropped."""
        count = len(self._entries)
        self._entries.clear()
        return count

    @property
    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            size=len(self._entries),
            max_size=self.max_size,
        )

    def reset_stats(self) -> None:
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _put(self, owner_id: str, owner: OwnerRecord | None) -> None:
        self._entries[owner_id] = _CacheEntry(
            owner=owner,
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._entries.move_to_end(owner_id)
        while len(self._entries) > self.max_size:
            evicted_id, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Evicted owner %s from cache", evicted_id)

    def __contains__(self, owner_id: object) -> bool:
        return owner_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"OwnerCache(size={len(self._entries)}, max_size={self.max_size}, "
            f"ttl_seconds={self.ttl_seconds})"
        )


__all__ = ["OwnerCache", "CacheStats"]
