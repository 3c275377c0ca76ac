"""
Per-owner leases.

Two runs that bind the same owner at the same time are harmless (the
second one skips what the first already wrote) but wasteful. A lease
manager lets concurrent runs in one process agree that only one of them
works on a given owner. Leases are advisory and opt-in: the orchestrator
only takes them when a manager is injected.

Example:
    >>> leases = InMemoryOwnerLeaseManager(ttl_seconds=900)
    >>> async with leases.acquire("u-1", holder_id="run-a"):
    ...     await process_owner("u-1")
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from backfill.exceptions import LeaseAcquisitionError, LeaseNotHeldError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaseInfo:
    """
    Information about a held lease.

    Attributes:
        owner_id: The leased owner
        holder_id: Who holds the lease (a run id)
        acquired_at: When the lease was taken
        expires_at: Monotonic clock reading after which the lease lapses (None = never)
    """

    owner_id: str
    holder_id: str
    acquired_at: datetime
    expires_at: float | None = None


@runtime_checkable
class OwnerLeaseManager(Protocol):
    """Protocol for per-owner lease managers."""

    async def try_acquire(self, owner_id: str, holder_id: str) -> LeaseInfo | None: ...

    async def release(self, owner_id: str, holder_id: str) -> None: ...

    async def holder_of(self, owner_id: str) -> str | None: ...


class InMemoryOwnerLeaseManager:
    """
    Process-local lease manager.

    A lease lapses after ``ttl_seconds`` so a run that died without
    releasing does not block its owner forever. Re-acquiring a lease the
    holder already has refreshes it.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._leases: dict[str, LeaseInfo] = {}
        self._lock = asyncio.Lock()

    async def try_acquire(self, owner_id: str, holder_id: str) -> LeaseInfo | None:
        """
        Take the lease on an owner if nobody else holds it.

        Returns:
            LeaseInfo if acquired (or refreshed), None if another holder has it
        """
        async with self._lock:
            current = self._live_lease(owner_id)
            if current is not None and current.holder_id != holder_id:
                logger.debug(
                    "Lease on owner %s held by %s, refused for %s",
                    owner_id,
                    current.holder_id,
                    holder_id,
                )
                return None

            lease = LeaseInfo(
                owner_id=owner_id,
                holder_id=holder_id,
                acquired_at=datetime.now(UTC),
                expires_at=(
                    self._clock() + self._ttl_seconds if self._ttl_seconds is not None else None
                ),
            )
            self._leases[owner_id] = lease
            logger.debug("Lease on owner %s acquired by %s", owner_id, holder_id)
            return lease

    async def release(self, owner_id: str, holder_id: str) -> None:
        """
        Release a lease.

        Raises:
            LeaseNotHeldError: If ``holder_id`` does not hold the lease
        """
        async with self._lock:
            current = self._live_lease(owner_id)
            if current is None or current.holder_id != holder_id:
                raise LeaseNotHeldError(owner_id, holder_id)
            del self._leases[owner_id]
            logger.debug("Lease on owner %s released by %s", owner_id, holder_id)

    async def release_all(self, holder_id: str) -> int:
        """Release every lease held by ``holder_id``. Returns the number released."""
        async with self._lock:
            owned = [oid for oid, lease in self._leases.items() if lease.holder_id == holder_id]
            for owner_id in owned:
                del self._leases[owner_id]
            return len(owned)

    async def holder_of(self, owner_id: str) -> str | None:
        async with self._lock:
            lease = self._live_lease(owner_id)
            return lease.holder_id if lease is not None else None

    @asynccontextmanager
    async def acquire(self, owner_id: str, holder_id: str) -> AsyncIterator[LeaseInfo]:
        """
        Hold a lease for the duration of the context.

        Raises:
            LeaseAcquisitionError: If another holder has the lease
        """
        lease = await self.try_acquire(owner_id, holder_id)
        if lease is None:
            current = await self.holder_of(owner_id)
            raise LeaseAcquisitionError(owner_id, holder_id, current or "unknown")
        try:
            yield lease
        finally:
            await self.release(owner_id, holder_id)

    @property
    def held_lease_count(self) -> int:
        return sum(1 for owner_id in list(self._leases) if self._live_lease(owner_id) is not None)

    def _live_lease(self, owner_id: str) -> LeaseInfo | None:
        lease = self._leases.get(owner_id)
        if lease is None:
            return None
        if lease.expires_at is not None and lease.expires_at <= self._clock():
            del self._leases[owner_id]
            return None
        return lease


__all__ = [
    "LeaseInfo",
    "OwnerLeaseManager",
    "InMemoryOwnerLeaseManager",
]
