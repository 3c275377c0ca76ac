"""
Candidate selection.

A run starts from one product whose owner can supply the value. Selection
is split in two:

- A *selection policy* decides which products are worth drawing. Policies
  sample the product collection in ``prepare()`` and hand out one product per
  ``draw()``.
- The :class:`CandidateSelector` validates each draw against the owner
  cache and retries a bounded number of times.

Built-in policies:
    RandomSelectionPolicy: uniform pick among sampled products lacking the value
    PriorityFirstSelectionPolicy: products lacking the value whose owner has one,
        with a wider fallback sample
    PartitionedSelectionPolicy: priority partition first, then already-valued
        products of valued owners
"""

from __future__ import annotations

import logging
import random
from collections.abc import Collection
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from backfill.cache import OwnerCache
from backfill.config import BackfillConfig, SelectionStrategy
from backfill.events import EventEmitter, EventKind
from backfill.models import Candidate, OwnerRecord, PartitionStats, ProductRecord
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import (
    ATTR_OWNER_ID,
    ATTR_PRODUCT_ID,
    ATTR_SELECTION_ATTEMPTS,
    ATTR_SELECTION_STRATEGY,
)
from backfill.stores.interface import ID_FIELD, DocumentStore, Filter, Query

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Draw:
    """A product handed out by a policy, and whether it came from the priority pool."""

    product: ProductRecord
    is_priority: bool = False


@runtime_checkable
class SelectionPolicy(Protocol):
    """
    Protocol for candidate selection policies.

    ``prepare`` is called once at the start of every selection round and may
    read the store. ``draw`` is called once per attempt and returns None when
    the policy has nothing left to offer.
    """

    @property
    def name(self) -> str: ...

    async def prepare(self, exclude_owner_ids: Collection[str] = ()) -> None: ...

    async def draw(self) -> Draw | None: ...


class _SamplingPolicy:
    """Shared sampling helpers for the built-in policies."""

    def __init__(
        self,
        store: DocumentStore,
        config: BackfillConfig,
        rng: random.Random,
    ) -> None:
        self._store = store
        self._config = config
        self._rng = rng

    async def _sample_owned_products(
        self,
        limit: int,
        exclude_owner_ids: Collection[str],
        value_missing: bool = True,
    ) -> list[ProductRecord]:
        """
        Read up to ``limit`` owned products, ordered by owner then id.

        The value condition and the owner exclusion are part of the query, so
        the limit counts only products that can still qualify. A blank-string
        value passes ``value_missing=False`` at the store and is filtered here.
        """
        value_filter = (
            Filter.eq(self._config.value_field, None)
            if value_missing
            else Filter.ne(self._config.value_field, None)
        )
        query = (
            Query()
            .with_filter(Filter.ne(self._config.owner_field, None))
            .with_filter(value_filter)
            .with_order(self._config.owner_field, ID_FIELD)
            .with_limit(limit)
        )
        if exclude_owner_ids:
            query = query.with_filter(
                Filter.not_in(self._config.owner_field, sorted(exclude_owner_ids))
            )
        docs = await self._store.query(self._config.product_collection, query)
        products = [ProductRecord.from_document(doc, self._config) for doc in docs]
        return [
            product
            for product in products
            if not product.is_orphaned
            and product.owner_id not in exclude_owner_ids
            and product.has_value != value_missing
        ]


class RandomSelectionPolicy(_SamplingPolicy):
    """Uniform pick among sampled products that lack the value."""

    def __init__(
        self,
        store: DocumentStore,
        config: BackfillConfig,
        rng: random.Random,
    ) -> None:
        super().__init__(store, config, rng)
        self._pool: list[ProductRecord] = []

    @property
    def name(self) -> str:
        return SelectionStrategy.RANDOM.value

    async def prepare(self, exclude_owner_ids: Collection[str] = ()) -> None:
        self._pool = await self._sample_owned_products(
            self._config.selection_sample_size, exclude_owner_ids
        )
        logger.debug("Random policy pool holds %d products lacking the value", len(self._pool))

    async def draw(self) -> Draw | None:
        if not self._pool:
            return None
        return Draw(product=self._rng.choice(self._pool))


class _OwnerResolvingPolicy(_SamplingPolicy):
    def __init__(
        self,
        store: DocumentStore,
        cache: OwnerCache,
        config: BackfillConfig,
        rng: random.Random,
    ) -> None:
        super().__init__(store, config, rng)
        self._cache = cache

    async def _resolve(self, product: ProductRecord) -> OwnerRecord | None:
        try:
            return await self._cache.get_owner(product.owner_id)
        except Exception as e:
            logger.warning("Skipping product %s, owner lookup failed: %s", product.id, e)
            return None


class PriorityFirstSelectionPolicy(_OwnerResolvingPolicy):
    """
    Prefer products lacking the value whose owner lookup yields one.

    When the sample holds no such product, fall back to a wider sample of
    owned products lacking the value whatever their owner lookup gave; the
    selector re-validates those draws like any other.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: OwnerCache,
        config: BackfillConfig,
        rng: random.Random,
    ) -> None:
        super().__init__(store, cache, config, rng)
        self._priority: list[ProductRecord] = []
        self._fallback: list[ProductRecord] = []

    @property
    def name(self) -> str:
        return SelectionStrategy.PRIORITY_FIRST.value

    async def prepare(self, exclude_owner_ids: Collection[str] = ()) -> None:
        sample = await self._sample_owned_products(
            self._config.selection_sample_size, exclude_owner_ids
        )
        self._priority = []
        for product in sample:
            owner = await self._resolve(product)
            if owner is not None and owner.has_value:
                self._priority.append(product)

        self._fallback = []
        if not self._priority:
            self._fallback = await self._sample_owned_products(
                self._config.fallback_sample_size, exclude_owner_ids
            )
            logger.info(
                "No priority products in a sample of %d, falling back to %d sampled products",
                len(sample),
                len(self._fallback),
            )

    async def draw(self) -> Draw | None:
        if self._priority:
            return Draw(product=self._rng.choice(self._priority), is_priority=True)
        if self._fallback:
            return Draw(product=self._rng.choice(self._fallback))
        return None


class PartitionedSelectionPolicy(_OwnerResolvingPolicy):
    """
    Partition a sample by owner readiness and draw from the priority side first.

    Priority products lack the value and their owner has one. Standard
    products already carry the value and their owner has one too; drawing one
    binds an owner whose remaining products may still need the value.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: OwnerCache,
        config: BackfillConfig,
        rng: random.Random,
    ) -> None:
        super().__init__(store, cache, config, rng)
        self._priority: list[ProductRecord] = []
        self._standard: list[ProductRecord] = []
        self._stats = PartitionStats()

    @property
    def name(self) -> str:
        return SelectionStrategy.SORTED_BY_PARTITION.value

    @property
    def stats(self) -> PartitionStats:
        return self._stats

    async def prepare(self, exclude_owner_ids: Collection[str] = ()) -> None:
        # 70% of the sample for products lacking the value, 30% for valued ones
        size = self._config.partition_sample_size
        priority_limit = max(1, size * 7 // 10)
        standard_limit = max(1, size - priority_limit)
        lacking = await self._sample_owned_products(priority_limit, exclude_owner_ids)
        valued = await self._sample_owned_products(
            standard_limit, exclude_owner_ids, value_missing=False
        )
        sample = [*lacking, *valued]
        self._priority = []
        self._standard = []
        owners_with_value: set[str] = set()
        owners_without_value: set[str] = set()

        for product in sample:
            owner = await self._resolve(product)
            if owner is None or not owner.has_value:
                if product.owner_id:
                    owners_without_value.add(product.owner_id)
                continue
            owners_with_value.add(owner.id)
            if product.has_value:
                self._standard.append(product)
            else:
                self._priority.append(product)

        self._stats = PartitionStats(
            priority_count=len(self._priority),
            standard_count=len(self._standard),
            owners_with_value=len(owners_with_value),
            owners_without_value=len(owners_without_value),
            total_analysed=len(sample),
        )
        logger.info(
            "Partitioned %d products: %d priority, %d standard (%.1f%% priority)",
            self._stats.total_analysed,
            self._stats.priority_count,
            self._stats.standard_count,
            self._stats.priority_rate,
        )

    async def draw(self) -> Draw | None:
        if self._priority:
            return Draw(product=self._rng.choice(self._priority), is_priority=True)
        if self._standard:
            return Draw(product=self._rng.choice(self._standard))
        return None


def create_selection_policy(
    strategy: SelectionStrategy,
    store: DocumentStore,
    cache: OwnerCache,
    config: BackfillConfig,
    rng: random.Random | None = None,
) -> SelectionPolicy:
    """
    Create one of the built-in policies.

    Args:
        strategy: Which policy to build
        store: Store to sample products from
        cache: Owner cache used to classify samples
        config: Sample sizes and field names
        rng: Random source (a fresh unseeded Random if omitted)
    """
    rng = rng or random.Random()
    if strategy == SelectionStrategy.RANDOM:
        return RandomSelectionPolicy(store, config, rng)
    if strategy == SelectionStrategy.PRIORITY_FIRST:
        return PriorityFirstSelectionPolicy(store, cache, config, rng)
    if strategy == SelectionStrategy.SORTED_BY_PARTITION:
        return PartitionedSelectionPolicy(store, cache, config, rng)
    raise ValueError(f"Unknown selection strategy: {strategy!r}")


class CandidateSelector:
    """
    Draws products from a policy until one has an owner with a value.

    Each attempt draws one product and resolves its owner through the cache.
    The draw is accepted only when the owner exists and has a non-blank
    value; anything else is discarded and counts against
    ``max_selection_attempts``. Repeated draws of the same product are
    allowed. Running out of attempts is not an error: it returns None.
    """

    def __init__(
        self,
        policy: SelectionPolicy,
        cache: OwnerCache,
        config: BackfillConfig | None = None,
        events: EventEmitter | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._policy = policy
        self._cache = cache
        self._config = config or BackfillConfig()
        self._events = events or EventEmitter()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._attempts_made = 0

    @property
    def policy(self) -> SelectionPolicy:
        return self._policy

    @property
    def attempts_made(self) -> int:
        """Attempts made by the most recent select_candidate() call."""
        return self._attempts_made

    async def select_candidate(
        self,
        exclude_owner_ids: Collection[str] = (),
        run_id: str | None = None,
    ) -> Candidate | None:
        """
        Select a product/owner pair to seed a run.

        Args:
            exclude_owner_ids: Owners that must not be selected (e.g. already done)
            run_id: Run to attribute emitted events to

        Returns:
            The accepted Candidate, or None when no attempt succeeded
        """
        max_attempts = self._config.max_selection_attempts
        self._attempts_made = 0

        with self._tracer.span(
            "backfill.selector.select_candidate",
            {
                ATTR_SELECTION_STRATEGY: self._policy.name,
            },
        ):
            await self._policy.prepare(exclude_owner_ids)

            for attempt in range(1, max_attempts + 1):
                self._attempts_made = attempt
                draw = await self._policy.draw()
                if draw is None:
                    # an empty pool stays empty for the rest of the round
                    await self._reject(run_id, attempt, None, None, "pool_exhausted")
                    break

                product = draw.product
                reason, owner = await self._validate(product, exclude_owner_ids)
                if reason is not None or owner is None:
                    await self._reject(
                        run_id, attempt, product.id, product.owner_id, reason or "owner_not_found"
                    )
                    continue

                candidate = Candidate(
                    product=product,
                    owner=owner,
                    resolved_value=owner.propagated_value or "",
                    is_priority=draw.is_priority,
                    attempts=attempt,
                )
                with self._tracer.span(
                    "backfill.selector.accept",
                    {
                        ATTR_PRODUCT_ID: product.id,
                        ATTR_OWNER_ID: owner.id,
                        ATTR_SELECTION_ATTEMPTS: attempt,
                    },
                ):
                    logger.info(
                        "Selected product %s of owner %s after %d attempt(s)%s",
                        product.id,
                        owner.id,
                        attempt,
                        " (priority)" if draw.is_priority else "",
                    )
                    await self._events.emit(
                        EventKind.CANDIDATE_SELECTED,
                        run_id,
                        product_id=product.id,
                        owner_id=owner.id,
                        resolved_value=candidate.resolved_value,
                        is_priority=draw.is_priority,
                        attempts=attempt,
                    )
                return candidate

        logger.warning(
            "No candidate found after %d attempt(s) with policy %s",
            self._attempts_made,
            self._policy.name,
        )
        return None

    async def _validate(
        self,
        product: ProductRecord,
        exclude_owner_ids: Collection[str],
    ) -> tuple[str | None, OwnerRecord | None]:
        if product.is_orphaned:
            return "orphaned", None
        if product.owner_id in exclude_owner_ids:
            return "owner_excluded", None
        try:
            owner = await self._cache.get_owner(product.owner_id)
        except Exception as e:
            logger.warning("Owner lookup failed for %s: %s", product.owner_id, e)
            return "lookup_error", None
        if owner is None:
            return "owner_not_found", None
        if not owner.has_value:
            return "owner_missing_value", None
        return None, owner

    async def _reject(
        self,
        run_id: str | None,
        attempt: int,
        product_id: str | None,
        owner_id: str | None,
        reason: str,
    ) -> None:
        logger.debug(
            "Attempt %d rejected product %s (owner %s): %s",
            attempt,
            product_id,
            owner_id,
            reason,
        )
        await self._events.emit(
            EventKind.CANDIDATE_REJECTED,
            run_id,
            attempt=attempt,
            product_id=product_id,
            owner_id=owner_id,
            reason=reason,
        )


__all__ = [
    "Draw",
    "SelectionPolicy",
    "RandomSelectionPolicy",
    "PriorityFirstSelectionPolicy",
    "PartitionedSelectionPolicy",
    "create_selection_policy",
    "CandidateSelector",
]
