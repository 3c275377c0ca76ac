"""
Eligibility scanner.

Reads a bounded sample of products and classifies each one so the
orchestrator can tell whether a run has anything to do, without scanning
the whole collection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from backfill.cache import OwnerCache
from backfill.config import BackfillConfig
from backfill.models import EligibilityReport, EligibilityStats, ProductRecord
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import ATTR_COLLECTION, ATTR_SAMPLE_SIZE
from backfill.stores.interface import ID_FIELD, DocumentStore, Query

logger = logging.getLogger(__name__)


@dataclass
class _Counters:
    total_checked: int = 0
    already_migrated: int = 0
    missing_value: int = 0
    orphaned: int = 0
    owner_missing_value: int = 0
    lookup_errors: int = 0
    eligible: int = 0

    def freeze(self) -> EligibilityStats:
        return EligibilityStats(
            total_checked=self.total_checked,
            already_migrated=self.already_migrated,
            missing_value=self.missing_value,
            orphaned=self.orphaned,
            owner_missing_value=self.owner_missing_value,
            lookup_errors=self.lookup_errors,
            eligible=self.eligible,
        )


class EligibilityScanner:
    """
    Classifies a sample of products as migrated, orphaned, blocked or eligible.

    The sample is the first N products ordered by owner id then document id,
    so repeated scans over an unchanged collection see the same records.
    Scanning has no side effects besides filling the owner cache.

    Example:
        >>> scanner = EligibilityScanner(store, cache, BackfillConfig())
        >>> report = await scanner.scan()
        >>> report.has_eligible_work, report.stats.eligible
        (True, 12)
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: OwnerCache,
        config: BackfillConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._cache = cache
        self._config = config or BackfillConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def scan(self, sample_limit: int | None = None) -> EligibilityReport:
        """
        Scan a sample of products.

        Args:
            sample_limit: Products to read; defaults to ``eligibility_sample_size``

        Returns:
            EligibilityReport whose ``has_eligible_work`` is true iff at least
            one sampled product lacks the value and has an owner that has one

        Raises:
            ValueError: If sample_limit is not positive
            Exception: Whatever the store raises when the sample cannot be read
        """
        limit = sample_limit if sample_limit is not None else self._config.eligibility_sample_size
        if limit < 1:
            raise ValueError(f"sample_limit must be positive, got {limit}")

        with self._tracer.span(
            "backfill.scanner.scan",
            {
                ATTR_COLLECTION: self._config.product_collection,
                ATTR_SAMPLE_SIZE: limit,
            },
        ):
            query = Query().with_order(self._config.owner_field, ID_FIELD).with_limit(limit)
            docs = await self._store.query(self._config.product_collection, query)

            counters = _Counters()
            for doc in docs:
                await self._classify(ProductRecord.from_document(doc, self._config), counters)

            stats = counters.freeze()

        logger.info(
            "Eligibility scan checked %d products: %d eligible, %d migrated, "
            "%d orphaned, %d blocked by owner, %d lookup errors",
            stats.total_checked,
            stats.eligible,
            stats.already_migrated,
            stats.orphaned,
            stats.owner_missing_value,
            stats.lookup_errors,
        )
        return EligibilityReport(stats=stats, sample_limit=limit)

    async def _classify(self, product: ProductRecord, counters: _Counters) -> None:
        counters.total_checked += 1

        if product.has_value:
            counters.already_migrated += 1
            return

        counters.missing_value += 1

        if product.is_orphaned:
            counters.orphaned += 1
            return

        try:
            owner = await self._cache.get_owner(product.owner_id)
        except Exception as e:
            logger.warning(
                "Owner lookup failed for product %s (owner %s): %s",
                product.id,
                product.owner_id,
                e,
            )
            counters.lookup_errors += 1
            return

        if owner is None or not owner.has_value:
            counters.owner_missing_value += 1
            return

        counters.eligible += 1


__all__ = ["EligibilityScanner"]
