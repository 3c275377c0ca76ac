"""
Configuration for the backfill engine.

This module provides:
- BackfillConfig: collection and field names, batch sizing, sampling limits,
  cache settings and write behaviour for a backfill run
- SelectionStrategy: Enum naming the built-in candidate selection policies
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class SelectionStrategy(Enum):
    """
    Built-in policies for choosing the seed product of a run.

    Attributes:
        RANDOM: Uniform pick among sampled products lacking the value.
        PRIORITY_FIRST: Pick among products lacking the value whose owner
            has one; fall back to a wider random sample when none is found.
        SORTED_BY_PARTITION: Partition a sample into priority (lacking the
            value) and standard (already valued) products with a valued
            owner, and pick from priority first.
    """

    RANDOM = "random"
    PRIORITY_FIRST = "priority_first"
    SORTED_BY_PARTITION = "sorted_by_partition"


@dataclass(frozen=True)
class BackfillConfig:
    """
    Configuration for a backfill run.

    Attributes:
        product_collection: Collection holding the records to backfill
        owner_collection: Collection holding the owner records
        owner_field: Product field referencing the owner document id
        value_field: Field copied from the owner onto the product
        updated_at_field: Product field stamped with the write time
        batch_size: Number of products per page and per atomic write
        max_selection_attempts: Upper bound on candidate draws per selection
        eligibility_sample_size: Products read by the eligibility scan
        selection_sample_size: Products read by the random and priority policies
        fallback_sample_size: Products read by the priority policy's fallback
        partition_sample_size: Products read by the partitioning policy
        strategy: Default selection policy
        cache_ttl_seconds: Lifetime of cached owner lookups
        cache_max_size: Owner entries kept before evicting the least recently used
        max_atomic_write_size: Largest atomic write the store accepts
        lookahead_pagination: Fetch one extra record per page so the last page
            is detected exactly; when False a full page implies more records
        verify_before_write: Re-read each record right before writing it
        migration_source: Value stamped into ``migration_source``
        max_owners_per_run: Safety limit for process_all_owners()

    Example:
        >>> config = BackfillConfig(batch_size=20, strategy=SelectionStrategy.RANDOM)
        >>> config.with_overrides(batch_size=50).batch_size
        50
    """

    # Collections and fields
    product_collection: str = "products"
    owner_collection: str = "iboard_users"
    owner_field: str = "seller_id"
    value_field: str = "company_id"
    updated_at_field: str = "updated_at"

    # Batching
    batch_size: int = 10
    max_atomic_write_size: int = 500
    lookahead_pagination: bool = True

    # Sampling and selection
    max_selection_attempts: int = 20
    eligibility_sample_size: int = 200
    selection_sample_size: int = 100
    fallback_sample_size: int = 500
    partition_sample_size: int = 200
    strategy: SelectionStrategy = SelectionStrategy.PRIORITY_FIRST

    # Owner cache
    cache_ttl_seconds: float = 600.0
    cache_max_size: int = 1000

    # Writes
    verify_before_write: bool = True
    migration_source: str = "seller_company_backfill"

    # Multi-owner runs
    max_owners_per_run: int = 100

    def __post_init__(self) -> None:
        """Validate configuration values."""
        for name in (
            "product_collection",
            "owner_collection",
            "owner_field",
            "value_field",
            "updated_at_field",
        ):
            if not getattr(self, name):
                raise ValueError(f"{name} must not be empty")

        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_atomic_write_size < 1:
            raise ValueError(
                f"max_atomic_write_size must be positive, got {self.max_atomic_write_size}"
            )
        if self.batch_size > self.max_atomic_write_size:
            raise ValueError(
                f"batch_size ({self.batch_size}) cannot exceed "
                f"max_atomic_write_size ({self.max_atomic_write_size}): "
                f"each batch is written with a single atomic write"
            )
        if self.max_selection_attempts < 1:
            raise ValueError(
                f"max_selection_attempts must be positive, got {self.max_selection_attempts}"
            )
        for name in (
            "eligibility_sample_size",
            "selection_sample_size",
            "fallback_sample_size",
            "partition_sample_size",
        ):
            value = getattr(self, name)
            if value < 1:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.cache_ttl_seconds <= 0:
            raise ValueError(f"cache_ttl_seconds must be positive, got {self.cache_ttl_seconds}")
        if self.cache_max_size < 1:
            raise ValueError(f"cache_max_size must be positive, got {self.cache_max_size}")
        if self.max_owners_per_run < 1:
            raise ValueError(f"max_owners_per_run must be positive, got {self.max_owners_per_run}")

    def with_overrides(self, **overrides: Any) -> BackfillConfig:
        """Return a copy of this config with the given fields replaced."""
        return replace(self, **overrides)


__all__ = [
    "BackfillConfig",
    "SelectionStrategy",
]
