"""
Standard span attributes for backfill components.

Keeping attribute names in one place keeps spans from different components
queryable with the same keys.

Example:
    >>> from backfill.observability.attributes import ATTR_OWNER_ID, ATTR_BATCH_INDEX
    >>>
    >>> with tracer.span(
    ...     "backfill.writer.apply_batch",
    ...     {ATTR_OWNER_ID: owner_id, ATTR_BATCH_INDEX: 3},
    ... ):
    ...     pass
"""

# =============================================================================
# Run Attributes
# =============================================================================

ATTR_RUN_ID = "backfill.run.id"
"""Identifier of the migration run (string)."""

ATTR_RUN_PHASE = "backfill.run.phase"
"""Current phase of the run (e.g., 'bound', 'complete')."""

ATTR_SELECTION_STRATEGY = "backfill.selection.strategy"
"""Name of the selection policy in use (e.g., 'priority_first')."""

ATTR_SELECTION_ATTEMPTS = "backfill.selection.attempts"
"""Number of attempts made while selecting a candidate (integer)."""

# =============================================================================
# Record Attributes
# =============================================================================

ATTR_COLLECTION = "backfill.collection"
"""Document collection name (e.g., 'products')."""

ATTR_OWNER_ID = "backfill.owner.id"
"""Owner (seller) document id."""

ATTR_PRODUCT_ID = "backfill.product.id"
"""Product document id."""

ATTR_SAMPLE_SIZE = "backfill.sample.size"
"""Maximum number of records read by a sampling query (integer)."""

# =============================================================================
# Batch Attributes
# =============================================================================

ATTR_BATCH_INDEX = "backfill.batch.index"
"""1-based index of the batch within the owner's products (integer)."""

ATTR_BATCH_SIZE = "backfill.batch.size"
"""Number of records in the batch (integer)."""

ATTR_BATCH_RANGE = "backfill.batch.range"
"""Human-readable range label of the batch (e.g., '11-20')."""

ATTR_RECORDS_UPDATED = "backfill.records.updated"
"""Number of records written in an operation (integer)."""

ATTR_RECORDS_SKIPPED = "backfill.records.skipped"
"""Number of records skipped in an operation (integer)."""

# =============================================================================
# Cache Attributes
# =============================================================================

ATTR_CACHE_HIT = "backfill.cache.hit"
"""Whether an owner lookup was served from the cache (boolean)."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'memory')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'query', 'atomic_write')."""

ATTR_ERROR_TYPE = "error.type"
"""Exception class name for failed operations."""


__all__ = [
    "ATTR_RUN_ID",
    "ATTR_RUN_PHASE",
    "ATTR_SELECTION_STRATEGY",
    "ATTR_SELECTION_ATTEMPTS",
    "ATTR_COLLECTION",
    "ATTR_OWNER_ID",
    "ATTR_PRODUCT_ID",
    "ATTR_SAMPLE_SIZE",
    "ATTR_BATCH_INDEX",
    "ATTR_BATCH_SIZE",
    "ATTR_BATCH_RANGE",
    "ATTR_RECORDS_UPDATED",
    "ATTR_RECORDS_SKIPPED",
    "ATTR_CACHE_HIT",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_ERROR_TYPE",
]
