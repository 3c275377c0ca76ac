"""
Document stores the backfill engine reads from and writes to.

Key Components:
    DocumentStore: Protocol with query, get_by_id and atomic_write
    Query: Query definition with filters, ordering, limit and cursor
    Filter: Single filter condition (eq, ne, gt, etc.)
    WriteOperation: Field patch applied to one document
    InMemoryDocumentStore: In-memory implementation for testing

SQL Backends:
    SQLiteDocumentStore: aiosqlite implementation (``backfill-engine[sqlite]``)

Example:
    >>> from backfill.stores import InMemoryDocumentStore, Query, Filter, ID_FIELD
    >>>
    >>> store = InMemoryDocumentStore()
    >>> await store.put("products", "p-1", {"seller_id": "u-1"})
    >>> await store.query(
    ...     "products",
    ...     Query().with_filter(Filter.eq("seller_id", "u-1")).with_order(ID_FIELD),
    ... )
"""

from backfill.stores.in_memory import InMemoryDocumentStore
from backfill.stores.interface import (
    ID_FIELD,
    Document,
    DocumentStore,
    Filter,
    FilterOperator,
    Query,
    WriteOperation,
)
from backfill.stores.sqlite import SQLiteDocumentStore

__all__ = [
    "ID_FIELD",
    "Document",
    "DocumentStore",
    "Filter",
    "FilterOperator",
    "Query",
    "WriteOperation",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
]
