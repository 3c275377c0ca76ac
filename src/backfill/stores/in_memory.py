"""
In-memory implementation of the document store.

Provides a simple, fast store for testing and development.
All data is stored in memory and lost when the process terminates.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from backfill.exceptions import (
    DocumentNotFoundError,
    WriteConflictError,
    WriteLimitExceededError,
)
from backfill.models import is_blank
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_COLLECTION,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
)
from backfill.stores.interface import Document, Filter, Query, WriteOperation

logger = logging.getLogger(__name__)

DEFAULT_MAX_WRITE_SIZE = 500


def _sort_key(value: Any) -> tuple[bool, Any]:
    # nulls sort before every other value
    return (value is not None, value)


class InMemoryDocumentStore:
    """
    In-memory implementation of DocumentStore for tests.

    Collections are dictionaries of document id to field mapping. Reads and
    writes deep-copy data so callers can never mutate stored documents.
    Queries are O(n) in the size of the collection.

    This implementation is safe for concurrent coroutines via asyncio.Lock.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.put("iboard_users", "u-1", {"company_id": "c-1"})
        >>> await store.put("products", "p-1", {"seller_id": "u-1"})
        >>> await store.get_by_id("products", "p-1")
        Document(id='p-1', data={'seller_id': 'u-1'})
    """

    def __init__(
        self,
        max_write_size: int = DEFAULT_MAX_WRITE_SIZE,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the in-memory store.

        Args:
            max_write_size: Largest number of operations accepted by atomic_write
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._max_write_size = max_write_size
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self.write_count = 0

    async def query(self, collection: str, query: Query) -> list[Document]:
        with self._tracer.span(
            "backfill.in_memory_store.query",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_DB_OPERATION: "query",
                ATTR_COLLECTION: collection,
            },
        ):
            async with self._lock:
                docs = [
                    Document(id=doc_id, data=copy.deepcopy(data))
                    for doc_id, data in self._collections.get(collection, {}).items()
                ]

            for filter_ in query.filters:
                docs = [doc for doc in docs if self._apply_filter(doc, filter_)]

            if query.order_by:
                docs.sort(key=lambda doc: self._order_key(doc, query.order_by))
                if query.start_after is not None:
                    cursor = tuple(_sort_key(value) for value in query.start_after)
                    docs = [doc for doc in docs if self._order_key(doc, query.order_by) > cursor]

            if query.limit is not None:
                docs = docs[: query.limit]

            return docs

    async def get_by_id(self, collection: str, document_id: str) -> Document | None:
        async with self._lock:
            data = self._collections.get(collection, {}).get(document_id)
            if data is None:
                return None
            return Document(id=document_id, data=copy.deepcopy(data))

    async def atomic_write(self, operations: Sequence[WriteOperation]) -> None:
        with self._tracer.span(
            "backfill.in_memory_store.atomic_write",
            {
                ATTR_DB_SYSTEM: "memory",
                ATTR_DB_OPERATION: "atomic_write",
                ATTR_BATCH_SIZE: len(operations),
            },
        ):
            if len(operations) > self._max_write_size:
                raise WriteLimitExceededError(len(operations), self._max_write_size)

            async with self._lock:
                # Validate everything before touching any document
                for op in operations:
                    current = self._collections.get(op.collection, {}).get(op.document_id)
                    if current is None:
                        raise DocumentNotFoundError(
                            op.collection, op.document_id, operation_count=len(operations)
                        )
                    for field_name in op.require_blank:
                        if not is_blank(current.get(field_name)):
                            raise WriteConflictError(
                                op.collection,
                                op.document_id,
                                field_name,
                                operation_count=len(operations),
                            )

                for op in operations:
                    self._collections[op.collection][op.document_id].update(
                        copy.deepcopy(dict(op.patch))
                    )
                self.write_count += 1

            logger.debug("Applied atomic write of %d operations", len(operations))

    async def put(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        """Create or replace a document."""
        async with self._lock:
            self._collections.setdefault(collection, {})[document_id] = copy.deepcopy(dict(data))

    async def put_many(
        self,
        collection: str,
        documents: Iterable[tuple[str, Mapping[str, Any]]],
    ) -> None:
        """Create or replace several documents given as (id, data) pairs."""
        async with self._lock:
            target = self._collections.setdefault(collection, {})
            for document_id, data in documents:
                target[document_id] = copy.deepcopy(dict(data))

    async def delete(self, collection: str, document_id: str) -> bool:
        """Delete a document. Returns True if it existed."""
        async with self._lock:
            return self._collections.get(collection, {}).pop(document_id, None) is not None

    async def count(self, collection: str) -> int:
        async with self._lock:
            return len(self._collections.get(collection, {}))

    async def clear(self) -> None:
        """Remove all collections. Useful for test teardown."""
        async with self._lock:
            self._collections.clear()
            self.write_count = 0

    def _order_key(self, doc: Document, order_by: tuple[str, ...]) -> tuple[tuple[bool, Any], ...]:
        return tuple(_sort_key(doc.get(field_name)) for field_name in order_by)

    def _apply_filter(self, doc: Document, filter_: Filter) -> bool:
        """
        Apply a single filter to a document.

        Args:
            doc: The document to check
            filter_: The filter condition

        Returns:
            True if the document matches the filter
        """
        value = doc.get(filter_.field)

        if filter_.operator == "eq":
            return bool(value == filter_.value)
        elif filter_.operator == "ne":
            if filter_.value is None:
                return value is not None
            return value is not None and bool(value != filter_.value)
        elif filter_.operator == "in":
            return value is not None and value in filter_.value
        elif filter_.operator == "not_in":
            return value is not None and value not in filter_.value

        if value is None:
            return False
        try:
            if filter_.operator == "gt":
                return bool(value > filter_.value)
            elif filter_.operator == "gte":
                return bool(value >= filter_.value)
            elif filter_.operator == "lt":
                return bool(value < filter_.value)
            elif filter_.operator == "lte":
                return bool(value <= filter_.value)
        except TypeError:
            # values of incomparable types never match a range filter
            return False
        return False

    def __repr__(self) -> str:
        sizes = {name: len(docs) for name, docs in self._collections.items()}
        return f"InMemoryDocumentStore(collections={sizes!r})"


__all__ = ["InMemoryDocumentStore", "DEFAULT_MAX_WRITE_SIZE"]
